"""Resolve the tenant of a public or mobile request."""

from __future__ import annotations

from typing import Optional

from flask import current_app, request

from utils.errors import NotFoundError


def _subdomain_slug() -> Optional[str]:
    base = (current_app.config.get('TENANT_BASE_DOMAIN') or '').strip().lower()
    if not base:
        return None
    host = (request.host or '').split(':', 1)[0].lower()
    suffix = f'.{base}'
    if not host.endswith(suffix):
        return None
    slug = host[:-len(suffix)]
    if not slug or '.' in slug or slug in {'www', 'api'}:
        return None
    return slug


def tenant_slug_from_request() -> Optional[str]:
    """``X-Tenant-Slug`` header first, then the Host subdomain."""
    slug = (request.headers.get('X-Tenant-Slug') or '').strip().lower()
    return slug or _subdomain_slug()


def resolve_tenant(required: bool = False):
    """Return the request's Tenant, or None when the request names none.

    A slug that does not match an active tenant is always a 404.
    """
    from models.tenant import Tenant

    slug = tenant_slug_from_request()
    if not slug:
        if required:
            raise NotFoundError('Tenant')
        return None

    tenant = Tenant.query.filter_by(slug=slug, is_active=True).first()
    if tenant is None:
        raise NotFoundError('Tenant')
    return tenant
