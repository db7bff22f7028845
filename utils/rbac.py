"""Role-based access control helpers.

Dashboard users carry their role and tenant in JWT claims ('super_admin' or
'tenant_admin'). Mobile customers carry ``actor='customer'`` instead and never
pass an admin check.
"""

from __future__ import annotations

from functools import wraps
from typing import Optional

from flask import jsonify, request
from flask_jwt_extended import get_jwt

from models.user import ROLE_SUPER_ADMIN, ROLE_TENANT_ADMIN
from utils.errors import ForbiddenError, ValidationError


def current_role() -> str:
    claims = get_jwt() or {}
    role = claims.get("role")
    return str(role or "").lower()


def require_roles(*roles: str):
    """Decorator to require one of the allowed roles.

    Must be used with @jwt_required() on the route.
    """

    allowed = {str(r).lower() for r in roles if str(r).strip()}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            role = current_role()
            if role not in allowed:
                return jsonify({"success": False, "message": "Access denied", "code": "FORBIDDEN"}), 403
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def require_admin(fn):
    """Any dashboard user: tenant admins and super admins."""

    return require_roles(ROLE_TENANT_ADMIN, ROLE_SUPER_ADMIN)(fn)


def require_customer(fn):
    """Decorator for mobile-app routes. Must be used with @jwt_required()."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        claims = get_jwt() or {}
        if claims.get("actor") != "customer":
            return jsonify({"success": False, "message": "Access denied", "code": "FORBIDDEN"}), 403
        return fn(*args, **kwargs)

    return wrapper


def current_tenant_id() -> int:
    """Tenant the current dashboard request acts on.

    Tenant admins are pinned to their own tenant. Super admins must name one
    with ``tenant_id`` in the query string or JSON body.
    """
    claims = get_jwt() or {}
    if current_role() != ROLE_SUPER_ADMIN:
        tenant_id = claims.get("tenant_id")
        if tenant_id is None:
            raise ForbiddenError("No tenant assigned to this account")
        return int(tenant_id)

    raw: Optional[object] = request.args.get("tenant_id")
    if raw is None and request.is_json:
        raw = (request.get_json(silent=True) or {}).get("tenant_id")
    if raw in (None, ""):
        raise ValidationError("tenant_id is required for super admin requests")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("tenant_id must be an integer")
