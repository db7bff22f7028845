"""API keys for partner verification apps.

Keys are shown once at creation; only their SHA-256 digest is stored.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime
from functools import wraps

from flask import g, request

from extensions import db
from utils.errors import ForbiddenError, UnauthorizedError

KEY_PREFIX = 'msk_live_'


def generate_api_key() -> str:
    return f'{KEY_PREFIX}{secrets.token_urlsafe(32)}'


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode('utf-8')).hexdigest()


def key_prefix(api_key: str) -> str:
    return api_key[:12]


def _bearer_token() -> str | None:
    header = (request.headers.get('Authorization') or '').strip()
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def require_api_key(fn):
    """Authenticate ``/api/app/<app_code>/...`` calls.

    The key must belong to the app named in the URL. The app is exposed as
    ``g.verification_app``.
    """

    @wraps(fn)
    def wrapper(*args, **kwargs):
        from models.verification_app import VerificationApp

        api_key = _bearer_token()
        if not api_key:
            raise UnauthorizedError('API key is required')

        app_code = kwargs.get('app_code')
        app = VerificationApp.query.filter_by(app_code=app_code).first()
        if app is None or not hmac.compare_digest(app.api_key_hash, hash_api_key(api_key)):
            raise UnauthorizedError('Invalid API key', code='INVALID_API_KEY')
        if not app.is_active:
            raise ForbiddenError('Verification app is disabled')

        app.last_used_at = datetime.now()
        db.session.commit()

        g.verification_app = app
        return fn(*args, **kwargs)

    return wrapper
