"""Fixed-window rate limiter backed by the database.

Counters live in ``rate_limit_counters`` keyed by ``(scope, key, window_start)``
so every app instance shares them. Each check is a single guarded UPDATE
(``count < limit``); the first hit of a window inserts the row.
"""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Callable, Optional

from flask import current_app, request

from extensions import db
from models.rate_limit import RateLimitCounter
from utils.db_helpers import conditional_update, insert_ignore
from utils.errors import RateLimitedError

logger = logging.getLogger(__name__)


def _window(now_ts: int, window_seconds: int) -> tuple[int, int]:
    start = now_ts - (now_ts % window_seconds)
    return start, start + window_seconds


def _increment(scope: str, key: str, window_start: int, limit: int) -> int:
    return conditional_update(
        RateLimitCounter,
        [
            RateLimitCounter.scope == scope,
            RateLimitCounter.key == key,
            RateLimitCounter.window_start == window_start,
            RateLimitCounter.count < limit,
        ],
        {'count': RateLimitCounter.count + 1},
    )


def check(scope: str, key: str, limit: int, window_seconds: int, now: Optional[float] = None) -> None:
    """Count one hit for ``(scope, key)``; raise RateLimitedError once over ``limit``.

    Commits its own work.
    """
    now_ts = int(now if now is not None else time.time())
    key = str(key or 'unknown')[:191]
    window_start, window_end = _window(now_ts, window_seconds)

    allowed = _increment(scope, key, window_start, limit) == 1
    if not allowed:
        inserted = insert_ignore(RateLimitCounter, {
            'scope': scope,
            'key': key,
            'window_start': window_start,
            'expires_at': window_end,
            'count': 1,
        })
        # A concurrent first hit may have created the row in between.
        allowed = inserted == 1 or _increment(scope, key, window_start, limit) == 1
    db.session.commit()

    if not allowed:
        logger.info('Rate limit hit scope=%s key=%s limit=%s/%ss', scope, key, limit, window_seconds)
        raise RateLimitedError(retry_after=max(1, window_end - now_ts))


def check_configured(scope: str, key: str) -> None:
    """``check`` using the ``RATE_LIMITS`` entry for ``scope``."""
    limit, window_seconds = current_app.config['RATE_LIMITS'][scope]
    check(scope, key, limit, window_seconds)


def refund_configured(scope: str, key: str, now: Optional[float] = None) -> None:
    """Give back one hit counted by ``check_configured`` in the current window."""
    _limit, window_seconds = current_app.config['RATE_LIMITS'][scope]
    now_ts = int(now if now is not None else time.time())
    window_start, _end = _window(now_ts, window_seconds)
    conditional_update(
        RateLimitCounter,
        [
            RateLimitCounter.scope == scope,
            RateLimitCounter.key == str(key or 'unknown')[:191],
            RateLimitCounter.window_start == window_start,
            RateLimitCounter.count > 0,
        ],
        {'count': RateLimitCounter.count - 1},
    )
    db.session.commit()


def client_ip() -> str:
    """Peer address of the request.

    X-Forwarded-For is only trusted through ProxyFix (``PROXY_FIX_X_FOR``).
    """
    return request.remote_addr or 'unknown'


def rate_limited(scope: str, key_func: Optional[Callable[..., str]] = None):
    """Route decorator applying the configured limit for ``scope``.

    ``key_func`` receives the view's keyword arguments; the client IP is used
    when it is omitted.
    """

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            key = key_func(**kwargs) if key_func else client_ip()
            check_configured(scope, key)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def purge_expired(now: Optional[float] = None) -> int:
    """Delete counters whose window has closed."""
    now_ts = int(now if now is not None else time.time())
    deleted = (
        RateLimitCounter.query
        .filter(RateLimitCounter.expires_at <= now_ts)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return int(deleted or 0)
