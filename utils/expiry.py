"""Shared expiry predicate for sessions, OTPs and coupons."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Union


def is_expired(
    started_at: Optional[datetime],
    ttl: Union[int, float, timedelta],
    now: Optional[datetime] = None,
) -> bool:
    """True once ``now`` is at or past ``started_at + ttl``.

    A missing ``started_at`` counts as expired.
    """
    if started_at is None:
        return True
    if not isinstance(ttl, timedelta):
        ttl = timedelta(seconds=ttl)
    now = now or datetime.now()
    return now >= started_at + ttl


def is_past(deadline: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when ``deadline`` is set and already passed. ``None`` never expires."""
    if deadline is None:
        return False
    now = now or datetime.now()
    return now > deadline


def seconds_left(
    started_at: Optional[datetime],
    ttl: Union[int, float, timedelta],
    now: Optional[datetime] = None,
) -> int:
    if started_at is None:
        return 0
    if not isinstance(ttl, timedelta):
        ttl = timedelta(seconds=ttl)
    now = now or datetime.now()
    return max(0, int((started_at + ttl - now).total_seconds()))
