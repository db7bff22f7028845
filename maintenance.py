"""Scan/OTP housekeeping job.

Designed to be run periodically via cron (every few minutes is fine).

Rules implemented:
- Coupons past their expiry date move to 'expired'.
- Scan sessions older than the session TTL are deleted.
- OTP records that expired more than a day ago are deleted.
- Rate limit counters of closed windows are deleted.
- Blocklisted tokens past their own expiry are deleted.

This job is idempotent and safe to run multiple times.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from extensions import db
from models.user import TokenBlocklist
from services import coupon_ledger, otp, rate_limiter, scan_sessions

logger = logging.getLogger(__name__)


def sweep(now: Optional[datetime] = None) -> dict[str, int]:
    """Run every cleanup rule. Needs an application context."""
    now = now or datetime.now()

    expired_coupons = coupon_ledger.expire_overdue(now)
    deleted_sessions = scan_sessions.cleanup_expired(now)
    deleted_otps = otp.cleanup(now)
    deleted_counters = rate_limiter.purge_expired(now.timestamp())

    deleted_tokens = (
        TokenBlocklist.query
        .filter(TokenBlocklist.expires_at.isnot(None), TokenBlocklist.expires_at < now)
        .delete(synchronize_session=False)
    )
    db.session.commit()

    result = {
        'expired_coupons': expired_coupons,
        'deleted_sessions': deleted_sessions,
        'deleted_otps': deleted_otps,
        'deleted_rate_limit_windows': deleted_counters,
        'deleted_blocklisted_tokens': int(deleted_tokens or 0),
    }
    logger.info('Maintenance sweep: %s', result)
    return result


def run() -> dict[str, int]:
    from app import app

    with app.app_context():
        return sweep()


if __name__ == '__main__':
    result = run()
    print(f"Expired coupons:        {result['expired_coupons']}")
    print(f"Deleted sessions:       {result['deleted_sessions']}")
    print(f"Deleted OTPs:           {result['deleted_otps']}")
    print(f"Deleted rate windows:   {result['deleted_rate_limit_windows']}")
    print(f"Deleted revoked tokens: {result['deleted_blocklisted_tokens']}")
