"""Public scan sessions.

A session snapshots the scanned coupon, collects the consumer's mobile
number and carries the OTP exchange. It is valid for
``SCAN_SESSION_TTL_SECONDS`` after creation; every call re-checks that
before looking at the stored status.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from extensions import db
from models.coupon import Coupon
from models.scan import (
    ScanSession,
    SESSION_COMPLETED,
    SESSION_EXPIRED,
    SESSION_PENDING_MOBILE,
    SESSION_PENDING_OTP,
)
from services import coupon_ledger, otp, rate_limiter
from utils.activity_logger import log_activity
from utils.db_helpers import conditional_update
from utils.errors import (
    ConflictError,
    CouponAlreadyUsedError,
    CouponNotActiveError,
    NotFoundError,
    SessionCompletedError,
    SessionExpiredError,
)
from utils.expiry import is_expired, seconds_left
from utils.validators import mask_mobile, normalize_mobile

logger = logging.getLogger(__name__)

OPEN_STATUSES = (SESSION_PENDING_MOBILE, SESSION_PENDING_OTP)


def _ttl() -> int:
    return current_app.config['SCAN_SESSION_TTL_SECONDS']


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def start(
    coupon_code: str,
    *,
    tenant_id: Optional[int] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ScanSession:
    """Open a session for a redeemable coupon."""
    now = now or datetime.now()
    coupon = coupon_ledger.lookup_by_code(coupon_code, tenant_id, now)
    try:
        coupon_ledger.ensure_redeemable(coupon, now)
    except CouponAlreadyUsedError:
        raise CouponNotActiveError('Coupon is invalid or has already been redeemed') from None

    session = ScanSession(
        session_id=new_session_id(),
        tenant_id=coupon.tenant_id,
        coupon_id=coupon.id,
        coupon_code=coupon.code,
        coupon_reference=coupon.reference,
        coupon_points=coupon.points,
        status=SESSION_PENDING_MOBILE,
        version=0,
        ip_address=ip_address,
        user_agent=(user_agent or '')[:255] or None,
        created_at=now,
    )
    db.session.add(session)
    db.session.commit()

    log_activity(
        action='scan_started',
        tenant_id=coupon.tenant_id,
        entity_type='coupon',
        entity_id=coupon.id,
        details={'session_id': session.session_id},
    )
    return session


def get(session_id: str) -> ScanSession:
    session = (
        ScanSession.query
        .filter_by(session_id=str(session_id or ''))
        .populate_existing()
        .first()
    )
    if session is None:
        raise NotFoundError('Session')
    return session


def load_open(session_id: str, now: Optional[datetime] = None) -> ScanSession:
    """Fetch a session that can still progress.

    Expiry is checked before the stored status so an aged session always
    reports "expired".
    """
    session = get(session_id)
    if is_expired(session.created_at, _ttl(), now):
        if session.status in OPEN_STATUSES:
            conditional_update(
                ScanSession,
                [ScanSession.id == session.id, ScanSession.status.in_(OPEN_STATUSES)],
                {'status': SESSION_EXPIRED, 'version': ScanSession.version + 1},
            )
            db.session.commit()
        raise SessionExpiredError()
    if session.status == SESSION_COMPLETED:
        raise SessionCompletedError()
    if session.status == SESSION_EXPIRED:
        raise SessionExpiredError()
    return session


def submit_mobile(session_id: str, mobile_number: str, now: Optional[datetime] = None) -> dict:
    """Attach a mobile number and issue an OTP for the session.

    May be called again while the OTP is pending to resend a fresh code.
    Delivery failures are logged; the session stays usable.
    """
    now = now or datetime.now()
    session = load_open(session_id, now)
    mobile = normalize_mobile(mobile_number)
    rate_limiter.check_configured('otp-send', mobile)

    moved = conditional_update(
        ScanSession,
        [
            ScanSession.id == session.id,
            ScanSession.version == session.version,
            ScanSession.status.in_(OPEN_STATUSES),
        ],
        {
            'mobile_number': mobile,
            'status': SESSION_PENDING_OTP,
            'version': ScanSession.version + 1,
            'otp_sent_at': now,
            'otp_send_count': ScanSession.otp_send_count + 1,
        },
    )
    if not moved:
        db.session.rollback()
        # No code goes out for the losing request.
        rate_limiter.refund_configured('otp-send', mobile)
        session = get(session_id)
        if session.status == SESSION_COMPLETED:
            raise SessionCompletedError()
        raise ConflictError('Session was updated by another request. Please retry.')

    record, code = otp.issue(
        mobile,
        scope=otp.scope_for_session(session.session_id),
        session_id=session.session_id,
        tenant_id=session.tenant_id,
        now=now,
    )
    db.session.commit()

    delivered = otp.deliver(mobile, code, channel=otp.CHANNEL_SMS)
    log_activity(
        action='otp_sent' if delivered else 'otp_failed',
        tenant_id=session.tenant_id,
        entity_type='scan_session',
        entity_id=session.session_id,
        details={'mobile': mask_mobile(mobile)},
    )
    if not delivered:
        logger.warning('OTP for session %s was not delivered', session.session_id)

    return {
        'session': get(session_id),
        'code': code,
        'delivered': delivered,
        'otp_expires_in': max(0, int((record.expires_at - now).total_seconds())),
        'session_expires_in': seconds_left(session.created_at, _ttl(), now),
    }


def coupon_for(session: ScanSession) -> Optional[Coupon]:
    return db.session.get(Coupon, session.coupon_id, populate_existing=True)


def cleanup_expired(now: Optional[datetime] = None) -> int:
    """Delete sessions older than the TTL, whatever their status."""
    cutoff = (now or datetime.now()) - timedelta(seconds=_ttl())
    deleted = (
        ScanSession.query
        .filter(ScanSession.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return int(deleted or 0)
