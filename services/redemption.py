"""Redemption engine.

Turns an active coupon into awarded credit exactly once. All writes of a
redemption (session completion, OTP consumption, coupon transition, credit
and scan history) share one transaction; any failure rolls all of them back.
The guarded ``active -> redeemed`` UPDATE is what makes it exactly-once.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from extensions import db
from models.coupon import Coupon
from models.scan import ScanRecord, ScanSession, SESSION_COMPLETED, SESSION_PENDING_OTP
from services import coupon_ledger, credits, customers, otp, scan_sessions
from utils.activity_logger import log_activity
from utils.db_helpers import conditional_update
from utils.errors import (
    AppError,
    CouponNotActiveError,
    ForbiddenError,
    SessionCompletedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CHANNEL_PUBLIC = 'public'
CHANNEL_MOBILE = 'mobile'
CHANNEL_PARTNER = 'partner'


def new_scan_id() -> str:
    return uuid.uuid4().hex


def _award(
    coupon: Coupon,
    user_identity: str,
    *,
    channel: str,
    now: datetime,
    customer_id: Optional[int] = None,
    session_id: Optional[str] = None,
    verification_app_id: Optional[int] = None,
) -> dict:
    """Redeem ``coupon`` and credit its points. Caller commits."""
    coupon_ledger.transition(coupon, 'redeem', now)

    scan_id = new_scan_id()
    db.session.add(ScanRecord(
        scan_id=scan_id,
        tenant_id=coupon.tenant_id,
        coupon_id=coupon.id,
        user_identity=str(user_identity),
        customer_id=customer_id,
        channel=channel,
        verification_app_id=verification_app_id,
        session_id=session_id,
        points_awarded=coupon.points,
        created_at=now,
    ))
    entry = credits.credit(
        coupon.tenant_id,
        user_identity,
        coupon.points,
        description=f'Coupon {coupon.code}',
        coupon_id=coupon.id,
        scan_id=scan_id,
        verification_app_id=verification_app_id,
    )
    return {
        'pointsAwarded': coupon.points,
        'scanId': scan_id,
        'balance': entry.balance_after,
    }


def redeem(session_id: str, otp_code: str, now: Optional[datetime] = None) -> dict:
    """Complete a public scan session with its OTP and award the coupon's points."""
    now = now or datetime.now()
    session = scan_sessions.load_open(session_id, now)
    if session.status != SESSION_PENDING_OTP or not session.mobile_number:
        raise ValidationError('Please submit your mobile number before verifying the OTP')

    scope = otp.scope_for_session(session.session_id)
    record = otp.verify(session.mobile_number, otp_code, scope=scope, now=now)

    try:
        completed = conditional_update(
            ScanSession,
            [ScanSession.id == session.id, ScanSession.status == SESSION_PENDING_OTP],
            {
                'status': SESSION_COMPLETED,
                'completed_at': now,
                'version': ScanSession.version + 1,
            },
        )
        if not completed:
            raise SessionCompletedError()
        otp.mark_consumed(record, now)

        coupon = scan_sessions.coupon_for(session)
        if coupon is None:
            raise CouponNotActiveError('Coupon is no longer available')
        coupon_ledger.ensure_redeemable(coupon, now)

        customer = customers.get_or_create(session.tenant_id, session.mobile_number, now)
        result = _award(
            coupon,
            customer.phone_e164,
            channel=CHANNEL_PUBLIC,
            now=now,
            customer_id=customer.id,
            session_id=session.session_id,
        )
        db.session.commit()
    except AppError:
        db.session.rollback()
        raise

    result['userId'] = customer.id
    logger.info('Session %s redeemed coupon %s for %s points', session.session_id, coupon.reference, coupon.points)
    log_activity(
        action='coupon_redeemed',
        tenant_id=coupon.tenant_id,
        entity_type='coupon',
        entity_id=coupon.id,
        details={'channel': CHANNEL_PUBLIC, 'scan_id': result['scanId'], 'points': coupon.points},
    )
    return result


def redeem_direct(
    tenant_id: Optional[int],
    coupon_code: str,
    user_identity: str,
    *,
    channel: str,
    customer_id: Optional[int] = None,
    verification_app_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Session-less redemption for authenticated mobile and partner callers."""
    now = now or datetime.now()
    coupon = coupon_ledger.lookup_by_code(coupon_code, tenant_id, now)
    if (
        verification_app_id is not None
        and coupon.verification_app_id is not None
        and coupon.verification_app_id != verification_app_id
    ):
        raise ForbiddenError('Coupon belongs to a different verification app')
    coupon_ledger.ensure_redeemable(coupon, now)

    try:
        result = _award(
            coupon,
            user_identity,
            channel=channel,
            now=now,
            customer_id=customer_id,
            verification_app_id=verification_app_id,
        )
        db.session.commit()
    except AppError:
        db.session.rollback()
        raise

    result['userId'] = str(user_identity)
    log_activity(
        action='coupon_redeemed',
        tenant_id=coupon.tenant_id,
        entity_type='coupon',
        entity_id=coupon.id,
        details={'channel': channel, 'scan_id': result['scanId'], 'points': coupon.points},
    )
    return result
