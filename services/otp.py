"""OTP issuer and verifier.

Codes are 6 random digits, stored only as an HMAC bound to their scope key
(``scan:<session_id>``, ``mobile-login:<tenant>:<phone>``,
``admin-login:<email>``). Issuing a new code for a scope supersedes the
previous one. Every verification attempt is counted, success or not, and the
count is committed before the code is compared.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from extensions import db
from models.otp import OtpRecord, PURPOSE_SCAN
from utils.db_helpers import conditional_update
from utils.errors import InvalidOtpError, OtpAttemptsExceededError, OtpExpiredError
from utils.expiry import is_past
from utils.otp_email import mask_email, send_otp_email
from utils.otp_sms import dispatch_sms
from utils.validators import mask_mobile

logger = logging.getLogger(__name__)

CHANNEL_SMS = 'sms'
CHANNEL_EMAIL = 'email'


def scope_for_session(session_id: str) -> str:
    return f'scan:{session_id}'


def scope_for_mobile_login(tenant_id: int, phone_e164: str) -> str:
    return f'mobile-login:{tenant_id}:{phone_e164}'


def scope_for_admin_login(email: str) -> str:
    return f'admin-login:{email}'


def _signing_key() -> bytes:
    secret = current_app.config.get('SECRET_KEY') or current_app.config.get('JWT_SECRET_KEY')
    return str(secret).encode('utf-8')


def hash_code(scope_key: str, code: str) -> str:
    # Bind the code to its scope so a code cannot be replayed elsewhere.
    msg = f'{scope_key}:{code}'.encode('utf-8')
    return hmac.new(_signing_key(), msg, hashlib.sha256).hexdigest()


def generate_code() -> str:
    return f'{secrets.randbelow(1_000_000):06d}'


def issue(
    target: str,
    *,
    scope: Optional[str] = None,
    purpose: str = PURPOSE_SCAN,
    session_id: Optional[str] = None,
    tenant_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[OtpRecord, str]:
    """Create a fresh code for ``scope`` (defaults to ``target``).

    Returns the record and the plain code. Does not commit; the caller owns
    the transaction.
    """
    scope = scope or target
    now = now or datetime.now()

    conditional_update(
        OtpRecord,
        [
            OtpRecord.scope_key == scope,
            OtpRecord.consumed_at.is_(None),
            OtpRecord.superseded_at.is_(None),
        ],
        {'superseded_at': now},
    )

    code = generate_code()
    record = OtpRecord(
        scope_key=scope,
        target=target,
        purpose=purpose,
        tenant_id=tenant_id,
        session_id=session_id,
        code_hash=hash_code(scope, code),
        attempt_count=0,
        created_at=now,
        expires_at=now + timedelta(seconds=current_app.config['OTP_TTL_SECONDS']),
    )
    db.session.add(record)
    db.session.flush()
    return record, code


def _open_record(scope: str, target: str) -> Optional[OtpRecord]:
    return (
        OtpRecord.query
        .filter(
            OtpRecord.scope_key == scope,
            OtpRecord.target == target,
            OtpRecord.consumed_at.is_(None),
            OtpRecord.superseded_at.is_(None),
        )
        .order_by(OtpRecord.created_at.desc(), OtpRecord.id.desc())
        .populate_existing()
        .first()
    )


def verify(
    target: str,
    code: str,
    *,
    scope: Optional[str] = None,
    consume: bool = False,
    now: Optional[datetime] = None,
) -> OtpRecord:
    """Check ``code`` for ``target`` within ``scope``.

    Raises OtpAttemptsExceededError once the attempt cap is reached (even for
    the right code), OtpExpiredError after ``expires_at`` and InvalidOtpError
    on a mismatch. With ``consume`` the record is marked used in the caller's
    transaction; otherwise the caller consumes it with :func:`mark_consumed`.
    """
    scope = scope or target
    now = now or datetime.now()
    max_attempts = current_app.config['OTP_MAX_ATTEMPTS']

    record = _open_record(scope, target)
    if record is None:
        raise InvalidOtpError('Invalid OTP. Please request a new OTP.')

    counted = conditional_update(
        OtpRecord,
        [
            OtpRecord.id == record.id,
            OtpRecord.attempt_count < max_attempts,
            OtpRecord.consumed_at.is_(None),
            OtpRecord.superseded_at.is_(None),
        ],
        {'attempt_count': OtpRecord.attempt_count + 1},
    )
    db.session.commit()
    db.session.refresh(record)

    if not counted:
        if record.attempt_count >= max_attempts:
            logger.info('OTP locked after %s attempts for scope=%s', record.attempt_count, scope)
            raise OtpAttemptsExceededError()
        raise InvalidOtpError('Invalid OTP. Please request a new OTP.')

    if is_past(record.expires_at, now):
        raise OtpExpiredError()

    if not hmac.compare_digest(record.code_hash, hash_code(scope, str(code or '').strip())):
        remaining = max(0, max_attempts - record.attempt_count)
        raise InvalidOtpError(details={'attemptsRemaining': remaining})

    if consume:
        mark_consumed(record, now=now)
    return record


def mark_consumed(record: OtpRecord, now: Optional[datetime] = None) -> None:
    """Mark ``record`` used. A record can be consumed once."""
    used = conditional_update(
        OtpRecord,
        [OtpRecord.id == record.id, OtpRecord.consumed_at.is_(None)],
        {'consumed_at': now or datetime.now()},
    )
    if not used:
        raise InvalidOtpError('OTP has already been used')


def deliver(target: str, code: str, *, channel: str = CHANNEL_SMS) -> bool:
    """Send ``code`` with bounded retries. Failures are logged, never raised."""
    retries = max(0, int(current_app.config.get('OTP_SEND_RETRIES', 0)))
    delay = float(current_app.config.get('OTP_SEND_RETRY_DELAY_SECONDS', 0))
    ttl_minutes = max(1, current_app.config['OTP_TTL_SECONDS'] // 60)
    masked = mask_email(target) if channel == CHANNEL_EMAIL else mask_mobile(target)

    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        if channel == CHANNEL_EMAIL:
            ok, err = send_otp_email(to_email=target, otp=code, ttl_minutes=ttl_minutes)
        else:
            ok, err = dispatch_sms(phone=target, otp=code)
        if ok:
            logger.info('OTP sent via %s to %s', channel, masked)
            return True
        logger.warning('OTP %s delivery to %s failed (attempt %s/%s): %s', channel, masked, attempt, attempts, err)
        if attempt < attempts and delay:
            time.sleep(delay * attempt)
    return False


def cleanup(now: Optional[datetime] = None) -> int:
    """Delete records that expired more than a day ago."""
    cutoff = (now or datetime.now()) - timedelta(days=1)
    deleted = (
        OtpRecord.query
        .filter(OtpRecord.expires_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return int(deleted or 0)
