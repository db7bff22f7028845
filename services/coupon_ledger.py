"""Coupon ledger: lookup and lifecycle transitions.

    draft --print--> printed --activate--> active --redeem--> redeemed
    active --deactivate--> inactive --reactivate--> active
    any non-terminal --expire--> expired

Every transition is a guarded UPDATE on the current status; a zero row count
means another request moved the coupon first. Range, batch and bulk
operations validate the whole set before touching any row and roll back
unless every member changed.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime
from typing import Any, Iterable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models.coupon import (
    Coupon,
    CouponBatch,
    STATUS_ACTIVE,
    STATUS_DRAFT,
    STATUS_EXPIRED,
    STATUS_INACTIVE,
    STATUS_PRINTED,
    STATUS_REDEEMED,
)
from utils.db_helpers import conditional_update
from utils.errors import (
    ConflictError,
    CouponAlreadyUsedError,
    CouponExpiredError,
    CouponNotActiveError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from utils.expiry import is_past

logger = logging.getLogger(__name__)

CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
_REFERENCE_RE = re.compile(r'^([A-Z][A-Z0-9]{0,15})-(\d{1,10})$')

NON_TERMINAL = (STATUS_DRAFT, STATUS_PRINTED, STATUS_ACTIVE, STATUS_INACTIVE)

# event -> (allowed source statuses, target status)
TRANSITIONS = {
    'print': ((STATUS_DRAFT,), STATUS_PRINTED),
    'activate': ((STATUS_PRINTED,), STATUS_ACTIVE),
    'redeem': ((STATUS_ACTIVE,), STATUS_REDEEMED),
    'deactivate': ((STATUS_ACTIVE,), STATUS_INACTIVE),
    'reactivate': ((STATUS_INACTIVE,), STATUS_ACTIVE),
    'expire': (NON_TERMINAL, STATUS_EXPIRED),
}

_TIMESTAMP_FIELDS = {
    'print': 'printed_at',
    'activate': 'activated_at',
    'redeem': 'redeemed_at',
    'deactivate': 'deactivated_at',
    'reactivate': 'activated_at',
}


# ---------------------------------------------------------------------------
# Codes and references
# ---------------------------------------------------------------------------

def generate_code() -> str:
    """Readable 8-character code formatted ``XXXX-XXXX``."""
    chars = ''.join(secrets.choice(CODE_ALPHABET) for _ in range(8))
    return f'{chars[:4]}-{chars[4:]}'


def format_reference(prefix: str, number: int, width: int = 5) -> str:
    return f'{prefix}-{number:0{width}d}'


def parse_reference(reference: Any, field: str = 'reference') -> tuple[str, int, int]:
    """Split ``CP-00042`` into ``('CP', 42, 5)``."""
    ref = str(reference or '').strip().upper()
    match = _REFERENCE_RE.match(ref)
    if not match:
        raise ValidationError(f'{field} must look like CP-00001')
    digits = match.group(2)
    return match.group(1), int(digits), len(digits)


def references_between(from_reference: Any, to_reference: Any) -> list[str]:
    """Expand an inclusive reference range, validating it first."""
    from_prefix, start, width = parse_reference(from_reference, 'from_reference')
    to_prefix, end, _ = parse_reference(to_reference, 'to_reference')

    if from_prefix != to_prefix:
        raise ValidationError('from_reference and to_reference must share the same prefix')
    if start > end:
        raise ValidationError('from_reference must not be greater than to_reference')
    _check_batch_size(end - start + 1)
    return [format_reference(from_prefix, n, width) for n in range(start, end + 1)]


def _check_batch_size(size: int) -> None:
    max_size = current_app.config['COUPON_MAX_BATCH_SIZE']
    if size > max_size:
        raise ValidationError(f'Cannot process more than {max_size} coupons at once')


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

def get_coupon(tenant_id: int, coupon_id: int) -> Coupon:
    coupon = Coupon.query.filter_by(id=coupon_id, tenant_id=tenant_id).first()
    if coupon is None:
        raise NotFoundError('Coupon')
    return coupon


def lookup_by_code(code: str, tenant_id: Optional[int] = None, now: Optional[datetime] = None) -> Coupon:
    """Find a coupon by its public code, expiring it first if overdue.

    With ``tenant_id`` the lookup never crosses tenants.
    """
    query = Coupon.query.filter(Coupon.code == code)
    if tenant_id is not None:
        query = query.filter(Coupon.tenant_id == tenant_id)
    coupon = query.populate_existing().first()
    if coupon is None:
        raise NotFoundError('Coupon')

    if coupon.status in NON_TERMINAL and is_past(coupon.expiry_date, now):
        if conditional_update(
            Coupon,
            [Coupon.id == coupon.id, Coupon.status.in_(NON_TERMINAL)],
            {'status': STATUS_EXPIRED},
        ):
            logger.info('Coupon %s expired on lookup', coupon.reference)
        db.session.commit()
        db.session.refresh(coupon)
    return coupon


def ensure_redeemable(coupon: Coupon, now: Optional[datetime] = None) -> None:
    if coupon.status == STATUS_EXPIRED or is_past(coupon.expiry_date, now):
        raise CouponExpiredError()
    if coupon.status == STATUS_REDEEMED:
        raise CouponAlreadyUsedError()
    if coupon.status != STATUS_ACTIVE:
        raise CouponNotActiveError()


# ---------------------------------------------------------------------------
# Single-coupon transitions
# ---------------------------------------------------------------------------

def transition(coupon: Coupon, event: str, now: Optional[datetime] = None, **fields: Any) -> Coupon:
    """Apply ``event`` to ``coupon`` with a guarded UPDATE.

    Does not commit. Raises when the coupon is no longer in a source status.
    """
    if event not in TRANSITIONS:
        raise ValueError(f'Unknown coupon event: {event}')
    sources, target = TRANSITIONS[event]
    now = now or datetime.now()

    values = dict(fields)
    values['status'] = target
    values['updated_at'] = now
    stamp = _TIMESTAMP_FIELDS.get(event)
    if stamp:
        values[stamp] = now
    if event == 'print':
        values['printed_count'] = Coupon.printed_count + 1

    changed = conditional_update(
        Coupon,
        [Coupon.id == coupon.id, Coupon.status.in_(sources)],
        values,
    )
    db.session.refresh(coupon)
    if changed:
        return coupon

    if event == 'redeem':
        ensure_redeemable(coupon, now)
        raise CouponAlreadyUsedError()
    raise InvalidTransitionError(f"Cannot {event} a coupon in status '{coupon.status}'")


def deactivate(tenant_id: int, coupon_id: int, reason: str) -> Coupon:
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('Deactivation reason is required')
    coupon = get_coupon(tenant_id, coupon_id)
    transition(coupon, 'deactivate', deactivation_reason=reason[:255])
    db.session.commit()
    return coupon


def reactivate(tenant_id: int, coupon_id: int, now: Optional[datetime] = None) -> Coupon:
    coupon = get_coupon(tenant_id, coupon_id)
    if is_past(coupon.expiry_date, now):
        raise CouponExpiredError('Cannot reactivate an expired coupon')
    transition(coupon, 'reactivate', now, deactivation_reason=None)
    db.session.commit()
    return coupon


# ---------------------------------------------------------------------------
# Creation and printing
# ---------------------------------------------------------------------------

def _next_reference_number(tenant_id: int, prefix: str) -> int:
    rows = (
        db.session.query(Coupon.reference)
        .filter(Coupon.tenant_id == tenant_id, Coupon.reference.like(f'{prefix}-%'))
        .all()
    )
    highest = 0
    for (reference,) in rows:
        match = _REFERENCE_RE.match(reference or '')
        if match and match.group(1) == prefix:
            highest = max(highest, int(match.group(2)))
    return highest + 1


def _unique_codes(count: int) -> list[str]:
    codes: set[str] = set()
    while len(codes) < count:
        wanted = {generate_code() for _ in range(count - len(codes))}
        taken = {
            c for (c,) in db.session.query(Coupon.code).filter(Coupon.code.in_(wanted)).all()
        }
        codes.update(wanted - taken)
    return list(codes)


def create_batch(
    tenant_id: int,
    *,
    quantity: int,
    points: int,
    discount_value: Optional[float] = None,
    expiry_date: Optional[datetime] = None,
    description: Optional[str] = None,
    reference_prefix: Optional[str] = None,
    name: Optional[str] = None,
    verification_app_id: Optional[int] = None,
    created_by: Optional[int] = None,
) -> CouponBatch:
    """Create ``quantity`` draft coupons with sequential references."""
    if quantity <= 0:
        raise ValidationError('quantity must be greater than 0')
    _check_batch_size(quantity)
    if points < 0:
        raise ValidationError('points must not be negative')
    if expiry_date is not None and is_past(expiry_date):
        raise ValidationError('expiry_date must be in the future')

    prefix = (reference_prefix or current_app.config['COUPON_REFERENCE_PREFIX']).strip().upper()
    if not re.match(r'^[A-Z][A-Z0-9]{0,15}$', prefix):
        raise ValidationError('reference_prefix must be letters and digits, starting with a letter')

    batch = CouponBatch(
        tenant_id=tenant_id,
        name=name,
        reference_prefix=prefix,
        quantity=quantity,
        created_by=created_by,
    )
    db.session.add(batch)
    db.session.flush()

    start = _next_reference_number(tenant_id, prefix)
    for offset, code in enumerate(_unique_codes(quantity)):
        db.session.add(Coupon(
            tenant_id=tenant_id,
            code=code,
            reference=format_reference(prefix, start + offset),
            batch_id=batch.id,
            verification_app_id=verification_app_id,
            status=STATUS_DRAFT,
            points=points,
            discount_value=discount_value,
            description=description,
            expiry_date=expiry_date,
        ))

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError('Coupon references are being generated concurrently. Please retry.')

    logger.info('Created %s coupons for tenant %s (batch %s)', quantity, tenant_id, batch.id)
    return batch


def print_coupons(tenant_id: int, coupon_ids: Iterable[int], now: Optional[datetime] = None) -> dict:
    """Mark coupons printed. Drafts move to ``printed``; others only bump ``printed_count``."""
    ids = sorted({int(i) for i in coupon_ids})
    if not ids:
        raise ValidationError('coupon_ids must not be empty')
    _check_batch_size(len(ids))
    now = now or datetime.now()

    coupons = Coupon.query.filter(Coupon.tenant_id == tenant_id, Coupon.id.in_(ids)).all()
    if len(coupons) != len(ids):
        raise NotFoundError('Coupon')
    terminal = [c.reference for c in coupons if c.status not in NON_TERMINAL]
    if terminal:
        raise InvalidTransitionError(
            'Redeemed or expired coupons cannot be printed',
            details={'references': terminal},
        )

    scope = [Coupon.tenant_id == tenant_id, Coupon.id.in_(ids)]
    reprinted = conditional_update(
        Coupon,
        scope + [Coupon.status.in_((STATUS_PRINTED, STATUS_ACTIVE, STATUS_INACTIVE))],
        {'printed_count': Coupon.printed_count + 1, 'updated_at': now},
    )
    printed = conditional_update(
        Coupon,
        scope + [Coupon.status == STATUS_DRAFT],
        {
            'status': STATUS_PRINTED,
            'printed_at': now,
            'printed_count': Coupon.printed_count + 1,
            'updated_at': now,
        },
    )
    if printed + reprinted != len(ids):
        db.session.rollback()
        raise ConflictError('Coupons changed while printing; nothing was printed')
    db.session.commit()
    return {'printed': printed, 'reprinted': reprinted}


# ---------------------------------------------------------------------------
# Bulk activation / deactivation
# ---------------------------------------------------------------------------

def _prefix_of(reference: str) -> Optional[str]:
    match = _REFERENCE_RE.match(reference or '')
    return match.group(1) if match else None


def _load_members(tenant_id: int, condition, expected: int) -> list[Coupon]:
    members = (
        Coupon.query
        .filter(Coupon.tenant_id == tenant_id, condition)
        .order_by(Coupon.reference)
        .all()
    )
    if len(members) != expected:
        raise ValidationError(
            f'Found {len(members)} of {expected} coupons; nothing was changed',
            details={'expected': expected, 'found': len(members)},
        )
    return members


def _activate_members(tenant_id: int, condition, expected: int, note: Optional[str], now: Optional[datetime]) -> int:
    now = now or datetime.now()
    members = _load_members(tenant_id, condition, expected)

    prefixes = {_prefix_of(c.reference) for c in members}
    if len(prefixes) != 1:
        raise ValidationError('All coupons must share the same reference prefix')

    not_ready = [c.reference for c in members if c.status != STATUS_PRINTED or is_past(c.expiry_date, now)]
    if not_ready:
        raise ValidationError(
            'All coupons must be printed and unexpired before activation; nothing was activated',
            details={'references': not_ready[:50]},
        )

    activated = conditional_update(
        Coupon,
        [Coupon.tenant_id == tenant_id, condition, Coupon.status == STATUS_PRINTED],
        {
            'status': STATUS_ACTIVE,
            'activated_at': now,
            'activation_note': note[:255] if note else None,
            'updated_at': now,
        },
    )
    if activated != expected:
        db.session.rollback()
        raise ConflictError('Coupons changed during activation; nothing was activated')
    db.session.commit()
    logger.info('Activated %s coupons for tenant %s', activated, tenant_id)
    return activated


def activate_range(
    tenant_id: int,
    from_reference: Any,
    to_reference: Any,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    references = references_between(from_reference, to_reference)
    return _activate_members(tenant_id, Coupon.reference.in_(references), len(references), note, now)


def activate_many(tenant_id: int, coupon_ids: Iterable[int], note: Optional[str] = None, now: Optional[datetime] = None) -> int:
    ids = sorted({int(i) for i in coupon_ids})
    if not ids:
        raise ValidationError('coupon_ids must not be empty')
    _check_batch_size(len(ids))
    return _activate_members(tenant_id, Coupon.id.in_(ids), len(ids), note, now)


def activate_batch(tenant_id: int, batch_id: int, note: Optional[str] = None, now: Optional[datetime] = None) -> int:
    batch = CouponBatch.query.filter_by(id=batch_id, tenant_id=tenant_id).first()
    if batch is None:
        raise NotFoundError('Batch')
    size = Coupon.query.filter_by(tenant_id=tenant_id, batch_id=batch.id).count()
    if size == 0:
        raise ValidationError('Batch has no coupons')
    _check_batch_size(size)
    return _activate_members(tenant_id, Coupon.batch_id == batch.id, size, note, now)


def deactivate_range(
    tenant_id: int,
    from_reference: Any,
    to_reference: Any,
    reason: str,
    now: Optional[datetime] = None,
) -> dict:
    """Deactivate the active coupons of a range; other members are skipped."""
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('Deactivation reason is required')
    references = references_between(from_reference, to_reference)
    now = now or datetime.now()

    condition = Coupon.reference.in_(references)
    members = _load_members(tenant_id, condition, len(references))
    deactivated = conditional_update(
        Coupon,
        [Coupon.tenant_id == tenant_id, condition, Coupon.status == STATUS_ACTIVE],
        {
            'status': STATUS_INACTIVE,
            'deactivated_at': now,
            'deactivation_reason': reason[:255],
            'updated_at': now,
        },
    )
    db.session.commit()
    return {'deactivated': deactivated, 'skipped': len(members) - deactivated}


def expire_overdue(now: Optional[datetime] = None, tenant_id: Optional[int] = None) -> int:
    """Move every overdue non-terminal coupon to ``expired``."""
    now = now or datetime.now()
    where = [
        Coupon.status.in_(NON_TERMINAL),
        Coupon.expiry_date.isnot(None),
        Coupon.expiry_date < now,
    ]
    if tenant_id is not None:
        where.append(Coupon.tenant_id == tenant_id)
    expired = conditional_update(Coupon, where, {'status': STATUS_EXPIRED, 'updated_at': now})
    db.session.commit()
    return expired
