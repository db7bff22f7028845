"""Credit balances and the append-only credit ledger.

Balance changes are single guarded UPDATEs (debits require
``balance >= amount``), so the balance never goes negative and always equals
the sum of its transactions. Nothing here commits; callers own the
transaction.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from extensions import db
from models.credit import CreditAccount, CreditTransaction, REASON_REDEMPTION, REASON_SCAN_REWARD
from utils.db_helpers import conditional_update, insert_ignore
from utils.errors import CouponAlreadyUsedError, InsufficientCreditsError, ValidationError

logger = logging.getLogger(__name__)


def get_account(tenant_id: int, user_identity: str) -> Optional[CreditAccount]:
    return (
        CreditAccount.query
        .filter_by(tenant_id=tenant_id, user_identity=str(user_identity))
        .populate_existing()
        .first()
    )


def ensure_account(tenant_id: int, user_identity: str) -> CreditAccount:
    insert_ignore(CreditAccount, {'tenant_id': tenant_id, 'user_identity': str(user_identity), 'balance': 0})
    return get_account(tenant_id, user_identity)


def credit(
    tenant_id: int,
    user_identity: str,
    amount: int,
    *,
    reason: str = REASON_SCAN_REWARD,
    description: Optional[str] = None,
    coupon_id: Optional[int] = None,
    scan_id: Optional[str] = None,
    verification_app_id: Optional[int] = None,
) -> CreditTransaction:
    """Add ``amount`` to the balance and append the matching transaction.

    A coupon can back at most one credit; a second one raises
    CouponAlreadyUsedError after rolling back.
    """
    if amount < 0:
        raise ValidationError('Credit amount must not be negative')

    account = ensure_account(tenant_id, user_identity)
    conditional_update(
        CreditAccount,
        [CreditAccount.id == account.id],
        {
            'balance': CreditAccount.balance + amount,
            'lifetime_earned': CreditAccount.lifetime_earned + amount,
        },
    )
    db.session.refresh(account)

    entry = CreditTransaction(
        tenant_id=tenant_id,
        account_id=account.id,
        user_identity=str(user_identity),
        amount=amount,
        balance_after=account.balance,
        reason=reason,
        description=description,
        coupon_id=coupon_id,
        scan_id=scan_id,
        verification_app_id=verification_app_id,
    )
    db.session.add(entry)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise CouponAlreadyUsedError()
    return entry


def debit(
    tenant_id: int,
    user_identity: str,
    amount: int,
    *,
    reason: str = REASON_REDEMPTION,
    description: Optional[str] = None,
    verification_app_id: Optional[int] = None,
) -> CreditTransaction:
    if amount <= 0:
        raise ValidationError('points must be greater than 0')

    account = get_account(tenant_id, user_identity)
    if account is None:
        raise InsufficientCreditsError(details={'balance': 0, 'requested': amount})

    debited = conditional_update(
        CreditAccount,
        [CreditAccount.id == account.id, CreditAccount.balance >= amount],
        {
            'balance': CreditAccount.balance - amount,
            'lifetime_spent': CreditAccount.lifetime_spent + amount,
        },
    )
    db.session.refresh(account)
    if not debited:
        raise InsufficientCreditsError(details={'balance': account.balance, 'requested': amount})

    entry = CreditTransaction(
        tenant_id=tenant_id,
        account_id=account.id,
        user_identity=str(user_identity),
        amount=-amount,
        balance_after=account.balance,
        reason=reason,
        description=description,
        verification_app_id=verification_app_id,
    )
    db.session.add(entry)
    db.session.flush()
    logger.info('Debited %s credits from %s (tenant %s)', amount, user_identity, tenant_id)
    return entry


def balance_of(tenant_id: int, user_identity: str) -> dict:
    account = get_account(tenant_id, user_identity)
    if account is None:
        return {'user_id': str(user_identity), 'balance': 0, 'lifetime_earned': 0, 'lifetime_spent': 0}
    return account.to_dict()


def history(tenant_id: int, user_identity: str, page: int = 1, per_page: int = 20):
    query = (
        CreditTransaction.query
        .filter_by(tenant_id=tenant_id, user_identity=str(user_identity))
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
    )
    return query.paginate(page=page, per_page=per_page, error_out=False)
