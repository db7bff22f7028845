"""
Credit balance and ledger models
"""
from datetime import datetime
from extensions import db


REASON_SCAN_REWARD = 'scan_reward'
REASON_REDEMPTION = 'redemption'


class CreditAccount(db.Model):
    """Running credit balance of one consumer within a tenant"""
    __tablename__ = 'credit_accounts'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'user_identity', name='uq_credit_accounts_tenant_user'),
        db.CheckConstraint('balance >= 0', name='ck_credit_accounts_balance_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    user_identity = db.Column(db.String(64), nullable=False)
    balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_spent = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'tenant_id': self.tenant_id,
            'user_id': self.user_identity,
            'balance': self.balance,
            'lifetime_earned': self.lifetime_earned,
            'lifetime_spent': self.lifetime_spent,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<CreditAccount {self.user_identity}: {self.balance}>'


class CreditTransaction(db.Model):
    """Append-only signed credit movement"""
    __tablename__ = 'credit_transactions'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey('credit_accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    user_identity = db.Column(db.String(64), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)  # positive credit, negative debit
    balance_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(30), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # At most one credit per coupon
    coupon_id = db.Column(db.Integer, db.ForeignKey('coupons.id', ondelete='SET NULL'), nullable=True, unique=True)
    scan_id = db.Column(db.String(64), nullable=True, index=True)
    verification_app_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.now, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_identity,
            'amount': self.amount,
            'balance_after': self.balance_after,
            'reason': self.reason,
            'description': self.description,
            'coupon_id': self.coupon_id,
            'scan_id': self.scan_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<CreditTransaction {self.user_identity} {self.amount:+d}>'
