"""
Coupon and coupon batch models
"""
from datetime import datetime
from extensions import db


STATUS_DRAFT = 'draft'
STATUS_PRINTED = 'printed'
STATUS_ACTIVE = 'active'
STATUS_INACTIVE = 'inactive'
STATUS_REDEEMED = 'redeemed'
STATUS_EXPIRED = 'expired'

COUPON_STATUSES = (
    STATUS_DRAFT, STATUS_PRINTED, STATUS_ACTIVE,
    STATUS_INACTIVE, STATUS_REDEEMED, STATUS_EXPIRED,
)


class CouponBatch(db.Model):
    """A group of coupons created together"""
    __tablename__ = 'coupon_batches'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(150), nullable=True)
    reference_prefix = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'reference_prefix': self.reference_prefix,
            'quantity': self.quantity,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<CouponBatch {self.id} x{self.quantity}>'


class Coupon(db.Model):
    """A single reward coupon and its lifecycle status"""
    __tablename__ = 'coupons'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'reference', name='uq_coupons_tenant_reference'),
        db.Index('ix_coupons_tenant_status', 'tenant_id', 'status'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    reference = db.Column(db.String(32), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey('coupon_batches.id', ondelete='SET NULL'), nullable=True, index=True)
    # Optional binding to one partner app; NULL means any channel may scan it
    verification_app_id = db.Column(
        db.Integer, db.ForeignKey('verification_apps.id', ondelete='SET NULL'), nullable=True
    )

    status = db.Column(db.String(20), nullable=False, default=STATUS_DRAFT)
    points = db.Column(db.Integer, nullable=False, default=0)
    discount_value = db.Column(db.Numeric(10, 2), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    expiry_date = db.Column(db.DateTime, nullable=True)

    activation_note = db.Column(db.String(255), nullable=True)
    deactivation_reason = db.Column(db.String(255), nullable=True)

    printed_at = db.Column(db.DateTime, nullable=True)
    printed_count = db.Column(db.Integer, nullable=False, default=0)
    activated_at = db.Column(db.DateTime, nullable=True)
    deactivated_at = db.Column(db.DateTime, nullable=True)
    redeemed_at = db.Column(db.DateTime, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    batch = db.relationship('CouponBatch', backref=db.backref('coupons', lazy='dynamic'))

    def summary(self):
        """Public fields snapshotted into scan sessions"""
        return {
            'code': self.code,
            'points': self.points,
            'status': self.status,
            'expiryDate': self.expiry_date.isoformat() if self.expiry_date else None,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'code': self.code,
            'reference': self.reference,
            'batch_id': self.batch_id,
            'verification_app_id': self.verification_app_id,
            'status': self.status,
            'points': self.points,
            'discount_value': float(self.discount_value) if self.discount_value is not None else None,
            'description': self.description,
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
            'activation_note': self.activation_note,
            'deactivation_reason': self.deactivation_reason,
            'printed_at': self.printed_at.isoformat() if self.printed_at else None,
            'printed_count': self.printed_count,
            'activated_at': self.activated_at.isoformat() if self.activated_at else None,
            'redeemed_at': self.redeemed_at.isoformat() if self.redeemed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Coupon {self.reference} {self.status}>'
