"""
Customer model
"""
from datetime import datetime
from extensions import db


class Customer(db.Model):
    """Consumer identified by mobile number within a tenant"""
    __tablename__ = 'customers'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'phone_e164', name='uq_customers_tenant_phone'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    phone_e164 = db.Column(db.String(20), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(150), nullable=True)

    # Status
    is_active = db.Column(db.Boolean, default=True)
    phone_verified_at = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'phone_e164': self.phone_e164,
            'name': self.name,
            'email': self.email,
            'is_active': self.is_active,
            'phone_verified_at': self.phone_verified_at.isoformat() if self.phone_verified_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Customer {self.phone_e164}>'
