"""
Partner verification app model
"""
from datetime import datetime
from extensions import db


class VerificationApp(db.Model):
    """External partner application that scans coupons through the API"""
    __tablename__ = 'verification_apps'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    app_code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(150), nullable=False)

    # Only the SHA-256 of the key is stored; the prefix helps identify it
    api_key_hash = db.Column(db.String(64), unique=True, nullable=False)
    key_prefix = db.Column(db.String(16), nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'app_code': self.app_code,
            'name': self.name,
            'key_prefix': self.key_prefix,
            'is_active': self.is_active,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
        }

    def __repr__(self):
        return f'<VerificationApp {self.app_code}>'
