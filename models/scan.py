"""
Public scan session and scan history models
"""
from datetime import datetime
from extensions import db


SESSION_PENDING_MOBILE = 'pending-mobile'
SESSION_PENDING_OTP = 'pending-otp'
SESSION_COMPLETED = 'completed'
SESSION_EXPIRED = 'expired'


class ScanSession(db.Model):
    """Short-lived record of an in-progress public redemption"""
    __tablename__ = 'scan_sessions'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    session_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey('coupons.id', ondelete='CASCADE'), nullable=False)

    # Snapshot of the coupon at session start
    coupon_code = db.Column(db.String(64), nullable=False)
    coupon_reference = db.Column(db.String(32), nullable=True)
    coupon_points = db.Column(db.Integer, nullable=False, default=0)

    mobile_number = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=SESSION_PENDING_MOBILE)
    # Bumped on every state change; writers compare-and-swap on it
    version = db.Column(db.Integer, nullable=False, default=0)

    otp_sent_at = db.Column(db.DateTime, nullable=True)
    otp_send_count = db.Column(db.Integer, nullable=False, default=0)
    completed_at = db.Column(db.DateTime, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False, index=True)

    def to_dict(self):
        return {
            'sessionId': self.session_id,
            'status': self.status,
            'couponDetails': {
                'code': self.coupon_code,
                'points': self.coupon_points,
            },
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'completedAt': self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f'<ScanSession {self.session_id} {self.status}>'


class ScanRecord(db.Model):
    """Append-only history of successful scans across all channels"""
    __tablename__ = 'scan_records'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    scan_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey('coupons.id', ondelete='CASCADE'), nullable=False, unique=True)
    user_identity = db.Column(db.String(64), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)

    # 'public', 'mobile' or 'partner'
    channel = db.Column(db.String(20), nullable=False)
    verification_app_id = db.Column(db.Integer, nullable=True)
    session_id = db.Column(db.String(64), nullable=True)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.now, index=True)

    coupon = db.relationship('Coupon')

    def to_dict(self):
        return {
            'scan_id': self.scan_id,
            'tenant_id': self.tenant_id,
            'coupon_id': self.coupon_id,
            'coupon_code': self.coupon.code if self.coupon else None,
            'user_identity': self.user_identity,
            'channel': self.channel,
            'points_awarded': self.points_awarded,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<ScanRecord {self.scan_id}>'
