"""
One-time password records
"""
from datetime import datetime
from extensions import db


PURPOSE_SCAN = 'scan'
PURPOSE_MOBILE_LOGIN = 'mobile-login'
PURPOSE_ADMIN_LOGIN = 'admin-login'


class OtpRecord(db.Model):
    """A hashed one-time code bound to a scope (session or login identity)"""
    __tablename__ = 'otp_records'
    __table_args__ = (
        db.Index('ix_otp_records_scope_created', 'scope_key', 'created_at'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    scope_key = db.Column(db.String(191), nullable=False)
    target = db.Column(db.String(150), nullable=False)  # mobile number or email
    purpose = db.Column(db.String(20), nullable=False, default=PURPOSE_SCAN)
    tenant_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)

    code_hash = db.Column(db.String(64), nullable=False)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    consumed_at = db.Column(db.DateTime, nullable=True)
    superseded_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<OtpRecord {self.scope_key} attempts={self.attempt_count}>'
