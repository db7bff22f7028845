"""
Fixed-window rate limit counters
"""
from extensions import db


class RateLimitCounter(db.Model):
    """Request count for one (scope, key) in one fixed window"""
    __tablename__ = 'rate_limit_counters'
    __table_args__ = (
        db.UniqueConstraint('scope', 'key', 'window_start', name='uq_rate_limit_window'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    scope = db.Column(db.String(32), nullable=False)
    key = db.Column(db.String(191), nullable=False)
    window_start = db.Column(db.Integer, nullable=False)  # epoch seconds
    expires_at = db.Column(db.Integer, nullable=False, index=True)  # epoch seconds
    count = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f'<RateLimitCounter {self.scope}:{self.key} {self.count}>'
