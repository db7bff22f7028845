"""
Maintenance sweep tests
"""
from datetime import datetime, timedelta

import maintenance
from extensions import db
from models.coupon import Coupon
from models.otp import OtpRecord
from models.rate_limit import RateLimitCounter
from models.scan import ScanSession
from models.user import TokenBlocklist
from services import otp, rate_limiter, scan_sessions


class TestSweep:

    def test_sweep_cleans_everything(self, app, make_coupon, active_coupon):
        now = datetime.now()
        overdue = make_coupon(status='printed', expiry_date=now - timedelta(days=1))

        scan_sessions.start('PUBLIC_SCAN_001', now=now - timedelta(hours=2))
        fresh = scan_sessions.start('PUBLIC_SCAN_001', now=now)

        otp.issue('+14155550123', scope='scan:old', now=now - timedelta(days=2))
        db.session.commit()

        rate_limiter.check('test', 'k', 5, 60, now=now.timestamp() - 3600)

        db.session.add(TokenBlocklist(jti='old-jti', token_type='access', expires_at=now - timedelta(hours=1)))
        db.session.add(TokenBlocklist(jti='live-jti', token_type='access', expires_at=now + timedelta(hours=1)))
        db.session.commit()

        result = maintenance.sweep(now)

        assert result == {
            'expired_coupons': 1,
            'deleted_sessions': 1,
            'deleted_otps': 1,
            'deleted_rate_limit_windows': 1,
            'deleted_blocklisted_tokens': 1,
        }
        assert db.session.get(Coupon, overdue.id, populate_existing=True).status == 'expired'
        assert [s.session_id for s in ScanSession.query.all()] == [fresh.session_id]
        assert OtpRecord.query.count() == 0
        assert RateLimitCounter.query.count() == 0
        assert [t.jti for t in TokenBlocklist.query.all()] == ['live-jti']

    def test_sweep_is_idempotent(self, app, make_coupon):
        make_coupon(status='active', expiry_date=datetime.now() - timedelta(days=1))

        assert maintenance.sweep()['expired_coupons'] == 1
        assert maintenance.sweep() == {
            'expired_coupons': 0,
            'deleted_sessions': 0,
            'deleted_otps': 0,
            'deleted_rate_limit_windows': 0,
            'deleted_blocklisted_tokens': 0,
        }
