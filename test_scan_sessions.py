"""
Scan session store tests
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from extensions import db
from models.otp import OtpRecord
from models.rate_limit import RateLimitCounter
from models.scan import ScanSession
from services import scan_sessions
from utils.errors import (
    ConflictError,
    CouponExpiredError,
    CouponNotActiveError,
    NotFoundError,
    RateLimitedError,
    SessionCompletedError,
    SessionExpiredError,
    ValidationError,
)

PHONE = '+14155550123'


def _reload(session):
    return db.session.get(ScanSession, session.id, populate_existing=True)


class TestStart:

    def test_snapshots_coupon(self, app, active_coupon):
        session = scan_sessions.start('PUBLIC_SCAN_001', ip_address='10.0.0.1')

        assert session.status == 'pending-mobile'
        assert session.coupon_id == active_coupon.id
        assert session.coupon_points == 200
        assert session.tenant_id == active_coupon.tenant_id
        assert len(session.session_id) >= 32

    def test_snapshot_survives_coupon_edits(self, app, active_coupon):
        session = scan_sessions.start('PUBLIC_SCAN_001')
        active_coupon.points = 999
        db.session.commit()

        assert _reload(session).to_dict()['couponDetails']['points'] == 200

    def test_unknown_coupon(self, app, tenant):
        with pytest.raises(NotFoundError):
            scan_sessions.start('INVALID_CODE_999')
        assert ScanSession.query.count() == 0

    def test_draft_coupon(self, app, make_coupon):
        make_coupon(code='DRAFT-001', status='draft')
        with pytest.raises(CouponNotActiveError):
            scan_sessions.start('DRAFT-001')

    def test_redeemed_coupon_is_not_active(self, app, make_coupon):
        make_coupon(code='USED-001', status='redeemed')
        with pytest.raises(CouponNotActiveError) as exc:
            scan_sessions.start('USED-001')
        assert exc.value.status_code == 400
        assert ScanSession.query.count() == 0

    def test_expired_coupon(self, app, make_coupon):
        make_coupon(code='OLD-001', expiry_date=datetime.now() - timedelta(days=1))
        with pytest.raises(CouponExpiredError):
            scan_sessions.start('OLD-001')

    def test_session_ids_are_unique(self, app, active_coupon):
        ids = {scan_sessions.start('PUBLIC_SCAN_001').session_id for _ in range(5)}
        assert len(ids) == 5


class TestLoadOpen:

    def test_unknown_session(self, app):
        with pytest.raises(NotFoundError) as exc:
            scan_sessions.load_open('does-not-exist')
        assert exc.value.message == 'Session not found'

    def test_aged_session_is_expired(self, app, active_coupon):
        """Expiry wins over the stored status and is persisted"""
        started = datetime.now()
        session = scan_sessions.start('PUBLIC_SCAN_001', now=started)
        later = started + timedelta(seconds=app.config['SCAN_SESSION_TTL_SECONDS'])

        with pytest.raises(SessionExpiredError):
            scan_sessions.load_open(session.session_id, now=later)
        assert _reload(session).status == 'expired'

    def test_completed_session(self, app, active_coupon):
        session = scan_sessions.start('PUBLIC_SCAN_001')
        session.status = 'completed'
        db.session.commit()

        with pytest.raises(SessionCompletedError):
            scan_sessions.load_open(session.session_id)


class TestSubmitMobile:

    def test_sends_otp(self, app, active_coupon, sms_outbox):
        session = scan_sessions.start('PUBLIC_SCAN_001')
        result = scan_sessions.submit_mobile(session.session_id, '+1 (415) 555-0123')

        assert result['delivered'] is True
        assert result['session'].status == 'pending-otp'
        assert result['session'].mobile_number == PHONE
        assert result['otp_expires_in'] == app.config['OTP_TTL_SECONDS']
        assert sms_outbox == [(PHONE, result['code'])]

        record = OtpRecord.query.filter_by(session_id=session.session_id).one()
        assert record.scope_key == f'scan:{session.session_id}'

    def test_invalid_mobile(self, app, active_coupon):
        session = scan_sessions.start('PUBLIC_SCAN_001')
        with pytest.raises(ValidationError) as exc:
            scan_sessions.submit_mobile(session.session_id, '12345')
        assert 'Invalid mobile number' in exc.value.message
        assert _reload(session).status == 'pending-mobile'

    def test_resend_supersedes_previous_code(self, app, active_coupon):
        session = scan_sessions.start('PUBLIC_SCAN_001')
        scan_sessions.submit_mobile(session.session_id, PHONE)
        result = scan_sessions.submit_mobile(session.session_id, PHONE)

        assert result['session'].otp_send_count == 2
        open_records = OtpRecord.query.filter_by(
            session_id=session.session_id, superseded_at=None
        ).all()
        assert len(open_records) == 1

    def test_delivery_failure_keeps_session_usable(self, app, active_coupon, monkeypatch):
        monkeypatch.setattr('services.otp.dispatch_sms', lambda **kwargs: (False, 'provider down'))
        session = scan_sessions.start('PUBLIC_SCAN_001')

        result = scan_sessions.submit_mobile(session.session_id, PHONE)
        assert result['delivered'] is False
        assert result['session'].status == 'pending-otp'

    def test_sends_per_mobile_are_capped(self, app, make_coupon):
        app.config['RATE_LIMITS'] = {**app.config['RATE_LIMITS'], 'otp-send': (2, 86400)}
        make_coupon(code='CAP-001')
        make_coupon(code='CAP-002')

        first = scan_sessions.start('CAP-001')
        second = scan_sessions.start('CAP-002')
        scan_sessions.submit_mobile(first.session_id, PHONE)
        scan_sessions.submit_mobile(second.session_id, PHONE)

        with pytest.raises(RateLimitedError):
            scan_sessions.submit_mobile(first.session_id, PHONE)

    def test_lost_update_does_not_use_a_send(self, app, active_coupon, monkeypatch):
        """A submission beaten by a concurrent one keeps the mobile's send quota"""
        session = scan_sessions.start('PUBLIC_SCAN_001')
        stale = SimpleNamespace(id=session.id, session_id=session.session_id, version=session.version)
        scan_sessions.submit_mobile(session.session_id, PHONE)

        monkeypatch.setattr(scan_sessions, 'load_open', lambda *args, **kwargs: stale)
        with pytest.raises(ConflictError):
            scan_sessions.submit_mobile(session.session_id, PHONE)

        counter = RateLimitCounter.query.filter_by(scope='otp-send', key=PHONE).one()
        assert counter.count == 1
        assert _reload(session).otp_send_count == 1

    def test_completed_session_rejects_mobile(self, app, active_coupon):
        session = scan_sessions.start('PUBLIC_SCAN_001')
        session.status = 'completed'
        db.session.commit()

        with pytest.raises(SessionCompletedError):
            scan_sessions.submit_mobile(session.session_id, PHONE)


class TestCleanup:

    def test_deletes_only_aged_sessions(self, app, active_coupon):
        scan_sessions.start('PUBLIC_SCAN_001', now=datetime.now() - timedelta(hours=1))
        fresh = scan_sessions.start('PUBLIC_SCAN_001')

        assert scan_sessions.cleanup_expired() == 1
        assert [s.session_id for s in ScanSession.query.all()] == [fresh.session_id]
