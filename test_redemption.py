"""
Redemption engine tests - exactly-once coupon redemption and credit awards
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from extensions import db
from models.coupon import Coupon
from models.credit import CreditAccount, CreditTransaction
from models.customer import Customer
from models.otp import OtpRecord
from models.scan import ScanRecord, ScanSession
from models.verification_app import VerificationApp
from services import redemption, scan_sessions
from utils.errors import (
    CouponAlreadyUsedError,
    CouponExpiredError,
    CouponNotActiveError,
    ForbiddenError,
    InvalidOtpError,
    SessionCompletedError,
    SessionExpiredError,
    ValidationError,
)

PHONE = '+14155550123'


def _pending_session(code='PUBLIC_SCAN_001', phone=PHONE, now=None):
    session = scan_sessions.start(code, now=now)
    result = scan_sessions.submit_mobile(session.session_id, phone, now=now)
    return session.session_id, result['code']


def _coupon_status(coupon):
    return db.session.get(Coupon, coupon.id, populate_existing=True).status


class TestRedeem:

    def test_awards_points_once(self, app, active_coupon):
        session_id, code = _pending_session()

        result = redemption.redeem(session_id, code)

        customer = Customer.query.filter_by(phone_e164=PHONE).one()
        assert result['pointsAwarded'] == 200
        assert result['balance'] == 200
        assert result['userId'] == customer.id
        assert _coupon_status(active_coupon) == 'redeemed'
        assert ScanSession.query.filter_by(session_id=session_id).one().status == 'completed'

        scan = ScanRecord.query.filter_by(scan_id=result['scanId']).one()
        assert scan.channel == 'public'
        assert scan.customer_id == customer.id

        entry = CreditTransaction.query.one()
        assert entry.amount == 200
        assert entry.coupon_id == active_coupon.id
        assert CreditAccount.query.filter_by(user_identity=PHONE).one().balance == 200

    def test_second_verify_is_rejected(self, app, active_coupon):
        """Verifying a completed session never awards twice"""
        session_id, code = _pending_session()
        redemption.redeem(session_id, code)

        with pytest.raises(SessionCompletedError) as exc:
            redemption.redeem(session_id, code)
        assert 'already completed' in exc.value.message
        assert CreditTransaction.query.count() == 1

    def test_interleaved_verifies_award_once(self, app, active_coupon, monkeypatch):
        """A verify that passed its checks before the other committed still loses"""
        session_id, code = _pending_session()
        live = ScanSession.query.filter_by(session_id=session_id).one()
        stale_session = SimpleNamespace(
            id=live.id,
            session_id=live.session_id,
            tenant_id=live.tenant_id,
            coupon_id=live.coupon_id,
            mobile_number=live.mobile_number,
            status=live.status,
        )
        stale_record = OtpRecord.query.filter_by(session_id=session_id, superseded_at=None).one()

        redemption.redeem(session_id, code)

        monkeypatch.setattr('services.scan_sessions.load_open', lambda *args, **kwargs: stale_session)
        monkeypatch.setattr('services.otp.verify', lambda *args, **kwargs: stale_record)
        with pytest.raises((SessionCompletedError, CouponAlreadyUsedError)):
            redemption.redeem(session_id, code)

        assert CreditTransaction.query.count() == 1
        assert ScanRecord.query.count() == 1
        assert CreditAccount.query.filter_by(user_identity=PHONE).one().balance == 200

    def test_wrong_otp_changes_nothing(self, app, active_coupon):
        session_id, code = _pending_session()
        wrong = f'{(int(code) + 1) % 1_000_000:06d}'

        with pytest.raises(InvalidOtpError):
            redemption.redeem(session_id, wrong)

        assert _coupon_status(active_coupon) == 'active'
        assert ScanSession.query.filter_by(session_id=session_id).one().status == 'pending-otp'
        assert CreditTransaction.query.count() == 0

    def test_verify_before_mobile(self, app, active_coupon):
        session = scan_sessions.start('PUBLIC_SCAN_001')
        with pytest.raises(ValidationError):
            redemption.redeem(session.session_id, '123456')

    def test_expired_session(self, app, active_coupon):
        started = datetime.now() - timedelta(seconds=app.config['SCAN_SESSION_TTL_SECONDS'] - 5)
        session_id, code = _pending_session(now=started)

        with pytest.raises(SessionExpiredError):
            redemption.redeem(session_id, code, now=started + timedelta(minutes=11))
        assert _coupon_status(active_coupon) == 'active'

    def test_coupon_deactivated_mid_flow(self, app, active_coupon):
        """The coupon is re-checked at verification time"""
        session_id, code = _pending_session()
        active_coupon.status = 'inactive'
        db.session.commit()

        with pytest.raises(CouponNotActiveError):
            redemption.redeem(session_id, code)

        assert ScanSession.query.filter_by(session_id=session_id).one().status == 'pending-otp'
        assert CreditTransaction.query.count() == 0

    def test_coupon_expired_mid_flow(self, app, active_coupon):
        session_id, code = _pending_session()
        active_coupon.expiry_date = datetime.now() - timedelta(seconds=1)
        db.session.commit()

        with pytest.raises(CouponExpiredError):
            redemption.redeem(session_id, code)
        assert CreditTransaction.query.count() == 0

    def test_racing_sessions_redeem_once(self, app, active_coupon):
        """Two sessions on one coupon: only the first verification wins"""
        first_id, first_code = _pending_session(phone='+14155550001')
        second_id, second_code = _pending_session(phone='+14155550002')

        redemption.redeem(first_id, first_code)
        with pytest.raises(CouponAlreadyUsedError):
            redemption.redeem(second_id, second_code)

        assert CreditTransaction.query.count() == 1
        assert ScanRecord.query.count() == 1
        assert ScanSession.query.filter_by(session_id=second_id).one().status == 'pending-otp'

    def test_customers_are_reused(self, app, make_coupon):
        make_coupon(code='FIRST-001', points=50)
        make_coupon(code='SECOND-001', points=75)

        first = redemption.redeem(*_pending_session('FIRST-001'))
        second = redemption.redeem(*_pending_session('SECOND-001'))

        assert first['userId'] == second['userId']
        assert second['balance'] == 125
        assert Customer.query.count() == 1


class TestRedeemDirect:

    def test_partner_redemption(self, app, active_coupon, partner):
        app_obj, _key = partner
        result = redemption.redeem_direct(
            active_coupon.tenant_id, 'PUBLIC_SCAN_001', 'user-42',
            channel=redemption.CHANNEL_PARTNER, verification_app_id=app_obj.id,
        )
        assert result['userId'] == 'user-42'
        assert result['pointsAwarded'] == 200
        assert ScanRecord.query.one().verification_app_id == app_obj.id

    def test_coupon_bound_to_another_app(self, app, make_coupon, partner):
        app_obj, _key = partner

        other = VerificationApp(
            tenant_id=app_obj.tenant_id, app_code='other', name='Other',
            api_key_hash='x' * 64, key_prefix='msk_live_xxx',
        )
        db.session.add(other)
        db.session.commit()
        make_coupon(code='BOUND-001', verification_app_id=other.id)

        with pytest.raises(ForbiddenError):
            redemption.redeem_direct(
                app_obj.tenant_id, 'BOUND-001', 'user-42',
                channel=redemption.CHANNEL_PARTNER, verification_app_id=app_obj.id,
            )

    def test_already_redeemed(self, app, make_coupon):
        coupon = make_coupon(code='USED-001', status='redeemed')
        with pytest.raises(CouponAlreadyUsedError):
            redemption.redeem_direct(coupon.tenant_id, 'USED-001', 'user-42', channel=redemption.CHANNEL_MOBILE)
