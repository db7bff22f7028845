"""
OTP issuer/verifier tests
"""
from datetime import datetime, timedelta

import pytest

from extensions import db
from models.otp import OtpRecord
from services import otp
from utils.errors import InvalidOtpError, OtpAttemptsExceededError, OtpExpiredError

PHONE = '+14155550123'
SCOPE = 'scan:test-session'


def _issue(now=None):
    record, code = otp.issue(PHONE, scope=SCOPE, session_id='test-session', now=now)
    db.session.commit()
    return record, code


def _wrong(code):
    return f'{(int(code) + 1) % 1_000_000:06d}'


class TestIssue:

    def test_code_is_six_digits_and_stored_hashed(self, app):
        record, code = _issue()
        assert len(code) == 6 and code.isdigit()
        assert code not in record.code_hash
        assert record.code_hash == otp.hash_code(SCOPE, code)
        assert record.expires_at == record.created_at + timedelta(seconds=app.config['OTP_TTL_SECONDS'])

    def test_new_code_supersedes_previous(self, app):
        """Only the latest code of a scope can be used"""
        first, first_code = _issue()
        _second, second_code = _issue()
        if first_code == second_code:
            pytest.skip('random codes collided')

        with pytest.raises(InvalidOtpError):
            otp.verify(PHONE, first_code, scope=SCOPE)
        assert db.session.get(OtpRecord, first.id).superseded_at is not None

        assert otp.verify(PHONE, second_code, scope=SCOPE) is not None


class TestVerify:

    def test_correct_code(self, app):
        record, code = _issue()
        verified = otp.verify(PHONE, code, scope=SCOPE)
        assert verified.id == record.id
        assert verified.attempt_count == 1

    def test_wrong_code_reports_attempts_remaining(self, app):
        _record, code = _issue()
        with pytest.raises(InvalidOtpError) as exc:
            otp.verify(PHONE, _wrong(code), scope=SCOPE)
        assert exc.value.details == {'attemptsRemaining': 2}

    def test_attempts_are_capped(self, app):
        """After the cap even the right code is refused"""
        record, code = _issue()
        for _ in range(app.config['OTP_MAX_ATTEMPTS']):
            with pytest.raises(InvalidOtpError):
                otp.verify(PHONE, _wrong(code), scope=SCOPE)

        with pytest.raises(OtpAttemptsExceededError):
            otp.verify(PHONE, code, scope=SCOPE)
        assert db.session.get(OtpRecord, record.id).attempt_count == app.config['OTP_MAX_ATTEMPTS']

    def test_expired_code(self, app):
        issued_at = datetime.now()
        _record, code = _issue(now=issued_at)
        later = issued_at + timedelta(seconds=app.config['OTP_TTL_SECONDS'] + 1)
        with pytest.raises(OtpExpiredError):
            otp.verify(PHONE, code, scope=SCOPE, now=later)

    def test_code_is_bound_to_its_scope(self, app):
        _record, code = _issue()
        otp.issue(PHONE, scope='scan:other-session', now=datetime.now())
        db.session.commit()
        with pytest.raises(InvalidOtpError):
            otp.verify(PHONE, code, scope='scan:other-session')

    def test_consumed_code_cannot_be_reused(self, app):
        _record, code = _issue()
        otp.verify(PHONE, code, scope=SCOPE, consume=True)
        db.session.commit()

        with pytest.raises(InvalidOtpError):
            otp.verify(PHONE, code, scope=SCOPE)

    def test_mark_consumed_twice(self, app):
        record, code = _issue()
        otp.verify(PHONE, code, scope=SCOPE)
        otp.mark_consumed(record)
        with pytest.raises(InvalidOtpError):
            otp.mark_consumed(record)

    def test_no_code_issued(self, app):
        with pytest.raises(InvalidOtpError):
            otp.verify(PHONE, '123456', scope=SCOPE)


class TestDeliver:

    def test_sms_goes_to_provider(self, app, sms_outbox):
        assert otp.deliver(PHONE, '123456') is True
        assert sms_outbox == [(PHONE, '123456')]

    def test_email_channel(self, app, email_outbox):
        assert otp.deliver('admin@acme.test', '654321', channel=otp.CHANNEL_EMAIL) is True
        assert email_outbox == [('admin@acme.test', '654321')]

    def test_failures_are_retried_then_reported(self, app, monkeypatch):
        """Delivery failures never raise"""
        calls = []

        def failing(*, phone, otp):
            calls.append(phone)
            return False, 'HTTP 500'

        monkeypatch.setattr('services.otp.dispatch_sms', failing)
        app.config['OTP_SEND_RETRIES'] = 2

        assert otp.deliver(PHONE, '123456') is False
        assert len(calls) == 3


class TestCleanup:

    def test_removes_records_expired_over_a_day_ago(self, app):
        _issue(now=datetime.now() - timedelta(days=3))
        _issue()
        assert otp.cleanup() == 1
        assert OtpRecord.query.count() == 1
