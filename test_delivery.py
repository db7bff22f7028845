"""
OTP delivery provider tests (SMS gateway, Textbelt, SMTP)
"""
import json

import pytest

from utils import otp_email, otp_sms


class FakeResponse:

    def __init__(self, body=b'{}', status=200):
        self._body = body
        self.status = status

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class Recorder(list):
    """Stands in for urlopen; records requests and returns ``reply``."""

    reply = None

    def __call__(self, req, timeout=None):
        self.append(req)
        return self.reply or FakeResponse()


@pytest.fixture
def captured(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(otp_sms.request, 'urlopen', recorder)
    return recorder


class TestSmsGateway:

    def test_unconfigured(self, monkeypatch):
        monkeypatch.delenv('OTP_SMS_URL', raising=False)
        monkeypatch.delenv('OTP_SMS_PROVIDER', raising=False)

        ok, err = otp_sms.dispatch_sms(phone='+14155550123', otp='123456')
        assert ok is False
        assert 'OTP_SMS_URL' in err

    def test_renders_body_template(self, monkeypatch, captured):
        monkeypatch.delenv('OTP_SMS_PROVIDER', raising=False)
        monkeypatch.setenv('OTP_SMS_URL', 'http://sms.test/send')
        monkeypatch.setenv('OTP_SMS_HEADERS_JSON', '{"X-Token": "abc"}')
        monkeypatch.setenv('OTP_SMS_BODY_TEMPLATE_JSON', '{"to": "{phone}", "text": "{message}"}')

        ok, err = otp_sms.dispatch_sms(phone='+14155550123', otp='654321')

        assert (ok, err) == (True, None)
        sent = captured[0]
        assert sent.get_method() == 'POST'
        assert sent.get_header('X-token') == 'abc'
        body = json.loads(sent.data)
        assert body['to'] == '+14155550123'
        assert '654321' in body['text']

    def test_bad_headers_json(self, monkeypatch):
        monkeypatch.setenv('OTP_SMS_URL', 'http://sms.test/send')
        monkeypatch.setenv('OTP_SMS_HEADERS_JSON', '{nope')

        ok, err = otp_sms.send_via_gateway(phone='+14155550123', otp='123456')
        assert ok is False
        assert 'not valid JSON' in err


class TestTextbelt:

    def test_provider_rejection(self, monkeypatch, captured):
        monkeypatch.setenv('OTP_SMS_PROVIDER', 'textbelt')
        captured.reply = FakeResponse(b'{"success": false, "message": "quota"}')

        ok, err = otp_sms.dispatch_sms(phone='+1 (415) 555-0123', otp='123456')

        assert ok is False
        assert 'quota' in err
        assert b'number=14155550123' in captured[0].data

    def test_success(self, monkeypatch, captured):
        monkeypatch.setenv('OTP_SMS_PROVIDER', 'textbelt')
        captured.reply = FakeResponse(b'{"success": true}')

        assert otp_sms.dispatch_sms(phone='+14155550123', otp='123456') == (True, None)


class TestEmail:

    def test_mask_email(self):
        assert otp_email.mask_email('alice@acme.test') == 'a***e@acme.test'
        assert otp_email.mask_email('al@acme.test') == 'a*@acme.test'
        assert otp_email.mask_email('invalid') == ''

    def test_unconfigured(self, monkeypatch):
        monkeypatch.delenv('SMTP_HOST', raising=False)

        ok, err = otp_email.send_otp_email(to_email='alice@acme.test', otp='123456')
        assert ok is False
        assert 'not configured' in err
