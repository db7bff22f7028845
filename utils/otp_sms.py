"""SMS delivery of OTP codes.

Two providers, chosen with ``OTP_SMS_PROVIDER``:

- ``generic`` (default): any HTTP gateway. ``OTP_SMS_URL`` is called with
  ``OTP_SMS_METHOD`` (default POST), headers from ``OTP_SMS_HEADERS_JSON`` and
  a JSON body rendered from ``OTP_SMS_BODY_TEMPLATE_JSON``; ``{phone}``,
  ``{otp}`` and ``{message}`` placeholders are substituted.
- ``textbelt``: a Textbelt server at ``OTP_TEXTBELT_URL`` (form-encoded
  ``number``/``message``/``key``).

Senders return ``(ok, error_message)`` and never raise.
"""
import json
import os
from typing import Any
from urllib import error as urlerror
from urllib import request
from urllib.parse import urlencode

DEFAULT_MESSAGE = 'Your MScan verification code is {otp}'


def _timeout() -> float:
    try:
        value = float((os.getenv('OTP_SMS_TIMEOUT_SECONDS') or '10').strip())
    except ValueError:
        return 10.0
    return value if value > 0 else 10.0


def _message(otp: str) -> str:
    template = (os.getenv('OTP_SMS_MESSAGE_TEMPLATE') or DEFAULT_MESSAGE).strip()
    return template.replace('{otp}', otp)


def _fill(value: Any, values: dict[str, str]) -> Any:
    if isinstance(value, str):
        for name, replacement in values.items():
            value = value.replace('{%s}' % name, replacement)
        return value
    if isinstance(value, list):
        return [_fill(v, values) for v in value]
    if isinstance(value, dict):
        return {k: _fill(v, values) for k, v in value.items()}
    return value


def _json_env(name: str) -> tuple[Any, str | None]:
    raw = (os.getenv(name) or '').strip()
    if not raw:
        return None, None
    try:
        return json.loads(raw), None
    except ValueError:
        return None, f'{name} is not valid JSON'


def _short(text: str, limit: int = 300) -> str:
    text = ' '.join((text or '').split())
    return text if len(text) <= limit else text[:limit] + '...'


def _post(url: str, *, data: bytes | None, headers: dict[str, str], method: str = 'POST') -> tuple[bool, str, str | None]:
    """One HTTP call. Returns (ok, body, error_detail)."""
    req = request.Request(url, data=data, method=method)
    req.add_header('Accept', 'application/json,text/plain,*/*')
    req.add_header('User-Agent', 'mscan-otp/1.0')
    for name, value in headers.items():
        req.add_header(name, value)

    try:
        with request.urlopen(req, timeout=_timeout()) as resp:
            body = (resp.read() or b'').decode('utf-8', errors='replace')
            status = int(getattr(resp, 'status', 0) or 0)
    except urlerror.HTTPError as e:
        body = (e.read() or b'').decode('utf-8', errors='replace')
        return False, body, f'HTTP {e.code}: {_short(body) or e.reason}'
    except (urlerror.URLError, OSError, ValueError) as e:
        return False, '', str(e)

    if 200 <= status < 300:
        return True, body, None
    return False, body, f'HTTP {status}: {_short(body)}'


def send_via_gateway(*, phone: str, otp: str) -> tuple[bool, str | None]:
    url = (os.getenv('OTP_SMS_URL') or '').strip()
    if not url:
        return False, 'OTP_SMS_URL is not configured'

    headers, err = _json_env('OTP_SMS_HEADERS_JSON')
    if err:
        return False, err
    if headers is not None and not isinstance(headers, dict):
        return False, 'OTP_SMS_HEADERS_JSON must be a JSON object'
    headers = {str(k): str(v) for k, v in (headers or {}).items()}

    template, err = _json_env('OTP_SMS_BODY_TEMPLATE_JSON')
    if err:
        return False, err
    body = None
    if template is not None:
        rendered = _fill(template, {'phone': phone, 'otp': otp, 'message': _message(otp)})
        body = json.dumps(rendered).encode('utf-8')
        headers.setdefault('Content-Type', 'application/json')

    method = (os.getenv('OTP_SMS_METHOD') or 'POST').strip().upper()
    ok, _body, err = _post(url, data=body, headers=headers, method=method)
    return (True, None) if ok else (False, f'SMS gateway error: {err}')


def send_via_textbelt(*, phone: str, otp: str) -> tuple[bool, str | None]:
    url = (os.getenv('OTP_TEXTBELT_URL') or 'http://localhost:9090/intl').strip()
    number = ''.join(ch for ch in phone if ch.isdigit())
    if not number:
        return False, 'Phone number is empty'

    form = {'number': number, 'message': _message(otp)}
    key = (os.getenv('OTP_TEXTBELT_KEY') or '').strip()
    if key:
        form['key'] = key

    ok, body, err = _post(
        url,
        data=urlencode(form).encode('utf-8'),
        headers={'Content-Type': 'application/x-www-form-urlencoded'},
    )
    if not ok:
        return False, f'Textbelt error: {err}'

    # {"success": false, "message": "..."} on provider-side rejection
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get('success') is False:
        return False, f"Textbelt rejected the message: {payload.get('message') or 'unknown reason'}"
    return True, None


def dispatch_sms(*, phone: str, otp: str) -> tuple[bool, str | None]:
    """Send ``otp`` to ``phone`` with the configured provider."""
    provider = (os.getenv('OTP_SMS_PROVIDER') or 'generic').strip().lower()
    if provider == 'textbelt':
        return send_via_textbelt(phone=phone, otp=otp)
    return send_via_gateway(phone=phone, otp=otp)
