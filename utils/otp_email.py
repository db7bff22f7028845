"""Email delivery of dashboard login codes over SMTP.

Configured with SMTP_HOST, SMTP_PORT (587), SMTP_USERNAME, SMTP_PASSWORD,
SMTP_FROM (defaults to the username), SMTP_USE_TLS (true),
SMTP_TIMEOUT_SECONDS (20) and OTP_EMAIL_SUBJECT.
"""
import os
import smtplib
import ssl
from email.message import EmailMessage

TRUTHY = {'1', 'true', 'yes', 'on'}


def _env(name: str, default: str = '') -> str:
    return (os.getenv(name) or default).strip()


def mask_email(email: str) -> str:
    """``alice@acme.test`` -> ``a***e@acme.test``."""
    address = (email or '').strip()
    if '@' not in address:
        return ''
    local, domain = address.split('@', 1)
    if len(local) <= 2:
        return f'{local[:1]}*@{domain}'
    return f"{local[0]}{'*' * (len(local) - 2)}{local[-1]}@{domain}"


def _build_message(sender: str, recipient: str, otp: str, ttl_minutes: int) -> EmailMessage:
    msg = EmailMessage()
    msg['From'] = sender
    msg['To'] = recipient
    msg['Subject'] = _env('OTP_EMAIL_SUBJECT', 'MScan Verification Code')
    msg.set_content(
        f'Your MScan verification code is {(otp or "").strip()}. '
        f'It expires in {ttl_minutes} minutes.'
    )
    return msg


def send_otp_email(*, to_email: str, otp: str, ttl_minutes: int = 5) -> tuple[bool, str | None]:
    """Returns ``(ok, error_message)``."""
    host, username, password = _env('SMTP_HOST'), _env('SMTP_USERNAME'), _env('SMTP_PASSWORD')
    if not (host and username and password):
        return False, 'SMTP is not configured'

    recipient = (to_email or '').strip()
    if not recipient:
        return False, 'Recipient email is missing'

    try:
        port = int(_env('SMTP_PORT', '587'))
        timeout = float(_env('SMTP_TIMEOUT_SECONDS', '20'))
    except ValueError:
        port, timeout = 587, 20.0

    msg = _build_message(_env('SMTP_FROM', username), recipient, otp, ttl_minutes)

    try:
        with smtplib.SMTP(host=host, port=port, timeout=timeout) as smtp:
            if _env('SMTP_USE_TLS', 'true').lower() in TRUTHY:
                smtp.starttls(context=ssl.create_default_context())
            smtp.login(username, password)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        return False, f'SMTP delivery failed: {e}'
    return True, None
