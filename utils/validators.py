"""Input validators shared by the public, mobile and partner routes."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable

from flask import request

from utils.errors import ValidationError

_E164_RE = re.compile(r'^\+[1-9]\d{7,14}$')
_COUPON_CODE_RE = re.compile(r'^[A-Za-z0-9_-]{1,64}$')
_OTP_RE = re.compile(r'^\d{6}$')
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_mobile(raw: Any) -> str:
    """Normalize and validate an E.164 mobile number.

    Common separators (spaces, dashes, dots, parentheses) are stripped; the
    result must be ``+`` followed by 8-15 digits.
    """
    phone = str(raw or '').strip()
    for ch in (' ', '-', '(', ')', '.'):
        phone = phone.replace(ch, '')
    if not _E164_RE.match(phone):
        raise ValidationError('Invalid mobile number. Use international format, e.g. +14155550123')
    return phone


def mask_mobile(e164: str) -> str:
    if not e164:
        return ''
    return f'****{e164[-4:]}'


def normalize_coupon_code(raw: Any) -> str:
    code = str(raw or '').strip()
    if not code:
        raise ValidationError('couponCode is required')
    if not _COUPON_CODE_RE.match(code):
        # Never echo the raw value back.
        raise ValidationError('Invalid coupon code format')
    return code.upper()


def normalize_otp(raw: Any) -> str:
    otp = str(raw or '').strip()
    if not otp:
        raise ValidationError('otp is required')
    if not _OTP_RE.match(otp):
        raise ValidationError('OTP must be a 6-digit code')
    return otp


def normalize_email(raw: Any) -> str:
    email = str(raw or '').strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError('Invalid email address')
    return email


def require_fields(data: dict, fields: Iterable[str]) -> None:
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={'missing': missing},
        )


def positive_int(value: Any, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer')
    if number <= 0:
        raise ValidationError(f'{field} must be greater than 0')
    return number


def get_json_body() -> dict:
    """Request JSON as a dict; anything else (missing, malformed, a list) is ``{}``."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_datetime(value: Any, field: str):
    """ISO-8601 date or datetime, or None when empty."""
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{field} must be an ISO-8601 date')
    # Stored naive, in server local time.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def pagination_args(default_per_page: int = 20, max_per_page: int = 100) -> tuple[int, int]:
    page = max(1, request.args.get('page', 1, type=int) or 1)
    per_page = request.args.get('per_page', default_per_page, type=int) or default_per_page
    return page, max(1, min(per_page, max_per_page))
