"""Application error types.

Every error carries an HTTP status and a stable machine-readable ``code`` so
clients can branch without matching on ``message``. The app-level handler in
``app.py`` renders them as ``{success: false, message, code}``.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            'success': False,
            'message': self.message,
            'code': self.code,
        }
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(AppError):
    status_code = 400
    code = 'VALIDATION_ERROR'


class NotFoundError(AppError):
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, resource: str = 'Resource', **kwargs: Any) -> None:
        super().__init__(f'{resource} not found', **kwargs)


class CouponExpiredError(AppError):
    status_code = 400
    code = 'COUPON_EXPIRED'

    def __init__(self, message: str = 'Coupon has expired', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class CouponNotActiveError(AppError):
    status_code = 400
    code = 'COUPON_NOT_ACTIVE'

    def __init__(self, message: str = 'Coupon is not active', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class SessionExpiredError(AppError):
    status_code = 400
    code = 'SESSION_EXPIRED'

    def __init__(self, message: str = 'Session expired. Please scan the coupon again.', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class SessionCompletedError(AppError):
    status_code = 400
    code = 'SESSION_COMPLETED'

    def __init__(self, message: str = 'Session already completed', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class InvalidOtpError(AppError):
    status_code = 400
    code = 'INVALID_OTP'

    def __init__(self, message: str = 'Invalid OTP', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class OtpExpiredError(AppError):
    status_code = 400
    code = 'OTP_EXPIRED'

    def __init__(self, message: str = 'OTP has expired. Please request a new OTP.', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ConflictError(AppError):
    status_code = 409
    code = 'CONFLICT'


class CouponAlreadyUsedError(ConflictError):
    code = 'COUPON_ALREADY_USED'

    def __init__(self, message: str = 'Coupon already used', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class InsufficientCreditsError(ConflictError):
    code = 'INSUFFICIENT_CREDITS'

    def __init__(self, message: str = 'Insufficient credits', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class InvalidTransitionError(ConflictError):
    code = 'INVALID_TRANSITION'


class RateLimitedError(AppError):
    status_code = 429
    code = 'RATE_LIMIT_EXCEEDED'

    def __init__(
        self,
        message: str = 'Too many requests. Please try again later.',
        *,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.retry_after is not None:
            payload['retryAfter'] = self.retry_after
        return payload


class OtpAttemptsExceededError(RateLimitedError):
    code = 'OTP_ATTEMPTS_EXCEEDED'

    def __init__(self, message: str = 'Too many failed attempts. Please request a new OTP.', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class UnauthorizedError(AppError):
    status_code = 401
    code = 'UNAUTHORIZED'

    def __init__(self, message: str = 'Authentication required', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(AppError):
    status_code = 403
    code = 'FORBIDDEN'

    def __init__(self, message: str = 'Access denied', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ServiceUnavailableError(AppError):
    status_code = 503
    code = 'SERVICE_UNAVAILABLE'

    def __init__(self, message: str = 'Service temporarily unavailable. Please retry.', **kwargs: Any) -> None:
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload['retryable'] = True
        return payload
