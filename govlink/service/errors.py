from __future__ import annotations

from typing import List, Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``.
    ``errors`` is an optional list of human-readable detail lines rendered in
    the response envelope next to ``message``.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        errors: Optional[List[str]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.errors = list(errors) if errors else []


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(AuthenticationError):
    """Unknown email or wrong password; both render identically."""
    error_code = "invalid_credentials"

    def __init__(self, message: str = "Invalid email or password") -> None:
        super().__init__(message)


class InvalidOrExpiredTokenError(AuthenticationError):
    """Token rejected by the verifier (401)."""
    error_code = "invalid_token"


class InvalidTokenError(InvalidOrExpiredTokenError):
    """Malformed, forged, wrong type, or wrong partition."""
    pass


class ExpiredTokenError(InvalidOrExpiredTokenError):
    error_code = "expired_token"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class AccountNotActiveError(ForbiddenError):
    """Principal status is not allowed to authenticate in its partition."""
    error_code = "account_not_active"

    def __init__(self, status: str, message: Optional[str] = None) -> None:
        self.account_status = status
        super().__init__(message or f"Account is {status.lower().replace('_', ' ')}. Please contact support.")


class AccountLockedError(ForbiddenError):
    error_code = "account_locked"

    def __init__(self, minutes_remaining: int) -> None:
        self.minutes_remaining = minutes_remaining
        unit = "minute" if minutes_remaining == 1 else "minutes"
        super().__init__(
            f"Account is temporarily locked due to too many failed login attempts. "
            f"Try again in {minutes_remaining} {unit}."
        )


class EmailNotVerifiedError(ForbiddenError):
    error_code = "email_not_verified"

    def __init__(
        self,
        message: str = "Email verification required. Please check your email and verify your account.",
    ) -> None:
        super().__init__(message)


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str, *, retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "internal_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "InvalidOrExpiredTokenError",
    "InvalidTokenError",
    "ExpiredTokenError",
    "ForbiddenError",
    "AccountNotActiveError",
    "AccountLockedError",
    "EmailNotVerifiedError",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
    "ServerError",
]
