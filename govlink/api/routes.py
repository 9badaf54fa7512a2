from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from fastapi import APIRouter, Body, Depends, Header, Path, Query, Request, Response
from pydantic import ValidationError as PydanticValidationError

from govlink.api.error_handling import _field_errors
from govlink.api.schemas import (
    PROFILE_UPDATE_SCHEMAS,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    envelope,
)
from govlink.logging import get_logger
from govlink.service.errors import RateLimitedError, ValidationError
from govlink.service.partitions import PartitionConfig, get_partition
from govlink.service.rate_limit import client_key_from_headers
from govlink.service.runtime import Runtime, get_runtime
from govlink.service.sessions import CookieSpec
from govlink.service.tokens import extract_bearer

logger = get_logger(__name__)

router = APIRouter(prefix="/auth/{partition}", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."
VERIFY_EMAIL_SENT_MESSAGE = (
    "If an account with that email exists and is not yet verified, a verification link has been sent."
)


def resolve_partition(
    partition: str = Path(..., max_length=32, description="user, agent, admin or department"),
) -> PartitionConfig:
    return get_partition(partition)


class RateLimitInfo:
    """Rate limit state for adding response headers."""

    __slots__ = ("limit", "remaining", "reset_seconds")

    def __init__(self, limit: int, remaining: int, reset_seconds: int):
        self.limit = limit
        self.remaining = remaining
        self.reset_seconds = reset_seconds

    def apply_headers(self, response: Response) -> None:
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.remaining))
        response.headers["X-RateLimit-Reset"] = str(self.reset_seconds)


async def _enforce_rate_limit(
    runtime: Runtime,
    request: Request,
    endpoint: str,
    partition: PartitionConfig,
    *,
    response: Optional[Response] = None,
    limit: Optional[int] = None,
) -> RateLimitInfo:
    """Throttle one endpoint per partition per client IP.

    Raises:
        RateLimitedError: the client has used up its attempts for the window.
    """
    client_ip = client_key_from_headers(
        request.headers,
        request.client.host if request.client else None,
        trust_forwarded_for=runtime.settings.trust_forwarded_for,
    )
    decision = await runtime.rate_limiter.check(
        f"{endpoint}:{partition.name}:{client_ip}", limit=limit
    )
    info = RateLimitInfo(decision.limit, decision.remaining, decision.reset_seconds)
    if response is not None:
        info.apply_headers(response)
    if not decision.allowed:
        logger.warning(
            "rate_limited",
            endpoint=endpoint,
            partition=partition.name,
            client_ip=client_ip,
        )
        raise RateLimitedError(decision.message, retry_after=decision.reset_seconds or None)
    return info


def _apply_cookies(response: Response, cookies: Iterable[CookieSpec], *, secure: bool) -> None:
    for cookie in cookies:
        response.set_cookie(
            key=cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            httponly=True,
            secure=secure,
            samesite="strict",
            path="/",
        )


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    """Authenticate with email and password and set the partition's session cookies.

    Raises:
        401: unknown email or wrong password (identical responses)
        403: account locked, not active, or email not verified
        429: too many attempts from this client
    """
    await _enforce_rate_limit(
        runtime, request, "login", partition, response=response, limit=partition.login_rate_limit
    )
    result = await runtime.sessions.login(partition, body.email, body.password)
    _apply_cookies(
        response,
        runtime.sessions.session_cookies(partition, result.tokens),
        secure=runtime.settings.secure_cookies,
    )
    return envelope(
        True,
        "Login successful",
        tokens=result.tokens.as_response(),
        **{partition.response_key: result.principal.to_public()},
    )


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = Body(default=None),
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    """Exchange a refresh token (cookie first, then body) for a new token pair.

    Raises:
        401: missing, invalid or expired refresh token
        403: account no longer active
        429: too many attempts from this client
    """
    await _enforce_rate_limit(runtime, request, "refresh", partition, response=response)
    token = request.cookies.get(partition.refresh_cookie) or (body.refresh_token if body else None)
    result = await runtime.sessions.refresh(partition, token)
    _apply_cookies(
        response,
        runtime.sessions.session_cookies(partition, result.tokens),
        secure=runtime.settings.secure_cookies,
    )
    return envelope(True, "Token refreshed successfully", tokens=result.tokens.as_response())


def _access_token(
    request: Request, partition: PartitionConfig, authorization: Optional[str]
) -> Optional[str]:
    return extract_bearer(authorization) or request.cookies.get(partition.access_cookie)


@router.get("/me")
async def me(
    request: Request,
    authorization: Optional[str] = Header(None),
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    """Return the signed-in principal's sanitized profile.

    Raises:
        401: missing, invalid or expired access token
        403: account no longer active
        404: account no longer exists
    """
    identity = await runtime.sessions.me(partition, _access_token(request, partition, authorization))
    return envelope(
        True,
        tokenExpiresSoon=identity.expires_soon,
        **{partition.response_key: identity.principal.to_public()},
    )


@router.post("/logout")
async def logout(
    response: Response,
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    """Clear the partition's session cookies. Tokens already issued stay valid until expiry."""
    _apply_cookies(
        response,
        runtime.sessions.logout(partition),
        secure=runtime.settings.secure_cookies,
    )
    return envelope(True, "Logged out successfully")


@router.put("/profile")
async def update_profile(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    authorization: Optional[str] = Header(None),
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    """Update the partition's editable profile fields; unknown fields are rejected."""
    access_token = _access_token(request, partition, authorization)
    # anonymous callers get 401 before the body is looked at
    await runtime.sessions.authenticate(partition, access_token)
    schema = PROFILE_UPDATE_SCHEMAS[partition.name]
    try:
        update = schema.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError("Validation failed", errors=_field_errors(exc.errors()))
    principal = await runtime.sessions.update_profile(
        partition,
        access_token,
        update.changes(),
    )
    return envelope(
        True,
        "Profile updated successfully",
        **{partition.response_key: principal.to_public()},
    )


@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    response: Response,
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    """Mail a reset link if the account exists; the response never says whether it does."""
    await _enforce_rate_limit(runtime, request, "forgot-password", partition, response=response)
    await runtime.sessions.request_password_reset(partition, body.email)
    return envelope(True, FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    """Redeem a password-reset token.

    Raises:
        400: passwords differ, policy violation, or invalid/expired/used token
    """
    await runtime.sessions.reset_password(
        partition, body.token, body.new_password, body.confirm_password
    )
    return envelope(
        True,
        "Password has been reset successfully. You can now log in with your new password.",
    )


@router.post("/verify-email")
async def send_verification_email(
    body: VerifyEmailRequest,
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.sessions.request_email_verification(partition, body.email)
    return envelope(True, VERIFY_EMAIL_SENT_MESSAGE)


@router.get("/verify-email")
async def verify_email(
    token: Optional[str] = Query(None, max_length=256),
    partition: PartitionConfig = Depends(resolve_partition),
    runtime: Runtime = Depends(get_runtime),
):
    principal = await runtime.sessions.verify_email(partition, token)
    return envelope(
        True,
        "Email verified successfully",
        **{partition.response_key: principal.to_public()},
    )
