"""Session lifecycle for every partition.

``SessionManager`` is the only entry point protected handlers use: it turns
credentials into token pairs, token pairs into principals, and owns the two
single-use token flows (password reset and email verification). It keeps no
per-session state; everything it needs is in the token or the principal record.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from govlink.config import Settings
from govlink.logging import get_logger, hash_identifier
from govlink.service.credentials import (
    CredentialStore,
    check_password_policy,
    normalize_email,
)
from govlink.service.email import EmailService
from govlink.service.errors import (
    AccountLockedError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    ValidationError,
)
from govlink.service.partitions import PartitionConfig
from govlink.service.status_gate import check_account_status
from govlink.service.tokens import (
    Claims,
    TokenIssuer,
    TokenPair,
    TokenType,
    TokenVerifier,
    is_about_to_expire,
)
from govlink.storage.models import AccountStatus, Principal, TokenKind

logger = get_logger(__name__)

PASSWORD_RESET_TTL = timedelta(hours=1)
EMAIL_VERIFICATION_TTL = timedelta(hours=24)

ACCESS_TOKEN_REJECTED = "Invalid or expired access token"
REFRESH_TOKEN_REJECTED = "Invalid or expired refresh token"
RESET_TOKEN_REJECTED = "Invalid or expired reset token"
VERIFICATION_TOKEN_REJECTED = "Invalid or expired verification token"


@dataclass(frozen=True)
class CookieSpec:
    name: str
    value: str
    max_age: int


@dataclass
class SessionResult:
    principal: Principal
    tokens: TokenPair


@dataclass
class Identity:
    principal: Principal
    claims: Claims
    expires_soon: bool = False


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _single_use_rejected(message: str, detail: str) -> InvalidOrExpiredTokenError:
    # rendered as 400 with a detail line
    return InvalidOrExpiredTokenError(message, status_code=400, errors=[detail])


class SessionManager:
    def __init__(
        self,
        credentials: CredentialStore,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        email: Optional[EmailService],
        settings: Settings,
    ) -> None:
        self.credentials = credentials
        self.store = credentials.store
        self.issuer = issuer
        self.verifier = verifier
        self.email = email
        self.settings = settings

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # cookies
    def session_cookies(self, partition: PartitionConfig, tokens: TokenPair) -> List[CookieSpec]:
        return [
            CookieSpec(partition.access_cookie, tokens.access_token, partition.access_max_age),
            CookieSpec(partition.refresh_cookie, tokens.refresh_token, partition.refresh_max_age),
        ]

    def cleared_cookies(self, partition: PartitionConfig) -> List[CookieSpec]:
        return [
            CookieSpec(partition.access_cookie, "", 0),
            CookieSpec(partition.refresh_cookie, "", 0),
        ]

    # login / refresh / me / logout
    async def login(self, partition: PartitionConfig, email: str, password: str) -> SessionResult:
        """Authenticate with email and password.

        Unknown email and wrong password raise the same InvalidCredentialsError.
        The lockout, status and verified-email checks only run once the password
        is known to be correct, so they never help an attacker enumerate accounts.

        Raises:
            InvalidCredentialsError: unknown email or wrong password.
            AccountLockedError: too many recent failures.
            AccountNotActiveError: status not allowed in this partition.
            EmailNotVerifiedError: partition requires a verified email.
        """
        normalized = normalize_email(email)
        principal = await asyncio.to_thread(
            self.credentials.find_by_email, partition.name, normalized
        )
        password_ok = await asyncio.to_thread(
            self.credentials.verify_password, principal, password
        )
        now = self._now()
        if principal is None:
            logger.info(
                "login_failed",
                partition=partition.name,
                reason="unknown_email",
                account_hash=hash_identifier(normalized),
            )
            raise InvalidCredentialsError()
        if not password_ok:
            await self._record_failed_login(partition, principal, now)
            raise InvalidCredentialsError()

        if principal.is_locked(now):
            remaining = principal.locked_until - now
            logger.warning(
                "login_rejected_locked",
                partition=partition.name,
                principal_id=principal.id,
            )
            raise AccountLockedError(max(1, math.ceil(remaining.total_seconds() / 60)))
        check_account_status(partition, principal)
        if partition.require_verified_email and not principal.email_verified:
            raise EmailNotVerifiedError()

        changes: Dict[str, Any] = {
            "failed_login_attempts": 0,
            "locked_until": None,
            "last_login_at": now,
        }
        if self.credentials.needs_rehash(principal):
            digest, algo = await asyncio.to_thread(self.credentials.hash_password, password)
            changes.update(password_hash=digest, password_algo=algo)
        updated = await asyncio.to_thread(
            self.store.update_principal, partition.name, principal.id, changes
        )
        principal = updated or principal
        tokens = self.issuer.issue(principal, partition, now=now)
        logger.info(
            "login_succeeded",
            partition=partition.name,
            principal_id=principal.id,
            role=principal.role,
        )
        return SessionResult(principal=principal, tokens=tokens)

    async def _record_failed_login(
        self, partition: PartitionConfig, principal: Principal, now: datetime
    ) -> None:
        if principal.is_locked(now):
            logger.info("login_failed", partition=partition.name, principal_id=principal.id, reason="locked")
            return
        # a lapsed lock starts a fresh count
        attempts = 0 if principal.locked_until else principal.failed_login_attempts
        attempts += 1
        changes: Dict[str, Any] = {"failed_login_attempts": attempts, "locked_until": None}
        if attempts >= partition.max_failed_logins:
            changes["locked_until"] = now + partition.lockout_duration
            logger.warning(
                "account_locked",
                partition=partition.name,
                principal_id=principal.id,
                attempts=attempts,
                lockout_seconds=int(partition.lockout_duration.total_seconds()),
            )
        else:
            logger.info(
                "login_failed",
                partition=partition.name,
                principal_id=principal.id,
                reason="bad_password",
                attempts=attempts,
            )
        await asyncio.to_thread(self.store.update_principal, partition.name, principal.id, changes)

    def _verify(
        self, token: Optional[str], partition: PartitionConfig, token_type: TokenType, message: str
    ) -> Claims:
        if not token:
            raise InvalidOrExpiredTokenError(message)
        try:
            return self.verifier.verify(token, partition, token_type)
        except InvalidOrExpiredTokenError as exc:
            logger.info(
                "token_rejected",
                partition=partition.name,
                token_type=token_type.value,
                reason=exc.message,
            )
            raise type(exc)(message) from exc

    async def _load_principal(self, partition: PartitionConfig, claims: Claims) -> Principal:
        principal = await asyncio.to_thread(
            self.store.get_principal, partition.name, claims.principal_id
        )
        if principal is None:
            logger.warning(
                "token_principal_missing",
                partition=partition.name,
                principal_id=claims.principal_id,
            )
            raise NotFoundError(f"{partition.response_key.capitalize()} not found")
        return principal

    async def authenticate(self, partition: PartitionConfig, access_token: Optional[str]) -> Identity:
        """Resolve an access token to a live, status-checked principal."""
        claims = self._verify(access_token, partition, TokenType.ACCESS, ACCESS_TOKEN_REJECTED)
        principal = await self._load_principal(partition, claims)
        check_account_status(partition, principal)
        return Identity(
            principal=principal,
            claims=claims,
            expires_soon=is_about_to_expire(claims, now=self._now()),
        )

    async def me(self, partition: PartitionConfig, access_token: Optional[str]) -> Identity:
        return await self.authenticate(partition, access_token)

    async def refresh(self, partition: PartitionConfig, refresh_token: Optional[str]) -> SessionResult:
        """Mint a new access token (and, with rotation on, a new refresh token).

        The presented refresh token is not revoked: two concurrent refreshes
        with the same token both succeed and each returns its own pair.
        """
        claims = self._verify(refresh_token, partition, TokenType.REFRESH, REFRESH_TOKEN_REJECTED)
        principal = await self._load_principal(partition, claims)
        check_account_status(partition, principal)
        tokens = self.issuer.issue(principal, partition, now=self._now())
        if not self.settings.rotate_refresh_tokens:
            tokens = TokenPair(
                access_token=tokens.access_token,
                refresh_token=refresh_token,
                access_expires_at=tokens.access_expires_at,
                refresh_expires_at=claims.expires_at,
            )
        logger.info("tokens_refreshed", partition=partition.name, principal_id=principal.id)
        return SessionResult(principal=principal, tokens=tokens)

    def logout(self, partition: PartitionConfig) -> List[CookieSpec]:
        logger.info("logout", partition=partition.name)
        return self.cleared_cookies(partition)

    # profile
    async def update_profile(
        self,
        partition: PartitionConfig,
        access_token: Optional[str],
        changes: Mapping[str, Any],
    ) -> Principal:
        identity = await self.authenticate(partition, access_token)
        if not changes:
            raise ValidationError("No valid fields to update")
        updated = await asyncio.to_thread(
            self.store.update_principal,
            partition.name,
            identity.principal.id,
            {"profile": dict(changes)},
        )
        if updated is None:
            raise NotFoundError(f"{partition.response_key.capitalize()} not found")
        logger.info(
            "profile_updated",
            partition=partition.name,
            principal_id=updated.id,
            fields=sorted(changes),
        )
        return updated

    # single-use tokens
    async def _issue_single_use_token(
        self, partition: PartitionConfig, principal: Principal, kind: TokenKind, ttl: timedelta
    ) -> str:
        token = secrets.token_hex(32)
        await asyncio.to_thread(
            self.store.update_principal,
            partition.name,
            principal.id,
            {
                f"{kind.value}_token_hash": _hash_token(token),
                f"{kind.value}_expires_at": self._now() + ttl,
            },
        )
        return token

    async def _deliver(self, sender: str, principal: Principal, token: str, partition: PartitionConfig) -> None:
        if self.email is None:
            return
        send = getattr(self.email, sender)
        name = principal.profile.get("fullName") or principal.profile.get("name")
        try:
            sent = await asyncio.to_thread(
                send, principal.email, token, partition=partition.name, name=name
            )
        except Exception as exc:
            logger.error(
                "email_delivery_failed",
                partition=partition.name,
                principal_id=principal.id,
                kind=sender,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        if not sent:
            logger.warning(
                "email_delivery_failed",
                partition=partition.name,
                principal_id=principal.id,
                kind=sender,
            )

    async def request_password_reset(self, partition: PartitionConfig, email: str) -> Optional[str]:
        """Store a reset token for the account, if any, and mail the link.

        Returns the raw token when one was issued; callers must not expose it,
        the HTTP response is the same either way.
        """
        normalized = normalize_email(email)
        principal = await asyncio.to_thread(
            self.credentials.find_by_email, partition.name, normalized
        )
        if principal is None or not partition.allows_status(principal.status):
            logger.info(
                "password_reset_skipped",
                partition=partition.name,
                account_hash=hash_identifier(normalized),
                reason="unknown" if principal is None else "status",
            )
            return None
        token = await self._issue_single_use_token(
            partition, principal, TokenKind.PASSWORD_RESET, PASSWORD_RESET_TTL
        )
        logger.info("password_reset_requested", partition=partition.name, principal_id=principal.id)
        await self._deliver("send_password_reset", principal, token, partition)
        return token

    async def reset_password(
        self,
        partition: PartitionConfig,
        token: str,
        new_password: str,
        confirm_password: str,
    ) -> Principal:
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")
        check = check_password_policy(new_password)
        if not check.ok:
            raise ValidationError("Password does not meet requirements", errors=check.errors)
        if not token:
            raise _single_use_rejected(RESET_TOKEN_REJECTED, "Reset token is invalid or has expired")
        digest, algo = await asyncio.to_thread(self.credentials.hash_password, new_password)
        principal = await asyncio.to_thread(
            self.store.consume_token_hash,
            partition.name,
            TokenKind.PASSWORD_RESET,
            _hash_token(token),
            self._now(),
            {
                "password_hash": digest,
                "password_algo": algo,
                "failed_login_attempts": 0,
                "locked_until": None,
            },
        )
        if principal is None:
            logger.warning("password_reset_invalid_token", partition=partition.name)
            raise _single_use_rejected(RESET_TOKEN_REJECTED, "Reset token is invalid or has expired")
        logger.info("password_reset_completed", partition=partition.name, principal_id=principal.id)
        return principal

    async def request_email_verification(self, partition: PartitionConfig, email: str) -> Optional[str]:
        normalized = normalize_email(email)
        principal = await asyncio.to_thread(
            self.credentials.find_by_email, partition.name, normalized
        )
        if (
            principal is None
            or principal.email_verified
            or not partition.allows_status(principal.status)
        ):
            logger.info(
                "email_verification_skipped",
                partition=partition.name,
                account_hash=hash_identifier(normalized),
            )
            return None
        token = await self._issue_single_use_token(
            partition, principal, TokenKind.EMAIL_VERIFICATION, EMAIL_VERIFICATION_TTL
        )
        logger.info("email_verification_requested", partition=partition.name, principal_id=principal.id)
        await self._deliver("send_email_verification", principal, token, partition)
        return token

    async def verify_email(self, partition: PartitionConfig, token: Optional[str]) -> Principal:
        if not token:
            raise ValidationError("Verification token is required")
        principal = await asyncio.to_thread(
            self.store.consume_token_hash,
            partition.name,
            TokenKind.EMAIL_VERIFICATION,
            _hash_token(token),
            self._now(),
            {"email_verified": True},
        )
        if principal is None:
            logger.warning("email_verification_invalid_token", partition=partition.name)
            raise _single_use_rejected(VERIFICATION_TOKEN_REJECTED, "Verification token is invalid or has expired")
        if principal.status == AccountStatus.PENDING_VERIFICATION.value:
            promoted = await asyncio.to_thread(
                self.store.update_principal,
                partition.name,
                principal.id,
                {"status": AccountStatus.ACTIVE.value},
            )
            principal = promoted or principal
        logger.info("email_verified", partition=partition.name, principal_id=principal.id)
        return principal


__all__ = [
    "CookieSpec",
    "Identity",
    "SessionManager",
    "SessionResult",
    "ACCESS_TOKEN_REJECTED",
    "REFRESH_TOKEN_REJECTED",
]
