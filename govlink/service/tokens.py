from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from govlink.config import Settings
from govlink.logging import get_logger
from govlink.service.errors import ExpiredTokenError, InvalidTokenError
from govlink.service.partitions import PartitionConfig
from govlink.storage.models import Principal

logger = get_logger(__name__)

ABOUT_TO_EXPIRE_WINDOW = timedelta(minutes=5)


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Claims:
    principal_id: str
    role: str
    partition: str
    token_type: str
    jti: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime

    def as_response(self) -> Dict[str, str]:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(secret: str, signing_input: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    if not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


def is_about_to_expire(
    claims: Claims,
    *,
    within: timedelta = ABOUT_TO_EXPIRE_WINDOW,
    now: Optional[datetime] = None,
) -> bool:
    current = now or datetime.now(timezone.utc)
    return claims.expires_at - current <= within


class TokenIssuer:
    """Mints HS256 access/refresh pairs for a principal in a partition."""

    def __init__(self, settings: Settings) -> None:
        if not settings.jwt_secret:
            raise RuntimeError("JWT signing secret is not configured")
        self.settings = settings

    def _encode(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{_sign(self.settings.jwt_secret, signing_input)}"

    def _payload(
        self,
        principal: Principal,
        partition: PartitionConfig,
        token_type: TokenType,
        issued_at: datetime,
        expires_at: datetime,
    ) -> dict[str, Any]:
        return {
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "sub": principal.id,
            "role": principal.role,
            "partition": partition.name,
            "token_type": token_type.value,
            "jti": str(uuid.uuid4()),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }

    def issue(
        self,
        principal: Principal,
        partition: PartitionConfig,
        *,
        now: Optional[datetime] = None,
    ) -> TokenPair:
        issued_at = now or datetime.now(timezone.utc)
        access_exp = issued_at + partition.access_ttl
        refresh_exp = issued_at + partition.refresh_ttl
        access = self._encode(
            self._payload(principal, partition, TokenType.ACCESS, issued_at, access_exp)
        )
        refresh = self._encode(
            self._payload(principal, partition, TokenType.REFRESH, issued_at, refresh_exp)
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            access_expires_at=access_exp,
            refresh_expires_at=refresh_exp,
        )


class TokenVerifier:
    """Validates signature, issuer, audience, expiry, type and partition. No side effects."""

    def __init__(self, settings: Settings) -> None:
        if not settings.jwt_secret:
            raise RuntimeError("JWT signing secret is not configured")
        self.settings = settings
        self._clock_skew_leeway = timedelta(seconds=settings.jwt_clock_skew_seconds)

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise InvalidTokenError("Malformed token")

        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError("Malformed token")
        # Pin the algorithm so a forged header cannot downgrade verification
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidTokenError("Unsupported token algorithm")

        if not sig_b64.isascii():
            raise InvalidTokenError("Malformed token")
        expected_sig = _sign(self.settings.jwt_secret, f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise InvalidTokenError("Invalid token signature")
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError("Malformed token")
        if not isinstance(payload, dict):
            raise InvalidTokenError("Malformed token")
        return payload

    def verify(
        self,
        token: str,
        partition: PartitionConfig,
        token_type: TokenType,
        *,
        now: Optional[datetime] = None,
    ) -> Claims:
        payload = self._decode(token)

        if payload.get("iss") != self.settings.jwt_issuer:
            raise InvalidTokenError("Invalid token issuer")
        aud = payload.get("aud")
        if isinstance(aud, str):
            valid_aud = aud == self.settings.jwt_audience
        elif isinstance(aud, list):
            valid_aud = self.settings.jwt_audience in aud
        else:
            valid_aud = False
        if not valid_aud:
            raise InvalidTokenError("Invalid token audience")

        try:
            exp_ts = float(payload["exp"])
            iat_ts = float(payload.get("iat", 0))
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError("Token has no valid expiry")
        current = now or datetime.now(timezone.utc)
        if exp_ts <= (current - self._clock_skew_leeway).timestamp():
            raise ExpiredTokenError("Token has expired")

        if payload.get("token_type") != token_type.value:
            raise InvalidTokenError("Wrong token type")
        if payload.get("partition") != partition.name:
            raise InvalidTokenError("Token was not issued for this partition")
        role = payload.get("role")
        if not isinstance(role, str) or not partition.allows_role(role):
            raise InvalidTokenError("Token role is not valid for this partition")
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidTokenError("Token has no subject")

        return Claims(
            principal_id=sub,
            role=role,
            partition=partition.name,
            token_type=token_type.value,
            jti=str(payload.get("jti", "")),
            issued_at=_utc(iat_ts),
            expires_at=_utc(exp_ts),
        )


__all__ = [
    "Claims",
    "TokenIssuer",
    "TokenPair",
    "TokenType",
    "TokenVerifier",
    "extract_bearer",
    "is_about_to_expire",
]
