from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountStatus(str, Enum):
    """Lifecycle states shared by every partition's principals."""

    ACTIVE = "ACTIVE"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    SUSPENDED = "SUSPENDED"
    DEACTIVATED = "DEACTIVATED"
    UNDER_REVIEW = "UNDER_REVIEW"
    INACTIVE = "INACTIVE"


class TokenKind(str, Enum):
    """Single-use token slots persisted on a principal."""

    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


# Never leave the storage layer
SECRET_FIELDS = frozenset(
    {
        "password_hash",
        "password_algo",
        "password_reset_token_hash",
        "password_reset_expires_at",
        "email_verification_token_hash",
        "email_verification_expires_at",
        "failed_login_attempts",
        "locked_until",
    }
)

DATETIME_FIELDS = frozenset(
    {
        "locked_until",
        "last_login_at",
        "created_at",
        "updated_at",
        "password_reset_expires_at",
        "email_verification_expires_at",
    }
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class Principal:
    id: str
    partition: str
    email: str
    password_hash: Optional[str] = None
    password_algo: Optional[str] = None
    role: str = "user"
    status: str = AccountStatus.ACTIVE.value
    email_verified: bool = False
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    password_reset_token_hash: Optional[str] = None
    password_reset_expires_at: Optional[datetime] = None
    email_verification_token_hash: Optional[str] = None
    email_verification_expires_at: Optional[datetime] = None
    profile: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def to_public(self) -> Dict[str, Any]:
        """Client-facing view: camelCase keys, profile fields merged, secrets dropped."""
        public: Dict[str, Any] = {}
        for f in fields(self):
            if f.name in SECRET_FIELDS or f.name == "profile":
                continue
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            public[_camel(f.name)] = value
        for key, value in (self.profile or {}).items():
            public.setdefault(key, value)
        return public


__all__ = [
    "AccountStatus",
    "Principal",
    "TokenKind",
    "SECRET_FIELDS",
    "DATETIME_FIELDS",
    "utcnow",
]
