from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from govlink.logging import get_logger
from govlink.storage.models import Principal, TokenKind

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password1",
        "password123",
        "123456",
        "12345678",
        "123456789",
        "1234567890",
        "qwerty",
        "qwerty123",
        "abc123",
        "111111",
        "letmein",
        "welcome",
        "welcome1",
        "admin",
        "admin123",
        "iloveyou",
        "monkey",
        "dragon",
        "sunshine",
        "princess",
        "football",
        "baseball",
        "passw0rd",
        "p@ssw0rd",
        "srilanka",
        "srilanka123",
        "colombo",
        "govlink",
    }
)


class PrincipalStore(Protocol):
    def create_principal(
        self,
        partition: str,
        email: str,
        *,
        password_hash: Optional[str] = None,
        password_algo: Optional[str] = None,
        role: str = "user",
        status: str = "ACTIVE",
        email_verified: bool = False,
        profile: Optional[Dict[str, Any]] = None,
    ) -> Principal: ...

    def get_principal(self, partition: str, principal_id: str) -> Optional[Principal]: ...

    def get_principal_by_email(self, partition: str, email: str) -> Optional[Principal]: ...

    def list_principals(
        self, partition: str, *, status: Optional[str] = None, limit: int = 100
    ) -> List[Principal]: ...

    def update_principal(
        self, partition: str, principal_id: str, changes: Mapping[str, Any]
    ) -> Optional[Principal]: ...

    def consume_token_hash(
        self,
        partition: str,
        kind: TokenKind | str,
        token_hash: str,
        now: datetime,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Principal]: ...

    def verify_connection(self) -> None: ...


@dataclass
class PasswordCheck:
    errors: List[str] = field(default_factory=list)
    score: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def check_password_policy(password: str) -> PasswordCheck:
    """Score a candidate password (0-4) and list every rule it breaks."""

    check = PasswordCheck()
    if len(password) < MIN_PASSWORD_LENGTH:
        check.errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        check.errors.append(f"Password must be at most {MAX_PASSWORD_LENGTH} characters long")
    has_lower = re.search(r"[a-z]", password) is not None
    has_upper = re.search(r"[A-Z]", password) is not None
    has_digit = re.search(r"\d", password) is not None
    has_symbol = re.search(r"[^A-Za-z0-9]", password) is not None
    if not has_lower:
        check.errors.append("Password must contain at least one lowercase letter")
    if not has_upper:
        check.errors.append("Password must contain at least one uppercase letter")
    if not has_digit:
        check.errors.append("Password must contain at least one number")
    if password.lower() in COMMON_PASSWORDS:
        check.errors.append("Password is too common. Please choose a stronger password")
        return check

    check.score = sum(
        [
            len(password) >= 12,
            has_lower and has_upper,
            has_digit,
            has_symbol,
        ]
    )
    return check


class CredentialStore:
    """Partition-aware lookup and password verification over a principal store."""

    def __init__(self, store: PrincipalStore) -> None:
        self.store = store
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        # verified against when the email is unknown so both paths cost one argon2 run
        self._dummy_hash = self._pwd_hasher.hash("govlink-dummy-password")

    def find_by_email(self, partition: str, email: str) -> Optional[Principal]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self.store.get_principal_by_email(partition, normalized)

    def hash_password(self, password: str) -> Tuple[str, str]:
        return self._pwd_hasher.hash(password), PASSWORD_ALGO

    def verify_password(self, principal: Optional[Principal], plaintext: str) -> bool:
        if principal is None or not principal.password_hash:
            try:
                self._pwd_hasher.verify(self._dummy_hash, plaintext or "")
            except VerificationError:
                pass
            return False
        if principal.password_algo and principal.password_algo != PASSWORD_ALGO:
            logger.warning(
                "password_algo_mismatch",
                principal_id=principal.id,
                algo=principal.password_algo,
            )
            return False
        try:
            return self._pwd_hasher.verify(principal.password_hash, plaintext)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            logger.info(
                "password_verification_failed",
                principal_id=principal.id,
                partition=principal.partition,
            )
            return False

    def needs_rehash(self, principal: Principal) -> bool:
        if not principal.password_hash:
            return False
        try:
            return self._pwd_hasher.check_needs_rehash(principal.password_hash)
        except InvalidHash:
            return False


__all__ = [
    "CredentialStore",
    "PasswordCheck",
    "PrincipalStore",
    "check_password_policy",
    "normalize_email",
]
