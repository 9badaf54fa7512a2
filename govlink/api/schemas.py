from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PASSWORD_INPUT_LENGTH = 1024


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi-override characters, then NFKC-normalize."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


class Envelope(BaseModel):
    """Response body shared by every endpoint: ``{success, message, errors?, ...}``."""

    success: bool
    message: Optional[str] = None
    errors: Optional[List[str]] = None

    model_config = ConfigDict(extra="allow")

    def render(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def envelope(success: bool, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    return Envelope(success=success, message=message, **extra).render()


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("Email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if not normalized:
        raise ValueError("Email is required")
    if len(normalized) > 254:
        raise ValueError("Email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or len(local) > 64:
        raise ValueError("Please provide a valid email address")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("Please provide a valid email address")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("Please provide a valid email address")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("Please provide a valid email address")
    return normalized


class _EmailBody(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class LoginRequest(_EmailBody):
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_INPUT_LENGTH)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken", max_length=4096)

    model_config = ConfigDict(populate_by_name=True)


class ForgotPasswordRequest(_EmailBody):
    pass


class VerifyEmailRequest(_EmailBody):
    pass


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)
    new_password: str = Field(..., alias="newPassword", max_length=MAX_PASSWORD_INPUT_LENGTH)
    confirm_password: str = Field(..., alias="confirmPassword", max_length=MAX_PASSWORD_INPUT_LENGTH)

    model_config = ConfigDict(populate_by_name=True)


# Sri Lankan numbers: +94XXXXXXXXX or 0XXXXXXXXX
_PHONE_PATTERN = re.compile(r"^(?:\+94|0)\d{9}$")

SRI_LANKA_DISTRICTS = frozenset(
    {
        "Ampara", "Anuradhapura", "Badulla", "Batticaloa", "Colombo", "Galle",
        "Gampaha", "Hambantota", "Jaffna", "Kalutara", "Kandy", "Kegalle",
        "Kilinochchi", "Kurunegala", "Mannar", "Matale", "Matara", "Monaragala",
        "Mullaitivu", "Nuwara Eliya", "Polonnaruwa", "Puttalam", "Ratnapura",
        "Trincomalee", "Vavuniya",
    }
)


def _validate_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    compact = re.sub(r"[\s-]", "", value)
    if not _PHONE_PATTERN.match(compact):
        raise ValueError("Please provide a valid Sri Lankan phone number")
    return compact


class _ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", str_strip_whitespace=True)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)


class UserProfileUpdate(_ProfileUpdate):
    full_name: Optional[str] = Field(default=None, alias="fullName", min_length=2, max_length=100)
    mobile_number: Optional[str] = Field(default=None, alias="mobileNumber")
    preferred_language: Optional[Literal["en", "si", "ta"]] = Field(
        default=None, alias="preferredLanguage"
    )

    @field_validator("mobile_number")
    @classmethod
    def _check_mobile(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)


class AgentProfileUpdate(_ProfileUpdate):
    full_name: Optional[str] = Field(default=None, alias="fullName", min_length=2, max_length=100)
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    duties: Optional[List[str]] = Field(default=None, max_length=50)
    specialization: Optional[List[str]] = Field(default=None, max_length=50)
    assigned_districts: Optional[List[str]] = Field(default=None, alias="assignedDistricts")

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)

    @field_validator("assigned_districts")
    @classmethod
    def _check_districts(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        unknown = [d for d in value if d not in SRI_LANKA_DISTRICTS]
        if unknown:
            raise ValueError(f"Unknown district(s): {', '.join(unknown)}")
        return value


class AdminProfileUpdate(_ProfileUpdate):
    full_name: Optional[str] = Field(default=None, alias="fullName", min_length=2, max_length=100)


class DepartmentProfileUpdate(_ProfileUpdate):
    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    contact_phone: Optional[str] = Field(default=None, alias="contactPhone")
    address: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("contact_phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)


PROFILE_UPDATE_SCHEMAS: Dict[str, Type[_ProfileUpdate]] = {
    "user": UserProfileUpdate,
    "agent": AgentProfileUpdate,
    "admin": AdminProfileUpdate,
    "department": DepartmentProfileUpdate,
}
