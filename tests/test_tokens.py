"""Unit tests for token issuing and verification."""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from govlink.config import Settings
from govlink.service.errors import ExpiredTokenError, InvalidTokenError
from govlink.service.partitions import get_partition
from govlink.service.tokens import (
    TokenIssuer,
    TokenType,
    TokenVerifier,
    _sign,
    extract_bearer,
    is_about_to_expire,
)
from govlink.storage.models import Principal

SECRET = "unit-test-secret-with-at-least-thirty-two-chars"


@pytest.fixture
def settings():
    return Settings(jwt_secret=SECRET)


@pytest.fixture
def issuer(settings):
    return TokenIssuer(settings)


@pytest.fixture
def verifier(settings):
    return TokenVerifier(settings)


def _principal(partition="user", role="user"):
    return Principal(id="p-123", partition=partition, email="someone@example.lk", role=role)


def _payload(token):
    segment = token.split(".")[1]
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


def _reencode(token, secret, **overrides):
    header_b64, payload_b64, _ = token.split(".")
    payload = _payload(token)
    payload.update(overrides)
    body = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode().rstrip("=")
    signing_input = f"{header_b64}.{body}"
    return f"{signing_input}.{_sign(secret, signing_input)}"


class TestIssue:
    def test_claims_carry_partition_role_and_type(self, issuer):
        tokens = issuer.issue(_principal(), get_partition("user"))
        access = _payload(tokens.access_token)
        refresh = _payload(tokens.refresh_token)

        assert access["sub"] == "p-123"
        assert access["partition"] == "user"
        assert access["role"] == "user"
        assert access["token_type"] == "access"
        assert refresh["token_type"] == "refresh"
        assert access["iss"] == "govlink-sri-lanka"
        assert access["aud"] == "govlink-users"
        assert access["jti"] != refresh["jti"]

    def test_lifetimes_follow_partition(self, issuer):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        user_tokens = issuer.issue(_principal(), get_partition("user"), now=now)
        dept_tokens = issuer.issue(
            _principal("department", "department"), get_partition("department"), now=now
        )

        assert user_tokens.access_expires_at - now == timedelta(minutes=15)
        assert user_tokens.refresh_expires_at - now == timedelta(days=7)
        assert dept_tokens.access_expires_at - now == timedelta(hours=24)

    def test_as_response_uses_camel_case(self, issuer):
        tokens = issuer.issue(_principal(), get_partition("user"))
        assert tokens.as_response() == {
            "accessToken": tokens.access_token,
            "refreshToken": tokens.refresh_token,
        }


class TestVerify:
    def test_round_trip(self, issuer, verifier):
        partition = get_partition("admin")
        tokens = issuer.issue(_principal("admin", "superadmin"), partition)
        claims = verifier.verify(tokens.access_token, partition, TokenType.ACCESS)

        assert claims.principal_id == "p-123"
        assert claims.role == "superadmin"
        assert claims.partition == "admin"

    def test_rejects_other_partition(self, issuer, verifier):
        tokens = issuer.issue(_principal(), get_partition("user"))
        with pytest.raises(InvalidTokenError):
            verifier.verify(tokens.access_token, get_partition("admin"), TokenType.ACCESS)

    def test_rejects_wrong_token_type(self, issuer, verifier):
        partition = get_partition("user")
        tokens = issuer.issue(_principal(), partition)
        with pytest.raises(InvalidTokenError):
            verifier.verify(tokens.refresh_token, partition, TokenType.ACCESS)
        with pytest.raises(InvalidTokenError):
            verifier.verify(tokens.access_token, partition, TokenType.REFRESH)

    def test_expired_token_is_distinguished(self, issuer, verifier):
        partition = get_partition("user")
        issued = datetime.now(timezone.utc) - timedelta(hours=1)
        tokens = issuer.issue(_principal(), partition, now=issued)
        with pytest.raises(ExpiredTokenError):
            verifier.verify(tokens.access_token, partition, TokenType.ACCESS)

    def test_clock_skew_leeway(self, issuer, verifier):
        partition = get_partition("user")
        tokens = issuer.issue(_principal(), partition)
        just_after_expiry = tokens.access_expires_at + timedelta(seconds=10)
        claims = verifier.verify(
            tokens.access_token, partition, TokenType.ACCESS, now=just_after_expiry
        )
        assert claims.principal_id == "p-123"

    def test_rejects_tampered_signature(self, issuer, verifier):
        partition = get_partition("user")
        tokens = issuer.issue(_principal(), partition)
        forged = _reencode(tokens.access_token, "another-secret-that-is-also-long-enough", role="user")
        with pytest.raises(InvalidTokenError):
            verifier.verify(forged, partition, TokenType.ACCESS)

    def test_rejects_role_outside_partition(self, issuer, verifier):
        partition = get_partition("admin")
        tokens = issuer.issue(_principal("admin", "admin"), partition)
        elevated = _reencode(tokens.access_token, SECRET, role="user")
        with pytest.raises(InvalidTokenError):
            verifier.verify(elevated, partition, TokenType.ACCESS)

    def test_rejects_wrong_issuer_and_audience(self, issuer, verifier):
        partition = get_partition("user")
        tokens = issuer.issue(_principal(), partition)
        with pytest.raises(InvalidTokenError):
            verifier.verify(_reencode(tokens.access_token, SECRET, iss="elsewhere"), partition, TokenType.ACCESS)
        with pytest.raises(InvalidTokenError):
            verifier.verify(_reencode(tokens.access_token, SECRET, aud="others"), partition, TokenType.ACCESS)

    def test_rejects_alg_none(self, issuer, verifier):
        partition = get_partition("user")
        tokens = issuer.issue(_principal(), partition)
        _, payload_b64, _ = tokens.access_token.split(".")
        header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').decode().rstrip("=")
        with pytest.raises(InvalidTokenError):
            verifier.verify(f"{header}.{payload_b64}.", partition, TokenType.ACCESS)

    def test_rejects_non_ascii_signature(self, issuer, verifier):
        partition = get_partition("user")
        tokens = issuer.issue(_principal(), partition)
        header_b64, payload_b64, _ = tokens.access_token.split(".")
        with pytest.raises(InvalidTokenError) as excinfo:
            verifier.verify(f"{header_b64}.{payload_b64}.sigé", partition, TokenType.ACCESS)
        assert excinfo.value.message == "Malformed token"

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b", "a.b.c.d", "not.a.jwt"])
    def test_rejects_malformed(self, verifier, garbage):
        with pytest.raises(InvalidTokenError):
            verifier.verify(garbage, get_partition("user"), TokenType.ACCESS)


def test_extract_bearer():
    assert extract_bearer("Bearer abc.def.ghi") == "abc.def.ghi"
    assert extract_bearer("bearer abc") == "abc"
    assert extract_bearer("Basic Zm9vOmJhcg==") is None
    assert extract_bearer("Bearer ") is None
    assert extract_bearer(None) is None


def test_is_about_to_expire(issuer, verifier):
    partition = get_partition("user")
    tokens = issuer.issue(_principal(), partition)
    claims = verifier.verify(tokens.access_token, partition, TokenType.ACCESS)

    assert not is_about_to_expire(claims, now=claims.issued_at)
    assert is_about_to_expire(claims, now=claims.expires_at - timedelta(minutes=4))
