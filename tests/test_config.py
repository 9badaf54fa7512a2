import stat

import pytest
from pydantic import ValidationError

from govlink.config import Environment, Settings, get_settings, reset_settings_cache

LONG_SECRET = "x" * 40


def test_short_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="too-short")


def test_production_requires_secret(monkeypatch, tmp_path):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    with pytest.raises(ValidationError):
        Settings(environment="production", jwt_secret=None)


def test_generated_secret_is_persisted(monkeypatch, tmp_path):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    first = Settings(jwt_secret=None)
    second = Settings(jwt_secret=None)

    secret_path = tmp_path / ".jwt_secret"
    assert first.jwt_secret == second.jwt_secret
    assert secret_path.read_text() == first.jwt_secret
    assert stat.S_IMODE(secret_path.stat().st_mode) == 0o600


def test_environment_is_case_insensitive():
    settings = Settings(environment="PRODUCTION", jwt_secret=LONG_SECRET)
    assert settings.environment == Environment.PRODUCTION
    assert settings.is_production


def test_secure_cookies_default_follows_environment():
    assert Settings(environment="production", jwt_secret=LONG_SECRET).secure_cookies is True
    assert Settings(environment="development", jwt_secret=LONG_SECRET).secure_cookies is False
    assert Settings(
        environment="development", jwt_secret=LONG_SECRET, cookie_secure=True
    ).secure_cookies is True


def test_from_env(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "  ")
    monkeypatch.setenv("AUTH_RATE_LIMIT_ATTEMPTS", "3")
    monkeypatch.setenv("ROTATE_REFRESH_TOKENS", "false")
    monkeypatch.setenv("JWT_ISSUER", "govlink-test")

    settings = Settings.from_env()
    assert settings.redis_url is None
    assert settings.auth_rate_limit_attempts == 3
    assert settings.rotate_refresh_tokens is False
    assert settings.jwt_issuer == "govlink-test"


def test_clock_skew_bounds():
    with pytest.raises(ValidationError):
        Settings(jwt_secret=LONG_SECRET, jwt_clock_skew_seconds=3600)


def test_get_settings_is_cached_until_reset(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("SERVICE_NAME", "GovLink Staging")
    reset_settings_cache()
    assert get_settings().service_name == "GovLink Staging"
    reset_settings_cache()
