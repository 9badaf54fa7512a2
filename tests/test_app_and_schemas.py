import importlib

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from govlink import app as app_module
from govlink.api import schemas
from govlink.api.error_handling import _field_errors


@pytest.fixture
def fresh_app(monkeypatch):
    """Reload the app module to respect env overrides for CORS tests."""

    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)
    reloaded = importlib.reload(app_module)
    try:
        yield reloaded.app
    finally:
        importlib.reload(app_module)


def test_security_headers_and_health(fresh_app):
    client = TestClient(fresh_app)
    response = client.get("/healthz", headers={"Origin": "http://localhost:3000"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "healthy"
    assert body["checks"]["store"] == {"status": "healthy", "type": "memory"}
    assert body["checks"]["redis"] == {"status": "not_configured"}
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"].startswith("no-store")
    assert "Strict-Transport-Security" not in response.headers
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_health_reports_store_failure(runtime):
    client = TestClient(app_module.app)

    def _boom():
        raise OSError("disk unavailable")

    runtime.store.verify_connection = _boom
    response = client.get("/healthz")
    assert response.status_code == 503
    assert response.json()["checks"]["store"]["status"] == "unhealthy"


def test_request_id_is_echoed():
    client = TestClient(app_module.app)
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.get("/healthz").headers["X-Request-ID"]
    assert generated and generated != "req-123"


def test_unknown_route_uses_envelope():
    client = TestClient(app_module.app)
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Not Found"}


def test_allowed_origins_default(monkeypatch):
    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)
    reloaded = importlib.reload(app_module)
    try:
        assert reloaded._allowed_origins() == ["http://localhost:3000", "http://127.0.0.1:3000"]
    finally:
        importlib.reload(app_module)


def test_allowed_origins_override(monkeypatch):
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://govlink.gov.lk, https://admin.govlink.gov.lk")
    reloaded = importlib.reload(app_module)
    try:
        assert reloaded._allowed_origins() == [
            "https://govlink.gov.lk",
            "https://admin.govlink.gov.lk",
        ]
    finally:
        monkeypatch.delenv("CORS_ALLOW_ORIGINS")
        importlib.reload(app_module)


def test_envelope_drops_empty_fields():
    assert schemas.envelope(True, "ok") == {"success": True, "message": "ok"}
    assert schemas.envelope(False, "bad", errors=["x"]) == {
        "success": False,
        "message": "bad",
        "errors": ["x"],
    }
    assert schemas.envelope(True, tokenExpiresSoon=False) == {"success": True, "tokenExpiresSoon": False}


def test_login_request_normalizes_email():
    body = schemas.LoginRequest(email="  Someone@Example.LK ", password="x")
    assert body.email == "someone@example.lk"

    for bad in ("plain", "a@b", "a@@b.lk", "@example.lk", "a b@example.lk"):
        with pytest.raises(ValidationError):
            schemas.LoginRequest(email=bad, password="x")

    with pytest.raises(ValidationError):
        schemas.LoginRequest(email="someone@example.lk", password="")


def test_email_strips_zero_width_characters():
    body = schemas.ForgotPasswordRequest(email="user\u200b@example.lk")
    assert body.email == "user@example.lk"


def test_reset_request_aliases():
    body = schemas.ResetPasswordRequest.model_validate(
        {"token": "t", "newPassword": "A1b2c3d4!", "confirmPassword": "A1b2c3d4!"}
    )
    assert body.new_password == body.confirm_password == "A1b2c3d4!"


def test_profile_schemas_only_return_sent_fields():
    update = schemas.UserProfileUpdate.model_validate({"preferredLanguage": "si"})
    assert update.changes() == {"preferredLanguage": "si"}

    with pytest.raises(ValidationError):
        schemas.UserProfileUpdate.model_validate({"preferredLanguage": "fr"})
    with pytest.raises(ValidationError):
        schemas.UserProfileUpdate.model_validate({"email": "new@example.lk"})


def test_profile_schemas_drop_explicit_nulls():
    update = schemas.UserProfileUpdate.model_validate({"fullName": None, "preferredLanguage": "ta"})
    assert update.changes() == {"preferredLanguage": "ta"}
    assert schemas.AgentProfileUpdate.model_validate({"phoneNumber": None}).changes() == {}


@pytest.mark.parametrize("phone", ["+94771234567", "0112 345 678", "077-123-4567"])
def test_sri_lankan_phone_numbers_accepted(phone):
    update = schemas.DepartmentProfileUpdate.model_validate({"contactPhone": phone})
    assert update.changes()["contactPhone"].replace("+94", "0").isdigit()


@pytest.mark.parametrize("phone", ["12345", "+15551234567", "07712345678"])
def test_invalid_phone_numbers_rejected(phone):
    with pytest.raises(ValidationError):
        schemas.AgentProfileUpdate.model_validate({"phoneNumber": phone})


def test_every_partition_has_a_profile_schema():
    assert set(schemas.PROFILE_UPDATE_SCHEMAS) == {"user", "agent", "admin", "department"}


def test_field_errors_flatten_locations():
    errors = _field_errors(
        [
            {"loc": ("body", "email"), "msg": "Value error, Please provide a valid email address"},
            {"loc": ("query", "token"), "msg": "String should have at most 256 characters"},
            {"loc": (), "msg": "Field required"},
        ]
    )
    assert errors == [
        "email: Please provide a valid email address",
        "token: String should have at most 256 characters",
        "Field required",
    ]
