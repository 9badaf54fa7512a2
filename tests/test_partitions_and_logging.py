import pytest

from govlink.logging import _redact_pii, hash_identifier
from govlink.service.errors import AccountNotActiveError, NotFoundError
from govlink.service.partitions import PARTITIONS, get_partition
from govlink.service.status_gate import check_account_status
from govlink.storage.models import Principal


def test_registry_covers_every_portal():
    assert set(PARTITIONS) == {"user", "agent", "admin", "department"}
    cookies = [(p.access_cookie, p.refresh_cookie) for p in PARTITIONS.values()]
    flat = [name for pair in cookies for name in pair]
    assert len(flat) == len(set(flat))


def test_partition_policies():
    admin = get_partition("admin")
    assert admin.allows_role("superadmin") and admin.allows_role("admin")
    assert not admin.allows_role("user")
    assert admin.max_failed_logins == 3
    assert admin.login_rate_limit == 3
    assert get_partition("user").login_rate_limit is None
    assert get_partition("department").access_max_age == 86400
    assert get_partition("agent").require_verified_email
    assert get_partition(" USER ").name == "user"


def test_unknown_partition():
    with pytest.raises(NotFoundError):
        get_partition("superadmin")


@pytest.mark.parametrize(
    "status,message",
    [
        ("SUSPENDED", "Account is suspended. Please contact support."),
        ("DEACTIVATED", "Account is deactivated. Please contact support."),
        ("UNDER_REVIEW", "Account is under review. You will be notified once it is approved."),
    ],
)
def test_status_gate_messages(status, message):
    principal = Principal(id="1", partition="agent", email="a@gov.lk", role="agent", status=status)
    with pytest.raises(AccountNotActiveError) as excinfo:
        check_account_status(get_partition("agent"), principal)
    assert excinfo.value.message == message


def test_status_gate_allows_pending_user_only():
    pending = Principal(id="1", partition="user", email="a@example.lk", status="PENDING_VERIFICATION")
    check_account_status(get_partition("user"), pending)
    with pytest.raises(AccountNotActiveError):
        check_account_status(get_partition("department"), pending)


def test_redact_pii_masks_credentials_but_not_hashes():
    event = _redact_pii(
        None,
        "info",
        {
            "event": "login_failed",
            "password": "hunter22",
            "refresh_token": "abcdefgh",
            "account_hash": "0123456789abcdef",
            "token_type": "refresh",
        },
    )
    assert event["password"] == "hu***22"
    assert event["refresh_token"] == "ab***gh"
    assert event["account_hash"] == "0123456789abcdef"
    assert event["token_type"] == "refresh"
    assert event["event"] == "login_failed"


def test_hash_identifier_is_stable_and_case_insensitive():
    assert hash_identifier("Someone@Example.lk") == hash_identifier(" someone@example.lk")
    assert len(hash_identifier("x")) == 16
