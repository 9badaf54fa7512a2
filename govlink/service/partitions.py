"""Partition registry.

A partition is one role-scoped authentication realm. Everything that differs
between the user, agent, admin and department portals (cookie names, token
lifetimes, which account states may sign in, lockout policy) lives in a
``PartitionConfig``; the session code itself is shared.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional

from govlink.service.errors import NotFoundError
from govlink.storage.models import AccountStatus


class Partition(str, Enum):
    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"
    DEPARTMENT = "department"


class AdminRole(str, Enum):
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


@dataclass(frozen=True)
class PartitionConfig:
    name: str
    collection_name: str
    access_cookie: str
    refresh_cookie: str
    access_ttl: timedelta
    refresh_ttl: timedelta
    allowed_statuses: FrozenSet[str]
    roles: FrozenSet[str]
    default_role: str
    response_key: str
    max_failed_logins: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)
    require_verified_email: bool = False
    # overrides the global login throttle; None uses AUTH_RATE_LIMIT_ATTEMPTS
    login_rate_limit: Optional[int] = None

    @property
    def access_max_age(self) -> int:
        return int(self.access_ttl.total_seconds())

    @property
    def refresh_max_age(self) -> int:
        return int(self.refresh_ttl.total_seconds())

    def allows_status(self, status: str) -> bool:
        return status in self.allowed_statuses

    def allows_role(self, role: str) -> bool:
        return role in self.roles


_ACTIVE_ONLY = frozenset({AccountStatus.ACTIVE.value})

PARTITIONS: Dict[str, PartitionConfig] = {
    Partition.USER.value: PartitionConfig(
        name=Partition.USER.value,
        collection_name="users",
        access_cookie="access_token",
        refresh_cookie="refresh_token",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        allowed_statuses=frozenset(
            {AccountStatus.ACTIVE.value, AccountStatus.PENDING_VERIFICATION.value}
        ),
        roles=frozenset({"user"}),
        default_role="user",
        response_key="user",
    ),
    Partition.AGENT.value: PartitionConfig(
        name=Partition.AGENT.value,
        collection_name="agents",
        access_cookie="agent_access_token",
        refresh_cookie="agent_refresh_token",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        allowed_statuses=_ACTIVE_ONLY,
        roles=frozenset({"agent"}),
        default_role="agent",
        response_key="agent",
        require_verified_email=True,
    ),
    Partition.ADMIN.value: PartitionConfig(
        name=Partition.ADMIN.value,
        collection_name="admins",
        access_cookie="admin_access_token",
        refresh_cookie="admin_refresh_token",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        allowed_statuses=_ACTIVE_ONLY,
        roles=frozenset({AdminRole.ADMIN.value, AdminRole.SUPERADMIN.value}),
        default_role=AdminRole.ADMIN.value,
        response_key="admin",
        max_failed_logins=3,
        lockout_duration=timedelta(hours=1),
        login_rate_limit=3,
    ),
    Partition.DEPARTMENT.value: PartitionConfig(
        name=Partition.DEPARTMENT.value,
        collection_name="departments",
        access_cookie="department_access_token",
        refresh_cookie="department_refresh_token",
        access_ttl=timedelta(hours=24),
        refresh_ttl=timedelta(days=7),
        allowed_statuses=_ACTIVE_ONLY,
        roles=frozenset({"department"}),
        default_role="department",
        response_key="department",
    ),
}


def get_partition(name: str) -> PartitionConfig:
    config = PARTITIONS.get((name or "").strip().lower())
    if config is None:
        raise NotFoundError(f"Unknown authentication partition: {name}")
    return config


__all__ = ["AdminRole", "Partition", "PartitionConfig", "PARTITIONS", "get_partition"]
