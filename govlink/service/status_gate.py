from __future__ import annotations

from govlink.service.errors import AccountNotActiveError
from govlink.service.partitions import PartitionConfig
from govlink.storage.models import AccountStatus, Principal

_STATUS_MESSAGES = {
    AccountStatus.SUSPENDED.value: "Account is suspended. Please contact support.",
    AccountStatus.DEACTIVATED.value: "Account is deactivated. Please contact support.",
    AccountStatus.INACTIVE.value: "Account is inactive. Please contact your administrator.",
    AccountStatus.UNDER_REVIEW.value: "Account is under review. You will be notified once it is approved.",
    AccountStatus.PENDING_VERIFICATION.value: "Account is pending verification. Please verify your email.",
}


def check_account_status(partition: PartitionConfig, principal: Principal) -> None:
    """Raise AccountNotActiveError unless the principal may authenticate in ``partition``."""
    if partition.allows_status(principal.status):
        return
    raise AccountNotActiveError(principal.status, _STATUS_MESSAGES.get(principal.status))


__all__ = ["check_account_status"]
