"""Integration status vocabulary and the error-category reduction."""
from __future__ import annotations
from enum import Enum
from typing import Iterable

from core.integrations.errors import ErrorCategory


class IntegrationStatus(str, Enum):
    CONNECTED = "connected"
    ERROR = "error"
    BLOCKED = "blocked"
    RECONNECT_REQUIRED = "reconnect_required"


# Every sync attempt may move any state to any state; nothing else exists.
ALLOWED_TRANSITIONS: dict[IntegrationStatus, frozenset[IntegrationStatus]] = {
    status: frozenset(IntegrationStatus) for status in IntegrationStatus
}

# Statuses picked up by the scheduled batch driver.
BATCH_STATUSES = (IntegrationStatus.CONNECTED, IntegrationStatus.ERROR)


def can_transition(current: IntegrationStatus | str | None, target: IntegrationStatus | str) -> bool:
    """``None`` means no integration record yet; only connect creates one."""
    target = IntegrationStatus(target)
    if current is None:
        return True
    return target in ALLOWED_TRANSITIONS.get(IntegrationStatus(current), frozenset())


def reduce_status(categories: Iterable[ErrorCategory | str], sessionless: bool = False) -> IntegrationStatus:
    """
    Collapse the error categories of one sync into the integration status.

    PERMISSION wins (reconnecting will not help), then AUTH unless the
    adapter is sessionless, then any error at all.
    """
    found = {ErrorCategory(c) for c in categories}
    if ErrorCategory.PERMISSION in found:
        return IntegrationStatus.BLOCKED
    if ErrorCategory.AUTH in found and not sessionless:
        return IntegrationStatus.RECONNECT_REQUIRED
    if found:
        return IntegrationStatus.ERROR
    return IntegrationStatus.CONNECTED
