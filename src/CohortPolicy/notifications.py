"""Typed outcome notifications emitted by registry and policy writes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping, Optional, Protocol, Sequence


class PolicyOutcome(str, Enum):
    """Outcomes a host application may surface to the operator."""

    COHORT_CREATED = "cohort_created"
    COHORT_UPDATED = "cohort_updated"
    COHORT_ARCHIVED = "cohort_archived"
    COHORT_UNARCHIVED = "cohort_unarchived"
    MEMBERSHIP_REFRESHED = "membership_refreshed"
    LINK_ADDED = "link_added"
    LINK_UPDATED = "link_updated"
    LINK_REMOVED = "link_removed"
    DEFAULT_UPDATED = "default_updated"
    POLICY_ENABLED = "policy_enabled"
    POLICY_DISABLED = "policy_disabled"
    POLICY_SAVED = "policy_saved"
    VALIDATION_FAILED = "validation_failed"


@dataclass(frozen=True)
class Notification:
    outcome: PolicyOutcome
    subject: str
    detail: Mapping[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "subject": self.subject,
            "detail": dict(self.detail),
            "timestamp": self.timestamp.isoformat(),
        }


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class InMemoryNotificationSink:
    """Collects notifications; used by tests and the CLI summary output."""

    def __init__(self) -> None:
        self._items: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self._items.append(notification)

    @property
    def notifications(self) -> Sequence[Notification]:
        return tuple(self._items)

    def outcomes(self) -> Sequence[PolicyOutcome]:
        return tuple(item.outcome for item in self._items)


class LoggingNotificationSink:
    """Forwards notifications to a logger as structured records."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.outcome is PolicyOutcome.VALIDATION_FAILED else logging.INFO
        self._logger.log(
            level,
            "policy.%s",
            notification.outcome.value,
            extra={"subject": notification.subject, "detail": dict(notification.detail)},
        )


__all__ = [
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "Notification",
    "NotificationSink",
    "PolicyOutcome",
]
