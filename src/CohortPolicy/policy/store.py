"""Per-policy store of cohort overrides with all-or-nothing saves."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from CohortPolicy.cohorts.registry import CohortRegistry
from CohortPolicy.cohorts.telemetry import CohortTelemetry
from CohortPolicy.exceptions import (
    DuplicateLinkError,
    InvalidScalarError,
    LinkNotFoundError,
    OutOfScopeCohortError,
    PolicySaveError,
    Violation,
)
from CohortPolicy.notifications import Notification, NotificationSink, PolicyOutcome
from CohortPolicy.policy.models import (
    LinkedOverride,
    PolicyConfig,
    Scalar,
    ValidationReport,
    normalise_scalar,
    validate_scalar,
)
from CohortPolicy.scopes import PolicyKind

logger = logging.getLogger(__name__)


class PolicyRepository(Protocol):
    """Policy persistence collaborator; one configuration per policy kind."""

    def load(self, kind: PolicyKind) -> Optional[PolicyConfig]:
        ...

    def save(self, config: PolicyConfig) -> None:
        ...


class PolicyLinkStore:
    """Holds the committed and working configuration of one policy kind.

    Operator edits (add/update/remove/set default) apply to the working copy
    after single-operation validation. :meth:`save` validates the whole
    working copy and either publishes it atomically or rejects it with every
    violation. Resolution reads :attr:`committed`, which is only ever
    replaced wholesale.
    """

    def __init__(
        self,
        kind: PolicyKind,
        registry: CohortRegistry,
        *,
        config: Optional[PolicyConfig] = None,
        repository: Optional[PolicyRepository] = None,
        sink: Optional[NotificationSink] = None,
        telemetry: Optional[CohortTelemetry] = None,
    ) -> None:
        if config is not None and config.kind is not kind:
            raise ValueError(f"configuration kind {config.kind.value} does not match store kind {kind.value}")
        self._kind = kind
        self._registry = registry
        self._repository = repository
        self._sink = sink
        self._telemetry = telemetry
        self._lock = threading.RLock()
        self._committed = config or PolicyConfig.empty(kind)
        self._working = self._committed

    @classmethod
    def load(
        cls,
        kind: PolicyKind,
        registry: CohortRegistry,
        repository: PolicyRepository,
        *,
        default: Optional[Scalar] = None,
        sink: Optional[NotificationSink] = None,
        telemetry: Optional[CohortTelemetry] = None,
    ) -> "PolicyLinkStore":
        config = repository.load(kind) or PolicyConfig.empty(kind, default)
        return cls(kind, registry, config=config, repository=repository, sink=sink, telemetry=telemetry)

    @property
    def kind(self) -> PolicyKind:
        return self._kind

    @property
    def committed(self) -> PolicyConfig:
        return self._committed

    @property
    def working(self) -> PolicyConfig:
        return self._working

    @property
    def dirty(self) -> bool:
        return self._working != self._committed

    # ----------------------------------------------------------- edit operations
    def add_override(self, cohort_id: str, scalar: Scalar) -> LinkedOverride:
        with self._lock:
            self._check_scalar(scalar, cohort_id)
            if cohort_id in self._working.linked_ids():
                raise DuplicateLinkError(cohort_id)
            cohort = self._registry.get(cohort_id)
            if not self._registry.scopes.covers(self._kind, cohort.step_id):
                raise OutOfScopeCohortError(cohort_id, cohort.step_id)
            override = LinkedOverride(cohort_id=cohort_id, scalar=normalise_scalar(self._kind, scalar))
            self._working = self._working.with_overrides([*self._working.linked_overrides, override])
        self._emit(PolicyOutcome.LINK_ADDED, cohort_id, scalar=override.scalar)
        return override

    def update_override(self, cohort_id: str, scalar: Scalar) -> LinkedOverride:
        with self._lock:
            self._check_scalar(scalar, cohort_id)
            if cohort_id not in self._working.linked_ids():
                raise LinkNotFoundError(cohort_id)
            override = LinkedOverride(cohort_id=cohort_id, scalar=normalise_scalar(self._kind, scalar))
            self._working = self._working.with_overrides(
                override if item.cohort_id == cohort_id else item for item in self._working.linked_overrides
            )
        self._emit(PolicyOutcome.LINK_UPDATED, cohort_id, scalar=override.scalar)
        return override

    def remove_override(self, cohort_id: str) -> None:
        with self._lock:
            if cohort_id not in self._working.linked_ids():
                raise LinkNotFoundError(cohort_id)
            self._working = self._working.with_overrides(
                item for item in self._working.linked_overrides if item.cohort_id != cohort_id
            )
        self._emit(PolicyOutcome.LINK_REMOVED, cohort_id)

    def set_default(self, scalar: Scalar) -> None:
        with self._lock:
            violations = validate_scalar(self._kind, scalar, field="default")
            if violations:
                raise InvalidScalarError(violations)
            self._working = self._working.with_default(normalise_scalar(self._kind, scalar))
        self._emit(PolicyOutcome.DEFAULT_UPDATED, self._kind.value, default=self._working.default)

    def set_enabled(self, enabled: bool) -> None:
        """Switch the policy on or off; overrides and the default are kept."""

        if not enabled and not self._kind.toggleable:
            raise ValueError(f"{self._kind.label} cannot be disabled")
        with self._lock:
            self._working = self._working.with_enabled(enabled)
        self._emit(PolicyOutcome.POLICY_ENABLED if enabled else PolicyOutcome.POLICY_DISABLED, self._kind.value)

    def discard(self) -> None:
        """Drop unsaved edits."""

        with self._lock:
            self._working = self._committed

    # -------------------------------------------------------------- validation
    def validate_all(self, config: Optional[PolicyConfig] = None) -> ValidationReport:
        """Validate every override and the default of ``config`` (working copy by default)."""

        target = config or self._working
        violations: list[Violation] = list(validate_scalar(self._kind, target.default, field="default"))
        archived: list[str] = []
        seen: set[str] = set()
        cohorts = self._registry.snapshot()
        for override in target.linked_overrides:
            field = f"linked_overrides.{override.cohort_id}"
            if override.cohort_id in seen:
                violations.append(Violation(field, f"cohort '{override.cohort_id}' is linked more than once", override.cohort_id))
            seen.add(override.cohort_id)
            violations.extend(validate_scalar(self._kind, override.scalar, field=field, cohort_id=override.cohort_id))
            cohort = cohorts.get(override.cohort_id)
            if cohort is None:
                violations.append(Violation(field, f"unknown cohort '{override.cohort_id}'", override.cohort_id))
                continue
            if not self._registry.scopes.covers(self._kind, cohort.step_id):
                violations.append(
                    Violation(field, f"cohort '{override.cohort_id}' targets step '{cohort.step_id}'", override.cohort_id)
                )
            if cohort.is_archived:
                archived.append(cohort.cohort_id)
        return ValidationReport(kind=self._kind, violations=tuple(violations), archived_links=tuple(archived))

    def has_archived_links(self) -> bool:
        """Whether the committed, enabled policy still links archived cohorts."""

        return self._committed.enabled and self.validate_all(self._committed).has_archived_links

    # ------------------------------------------------------------------- saves
    def save(self) -> PolicyConfig:
        """Validate and publish the working copy; nothing is written on failure."""

        with self._lock:
            return self._commit(self._working)

    def replace(self, config: PolicyConfig) -> PolicyConfig:
        """Validate and publish a complete configuration in one step."""

        if config.kind is not self._kind:
            raise ValueError(f"configuration kind {config.kind.value} does not match store kind {self._kind.value}")
        with self._lock:
            committed = self._commit(config)
            self._working = committed
            return committed

    def _commit(self, config: PolicyConfig) -> PolicyConfig:
        report = self.validate_all(config)
        if not report.ok:
            if self._telemetry is not None:
                self._telemetry.record_save(kind=self._kind.value, accepted=False)
            self._emit(
                PolicyOutcome.VALIDATION_FAILED,
                self._kind.value,
                violations=[violation.as_dict() for violation in report.violations],
            )
            raise PolicySaveError(report.violations)
        if self._repository is not None:
            self._repository.save(config)
        self._committed = config
        if self._telemetry is not None:
            self._telemetry.record_save(kind=self._kind.value, accepted=True)
        self._emit(
            PolicyOutcome.POLICY_SAVED,
            self._kind.value,
            overrides=len(config.linked_overrides),
            archived_links=list(report.archived_links),
        )
        return config

    def _check_scalar(self, scalar: Scalar, cohort_id: str) -> None:
        violations = validate_scalar(self._kind, scalar, cohort_id=cohort_id)
        if violations:
            raise InvalidScalarError(violations)

    def _emit(self, outcome: PolicyOutcome, subject: str, **detail: object) -> None:
        logger.info("policy.%s", outcome.value, extra={"policy_kind": self._kind.value, "subject": subject})
        if self._sink is not None:
            self._sink.notify(Notification(outcome=outcome, subject=subject, detail={"kind": self._kind.value, **detail}))


__all__ = ["PolicyLinkStore", "PolicyRepository"]
