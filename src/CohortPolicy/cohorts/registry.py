"""In-memory cohort registry with lifecycle and workflow-step scoping."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from CohortPolicy.cohorts.models import Cohort, CohortDraft, CohortStatus, member_type_for
from CohortPolicy.exceptions import (
    ArchivedCohortImmutableError,
    CohortValidationError,
    InvalidCohortDefinitionError,
    UnknownCohortError,
    Violation,
)
from CohortPolicy.notifications import Notification, NotificationSink, PolicyOutcome
from CohortPolicy.scopes import PolicyKind, PolicyScopes, step_id_for

logger = logging.getLogger(__name__)


class RegistryState(BaseModel):
    """Persisted form of the registry."""

    cohorts: list[Cohort] = Field(default_factory=list)
    members: dict[str, list[str]] = Field(default_factory=dict)
    sequence: int = 0


class CohortRepository(Protocol):
    """Cohort persistence collaborator."""

    def load(self) -> RegistryState:
        ...

    def save(self, state: RegistryState) -> None:
        ...


@dataclass(frozen=True)
class _Snapshot:
    cohorts: Mapping[str, Cohort] = field(default_factory=dict)
    members: Mapping[str, frozenset[str]] = field(default_factory=dict)
    sequence: int = 0


class CohortRegistry:
    """Owns the set of cohorts and their cached membership.

    Writes are serialised by a lock and publish a fresh immutable snapshot, so
    readers never observe a half-applied change. When a repository is attached
    the new state is persisted before it is published.
    """

    def __init__(
        self,
        *,
        scopes: Optional[PolicyScopes] = None,
        repository: Optional[CohortRepository] = None,
        sink: Optional[NotificationSink] = None,
        id_prefix: str = "cohort",
    ) -> None:
        self._scopes = scopes or PolicyScopes()
        self._repository = repository
        self._sink = sink
        self._id_prefix = id_prefix
        self._lock = threading.RLock()
        self._state = _Snapshot()

    @classmethod
    def load(
        cls,
        repository: CohortRepository,
        *,
        scopes: Optional[PolicyScopes] = None,
        sink: Optional[NotificationSink] = None,
    ) -> "CohortRegistry":
        registry = cls(scopes=scopes, repository=repository, sink=sink)
        state = repository.load()
        registry._state = _Snapshot(
            cohorts={cohort.cohort_id: cohort for cohort in state.cohorts},
            members={cohort_id: frozenset(emails) for cohort_id, emails in state.members.items()},
            sequence=state.sequence,
        )
        logger.debug("cohort.registry_loaded", extra={"cohorts": len(state.cohorts)})
        return registry

    @property
    def scopes(self) -> PolicyScopes:
        return self._scopes

    # ------------------------------------------------------------------ reads
    def get(self, cohort_id: str) -> Cohort:
        cohort = self._state.cohorts.get(cohort_id)
        if cohort is None:
            raise UnknownCohortError(cohort_id)
        return cohort

    def exists(self, cohort_id: str) -> bool:
        return cohort_id in self._state.cohorts

    def all(self) -> Sequence[Cohort]:
        return tuple(self._state.cohorts.values())

    def snapshot(self) -> Mapping[str, Cohort]:
        """Return an immutable-by-convention copy of ``cohort_id -> Cohort``."""

        return dict(self._state.cohorts)

    def list_by_step(self, step_id: str) -> Sequence[Cohort]:
        canonical = step_id_for(step_id)
        return tuple(cohort for cohort in self._state.cohorts.values() if cohort.step_id == canonical)

    def list_by_status(self, status: CohortStatus) -> Sequence[Cohort]:
        return tuple(cohort for cohort in self._state.cohorts.values() if cohort.status is status)

    def eligible(self, kind: PolicyKind) -> Sequence[Cohort]:
        """Every cohort, live or archived, the policy kind may consider."""

        steps = self._scopes.steps_for(kind)
        return tuple(cohort for cohort in self._state.cohorts.values() if cohort.step_id in steps)

    def linkable(self, kind: PolicyKind, *, search: str = "", exclude: Iterable[str] = ()) -> Sequence[Cohort]:
        """Live, in-scope cohorts not yet linked whose name contains ``search``."""

        excluded = set(exclude)
        needle = search.strip().lower()
        return tuple(
            cohort
            for cohort in self.eligible(kind)
            if cohort.status is CohortStatus.LIVE
            and cohort.cohort_id not in excluded
            and needle in cohort.name.lower()
        )

    def members(self, cohort_id: str) -> frozenset[str]:
        self.get(cohort_id)
        return self._state.members.get(cohort_id, frozenset())

    def memberships_for(self, email: str) -> frozenset[str]:
        """Cohort ids whose cached membership includes ``email``."""

        key = email.strip().lower()
        return frozenset(cohort_id for cohort_id, emails in self._state.members.items() if key in emails)

    # ----------------------------------------------------------------- writes
    def create(self, draft: CohortDraft, *, cohort_id: Optional[str] = None) -> Cohort:
        """Validate a draft and register a new live cohort."""

        _raise_for(validate_draft(draft))
        with self._lock:
            state = self._state
            sequence = state.sequence
            if cohort_id is None:
                sequence += 1
                cohort_id = f"{self._id_prefix}-{sequence}"
                while cohort_id in state.cohorts:
                    sequence += 1
                    cohort_id = f"{self._id_prefix}-{sequence}"
            elif cohort_id in state.cohorts:
                raise InvalidCohortDefinitionError(
                    [Violation("cohort_id", f"cohort '{cohort_id}' already exists", cohort_id)]
                )
            cohort = Cohort(
                cohort_id=cohort_id,
                name=draft.name.strip(),
                description=draft.description or f"Cohort based on {len(draft.conditions)} condition(s)",
                step_id=draft.step_id,
                member_type=member_type_for(draft.step_id),
                conditions=tuple(draft.conditions),
                logical_operators=draft.joiners(),
                date_range=draft.date_range,
            )
            cohorts = dict(state.cohorts)
            cohorts[cohort_id] = cohort
            self._commit(_Snapshot(cohorts=cohorts, members=state.members, sequence=sequence))
        self._emit(PolicyOutcome.COHORT_CREATED, cohort, step_id=cohort.step_id)
        return cohort

    def update(self, cohort_id: str, draft: CohortDraft) -> Cohort:
        """Replace a live cohort's definition; archived cohorts are frozen.

        The workflow step is fixed at creation so existing policy links stay
        in scope.
        """

        with self._lock:
            current = self.get(cohort_id)
            if current.is_archived:
                raise ArchivedCohortImmutableError(cohort_id)
            violations = list(validate_draft(draft))
            if draft.step_id != current.step_id:
                violations.append(
                    Violation("workflow_step", f"cohort '{cohort_id}' belongs to step '{current.step_id}'", cohort_id)
                )
            _raise_for(violations)
            updated = current.model_copy(
                update={
                    "name": draft.name.strip(),
                    "description": draft.description or current.description,
                    "conditions": tuple(draft.conditions),
                    "logical_operators": draft.joiners(),
                    "date_range": draft.date_range,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self._replace(updated)
        self._emit(PolicyOutcome.COHORT_UPDATED, updated, step_id=updated.step_id)
        return updated

    def archive(self, cohort_id: str) -> Cohort:
        """Archive a cohort; its cached membership and policy links are kept."""

        return self._set_status(cohort_id, CohortStatus.ARCHIVED, PolicyOutcome.COHORT_ARCHIVED)

    def unarchive(self, cohort_id: str) -> Cohort:
        return self._set_status(cohort_id, CohortStatus.LIVE, PolicyOutcome.COHORT_UNARCHIVED)

    def set_members(self, cohort_id: str, emails: Iterable[str]) -> Cohort:
        """Replace the cached membership of a live cohort."""

        with self._lock:
            current = self.get(cohort_id)
            if current.is_archived:
                raise ArchivedCohortImmutableError(cohort_id)
            members = frozenset(email.strip().lower() for email in emails if email.strip())
            updated = current.model_copy(update={"member_count": len(members)})
            state = self._state
            cohorts = dict(state.cohorts)
            cohorts[cohort_id] = updated
            all_members = dict(state.members)
            all_members[cohort_id] = members
            self._commit(_Snapshot(cohorts=cohorts, members=all_members, sequence=state.sequence))
        return updated

    # -------------------------------------------------------------- internals
    def _set_status(self, cohort_id: str, status: CohortStatus, outcome: PolicyOutcome) -> Cohort:
        with self._lock:
            current = self.get(cohort_id)
            if current.status is status:
                return current
            updated = current.with_status(status)
            self._replace(updated)
        self._emit(outcome, updated, status=status.value)
        return updated

    def _replace(self, cohort: Cohort) -> None:
        state = self._state
        cohorts = dict(state.cohorts)
        cohorts[cohort.cohort_id] = cohort
        self._commit(_Snapshot(cohorts=cohorts, members=state.members, sequence=state.sequence))

    def _commit(self, state: _Snapshot) -> None:
        if self._repository is not None:
            self._repository.save(
                RegistryState(
                    cohorts=list(state.cohorts.values()),
                    members={cohort_id: sorted(emails) for cohort_id, emails in state.members.items()},
                    sequence=state.sequence,
                )
            )
        self._state = state

    def _emit(self, outcome: PolicyOutcome, cohort: Cohort, **detail: object) -> None:
        logger.info("cohort.%s", outcome.value, extra={"cohort_id": cohort.cohort_id, "cohort_name": cohort.name})
        if self._sink is not None:
            self._sink.notify(Notification(outcome=outcome, subject=cohort.cohort_id, detail={"name": cohort.name, **detail}))


def validate_draft(draft: CohortDraft) -> Sequence[Violation]:
    """Return every problem with a draft; an empty result means it is usable."""

    violations: list[Violation] = []
    if not draft.name.strip():
        violations.append(Violation("name", "cohort name is required"))
    if not draft.conditions:
        violations.append(Violation("conditions", "at least one condition is required"))
    seen: set[str] = set()
    for condition in draft.conditions:
        if condition.condition_id in seen:
            violations.append(
                Violation(f"conditions.{condition.condition_id}", "condition identifiers must be unique")
            )
        seen.add(condition.condition_id)
        try:
            condition.threshold()
        except CohortValidationError as exc:
            violations.extend(exc.violations)
    expected = max(0, len(draft.conditions) - 1)
    if len(draft.joiners()) != expected:
        violations.append(
            Violation(
                "logical_operators",
                f"expected {expected} logical operator(s) for {len(draft.conditions)} condition(s)",
            )
        )
    return tuple(violations)


def _raise_for(violations: Sequence[Violation]) -> None:
    if violations:
        raise InvalidCohortDefinitionError(violations)


__all__ = [
    "CohortRegistry",
    "CohortRepository",
    "RegistryState",
    "validate_draft",
]
