"""Typed failures raised by cohort and policy operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class Violation:
    """A single reason an operation or a save was rejected."""

    field: str
    message: str
    cohort_id: Optional[str] = None

    def as_dict(self) -> dict[str, Optional[str]]:
        return {"field": self.field, "message": self.message, "cohort_id": self.cohort_id}


class CohortPolicyError(Exception):
    """Base exception for cohort and policy failures."""


class CohortValidationError(CohortPolicyError):
    """Raised when input fails validation; nothing is applied."""

    def __init__(self, violations: Sequence[Violation], message: Optional[str] = None) -> None:
        self.violations = tuple(violations)
        summary = message or "; ".join(violation.message for violation in self.violations)
        super().__init__(summary or "validation failed")


class InvalidScalarError(CohortValidationError):
    """Raised when a policy scalar falls outside the policy's valid range."""


class InvalidCohortDefinitionError(CohortValidationError):
    """Raised when a cohort draft is missing a name, conditions, or values."""


class InvalidConditionValueError(CohortValidationError):
    """Raised when a condition value cannot be parsed into a threshold."""


class PolicySaveError(CohortValidationError):
    """Raised when a policy save is aborted; carries every violation found."""


class CohortReferenceError(CohortPolicyError):
    """Raised when an operation references something that does not exist."""


class UnknownCohortError(CohortReferenceError):
    """Raised when a cohort identifier is not known to the registry."""

    def __init__(self, cohort_id: str) -> None:
        self.cohort_id = cohort_id
        super().__init__(f"Unknown cohort '{cohort_id}'")


class LinkNotFoundError(CohortReferenceError):
    """Raised when removing or updating an override that is not linked."""

    def __init__(self, cohort_id: str) -> None:
        self.cohort_id = cohort_id
        super().__init__(f"Cohort '{cohort_id}' is not linked to this policy")


class DuplicateLinkError(CohortReferenceError):
    """Raised when linking a cohort that already has an override."""

    def __init__(self, cohort_id: str) -> None:
        self.cohort_id = cohort_id
        super().__init__(f"Cohort '{cohort_id}' is already linked to this policy")


class OutOfScopeCohortError(CohortReferenceError):
    """Raised when a cohort belongs to a workflow step the policy does not cover."""

    def __init__(self, cohort_id: str, step_id: str) -> None:
        self.cohort_id = cohort_id
        self.step_id = step_id
        super().__init__(f"Cohort '{cohort_id}' targets step '{step_id}' which this policy does not cover")


class ImmutableStateError(CohortPolicyError):
    """Raised when mutating a record whose lifecycle state forbids it."""


class ArchivedCohortImmutableError(ImmutableStateError):
    """Raised when editing an archived cohort."""

    def __init__(self, cohort_id: str) -> None:
        self.cohort_id = cohort_id
        super().__init__(f"Cohort '{cohort_id}' is archived; unarchive it before editing")


__all__ = [
    "ArchivedCohortImmutableError",
    "CohortPolicyError",
    "CohortReferenceError",
    "CohortValidationError",
    "DuplicateLinkError",
    "ImmutableStateError",
    "InvalidCohortDefinitionError",
    "InvalidConditionValueError",
    "InvalidScalarError",
    "LinkNotFoundError",
    "OutOfScopeCohortError",
    "PolicySaveError",
    "UnknownCohortError",
    "Violation",
]
