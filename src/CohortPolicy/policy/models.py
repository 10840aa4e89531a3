"""Policy configuration records and scalar validation."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from CohortPolicy.exceptions import Violation
from CohortPolicy.scopes import PolicyKind

Scalar = Union[int, float]

DEFAULT_SCALARS: Mapping[PolicyKind, Scalar] = {
    PolicyKind.DAILY_LIMIT: 10,
    PolicyKind.QC_SAMPLING: 100.0,
}


def validate_scalar(kind: PolicyKind, value: object, *, field: str = "scalar", cohort_id: Optional[str] = None) -> Sequence[Violation]:
    """Range-check a scalar for a policy kind.

    Daily limits are whole numbers of at least 1; sampling percentages are
    real numbers in [0, 100].
    """

    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return (Violation(field, f"{kind.label} must be a number, got {value!r}", cohort_id),)
    if kind is PolicyKind.DAILY_LIMIT:
        if float(value) != int(value):
            return (Violation(field, f"daily limit must be a whole number, got {value}", cohort_id),)
        if value < 1:
            return (Violation(field, f"daily limit must be at least 1, got {value:g}", cohort_id),)
        return ()
    if not 0 <= value <= 100:
        return (Violation(field, f"sampling percentage must be between 0 and 100, got {value:g}", cohort_id),)
    return ()


def normalise_scalar(kind: PolicyKind, value: Scalar) -> Scalar:
    if kind is PolicyKind.DAILY_LIMIT:
        return int(value)
    return float(value)


class LinkedOverride(BaseModel):
    """A cohort-specific scalar attached to a policy."""

    model_config = ConfigDict(frozen=True)

    cohort_id: str
    scalar: Scalar


class PolicyConfig(BaseModel):
    """Default scalar plus ordered cohort overrides for one policy kind.

    Override order is preserved for display only; resolution does not
    depend on it. A disabled daily limit keeps its overrides but imposes no
    limit.
    """

    model_config = ConfigDict(frozen=True)

    kind: PolicyKind
    default: Scalar
    linked_overrides: tuple[LinkedOverride, ...] = ()
    enabled: bool = True

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: object) -> PolicyKind:
        if isinstance(value, PolicyKind):
            return value
        return PolicyKind.parse(str(value))

    @model_validator(mode="after")
    def _only_toggleable_disabled(self) -> "PolicyConfig":
        if not self.enabled and not self.kind.toggleable:
            raise ValueError(f"{self.kind.label} cannot be disabled")
        return self

    @classmethod
    def empty(cls, kind: PolicyKind, default: Optional[Scalar] = None) -> "PolicyConfig":
        return cls(kind=kind, default=DEFAULT_SCALARS[kind] if default is None else default)

    def linked_ids(self) -> frozenset[str]:
        return frozenset(override.cohort_id for override in self.linked_overrides)

    def override_for(self, cohort_id: str) -> Optional[LinkedOverride]:
        return next((item for item in self.linked_overrides if item.cohort_id == cohort_id), None)

    def with_overrides(self, overrides: Iterable[LinkedOverride]) -> "PolicyConfig":
        return self.model_copy(update={"linked_overrides": tuple(overrides)})

    def with_default(self, default: Scalar) -> "PolicyConfig":
        return self.model_copy(update={"default": default})

    def with_enabled(self, enabled: bool) -> "PolicyConfig":
        return self.model_copy(update={"enabled": enabled})


@dataclass(frozen=True)
class ValidationReport:
    """Outcome of validating a whole policy configuration.

    ``violations`` block a save. ``archived_links`` only warn: overrides on
    archived cohorts stay in force for cached members.
    """

    kind: PolicyKind
    violations: Sequence[Violation] = field(default_factory=tuple)
    archived_links: Sequence[str] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def has_archived_links(self) -> bool:
        return bool(self.archived_links)

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "ok": self.ok,
            "violations": [violation.as_dict() for violation in self.violations],
            "archived_links": list(self.archived_links),
        }


__all__ = [
    "DEFAULT_SCALARS",
    "LinkedOverride",
    "PolicyConfig",
    "Scalar",
    "ValidationReport",
    "normalise_scalar",
    "validate_scalar",
]
