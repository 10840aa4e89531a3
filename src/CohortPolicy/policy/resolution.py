"""Effective per-contributor policy values from overlapping cohort overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence, Union

from CohortPolicy.cohorts.conditions import MetricSnapshot, PopulationValues
from CohortPolicy.cohorts.matcher import CohortMatcher
from CohortPolicy.cohorts.models import Cohort
from CohortPolicy.cohorts.telemetry import CohortTelemetry
from CohortPolicy.policy.models import LinkedOverride, PolicyConfig, Scalar
from CohortPolicy.scopes import PolicyKind, PolicyScopes

# Daily limits protect against over-assignment (most restrictive wins);
# sampling protects quality (most aggressive wins).
REDUCERS: Mapping[PolicyKind, Callable[[Iterable[Scalar]], Scalar]] = {
    PolicyKind.DAILY_LIMIT: min,
    PolicyKind.QC_SAMPLING: max,
}


@dataclass(frozen=True)
class Precomputed:
    """Membership already resolved by the host (cached ``cohortIds``)."""

    cohort_ids: frozenset[str]

    def __init__(self, cohort_ids: Iterable[str]) -> None:
        object.__setattr__(self, "cohort_ids", frozenset(cohort_ids))


@dataclass(frozen=True)
class Derivable:
    """Membership derived from a metric snapshot.

    ``population`` holds the distribution used for percentile conditions.
    ``cached_cohort_ids`` is the stored membership, consulted only for
    archived cohorts, which are never re-derived.
    """

    metrics: MetricSnapshot
    population: PopulationValues = field(default_factory=dict)
    cached_cohort_ids: frozenset[str] = frozenset()


MembershipSource = Union[Precomputed, Derivable]


@dataclass(frozen=True)
class Contributor:
    email: str
    membership: MembershipSource


@dataclass(frozen=True)
class Resolution:
    """How a contributor's effective value was reached.

    ``value`` is ``None`` when the policy is disabled and imposes no limit.
    """

    email: str
    kind: PolicyKind
    value: Optional[Scalar]
    used_default: bool
    membership: frozenset[str]
    applied: Sequence[LinkedOverride] = ()
    archived_applied: Sequence[str] = ()
    enabled: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "email": self.email,
            "kind": self.kind.value,
            "value": self.value,
            "used_default": self.used_default,
            "membership": sorted(self.membership),
            "applied": [override.model_dump() for override in self.applied],
            "archived_applied": list(self.archived_applied),
            "enabled": self.enabled,
        }


class ResolutionEngine:
    """Pure resolution of policy scalars; holds no mutable state of its own."""

    def __init__(
        self,
        *,
        scopes: Optional[PolicyScopes] = None,
        matcher: Optional[CohortMatcher] = None,
        telemetry: Optional[CohortTelemetry] = None,
    ) -> None:
        self._scopes = scopes or PolicyScopes()
        self._matcher = matcher or CohortMatcher(telemetry=telemetry)
        self._telemetry = telemetry

    def membership(
        self,
        kind: PolicyKind,
        contributor: Contributor,
        cohorts_by_id: Mapping[str, Cohort],
    ) -> frozenset[str]:
        source = contributor.membership
        if isinstance(source, Precomputed):
            return source.cohort_ids
        if not isinstance(source, Derivable):
            raise TypeError(f"Unsupported membership source {type(source).__name__}")
        steps = self._scopes.steps_for(kind)
        members: set[str] = set()
        for cohort in cohorts_by_id.values():
            if cohort.step_id not in steps:
                continue
            if cohort.is_archived:
                if cohort.cohort_id in source.cached_cohort_ids:
                    members.add(cohort.cohort_id)
            elif self._matcher.matches(cohort, source.metrics, source.population):
                members.add(cohort.cohort_id)
        return frozenset(members)

    def explain(
        self,
        kind: PolicyKind,
        contributor: Contributor,
        config: PolicyConfig,
        cohorts_by_id: Mapping[str, Cohort],
    ) -> Resolution:
        if config.kind is not kind:
            raise ValueError(f"configuration for {config.kind.value} cannot resolve {kind.value}")
        membership = self.membership(kind, contributor, cohorts_by_id)
        if not config.enabled:
            return Resolution(
                email=contributor.email,
                kind=kind,
                value=None,
                used_default=False,
                membership=membership,
                enabled=False,
            )
        applied = tuple(override for override in config.linked_overrides if override.cohort_id in membership)
        if applied:
            value = REDUCERS[kind](override.scalar for override in applied)
        else:
            value = config.default
        archived = tuple(
            override.cohort_id
            for override in applied
            if override.cohort_id in cohorts_by_id and cohorts_by_id[override.cohort_id].is_archived
        )
        if self._telemetry is not None:
            self._telemetry.record_resolution(kind=kind.value, used_default=not applied)
        return Resolution(
            email=contributor.email,
            kind=kind,
            value=value,
            used_default=not applied,
            membership=membership,
            applied=applied,
            archived_applied=archived,
        )

    def resolve(
        self,
        kind: PolicyKind,
        contributor: Contributor,
        config: PolicyConfig,
        cohorts_by_id: Mapping[str, Cohort],
    ) -> Optional[Scalar]:
        return self.explain(kind, contributor, config, cohorts_by_id).value

    def resolve_many(
        self,
        kind: PolicyKind,
        contributors: Iterable[Contributor],
        config: PolicyConfig,
        cohorts_by_id: Mapping[str, Cohort],
    ) -> Sequence[Resolution]:
        return [self.explain(kind, contributor, config, cohorts_by_id) for contributor in contributors]


__all__ = [
    "Contributor",
    "Derivable",
    "MembershipSource",
    "Precomputed",
    "REDUCERS",
    "Resolution",
    "ResolutionEngine",
]
