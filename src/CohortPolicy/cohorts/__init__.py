"""Cohort definitions, condition evaluation, matching and the registry."""

from CohortPolicy.cohorts.conditions import (
    ConditionEvaluator,
    ConditionOutcome,
    FallbackReason,
    evaluate,
    percentile_threshold,
)
from CohortPolicy.cohorts.matcher import CohortMatcher, MatchTrace, matches
from CohortPolicy.cohorts.membership import MembershipRefresher, RefreshSummary
from CohortPolicy.cohorts.metrics import (
    ContributorPerformance,
    InMemoryMetricSource,
    MetricSource,
    population_for,
)
from CohortPolicy.cohorts.models import (
    Cohort,
    CohortDraft,
    CohortStatus,
    ComparisonOperator,
    Condition,
    DateRange,
    LogicalOperator,
    MemberType,
    MetricType,
    PercentileRank,
    RawThreshold,
    parse_condition_value,
)
from CohortPolicy.cohorts.registry import CohortRegistry, CohortRepository, RegistryState, validate_draft
from CohortPolicy.cohorts.telemetry import CohortTelemetry

__all__ = [
    "Cohort",
    "CohortDraft",
    "CohortMatcher",
    "CohortRegistry",
    "CohortRepository",
    "CohortStatus",
    "CohortTelemetry",
    "ComparisonOperator",
    "Condition",
    "ConditionEvaluator",
    "ConditionOutcome",
    "ContributorPerformance",
    "DateRange",
    "FallbackReason",
    "InMemoryMetricSource",
    "LogicalOperator",
    "MatchTrace",
    "MemberType",
    "MembershipRefresher",
    "MetricSource",
    "MetricType",
    "PercentileRank",
    "RawThreshold",
    "RefreshSummary",
    "RegistryState",
    "evaluate",
    "matches",
    "parse_condition_value",
    "percentile_threshold",
    "population_for",
    "validate_draft",
]
