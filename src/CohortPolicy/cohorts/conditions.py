"""Evaluation of a single cohort condition against a metric snapshot."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Sequence

import numpy as np

from CohortPolicy.cohorts.models import Condition, MetricType, PercentileRank
from CohortPolicy.exceptions import InvalidConditionValueError

MetricSnapshot = Mapping[MetricType, Optional[float]]
PopulationValues = Mapping[MetricType, Sequence[float]]


class FallbackReason(str, Enum):
    """Why a condition failed closed instead of being evaluated."""

    INVALID_VALUE = "invalid_value"
    MISSING_METRIC = "missing_metric"
    EMPTY_POPULATION = "empty_population"


@dataclass(frozen=True)
class ConditionOutcome:
    """Result of evaluating one condition."""

    condition_id: str
    matched: bool
    threshold: Optional[float] = None
    observed: Optional[float] = None
    fallback: Optional[FallbackReason] = None

    @property
    def failed_closed(self) -> bool:
        return self.fallback is not None


def percentile_threshold(values: Sequence[float], rank: float) -> Optional[float]:
    """Return the ``rank`` percentile of ``values`` using linear interpolation.

    Non-finite samples are ignored. Returns ``None`` for an empty population.
    """

    data = np.asarray([value for value in values if _finite(value)], dtype=float)
    if data.size == 0:
        return None
    return float(np.percentile(data, rank, method="linear"))


class ConditionEvaluator:
    """Evaluates conditions; never raises on bad data, it fails closed."""

    def outcome(
        self,
        condition: Condition,
        metrics: MetricSnapshot,
        population: Optional[PopulationValues] = None,
    ) -> ConditionOutcome:
        try:
            parsed = condition.threshold()
        except InvalidConditionValueError:
            return ConditionOutcome(condition.condition_id, False, fallback=FallbackReason.INVALID_VALUE)

        observed = metrics.get(condition.metric)
        if not _finite(observed):
            return ConditionOutcome(condition.condition_id, False, fallback=FallbackReason.MISSING_METRIC)

        if isinstance(parsed, PercentileRank):
            samples = (population or {}).get(condition.metric, ())
            threshold = percentile_threshold(samples, parsed.rank)
            if threshold is None:
                return ConditionOutcome(
                    condition.condition_id,
                    False,
                    observed=float(observed),
                    fallback=FallbackReason.EMPTY_POPULATION,
                )
        else:
            threshold = parsed.number

        matched = condition.operator.apply(float(observed), threshold)
        return ConditionOutcome(condition.condition_id, matched, threshold=threshold, observed=float(observed))

    def evaluate(
        self,
        condition: Condition,
        metrics: MetricSnapshot,
        population: Optional[PopulationValues] = None,
    ) -> bool:
        return self.outcome(condition, metrics, population).matched


def _finite(value: object) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False


def evaluate(condition: Condition, metrics: MetricSnapshot, population: Optional[PopulationValues] = None) -> bool:
    """Module-level convenience around :class:`ConditionEvaluator`."""

    return ConditionEvaluator().evaluate(condition, metrics, population)


__all__ = [
    "ConditionEvaluator",
    "ConditionOutcome",
    "FallbackReason",
    "MetricSnapshot",
    "PopulationValues",
    "evaluate",
    "percentile_threshold",
]
