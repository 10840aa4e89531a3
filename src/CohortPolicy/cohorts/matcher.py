"""Combine a cohort's conditions into one membership decision."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from CohortPolicy.cohorts.conditions import (
    ConditionEvaluator,
    ConditionOutcome,
    MetricSnapshot,
    PopulationValues,
)
from CohortPolicy.cohorts.models import Cohort
from CohortPolicy.cohorts.telemetry import CohortTelemetry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchTrace:
    """Per-condition outcomes and the folded result for one cohort."""

    cohort_id: str
    outcomes: Sequence[ConditionOutcome]
    matched: bool

    @property
    def fallbacks(self) -> Sequence[ConditionOutcome]:
        return tuple(outcome for outcome in self.outcomes if outcome.failed_closed)


class CohortMatcher:
    """Strict left-to-right AND/OR fold over a cohort's conditions.

    There is no operator precedence: ``A OR B AND C`` is ``(A OR B) AND C``.
    A cohort without conditions never matches.
    """

    def __init__(
        self,
        evaluator: Optional[ConditionEvaluator] = None,
        *,
        telemetry: Optional[CohortTelemetry] = None,
    ) -> None:
        self._evaluator = evaluator or ConditionEvaluator()
        self._telemetry = telemetry

    def explain(
        self,
        cohort: Cohort,
        metrics: MetricSnapshot,
        population: Optional[PopulationValues] = None,
    ) -> MatchTrace:
        if not cohort.conditions:
            return MatchTrace(cohort_id=cohort.cohort_id, outcomes=(), matched=False)

        first = self._evaluator.outcome(cohort.conditions[0], metrics, population)
        outcomes = [first]
        result = first.matched
        for operator, condition in cohort.joined_conditions():
            outcome = self._evaluator.outcome(condition, metrics, population)
            outcomes.append(outcome)
            result = operator.combine(result, outcome.matched)

        for outcome in outcomes:
            if outcome.fallback is None:
                continue
            logger.debug(
                "cohort.condition_failed_closed",
                extra={"cohort_id": cohort.cohort_id, "condition_id": outcome.condition_id, "reason": outcome.fallback.value},
            )
            if self._telemetry is not None:
                self._telemetry.record_fallback(reason=outcome.fallback.value)
        return MatchTrace(cohort_id=cohort.cohort_id, outcomes=tuple(outcomes), matched=result)

    def matches(
        self,
        cohort: Cohort,
        metrics: MetricSnapshot,
        population: Optional[PopulationValues] = None,
    ) -> bool:
        return self.explain(cohort, metrics, population).matched


def matches(cohort: Cohort, metrics: MetricSnapshot, population: Optional[PopulationValues] = None) -> bool:
    return CohortMatcher().matches(cohort, metrics, population)


__all__ = ["CohortMatcher", "MatchTrace", "matches"]
