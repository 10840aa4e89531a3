from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from CohortPolicy.cohorts import (
    ComparisonOperator,
    Condition,
    ConditionEvaluator,
    DateRange,
    FallbackReason,
    MetricType,
    PercentileRank,
    RawThreshold,
    evaluate,
    parse_condition_value,
    percentile_threshold,
)
from CohortPolicy.exceptions import InvalidConditionValueError

POPULATION = {MetricType.ACCURACY_RATE: [10.0, 20.0, 30.0, 40.0, 50.0]}


def condition(metric: str, operator: str, value: object, *, percentile: bool = False) -> Condition:
    return Condition(condition_id="c1", metric=metric, operator=operator, value=value, use_percentile=percentile)


def test_percentile_threshold_interpolates_linearly() -> None:
    assert percentile_threshold([10, 20, 30, 40, 50], 50) == pytest.approx(30.0)
    assert percentile_threshold([10, 20, 30, 40, 50], 25) == pytest.approx(20.0)
    assert percentile_threshold([10, 20], 50) == pytest.approx(15.0)


def test_percentile_threshold_ignores_non_finite_and_handles_empty() -> None:
    assert percentile_threshold([math.nan, 10.0, math.inf, 30.0], 50) == pytest.approx(20.0)
    assert percentile_threshold([], 50) is None
    assert percentile_threshold([math.nan], 50) is None


def test_percentile_condition_compares_against_population() -> None:
    median = condition("accuracy_rate", ">=", "P50", percentile=True)

    assert evaluate(median, {MetricType.ACCURACY_RATE: 35.0}, POPULATION) is True
    assert evaluate(median, {MetricType.ACCURACY_RATE: 30.0}, POPULATION) is True
    assert evaluate(median, {MetricType.ACCURACY_RATE: 25.0}, POPULATION) is False


def test_absolute_condition_uses_raw_number() -> None:
    busy = condition("tasks_submitted", ">", 10)

    assert evaluate(busy, {MetricType.TASKS_SUBMITTED: 11}) is True
    assert evaluate(busy, {MetricType.TASKS_SUBMITTED: 10}) is False


def test_equality_is_exact() -> None:
    exact = condition("tasks_skipped", "=", "3")

    assert evaluate(exact, {MetricType.TASKS_SKIPPED: 3.0}) is True
    assert evaluate(exact, {MetricType.TASKS_SKIPPED: 3.0000001}) is False


@pytest.mark.parametrize(
    ("raw", "percentile", "expected"),
    [
        ("P5", True, PercentileRank(5.0)),
        ("p95", True, PercentileRank(95.0)),
        ("50", True, PercentileRank(50.0)),
        (" 12.5 ", False, RawThreshold(12.5)),
        ("-3", False, RawThreshold(-3.0)),
    ],
)
def test_parse_condition_value_accepts_valid_input(raw: str, percentile: bool, expected: object) -> None:
    assert parse_condition_value(raw, use_percentile=percentile) == expected


@pytest.mark.parametrize(
    ("raw", "percentile"),
    [("", False), ("abc", False), ("inf", False), ("P150", True), ("P-1", True), ("Pxx", True), ("P", True)],
)
def test_parse_condition_value_rejects_invalid_input(raw: str, percentile: bool) -> None:
    with pytest.raises(InvalidConditionValueError) as excinfo:
        parse_condition_value(raw, use_percentile=percentile, field="conditions.c1.value")

    assert excinfo.value.violations[0].field == "conditions.c1.value"


def test_invalid_value_fails_closed() -> None:
    outcome = ConditionEvaluator().outcome(condition("tasks_submitted", "<", "lots"), {MetricType.TASKS_SUBMITTED: 1})

    assert outcome.matched is False
    assert outcome.fallback is FallbackReason.INVALID_VALUE


def test_missing_metric_fails_closed_even_for_less_than() -> None:
    evaluator = ConditionEvaluator()
    outcome = evaluator.outcome(condition("accuracy_rate", "<", 50), {MetricType.ACCURACY_RATE: None})

    assert outcome.matched is False
    assert outcome.failed_closed
    assert outcome.fallback is FallbackReason.MISSING_METRIC
    assert evaluator.evaluate(condition("accuracy_rate", "<", 50), {}) is False


def test_empty_population_fails_closed() -> None:
    outcome = ConditionEvaluator().outcome(
        condition("accuracy_rate", "<=", "P90", percentile=True),
        {MetricType.ACCURACY_RATE: 1.0},
        {MetricType.ACCURACY_RATE: []},
    )

    assert outcome.matched is False
    assert outcome.fallback is FallbackReason.EMPTY_POPULATION
    assert outcome.observed == 1.0


def test_condition_coerces_labels_and_rejects_booleans() -> None:
    parsed = Condition(condition_id="c1", metric="Avg. handling time", operator="is Less than (<)", value=4)

    assert parsed.metric is MetricType.AVG_HANDLING_TIME
    assert parsed.operator is ComparisonOperator.LT
    assert parsed.value == "4"
    with pytest.raises(ValidationError):
        Condition(condition_id="c2", metric="tasks_submitted", operator=">", value=True)
    with pytest.raises(ValidationError):
        Condition(condition_id="c3", metric="happiness", operator=">", value=1)


def test_operator_aliases_and_date_range_display() -> None:
    assert ComparisonOperator.parse("≥") is ComparisonOperator.GTE
    assert ComparisonOperator.parse("==") is ComparisonOperator.EQ
    assert DateRange.parse("Last 7 days") is DateRange.LAST_7_DAYS
    assert DateRange.LAST_60_DAYS.display == "Last 60 days"
    assert DateRange.ALL_TIME.display == "All time"
