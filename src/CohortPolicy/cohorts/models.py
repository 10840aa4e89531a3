"""Core cohort data models."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from CohortPolicy.exceptions import InvalidConditionValueError, Violation
from CohortPolicy.scopes import WORKFLOW_STEPS, step_id_for


class MetricType(str, Enum):
    """Per-contributor performance metrics a condition can test."""

    TASKS_SUBMITTED = "tasks_submitted"
    TASKS_SKIPPED = "tasks_skipped"
    TASKS_REJECTED = "tasks_rejected"
    TASKS_ACCEPTED = "tasks_accepted"
    TOTAL_TIME_TAKEN = "total_time_taken"
    AVG_HANDLING_TIME = "avg_handling_time"
    ACCURACY_RATE = "accuracy_rate"
    REJECTION_RATE = "rejection_rate"

    @property
    def label(self) -> str:
        return _METRIC_LABELS[self]

    @classmethod
    def parse(cls, raw: Union[str, "MetricType"]) -> "MetricType":
        """Accept enum values, member names, or the console labels ("Tasks submitted")."""

        if isinstance(raw, MetricType):
            return raw
        token = str(raw).strip()
        for metric in cls:
            if token in {metric.value, metric.name, metric.label}:
                return metric
        lowered = token.lower()
        for metric in cls:
            if lowered == metric.label.lower():
                return metric
        raise ValueError(f"Unknown metric '{raw}'")


_METRIC_LABELS = {
    MetricType.TASKS_SUBMITTED: "Tasks submitted",
    MetricType.TASKS_SKIPPED: "Tasks skipped",
    MetricType.TASKS_REJECTED: "Tasks rejected",
    MetricType.TASKS_ACCEPTED: "Tasks accepted",
    MetricType.TOTAL_TIME_TAKEN: "Total time taken",
    MetricType.AVG_HANDLING_TIME: "Avg. handling time",
    MetricType.ACCURACY_RATE: "Accuracy rate",
    MetricType.REJECTION_RATE: "Rejection rate",
}


class ComparisonOperator(str, Enum):
    """Numeric comparison applied between a metric and its threshold."""

    GT = ">"
    LT = "<"
    EQ = "="
    GTE = ">="
    LTE = "<="

    @property
    def label(self) -> str:
        return _OPERATOR_LABELS[self]

    @classmethod
    def parse(cls, raw: Union[str, "ComparisonOperator"]) -> "ComparisonOperator":
        if isinstance(raw, ComparisonOperator):
            return raw
        token = str(raw).strip()
        aliases = {"≥": cls.GTE, "≤": cls.LTE, "==": cls.EQ}
        if token in aliases:
            return aliases[token]
        for operator in cls:
            if token in {operator.value, operator.name, operator.label}:
                return operator
        raise ValueError(f"Unknown comparison operator '{raw}'")

    def apply(self, left: float, right: float) -> bool:
        # EQ is exact float equality; non-integer metrics rarely hit it
        if self is ComparisonOperator.GT:
            return left > right
        if self is ComparisonOperator.LT:
            return left < right
        if self is ComparisonOperator.EQ:
            return left == right
        if self is ComparisonOperator.GTE:
            return left >= right
        return left <= right


_OPERATOR_LABELS = {
    ComparisonOperator.GT: "is Greater than (>)",
    ComparisonOperator.LT: "is Less than (<)",
    ComparisonOperator.EQ: "is Equal to (=)",
    ComparisonOperator.GTE: "is Greater than or equal to (>=)",
    ComparisonOperator.LTE: "is Less than or equal to (<=)",
}


class LogicalOperator(str, Enum):
    """Joiner between two adjacent conditions."""

    AND = "AND"
    OR = "OR"

    def combine(self, left: bool, right: bool) -> bool:
        if self is LogicalOperator.AND:
            return left and right
        return left or right


class CohortStatus(str, Enum):
    """Lifecycle status of a cohort."""

    LIVE = "live"
    ARCHIVED = "archived"


class MemberType(str, Enum):
    """Contributor role a cohort segments."""

    MAKERS = "Makers"
    REVIEWER = "Reviewer"


class DateRange(str, Enum):
    """Metric window a cohort is evaluated over."""

    LAST_7_DAYS = "7 days"
    LAST_15_DAYS = "15 days"
    LAST_30_DAYS = "30 days"
    LAST_60_DAYS = "60 days"
    ALL_TIME = "All time"

    @property
    def display(self) -> str:
        return self.value if self is DateRange.ALL_TIME else f"Last {self.value}"

    @classmethod
    def parse(cls, raw: Union[str, "DateRange"]) -> "DateRange":
        if isinstance(raw, DateRange):
            return raw
        token = str(raw).strip()
        if token.startswith("Last "):
            token = token[len("Last ") :]
        for candidate in cls:
            if token in {candidate.value, candidate.name}:
                return candidate
        raise ValueError(f"Unknown date range '{raw}'")


def member_type_for(step_id: str) -> MemberType:
    return MemberType.REVIEWER if step_id == step_id_for("Reviewer") else MemberType.MAKERS


# ---------------------------------------------------------------------------
# Condition values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawThreshold:
    """Absolute numeric threshold."""

    number: float


@dataclass(frozen=True)
class PercentileRank:
    """Percentile rank resolved against the population at evaluation time."""

    rank: float


ConditionValue = Union[RawThreshold, PercentileRank]


def parse_condition_value(raw: str, *, use_percentile: bool, field: str = "value") -> ConditionValue:
    """Parse a condition's raw input into a tagged threshold.

    Percentile inputs may carry a leading ``P`` ("P5", "p95") or be bare
    ranks ("5"); the rank must fall in [0, 100]. Absolute inputs must be a
    finite number. Anything else raises :class:`InvalidConditionValueError`.
    """

    token = (raw or "").strip()
    if not token:
        raise InvalidConditionValueError([Violation(field, "condition value is required")])
    if use_percentile:
        if token[0] in {"P", "p"}:
            token = token[1:].strip()
        number = _parse_number(token)
        if number is None:
            raise InvalidConditionValueError([Violation(field, f"'{raw}' is not a valid percentile")])
        if not 0.0 <= number <= 100.0:
            raise InvalidConditionValueError([Violation(field, f"percentile {number:g} must be between 0 and 100")])
        return PercentileRank(rank=number)
    number = _parse_number(token)
    if number is None:
        raise InvalidConditionValueError([Violation(field, f"'{raw}' is not a valid number")])
    return RawThreshold(number=number)


def _parse_number(token: str) -> Optional[float]:
    try:
        number = float(token)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class Condition(BaseModel):
    """One metric/operator/threshold test within a cohort."""

    model_config = ConfigDict(frozen=True)

    condition_id: str
    metric: MetricType
    operator: ComparisonOperator
    value: str = ""
    use_percentile: bool = False

    @field_validator("metric", mode="before")
    @classmethod
    def _coerce_metric(cls, value: Any) -> MetricType:
        return MetricType.parse(value)

    @field_validator("operator", mode="before")
    @classmethod
    def _coerce_operator(cls, value: Any) -> ComparisonOperator:
        return ComparisonOperator.parse(value)

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            raise ValueError("condition value must be text or a number")
        return str(value)

    def threshold(self) -> ConditionValue:
        """Parse ``value``; raises :class:`InvalidConditionValueError`."""

        return parse_condition_value(
            self.value,
            use_percentile=self.use_percentile,
            field=f"conditions.{self.condition_id}.value",
        )


class Cohort(BaseModel):
    """A named, rule-defined segment of contributors tied to one workflow step."""

    model_config = ConfigDict(frozen=True)

    cohort_id: str
    name: str
    description: str = ""
    step_id: str
    member_type: MemberType
    status: CohortStatus = CohortStatus.LIVE
    conditions: tuple[Condition, ...] = ()
    logical_operators: tuple[LogicalOperator, ...] = ()
    date_range: DateRange = DateRange.LAST_30_DAYS
    member_count: int = 0
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="before")
    @classmethod
    def _derive_member_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("member_type") is None and data.get("step_id"):
            data = dict(data)
            data["member_type"] = member_type_for(step_id_for(str(data["step_id"])))
        return data

    @field_validator("step_id")
    @classmethod
    def _canonical_step(cls, value: str) -> str:
        return step_id_for(value)

    @field_validator("date_range", mode="before")
    @classmethod
    def _coerce_date_range(cls, value: Any) -> DateRange:
        return DateRange.parse(value)

    @model_validator(mode="after")
    def _operators_match_conditions(self) -> "Cohort":
        expected = max(0, len(self.conditions) - 1)
        if len(self.logical_operators) != expected:
            msg = (
                f"cohort '{self.cohort_id}' has {len(self.conditions)} conditions and "
                f"{len(self.logical_operators)} logical operators; expected {expected}"
            )
            raise ValueError(msg)
        return self

    @property
    def is_archived(self) -> bool:
        return self.status is CohortStatus.ARCHIVED

    def joined_conditions(self) -> Iterator[tuple[LogicalOperator, Condition]]:
        """Yield ``(operator, condition)`` for every condition after the first."""

        return zip(self.logical_operators, self.conditions[1:])

    def with_status(self, status: CohortStatus) -> "Cohort":
        return self.model_copy(update={"status": status, "updated_at": datetime.now(timezone.utc)})


class CohortDraft(BaseModel):
    """Operator input for creating or editing a cohort.

    Drafts are deliberately lenient; the registry validates them and reports
    every problem at once.
    """

    name: str = ""
    description: str = ""
    workflow_step: str = "Maker"
    date_range: DateRange = DateRange.LAST_30_DAYS
    conditions: list[Condition] = Field(default_factory=list)
    logical_operators: Optional[list[LogicalOperator]] = None

    @field_validator("date_range", mode="before")
    @classmethod
    def _coerce_date_range(cls, value: Any) -> DateRange:
        return DateRange.parse(value)

    @property
    def step_id(self) -> str:
        return step_id_for(self.workflow_step or "Maker")

    def joiners(self) -> tuple[LogicalOperator, ...]:
        """Operators between conditions; missing joiners default to AND."""

        if self.logical_operators is None:
            return tuple(LogicalOperator.AND for _ in self.conditions[1:])
        return tuple(self.logical_operators)

    def with_condition(self, condition: Condition, joiner: LogicalOperator = LogicalOperator.AND) -> "CohortDraft":
        operators = list(self.joiners())
        if self.conditions:
            operators.append(joiner)
        return self.model_copy(
            update={"conditions": [*self.conditions, condition], "logical_operators": operators}
        )

    def without_condition(self, condition_id: str) -> "CohortDraft":
        """Drop a condition together with the joiner that attached it."""

        index = next(
            (idx for idx, condition in enumerate(self.conditions) if condition.condition_id == condition_id),
            None,
        )
        if index is None:
            return self
        conditions = [c for c in self.conditions if c.condition_id != condition_id]
        operators = list(self.joiners())
        if operators:
            del operators[max(index - 1, 0)]
        return self.model_copy(update={"conditions": conditions, "logical_operators": operators})


__all__ = [
    "Cohort",
    "CohortDraft",
    "CohortStatus",
    "ComparisonOperator",
    "Condition",
    "ConditionValue",
    "DateRange",
    "LogicalOperator",
    "MemberType",
    "MetricType",
    "PercentileRank",
    "RawThreshold",
    "WORKFLOW_STEPS",
    "member_type_for",
    "parse_condition_value",
    "step_id_for",
]
