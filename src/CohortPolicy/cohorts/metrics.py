"""Contributor performance records and the metric-source boundary."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, field_validator

from CohortPolicy.cohorts.conditions import MetricSnapshot
from CohortPolicy.cohorts.models import DateRange, MetricType
from CohortPolicy.scopes import step_id_for


class MetricSource(Protocol):
    """Supplies raw metric values; computed outside this library."""

    def get_contributor_metrics(
        self, email: str, date_range: DateRange, step_id: Optional[str] = None
    ) -> MetricSnapshot:
        ...

    def get_population_metric_values(self, step_id: str, metric: MetricType, date_range: DateRange) -> Sequence[float]:
        ...


class ContributorPerformance(BaseModel):
    """Aggregated performance of one contributor at one workflow step.

    Times are in minutes. ``date_range`` of ``None`` means the record applies
    to any window.
    """

    model_config = ConfigDict(frozen=True)

    email: str
    step_id: str = "step-maker"
    date_range: Optional[DateRange] = None
    tasks_submitted: float = 0
    tasks_skipped: float = 0
    tasks_rejected: float = 0
    tasks_accepted: float = 0
    total_time_taken: float = 0
    avg_handling_time: Optional[float] = None

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("step_id")
    @classmethod
    def _canonical_step(cls, value: str) -> str:
        return step_id_for(value)

    @field_validator("date_range", mode="before")
    @classmethod
    def _coerce_date_range(cls, value: object) -> Optional[DateRange]:
        if value is None:
            return None
        return DateRange.parse(value)  # type: ignore[arg-type]

    def snapshot(self) -> dict[MetricType, Optional[float]]:
        """Metric values keyed by :class:`MetricType`.

        Rates are percentages of reviewed tasks and are absent when nothing
        has been reviewed yet.
        """

        reviewed = self.tasks_accepted + self.tasks_rejected
        accuracy = self.tasks_accepted / reviewed * 100 if reviewed else None
        rejection = self.tasks_rejected / reviewed * 100 if reviewed else None
        handling = self.avg_handling_time
        if handling is None and self.tasks_submitted:
            handling = self.total_time_taken / self.tasks_submitted
        return {
            MetricType.TASKS_SUBMITTED: self.tasks_submitted,
            MetricType.TASKS_SKIPPED: self.tasks_skipped,
            MetricType.TASKS_REJECTED: self.tasks_rejected,
            MetricType.TASKS_ACCEPTED: self.tasks_accepted,
            MetricType.TOTAL_TIME_TAKEN: self.total_time_taken,
            MetricType.AVG_HANDLING_TIME: handling,
            MetricType.ACCURACY_RATE: accuracy,
            MetricType.REJECTION_RATE: rejection,
        }


class InMemoryMetricSource:
    """Serves metrics from a fixed set of performance records.

    Records are keyed by contributor and workflow step. For a given window a
    contributor's exact-window record wins over their window-less record.
    """

    def __init__(self, records: Iterable[ContributorPerformance]) -> None:
        self._records = tuple(records)

    def _matching(self, date_range: DateRange, step_id: Optional[str] = None) -> Sequence[ContributorPerformance]:
        exact: dict[tuple[str, str], ContributorPerformance] = {}
        fallback: dict[tuple[str, str], ContributorPerformance] = {}
        for record in self._records:
            if step_id is not None and record.step_id != step_id:
                continue
            key = (record.email, record.step_id)
            if record.date_range is date_range:
                exact.setdefault(key, record)
            elif record.date_range is None:
                fallback.setdefault(key, record)
        return tuple({**fallback, **exact}.values())

    def get_contributor_metrics(
        self, email: str, date_range: DateRange, step_id: Optional[str] = None
    ) -> MetricSnapshot:
        key = email.strip().lower()
        canonical = step_id_for(step_id) if step_id else None
        for record in self._matching(date_range, canonical):
            if record.email == key:
                return record.snapshot()
        return {}

    def get_population_metric_values(self, step_id: str, metric: MetricType, date_range: DateRange) -> Sequence[float]:
        values = []
        for record in self._matching(date_range, step_id_for(step_id)):
            value = record.snapshot()[metric]
            if value is not None:
                values.append(value)
        return tuple(values)

    def contributors(self, step_id: Optional[str] = None) -> Sequence[str]:
        canonical = step_id_for(step_id) if step_id else None
        seen: dict[str, None] = {}
        for record in self._records:
            if canonical is None or record.step_id == canonical:
                seen.setdefault(record.email, None)
        return tuple(seen)


def population_for(source: MetricSource, step_id: str, date_range: DateRange) -> Mapping[MetricType, Sequence[float]]:
    """Fetch the population distribution of every metric for one step."""

    return {metric: tuple(source.get_population_metric_values(step_id, metric, date_range)) for metric in MetricType}


__all__ = [
    "ContributorPerformance",
    "InMemoryMetricSource",
    "MetricSource",
    "population_for",
]
