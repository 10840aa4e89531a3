"""Recalculation of cached cohort membership."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, MutableMapping, Optional, Sequence

from CohortPolicy.cohorts.conditions import MetricSnapshot, PopulationValues
from CohortPolicy.cohorts.matcher import CohortMatcher
from CohortPolicy.cohorts.metrics import MetricSource, population_for
from CohortPolicy.cohorts.models import CohortStatus, DateRange
from CohortPolicy.cohorts.registry import CohortRegistry
from CohortPolicy.cohorts.telemetry import CohortTelemetry
from CohortPolicy.notifications import Notification, NotificationSink, PolicyOutcome
from CohortPolicy.scopes import step_id_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshSummary:
    step_id: str
    member_counts: Mapping[str, int]
    frozen: Sequence[str]
    fallbacks: int

    def to_dict(self) -> dict[str, object]:
        return {
            "step_id": self.step_id,
            "member_counts": dict(self.member_counts),
            "frozen": list(self.frozen),
            "fallbacks": self.fallbacks,
        }


class MembershipRefresher:
    """Re-derives membership of live cohorts; archived cohorts stay frozen."""

    def __init__(
        self,
        registry: CohortRegistry,
        source: MetricSource,
        *,
        matcher: Optional[CohortMatcher] = None,
        sink: Optional[NotificationSink] = None,
        telemetry: Optional[CohortTelemetry] = None,
    ) -> None:
        self._registry = registry
        self._source = source
        self._matcher = matcher or CohortMatcher(telemetry=telemetry)
        self._sink = sink

    def refresh(self, step_id: str, contributors: Iterable[str]) -> RefreshSummary:
        step_id = step_id_for(step_id)
        emails = tuple(dict.fromkeys(email.strip().lower() for email in contributors if email.strip()))
        populations: MutableMapping[DateRange, PopulationValues] = {}
        snapshots: MutableMapping[tuple[str, DateRange], MetricSnapshot] = {}
        counts: dict[str, int] = {}
        frozen: list[str] = []
        fallbacks = 0

        for cohort in self._registry.list_by_step(step_id):
            if cohort.status is CohortStatus.ARCHIVED:
                frozen.append(cohort.cohort_id)
                continue
            window = cohort.date_range
            if window not in populations:
                populations[window] = population_for(self._source, cohort.step_id, window)
            members = []
            for email in emails:
                key = (email, window)
                if key not in snapshots:
                    snapshots[key] = self._source.get_contributor_metrics(email, window, step_id)
                trace = self._matcher.explain(cohort, snapshots[key], populations[window])
                fallbacks += len(trace.fallbacks)
                if trace.matched:
                    members.append(email)
            updated = self._registry.set_members(cohort.cohort_id, members)
            counts[cohort.cohort_id] = updated.member_count

        summary = RefreshSummary(step_id=step_id, member_counts=counts, frozen=tuple(frozen), fallbacks=fallbacks)
        logger.info("cohort.membership_refreshed", extra=summary.to_dict())
        if self._sink is not None:
            self._sink.notify(Notification(PolicyOutcome.MEMBERSHIP_REFRESHED, step_id, summary.to_dict()))
        return summary


__all__ = ["MembershipRefresher", "RefreshSummary"]
