from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Sequence

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import pytest  # noqa: E402

from CohortPolicy.cohorts import CohortDraft, CohortRegistry, Condition, LogicalOperator  # noqa: E402
from CohortPolicy.notifications import InMemoryNotificationSink  # noqa: E402
from CohortPolicy.persistence import InMemoryCohortRepository  # noqa: E402

# Disable OTEL export during tests to avoid noisy connection errors when a collector
# is not running. Individual tests can override as needed.
os.environ.setdefault("OTEL_METRICS_EXPORTER", "none")
os.environ.setdefault("OTEL_TRACES_EXPORTER", "none")
os.environ.setdefault("OTEL_SDK_DISABLED", "true")
os.environ.setdefault("COHORT_ENABLE_OTEL", "0")


def make_draft(
    name: str,
    *conditions: tuple[str, str, object],
    step: str = "Maker",
    operators: Sequence[str] | None = None,
    percentile: bool = False,
) -> CohortDraft:
    """Build a draft from ``(metric, operator, value)`` triples."""

    return CohortDraft(
        name=name,
        workflow_step=step,
        conditions=[
            Condition(condition_id=f"c{index}", metric=metric, operator=op, value=value, use_percentile=percentile)
            for index, (metric, op, value) in enumerate(conditions, start=1)
        ],
        logical_operators=None if operators is None else [LogicalOperator(item) for item in operators],
    )


@pytest.fixture()
def draft_factory() -> Callable[..., CohortDraft]:
    return make_draft


@pytest.fixture()
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture()
def cohort_repository() -> InMemoryCohortRepository:
    return InMemoryCohortRepository()


@pytest.fixture()
def registry(cohort_repository: InMemoryCohortRepository, sink: InMemoryNotificationSink) -> CohortRegistry:
    return CohortRegistry(repository=cohort_repository, sink=sink)


@pytest.fixture()
def seeded_registry(registry: CohortRegistry) -> CohortRegistry:
    """Two maker cohorts (A, B), one reviewer cohort (R) and one rework cohort (W)."""

    registry.create(make_draft("High volume", ("tasks_submitted", ">", 10)), cohort_id="A")
    registry.create(make_draft("Accurate", ("accuracy_rate", ">=", 90)), cohort_id="B")
    registry.create(make_draft("Slow reviewers", ("avg_handling_time", ">", 30), step="Reviewer"), cohort_id="R")
    registry.create(make_draft("Rework backlog", ("tasks_rejected", ">", 2), step="Rework"), cohort_id="W")
    return registry
