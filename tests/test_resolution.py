from __future__ import annotations

import pytest

from CohortPolicy.cohorts import CohortRegistry, CohortTelemetry, MetricType
from CohortPolicy.policy import (
    Contributor,
    Derivable,
    LinkedOverride,
    PolicyConfig,
    Precomputed,
    ResolutionEngine,
)
from CohortPolicy.scopes import PolicyKind

DAILY = PolicyConfig(
    kind=PolicyKind.DAILY_LIMIT,
    default=10,
    linked_overrides=[LinkedOverride(cohort_id="A", scalar=5), LinkedOverride(cohort_id="B", scalar=8)],
)
QC = PolicyConfig(
    kind=PolicyKind.QC_SAMPLING,
    default=100.0,
    linked_overrides=[LinkedOverride(cohort_id="R", scalar=60.0), LinkedOverride(cohort_id="W", scalar=20.0)],
)


def member(*cohort_ids: str, email: str = "ann@example.com") -> Contributor:
    return Contributor(email=email, membership=Precomputed(cohort_ids))


def test_daily_limit_takes_the_minimum(seeded_registry: CohortRegistry) -> None:
    engine = ResolutionEngine()

    assert engine.resolve(PolicyKind.DAILY_LIMIT, member("A", "B"), DAILY, seeded_registry.snapshot()) == 5
    assert engine.resolve(PolicyKind.DAILY_LIMIT, member("B"), DAILY, seeded_registry.snapshot()) == 8


def test_qc_sampling_takes_the_maximum(seeded_registry: CohortRegistry) -> None:
    engine = ResolutionEngine()

    assert engine.resolve(PolicyKind.QC_SAMPLING, member("R", "W"), QC, seeded_registry.snapshot()) == 60.0
    assert engine.resolve(PolicyKind.QC_SAMPLING, member("W"), QC, seeded_registry.snapshot()) == 20.0


def test_default_applies_without_linked_membership(seeded_registry: CohortRegistry) -> None:
    engine = ResolutionEngine()
    cohorts = seeded_registry.snapshot()

    none = engine.explain(PolicyKind.DAILY_LIMIT, member(), DAILY, cohorts)
    unlinked = engine.explain(PolicyKind.QC_SAMPLING, member("A", "B"), QC, cohorts)

    assert none.value == 10 and none.used_default
    assert unlinked.value == 100.0 and unlinked.used_default
    assert unlinked.applied == ()


def test_result_does_not_depend_on_override_order(seeded_registry: CohortRegistry) -> None:
    engine = ResolutionEngine()
    reversed_config = DAILY.with_overrides(reversed(DAILY.linked_overrides))

    assert engine.resolve(PolicyKind.DAILY_LIMIT, member("A", "B"), reversed_config, seeded_registry.snapshot()) == 5


def test_archived_override_still_applies_and_is_flagged(seeded_registry: CohortRegistry) -> None:
    seeded_registry.archive("A")
    engine = ResolutionEngine()

    resolution = engine.explain(PolicyKind.DAILY_LIMIT, member("A"), DAILY, seeded_registry.snapshot())

    assert resolution.value == 5
    assert resolution.archived_applied == ("A",)
    assert resolution.to_dict()["applied"] == [{"cohort_id": "A", "scalar": 5}]


def test_derivable_membership_matches_live_in_scope_cohorts(seeded_registry: CohortRegistry) -> None:
    engine = ResolutionEngine(scopes=seeded_registry.scopes)
    metrics = {
        MetricType.TASKS_SUBMITTED: 20.0,
        MetricType.ACCURACY_RATE: 95.0,
        MetricType.AVG_HANDLING_TIME: 45.0,
    }
    contributor = Contributor(email="ann@example.com", membership=Derivable(metrics=metrics))

    resolution = engine.explain(PolicyKind.DAILY_LIMIT, contributor, DAILY, seeded_registry.snapshot())

    # R matches too but belongs to a QC step
    assert resolution.membership == frozenset({"A", "B"})
    assert resolution.value == 5


def test_archived_cohorts_are_not_re_derived(seeded_registry: CohortRegistry) -> None:
    seeded_registry.archive("A")
    engine = ResolutionEngine()
    metrics = {MetricType.TASKS_SUBMITTED: 20.0, MetricType.ACCURACY_RATE: 95.0}
    cohorts = seeded_registry.snapshot()

    fresh = Contributor(email="new@example.com", membership=Derivable(metrics=metrics))
    cached = Contributor(
        email="old@example.com",
        membership=Derivable(metrics=metrics, cached_cohort_ids=frozenset({"A"})),
    )

    assert engine.resolve(PolicyKind.DAILY_LIMIT, fresh, DAILY, cohorts) == 8
    assert engine.resolve(PolicyKind.DAILY_LIMIT, cached, DAILY, cohorts) == 5


def test_missing_metrics_fail_closed_to_default(seeded_registry: CohortRegistry) -> None:
    telemetry = CohortTelemetry()
    engine = ResolutionEngine(telemetry=telemetry)
    contributor = Contributor(email="quiet@example.com", membership=Derivable(metrics={}))

    resolution = engine.explain(PolicyKind.DAILY_LIMIT, contributor, DAILY, seeded_registry.snapshot())

    assert resolution.used_default
    assert telemetry.fallback_count == 2
    assert telemetry.metrics_snapshot()["resolutions"] == {"daily_limit:default": 1}


def test_resolve_many_and_kind_mismatch(seeded_registry: CohortRegistry) -> None:
    engine = ResolutionEngine()
    cohorts = seeded_registry.snapshot()
    people = [member("A", email="a@example.com"), member(email="b@example.com")]

    values = [item.value for item in engine.resolve_many(PolicyKind.DAILY_LIMIT, people, DAILY, cohorts)]

    assert values == [5, 10]
    with pytest.raises(ValueError):
        engine.resolve(PolicyKind.QC_SAMPLING, people[0], DAILY, cohorts)


def test_overlapping_membership_example() -> None:
    engine = ResolutionEngine()
    both = member("A", "B")
    daily = PolicyConfig(
        kind=PolicyKind.DAILY_LIMIT,
        default=1,
        linked_overrides=[LinkedOverride(cohort_id="A", scalar=5), LinkedOverride(cohort_id="B", scalar=10)],
    )
    qc = PolicyConfig(
        kind=PolicyKind.QC_SAMPLING,
        default=100.0,
        linked_overrides=[LinkedOverride(cohort_id="A", scalar=20.0), LinkedOverride(cohort_id="B", scalar=60.0)],
    )

    assert engine.resolve(PolicyKind.DAILY_LIMIT, both, daily, {}) == 5
    assert engine.resolve(PolicyKind.QC_SAMPLING, both, qc, {}) == 60.0


def test_disabled_daily_limit_imposes_no_limit(seeded_registry: CohortRegistry) -> None:
    telemetry = CohortTelemetry()
    engine = ResolutionEngine(telemetry=telemetry)
    disabled = DAILY.with_enabled(False)

    resolution = engine.explain(PolicyKind.DAILY_LIMIT, member("A", "B"), disabled, seeded_registry.snapshot())

    assert resolution.value is None
    assert resolution.enabled is False
    assert resolution.used_default is False
    assert resolution.applied == ()
    assert resolution.membership == frozenset({"A", "B"})
    assert resolution.to_dict()["enabled"] is False
    assert telemetry.metrics_snapshot()["resolutions"] == {}
    assert engine.resolve(PolicyKind.DAILY_LIMIT, member("A"), DAILY, seeded_registry.snapshot()) == 5
