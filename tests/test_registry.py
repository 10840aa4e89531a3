from __future__ import annotations

import pytest

from CohortPolicy.cohorts import (
    CohortDraft,
    CohortRegistry,
    CohortStatus,
    Condition,
    LogicalOperator,
    validate_draft,
)
from CohortPolicy.exceptions import (
    ArchivedCohortImmutableError,
    InvalidCohortDefinitionError,
    UnknownCohortError,
)
from CohortPolicy.notifications import PolicyOutcome
from CohortPolicy.persistence import InMemoryCohortRepository, InMemoryPolicyRepository
from CohortPolicy.policy import PolicyLinkStore
from CohortPolicy.scopes import PolicyKind, PolicyScopes

from conftest import make_draft


def test_create_assigns_identifier_and_defaults(registry: CohortRegistry) -> None:
    cohort = registry.create(make_draft("Fast makers", ("avg_handling_time", "<", 3), ("tasks_submitted", ">", 5)))

    assert cohort.cohort_id == "cohort-1"
    assert cohort.status is CohortStatus.LIVE
    assert cohort.step_id == "step-maker"
    assert cohort.member_type.value == "Makers"
    assert cohort.description == "Cohort based on 2 condition(s)"
    assert cohort.logical_operators == (LogicalOperator.AND,)
    assert registry.create(make_draft("Second", ("tasks_skipped", ">", 1))).cohort_id == "cohort-2"


def test_step_names_are_canonicalised(registry: CohortRegistry) -> None:
    cohort = registry.create(make_draft("QC", ("tasks_accepted", ">", 1), step="Quality Check"))
    reviewer = registry.create(make_draft("Rev", ("tasks_accepted", ">", 1), step="Reviewer"))

    assert cohort.step_id == "step-quality-check"
    assert reviewer.member_type.value == "Reviewer"
    assert registry.list_by_step("Quality Check") == (cohort,)


def test_validate_draft_reports_every_problem() -> None:
    draft = CohortDraft(
        name="  ",
        conditions=[
            Condition(condition_id="c1", metric="tasks_submitted", operator=">", value="many"),
            Condition(condition_id="c1", metric="accuracy_rate", operator=">", value="P200", use_percentile=True),
        ],
        logical_operators=[],
    )

    fields = [violation.field for violation in validate_draft(draft)]

    assert "name" in fields
    assert "conditions.c1.value" in fields
    assert "conditions.c1" in fields
    assert "logical_operators" in fields
    assert validate_draft(CohortDraft(name="empty"))[0].field == "conditions"


def test_create_rejects_invalid_draft_without_side_effects(
    registry: CohortRegistry, cohort_repository: InMemoryCohortRepository
) -> None:
    with pytest.raises(InvalidCohortDefinitionError) as excinfo:
        registry.create(make_draft("Bad", ("accuracy_rate", ">", "P101"), percentile=True))

    assert excinfo.value.violations[0].field == "conditions.c1.value"
    assert registry.all() == ()
    assert cohort_repository.saves == 0


def test_create_rejects_duplicate_identifier(registry: CohortRegistry) -> None:
    registry.create(make_draft("One", ("tasks_submitted", ">", 1)), cohort_id="A")

    with pytest.raises(InvalidCohortDefinitionError):
        registry.create(make_draft("Two", ("tasks_submitted", ">", 1)), cohort_id="A")


def test_unknown_cohort(registry: CohortRegistry) -> None:
    with pytest.raises(UnknownCohortError):
        registry.get("missing")
    assert registry.exists("missing") is False


def test_archived_cohort_is_immutable_until_unarchived(seeded_registry: CohortRegistry) -> None:
    seeded_registry.archive("A")
    replacement = make_draft("High volume v2", ("tasks_submitted", ">", 20))

    with pytest.raises(ArchivedCohortImmutableError):
        seeded_registry.update("A", replacement)
    with pytest.raises(ArchivedCohortImmutableError):
        seeded_registry.set_members("A", ["someone@example.com"])

    seeded_registry.unarchive("A")
    updated = seeded_registry.update("A", replacement)
    assert updated.name == "High volume v2"
    assert updated.description == seeded_registry.get("A").description


def test_archive_is_idempotent_and_notifies_once(seeded_registry: CohortRegistry, sink) -> None:
    first = seeded_registry.archive("B")
    second = seeded_registry.archive("B")

    assert first == second
    assert first.is_archived
    assert sink.outcomes().count(PolicyOutcome.COHORT_ARCHIVED) == 1
    assert seeded_registry.list_by_status(CohortStatus.ARCHIVED) == (first,)


def test_eligible_and_linkable_follow_policy_scope(seeded_registry: CohortRegistry) -> None:
    seeded_registry.archive("B")

    assert {c.cohort_id for c in seeded_registry.eligible(PolicyKind.DAILY_LIMIT)} == {"A", "B"}
    assert {c.cohort_id for c in seeded_registry.eligible(PolicyKind.QC_SAMPLING)} == {"R", "W"}
    assert [c.cohort_id for c in seeded_registry.linkable(PolicyKind.DAILY_LIMIT)] == ["A"]
    assert [c.cohort_id for c in seeded_registry.linkable(PolicyKind.QC_SAMPLING, exclude=["R"])] == ["W"]
    assert [c.cohort_id for c in seeded_registry.linkable(PolicyKind.QC_SAMPLING, search="SLOW")] == ["R"]


def test_custom_scopes_change_eligibility() -> None:
    registry = CohortRegistry(scopes=PolicyScopes(qc_steps=("Quality Check",)))
    registry.create(make_draft("Checkers", ("tasks_accepted", ">", 1), step="Quality Check"), cohort_id="Q")
    registry.create(make_draft("Reviewers", ("tasks_accepted", ">", 1), step="Reviewer"), cohort_id="R")

    assert [c.cohort_id for c in registry.eligible(PolicyKind.QC_SAMPLING)] == ["Q"]


def test_set_members_updates_count_and_lookup(seeded_registry: CohortRegistry) -> None:
    updated = seeded_registry.set_members("A", ["Ann@Example.com", "bob@example.com", "ann@example.com", " "])

    assert updated.member_count == 2
    assert seeded_registry.members("A") == frozenset({"ann@example.com", "bob@example.com"})
    assert seeded_registry.memberships_for("ANN@example.com") == frozenset({"A"})


def test_writes_are_persisted_and_reloadable(
    seeded_registry: CohortRegistry, cohort_repository: InMemoryCohortRepository
) -> None:
    seeded_registry.set_members("R", ["rev@example.com"])
    seeded_registry.archive("W")

    reloaded = CohortRegistry.load(cohort_repository)

    assert reloaded.snapshot() == seeded_registry.snapshot()
    assert reloaded.members("R") == frozenset({"rev@example.com"})
    assert reloaded.get("W").is_archived
    assert reloaded.create(make_draft("Next", ("tasks_skipped", ">", 1))).cohort_id == "cohort-1"


def test_draft_condition_editing_keeps_joiners_aligned() -> None:
    draft = make_draft(
        "Edit",
        ("tasks_submitted", ">", 1),
        ("tasks_skipped", ">", 1),
        ("tasks_accepted", ">", 1),
        operators=["AND", "OR"],
    )

    middle_removed = draft.without_condition("c2")
    first_removed = draft.without_condition("c1")
    extended = middle_removed.with_condition(
        Condition(condition_id="c4", metric="tasks_rejected", operator="<", value=3), LogicalOperator.OR
    )

    assert [c.condition_id for c in middle_removed.conditions] == ["c1", "c3"]
    assert middle_removed.joiners() == (LogicalOperator.OR,)
    assert first_removed.joiners() == (LogicalOperator.OR,)
    assert extended.joiners() == (LogicalOperator.OR, LogicalOperator.OR)
    assert draft.without_condition("nope") is draft
    assert validate_draft(extended) == ()


def test_update_keeps_the_workflow_step(seeded_registry: CohortRegistry) -> None:
    store = PolicyLinkStore.load(PolicyKind.DAILY_LIMIT, seeded_registry, InMemoryPolicyRepository())
    store.add_override("A", 4)
    store.save()

    with pytest.raises(InvalidCohortDefinitionError) as excinfo:
        seeded_registry.update("A", make_draft("Moved", ("tasks_submitted", ">", 10), step="Reviewer"))

    assert [violation.field for violation in excinfo.value.violations] == ["workflow_step"]
    assert seeded_registry.get("A").step_id == "step-maker"
    store.set_default(3)
    assert store.save().default == 3
    assert seeded_registry.update("A", make_draft("Renamed", ("tasks_submitted", ">", 12))).name == "Renamed"
