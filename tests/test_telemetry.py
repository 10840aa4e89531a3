from __future__ import annotations

import logging

import pytest

from CohortPolicy.cohorts import CohortTelemetry
from CohortPolicy.notifications import LoggingNotificationSink, Notification, PolicyOutcome


def test_counters_are_kept_in_process() -> None:
    telemetry = CohortTelemetry()
    telemetry.record_fallback(reason="missing_metric")
    telemetry.record_resolution(kind="daily_limit", used_default=False)
    telemetry.record_resolution(kind="daily_limit", used_default=True)
    telemetry.record_save(kind="qc_sampling", accepted=False)

    snapshot = telemetry.metrics_snapshot()

    assert snapshot["fallback_total"] == 1
    assert snapshot["resolutions"] == {"daily_limit:override": 1, "daily_limit:default": 1}
    assert snapshot["saves"] == {"qc_sampling:rejected": 1}


def test_otel_counters_are_created_when_enabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COHORT_ENABLE_OTEL", "1")
    telemetry = CohortTelemetry()

    assert telemetry._counter_saves is not None
    telemetry.record_save(kind="daily_limit", accepted=True)
    telemetry.record_fallback(reason="empty_population")
    assert telemetry.metrics_snapshot()["saves"] == {"daily_limit:accepted": 1}


def test_logging_sink_warns_on_validation_failure(caplog: pytest.LogCaptureFixture) -> None:
    sink = LoggingNotificationSink(logging.getLogger("tests.notifications"))

    with caplog.at_level(logging.INFO, logger="tests.notifications"):
        sink.notify(Notification(PolicyOutcome.POLICY_SAVED, "daily_limit"))
        sink.notify(Notification(PolicyOutcome.VALIDATION_FAILED, "qc_sampling", {"violations": []}))

    levels = [(record.levelno, record.getMessage()) for record in caplog.records]
    assert levels == [
        (logging.INFO, "policy.policy_saved"),
        (logging.WARNING, "policy.validation_failed"),
    ]
