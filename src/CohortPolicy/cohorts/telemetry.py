"""Counters for cohort evaluation, resolution and policy saves."""

from __future__ import annotations

import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping, Optional

from opentelemetry import metrics as otel_metrics


@dataclass
class CohortTelemetry:
    """Captures fallback, resolution and save counts for diagnostics.

    Counters are always kept in-process. When ``COHORT_ENABLE_OTEL=1`` they
    are mirrored to OpenTelemetry counters on the global meter provider.
    """

    _fallbacks: Counter = field(default_factory=Counter)
    _resolutions: Counter = field(default_factory=Counter)
    _saves: Counter = field(default_factory=Counter)
    _counter_fallbacks: Optional[object] = None
    _counter_resolutions: Optional[object] = None
    _counter_saves: Optional[object] = None

    def __post_init__(self) -> None:
        if os.environ.get("COHORT_ENABLE_OTEL", "0") != "1":
            return
        meter = otel_metrics.get_meter_provider().get_meter("cohort_policy")
        self._counter_fallbacks = meter.create_counter("cohort.evaluation_fallbacks_total")
        self._counter_resolutions = meter.create_counter("policy.resolutions_total")
        self._counter_saves = meter.create_counter("policy.saves_total")

    def record_fallback(self, *, reason: str) -> None:
        self._fallbacks[reason] += 1
        if self._counter_fallbacks is not None:
            self._counter_fallbacks.add(1, attributes={"reason": reason})

    def record_resolution(self, *, kind: str, used_default: bool) -> None:
        self._resolutions[(kind, used_default)] += 1
        if self._counter_resolutions is not None:
            self._counter_resolutions.add(1, attributes={"kind": kind, "default": used_default})

    def record_save(self, *, kind: str, accepted: bool) -> None:
        outcome = "accepted" if accepted else "rejected"
        self._saves[(kind, outcome)] += 1
        if self._counter_saves is not None:
            self._counter_saves.add(1, attributes={"kind": kind, "outcome": outcome})

    @property
    def fallback_count(self) -> int:
        return sum(self._fallbacks.values())

    def metrics_snapshot(self) -> Mapping[str, object]:
        return {
            "fallbacks": dict(self._fallbacks),
            "fallback_total": self.fallback_count,
            "resolutions": {f"{kind}:{'default' if default else 'override'}": count for (kind, default), count in self._resolutions.items()},
            "saves": {f"{kind}:{outcome}": count for (kind, outcome), count in self._saves.items()},
        }


__all__ = ["CohortTelemetry"]
