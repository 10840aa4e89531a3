"""Policy kinds and the workflow steps each one may draw cohorts from."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

WORKFLOW_STEPS = ("Maker", "Reviewer", "Quality Check", "Rework")


def step_id_for(step: str) -> str:
    """Return the canonical step id ("Quality Check" -> "step-quality-check")."""

    token = step.strip()
    if token.startswith("step-"):
        return token
    return "step-" + "-".join(token.lower().split())


class PolicyKind(str, Enum):
    """The two independent per-contributor policies."""

    DAILY_LIMIT = "daily_limit"
    QC_SAMPLING = "qc_sampling"

    @property
    def label(self) -> str:
        return "Daily task limit" if self is PolicyKind.DAILY_LIMIT else "QC sampling percentage"

    @property
    def toggleable(self) -> bool:
        """Only the daily limit can be switched off; sampling is always on."""

        return self is PolicyKind.DAILY_LIMIT

    @classmethod
    def parse(cls, raw: str) -> "PolicyKind":
        token = raw.strip().lower().replace("-", "_")
        aliases = {"daily": cls.DAILY_LIMIT, "limit": cls.DAILY_LIMIT, "qc": cls.QC_SAMPLING, "sampling": cls.QC_SAMPLING}
        if token in aliases:
            return aliases[token]
        return cls(token)


@dataclass(frozen=True)
class PolicyScopes:
    """Workflow-step scoping: which cohorts a policy may ever consider."""

    maker_step: str = "step-maker"
    qc_steps: Sequence[str] = field(default_factory=lambda: ("step-reviewer", "step-rework"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "maker_step", step_id_for(self.maker_step))
        object.__setattr__(self, "qc_steps", tuple(step_id_for(step) for step in self.qc_steps))

    def steps_for(self, kind: PolicyKind) -> frozenset[str]:
        if kind is PolicyKind.DAILY_LIMIT:
            return frozenset({self.maker_step})
        return frozenset(self.qc_steps)

    def covers(self, kind: PolicyKind, step_id: str) -> bool:
        return step_id_for(step_id) in self.steps_for(kind)


__all__ = ["PolicyKind", "PolicyScopes", "WORKFLOW_STEPS", "step_id_for"]
