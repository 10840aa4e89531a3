"""In-memory repositories primarily for unit tests."""

from __future__ import annotations

from typing import Dict, List, Optional

from CohortPolicy.cohorts.registry import RegistryState
from CohortPolicy.policy.models import PolicyConfig
from CohortPolicy.scopes import PolicyKind


class InMemoryCohortRepository:
    """Keeps the last saved registry state; ``saves`` counts writes."""

    def __init__(self, state: Optional[RegistryState] = None) -> None:
        self.state = state or RegistryState()
        self.saves = 0

    def load(self) -> RegistryState:
        return self.state.model_copy(deep=True)

    def save(self, state: RegistryState) -> None:
        self.state = state.model_copy(deep=True)
        self.saves += 1


class InMemoryPolicyRepository:
    def __init__(self) -> None:
        self.configs: Dict[PolicyKind, PolicyConfig] = {}
        self.history: List[PolicyConfig] = []

    def load(self, kind: PolicyKind) -> Optional[PolicyConfig]:
        return self.configs.get(kind)

    def save(self, config: PolicyConfig) -> None:
        self.configs[config.kind] = config
        self.history.append(config)


__all__ = ["InMemoryCohortRepository", "InMemoryPolicyRepository"]
