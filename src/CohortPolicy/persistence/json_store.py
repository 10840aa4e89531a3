"""JSON-file repositories used by the command line."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from CohortPolicy.cohorts.registry import RegistryState
from CohortPolicy.policy.models import PolicyConfig
from CohortPolicy.scopes import PolicyKind

logger = logging.getLogger(__name__)


def _write_atomic(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(payload, encoding="utf-8")
    os.replace(tmp, path)


class JsonCohortRepository:
    """Stores the whole registry state in a single JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RegistryState:
        if not self._path.exists():
            return RegistryState()
        return RegistryState.model_validate_json(self._path.read_text(encoding="utf-8"))

    def save(self, state: RegistryState) -> None:
        _write_atomic(self._path, state.model_dump_json(indent=2))
        logger.debug("persistence.cohorts_saved", extra={"path": str(self._path), "cohorts": len(state.cohorts)})


class JsonPolicyRepository:
    """One ``<kind>.json`` document per policy kind under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def path_for(self, kind: PolicyKind) -> Path:
        return self._root / f"{kind.value}.json"

    def load(self, kind: PolicyKind) -> Optional[PolicyConfig]:
        path = self.path_for(kind)
        if not path.exists():
            return None
        config = PolicyConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
        if config.kind is not kind:
            raise ValueError(f"{path} holds a {config.kind.value} configuration")
        return config

    def save(self, config: PolicyConfig) -> None:
        path = self.path_for(config.kind)
        _write_atomic(path, config.model_dump_json(indent=2))
        logger.debug("persistence.policy_saved", extra={"path": str(path), "policy_kind": config.kind.value})


__all__ = ["JsonCohortRepository", "JsonPolicyRepository"]
