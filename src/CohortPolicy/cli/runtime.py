"""Services shared by CLI commands for the active context."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml

from CohortPolicy.cohorts.registry import CohortRegistry
from CohortPolicy.cohorts.telemetry import CohortTelemetry
from CohortPolicy.notifications import LoggingNotificationSink
from CohortPolicy.persistence import JsonCohortRepository, JsonPolicyRepository
from CohortPolicy.policy.store import PolicyLinkStore
from CohortPolicy.scopes import PolicyKind

from .config import ResolvedConfig

COHORTS_FILENAME = "cohorts.json"
POLICIES_DIRNAME = "policies"


def read_document(path: Path) -> Any:
    """Load a YAML or JSON input file; JSON is parsed as YAML."""

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise typer.BadParameter(f"File not found: {path}") from exc
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"Unable to parse {path}: {exc}") from exc


@dataclass
class CommandRuntime:
    """Holds context required during command execution."""

    config: ResolvedConfig
    logger: logging.Logger
    telemetry: CohortTelemetry = field(default_factory=CohortTelemetry)
    _registry: Optional[CohortRegistry] = None

    @property
    def data_root(self) -> Path:
        return self.config.data_root

    @property
    def show_progress(self) -> bool:
        return self.config.log_format != "json"

    @property
    def sink(self) -> LoggingNotificationSink:
        return LoggingNotificationSink(self.logger)

    @property
    def registry(self) -> CohortRegistry:
        if self._registry is None:
            repository = JsonCohortRepository(self.data_root / COHORTS_FILENAME)
            self._registry = CohortRegistry.load(repository, scopes=self.config.scopes, sink=self.sink)
        return self._registry

    def policy_store(self, kind: PolicyKind) -> PolicyLinkStore:
        return PolicyLinkStore.load(
            kind,
            self.registry,
            JsonPolicyRepository(self.data_root / POLICIES_DIRNAME),
            default=self.config.context.default_for(kind),
            sink=self.sink,
            telemetry=self.telemetry,
        )


def build_runtime(ctx: typer.Context) -> CommandRuntime:
    """Construct (once per invocation) a runtime from the Typer context."""

    obj: Dict[str, Any] = ctx.obj
    runtime = obj.get("runtime")
    if runtime is None:
        runtime = CommandRuntime(config=obj["config"], logger=obj["logger"])
        obj["runtime"] = runtime
    return runtime


__all__ = ["CommandRuntime", "build_runtime", "read_document"]
