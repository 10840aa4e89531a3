"""Configuration loading utilities for the cohort-policy CLI."""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from CohortPolicy.policy.models import DEFAULT_SCALARS, Scalar
from CohortPolicy.scopes import PolicyKind, PolicyScopes, step_id_for

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "cohort_policy" / "cli.toml"
DEFAULT_STATE_HOME = Path.home() / ".cohort_policy"
CONTEXT_FILENAME = "context"
LOG_FORMATS = {"text", "json"}


def _expand(path: Optional[str | Path], base: Optional[Path]) -> Optional[Path]:
    if path is None:
        return None
    candidate = Path(path).expanduser()
    if not candidate.is_absolute() and base is not None:
        candidate = (base / candidate).resolve()
    return candidate


def _split_steps(raw: str) -> tuple[str, ...]:
    return tuple(step_id_for(item) for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class ContextConfig:
    """Configuration specific to a named CLI context."""

    name: str
    data_root: Path
    log_level: str = "INFO"
    maker_step: str = "step-maker"
    qc_steps: tuple[str, ...] = ("step-reviewer", "step-rework")
    default_daily_limit: Scalar = DEFAULT_SCALARS[PolicyKind.DAILY_LIMIT]
    default_sampling_percentage: Scalar = DEFAULT_SCALARS[PolicyKind.QC_SAMPLING]

    @property
    def scopes(self) -> PolicyScopes:
        return PolicyScopes(maker_step=self.maker_step, qc_steps=self.qc_steps)

    def default_for(self, kind: PolicyKind) -> Scalar:
        if kind is PolicyKind.DAILY_LIMIT:
            return self.default_daily_limit
        return self.default_sampling_percentage


@dataclass(frozen=True)
class CLIConfig:
    """Raw CLI configuration before overrides are applied."""

    contexts: Dict[str, ContextConfig] = field(default_factory=dict)
    default_context: Optional[str] = None


@dataclass(frozen=True)
class ResolvedConfig:
    """Final configuration used during a CLI invocation."""

    context: ContextConfig
    contexts: Dict[str, ContextConfig]
    log_format: str
    verbose: bool
    data_root: Path
    config_path: Optional[Path]

    @property
    def scopes(self) -> PolicyScopes:
        return self.context.scopes


def _parse_context(name: str, data: Mapping[str, Any], base_dir: Path) -> ContextConfig:
    data_root = _expand(data.get("data_root"), base_dir)
    if data_root is None:
        raise ValueError(f"Context '{name}' missing data_root")
    defaults = ContextConfig(name=name, data_root=data_root)
    qc_steps = data.get("qc_steps")
    if isinstance(qc_steps, str):
        qc_steps = _split_steps(qc_steps)
    return ContextConfig(
        name=name,
        data_root=data_root,
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
        maker_step=step_id_for(str(data.get("maker_step", defaults.maker_step))),
        qc_steps=tuple(step_id_for(str(step)) for step in qc_steps) if qc_steps else defaults.qc_steps,
        default_daily_limit=data.get("default_daily_limit", defaults.default_daily_limit),
        default_sampling_percentage=data.get("default_sampling_percentage", defaults.default_sampling_percentage),
    )


def _load_file_config(path: Path) -> CLIConfig:
    data: Dict[str, Any]
    suffix = path.suffix.lower()
    content = path.read_bytes()
    if suffix == ".json":
        data = json.loads(content)
    elif suffix in {".toml", ".tml"}:
        data = tomllib.loads(content.decode("utf-8"))
    else:
        raise ValueError(f"Unsupported config format: {path.suffix}")

    contexts = {
        name: _parse_context(name, ctx_data or {}, path.parent)
        for name, ctx_data in (data.get("contexts") or {}).items()
    }
    return CLIConfig(contexts=contexts, default_context=data.get("default_context"))


def _default_cli_config(base: Path) -> CLIConfig:
    context = ContextConfig(name="dev", data_root=(base / ".cohort-data").resolve())
    return CLIConfig(contexts={context.name: context}, default_context=context.name)


def _state_home(env: Mapping[str, str]) -> Path:
    override = env.get("CP_CONTEXT_HOME")
    if override:
        return Path(override).expanduser()
    return DEFAULT_STATE_HOME


def _state_path(env: Mapping[str, str]) -> Path:
    return _state_home(env) / CONTEXT_FILENAME


def read_current_context(env: Mapping[str, str]) -> Optional[str]:
    path = _state_path(env)
    try:
        return path.read_text(encoding="utf-8").strip() or None
    except FileNotFoundError:
        return None


def write_current_context(env: Mapping[str, str], context_name: str) -> None:
    home = _state_home(env)
    home.mkdir(parents=True, exist_ok=True)
    (home / CONTEXT_FILENAME).write_text(context_name, encoding="utf-8")


def _apply_env_overrides(context: ContextConfig, env: Mapping[str, str]) -> ContextConfig:
    updated = context
    data_root = env.get("CP_DATA_ROOT")
    log_level = env.get("CP_LOG_LEVEL")
    maker_step = env.get("CP_MAKER_STEP")
    qc_steps = env.get("CP_QC_STEPS")
    if data_root:
        updated = replace(updated, data_root=_expand(data_root, None) or updated.data_root)
    if log_level:
        updated = replace(updated, log_level=log_level.upper())
    if maker_step:
        updated = replace(updated, maker_step=step_id_for(maker_step))
    if qc_steps:
        updated = replace(updated, qc_steps=_split_steps(qc_steps))
    return updated


def _apply_cli_overrides(context: ContextConfig, overrides: Mapping[str, Any]) -> ContextConfig:
    updated = context
    if overrides.get("data_root"):
        data_root = _expand(overrides["data_root"], None)
        if data_root is not None:
            updated = replace(updated, data_root=data_root)
    if overrides.get("log_level"):
        updated = replace(updated, log_level=str(overrides["log_level"]).upper())
    return updated


def _select_context_name(
    config: CLIConfig,
    env: Mapping[str, str],
    overrides: Mapping[str, Any],
) -> str:
    if overrides.get("context"):
        return overrides["context"]
    if env.get("CP_CONTEXT"):
        return env["CP_CONTEXT"]
    persisted = read_current_context(env)
    if persisted and persisted in config.contexts:
        return persisted
    if config.default_context and config.default_context in config.contexts:
        return config.default_context
    if config.contexts:
        return next(iter(config.contexts.keys()))
    raise ValueError("No CLI contexts have been configured")


def load_cli_config(
    config_path: Optional[Path],
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ResolvedConfig:
    env = os.environ if env is None else env
    overrides = dict(overrides or {})

    path: Optional[Path] = None
    if config_path:
        path = Path(config_path).expanduser()
    elif env.get("CP_CLI_CONFIG"):
        path = Path(env["CP_CLI_CONFIG"]).expanduser()
    elif DEFAULT_CONFIG_PATH.exists():
        path = DEFAULT_CONFIG_PATH

    if path and path.is_file():
        config = _load_file_config(path)
    else:
        config = _default_cli_config(Path.cwd())
        path = None

    context_name = _select_context_name(config, env, overrides)
    if context_name not in config.contexts:
        raise ValueError(f"Unknown context '{context_name}'")
    context = config.contexts[context_name]
    context = _apply_env_overrides(context, env)
    context = _apply_cli_overrides(context, overrides)

    data_root = context.data_root
    data_root.mkdir(parents=True, exist_ok=True)

    log_format = (overrides.get("log_format") or env.get("CP_LOG_FORMAT") or "text").lower()
    if log_format not in LOG_FORMATS:
        raise ValueError("log_format must be 'text' or 'json'")
    verbose = bool(overrides.get("verbose") or env.get("CP_VERBOSE"))

    return ResolvedConfig(
        context=context,
        contexts=dict(config.contexts),
        log_format=log_format,
        verbose=verbose,
        data_root=data_root,
        config_path=path,
    )


__all__ = [
    "CLIConfig",
    "ContextConfig",
    "ResolvedConfig",
    "load_cli_config",
    "read_current_context",
    "write_current_context",
]
