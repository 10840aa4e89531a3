"""CLI package exports."""

from .app import app, main
from .config import (
    CLIConfig,
    ContextConfig,
    ResolvedConfig,
    load_cli_config,
    read_current_context,
    write_current_context,
)

__all__ = [
    "app",
    "main",
    "CLIConfig",
    "ContextConfig",
    "ResolvedConfig",
    "load_cli_config",
    "read_current_context",
    "write_current_context",
]
