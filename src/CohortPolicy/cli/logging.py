"""Logging utilities for the cohort-policy CLI."""

from __future__ import annotations

import logging
import logging.config
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

LOGGER_NAME = "CohortPolicy"
LOG_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(log_path: Path, log_format: str, verbose: bool, level: str = "INFO") -> logging.Logger:
    """Route package loggers to a log file and stderr in ``text`` or ``json`` form."""

    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = "json" if log_format == "json" else "text"
    effective = "DEBUG" if verbose else level.upper()
    handlers: dict[str, dict[str, object]] = {
        "file": {
            "class": "logging.FileHandler",
            "filename": str(log_path),
            "mode": "a",
            "encoding": "utf-8",
            "formatter": formatter,
        },
        # stdout carries command output only
        "console": {
            "class": "logging.StreamHandler",
            "stream": sys.stderr,
            "formatter": formatter,
            "level": "DEBUG" if verbose else "WARNING",
        },
    }
    formatters = {
        "text": {"format": LOG_FIELDS},
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": LOG_FIELDS,
        },
    }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": formatters,
            "handlers": handlers,
            "loggers": {
                LOGGER_NAME: {
                    "handlers": ["console", "file"],
                    "level": effective,
                    "propagate": False,
                }
            },
        }
    )
    logger = logging.getLogger(f"{LOGGER_NAME}.cli")
    logger.debug("Logging configured", extra={"log_path": str(log_path), "log_format": log_format})
    return logger


@contextmanager
def progress_spinner(message: str, *, enabled: bool = True) -> Iterator[None]:
    """Show a transient stderr spinner around a save or refresh."""

    if not enabled:
        yield
        return
    columns = (SpinnerColumn(), TextColumn("{task.description}"))
    with Progress(*columns, transient=True, console=Console(stderr=True)) as progress:
        progress.add_task(message, total=None)
        yield


__all__ = ["LOGGER_NAME", "configure_logging", "progress_spinner"]
