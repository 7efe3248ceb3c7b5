"""
Shared helpers for CLI commands: config loading, logging and exit codes.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console

from rfpscout.core.config import AppConfig, ConfigError, load_app_config
from rfpscout.core.feed.ingestor import FeedError
from rfpscout.core.logging import setup_logging
from rfpscout.core.normalize.parsing import parse_date
from rfpscout.core.orchestrator.runner import PipelineError
from rfpscout.persistence.transport import StoreError

console = Console()
err_console = Console(stderr=True)

# Errors that abort a command with exit code 1
FATAL_ERRORS = (PipelineError, FeedError, StoreError, ConfigError)

CONFIG_OPTION_HELP = "Path to app.yaml (default: configs/app.yaml)"


def fail(message: str, detail: str | None = None) -> NoReturn:
    err_console.print(f"[red]Error:[/red] {message}")
    if detail:
        err_console.print(f"[dim]{detail}[/dim]")
    raise typer.Exit(1)


def load_config(path: Optional[Path], verbose: bool = False) -> AppConfig:
    """Load config and configure logging; exits 1 on a config error."""
    try:
        config = load_app_config(path)
    except ConfigError as e:
        fail(str(e), e.details)

    setup_logging(config.logging, verbose=verbose)
    config.ensure_directories()
    return config


def parse_since(value: Optional[str]) -> datetime | None:
    """Parse a ``--since`` value into a naive UTC datetime."""
    if value is None:
        return None
    parsed = parse_date(value).value
    if parsed is None:
        raise typer.BadParameter(f"Unrecognized date: {value!r}", param_hint="--since")
    return parsed
