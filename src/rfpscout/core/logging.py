"""
Logging infrastructure for RFPScout.

Console output goes through Rich (or a plain stream handler); the optional
log file gets one JSON object per line. Pipeline stages log through a
ContextualLogger so every line carries the run id, the stage, and, where
known, the listing being worked on.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson

if TYPE_CHECKING:
    from rich.console import Console

    from rfpscout.core.config.models import LoggingConfig


ROOT_LOGGER = "rfpscout"

# Extra record attributes carried into structured output
CONTEXT_KEYS = ("run_id", "stage", "listing_id", "url", "confidence")

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LEVEL_STYLES = {
    logging.DEBUG: "dim",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}


class JSONFormatter(logging.Formatter):
    """One JSON line per record, with any pipeline context attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).replace(tzinfo=None).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({key: getattr(record, key) for key in CONTEXT_KEYS if hasattr(record, key)})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode("utf-8")


class RichConsoleHandler(logging.Handler):
    """Prints records to a Rich console, prefixed with stage and listing."""

    def __init__(self, console: "Console | None" = None, level: int = logging.INFO):
        super().__init__(level)
        if console is None:
            from rich.console import Console
            console = Console(stderr=True)
        self.console = console

    def emit(self, record: logging.LogRecord) -> None:
        try:
            style = LEVEL_STYLES.get(record.levelno, "default")
            prefix = ""
            if getattr(record, "stage", None):
                prefix = f"[cyan][{record.stage}][/cyan] "
            if getattr(record, "listing_id", None):
                prefix += f"[magenta]{record.listing_id}[/magenta] "

            self.console.print(f"{prefix}[{style}]{self.format(record)}[/{style}]", markup=True, highlight=False)
            if record.exc_info:
                self.console.print_exception()
        except Exception:
            self.handleError(record)


def setup_logging(settings: "LoggingConfig", verbose: bool = False) -> logging.Logger:
    """Configure the ``rfpscout`` logger from the logging section.

    Handlers from an earlier call are replaced. ``verbose`` forces DEBUG on
    the console; the file handler always records everything.
    """
    level = logging.DEBUG if verbose else getattr(logging, settings.level)
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    if settings.rich_console:
        console_handler: logging.Handler = RichConsoleHandler(level=level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    logger.addHandler(console_handler)

    if settings.file:
        log_path = Path(settings.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        if settings.json_format:
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    return logger


class ContextualLogger(logging.LoggerAdapter):
    """Adds pipeline context (run, stage, listing) to every record.

    Per-call ``extra`` values win over the adapter's own context.
    """

    def __init__(self, logger: logging.Logger, **context: Any):
        context = {key: value for key, value in context.items() if key in CONTEXT_KEYS and value is not None}
        super().__init__(logger, context)

    @property
    def run_id(self) -> str | None:
        return self.extra.get("run_id")

    @property
    def stage(self) -> str | None:
        return self.extra.get("stage")

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextualLogger":
        """A logger for the same target with ``context`` layered on top."""
        return ContextualLogger(self.logger, **{**self.extra, **context})


def get_contextual_logger(name: str | None = None, **context: Any) -> ContextualLogger:
    """Contextual logger under ``rfpscout.<name>``."""
    base = logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)
    return ContextualLogger(base, **context)
