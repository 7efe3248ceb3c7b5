"""Cleanup audit reports."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import orjson

from rfpscout.core.normalize.parsing import utcnow

from .policy import CleanupOutcome

logger = logging.getLogger(__name__)


def write_cleanup_report(
    outcome: CleanupOutcome,
    reports_dir: Path | str,
    *,
    timestamp: datetime | None = None,
    warnings: list[str] | None = None,
) -> Path:
    """Write ``cleanup-report-<ts>.json`` and return its path."""
    ts = timestamp or utcnow()
    reports_dir = Path(reports_dir)
    reports_dir.mkdir(parents=True, exist_ok=True)
    path = reports_dir / f"cleanup-report-{ts.strftime('%Y%m%dT%H%M%S')}.json"

    payload = {
        "generatedAt": ts,
        "warnings": list(warnings or []),
        **outcome.to_dict(),
    }
    path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
    logger.info(f"Cleanup report written to {path}")
    return path
