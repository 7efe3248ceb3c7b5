"""
Run ledger: append-only record of pipeline invocations.

The latest completed run's start time is the next run's feed lower bound.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy.orm import Session

from rfpscout.core.normalize.parsing import utcnow

from .db import Database
from .models import RunRecord
from .repo import RunRepository

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 7

STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"


@dataclass
class RunSummary:
    """What one run found and did."""

    run_uid: str
    kind: str = "run"
    status: str = STATUS_COMPLETED
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    lower_bound: datetime | None = None

    items_found: int = 0
    items_promising: int = 0
    items_fetched: int = 0
    items_analyzed: int = 0
    high_score_count: int = 0
    merged_count: int = 0
    cleaned_count: int = 0
    errors_count: int = 0

    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_uid": self.run_uid,
            "kind": self.kind,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "lower_bound": self.lower_bound,
            "items_found": self.items_found,
            "items_promising": self.items_promising,
            "items_fetched": self.items_fetched,
            "items_analyzed": self.items_analyzed,
            "high_score_count": self.high_score_count,
            "merged_count": self.merged_count,
            "cleaned_count": self.cleaned_count,
            "errors_count": self.errors_count,
            "error_message": self.error_message,
        }


class RunLedger:
    """Reads and appends RunRecords in one store."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def record_run(self, summary: RunSummary) -> RunRecord:
        """Append a run. Existing records are never modified."""
        with self.database.session() as session:
            return self.append(session, summary)

    @staticmethod
    def append(session: Session, summary: RunSummary) -> RunRecord:
        """Append a run inside the caller's transaction."""
        fields = summary.to_dict()
        if fields["finished_at"] is None:
            fields["finished_at"] = utcnow()
        run = RunRepository(session).add(**fields)
        logger.info(
            f"Recorded {summary.kind} run {summary.run_uid} ({summary.status}): "
            f"found={summary.items_found} analyzed={summary.items_analyzed} "
            f"high={summary.high_score_count}"
        )
        return run

    def record_failure(self, summary: RunSummary, error: BaseException | str) -> RunRecord:
        """Append a FAILED marker; counts are zeroed."""
        failed = RunSummary(
            run_uid=summary.run_uid,
            kind=summary.kind,
            status=STATUS_FAILED,
            started_at=summary.started_at,
            lower_bound=summary.lower_bound,
            error_message=str(error) or type(error).__name__,
        )
        return self.record_run(failed)

    def last_run_timestamp(self, kind: str = "run") -> datetime | None:
        """Start time of the latest completed run of ``kind``."""
        with self.database.session() as session:
            last = RunRepository(session).last_completed(kind)
            return last.started_at if last is not None else None

    def recent(self, limit: int = 10, kind: str | None = None) -> Sequence[RunRecord]:
        with self.database.session() as session:
            return RunRepository(session).get_recent(kind=kind, limit=limit)


def default_lower_bound(now: datetime | None = None, lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> datetime:
    """Lower bound used when no previous run is recorded."""
    return (now or utcnow()) - timedelta(days=lookback_days)
