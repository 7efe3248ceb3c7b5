"""
Merge engine: newest-wins upsert of listings and fit verdicts.

A stored row is replaced only when the incoming copy is strictly newer
(``updated_at`` for listings, ``analyzed_at`` for verdicts). Ties keep the
stored row, so merging the same input twice writes nothing the second time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from rfpscout.core.analysis.verdict import FitVerdict
from rfpscout.core.normalize.canonical import ListingRecord
from rfpscout.core.normalize.diff import compute_diff
from rfpscout.persistence.db import Database
from rfpscout.persistence.repo import (
    ListingRepository,
    RunRepository,
    VerdictRepository,
    run_record_fields,
    to_listing_record,
)

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Counts from one merge."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    verdicts_inserted: int = 0
    verdicts_updated: int = 0
    verdicts_skipped: int = 0
    runs_copied: int = 0

    @property
    def merged_count(self) -> int:
        """Rows written (listings and verdicts)."""
        return self.inserted + self.updated + self.verdicts_inserted + self.verdicts_updated

    def to_dict(self) -> dict[str, int]:
        return {
            "merged_count": self.merged_count,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "verdicts_inserted": self.verdicts_inserted,
            "verdicts_updated": self.verdicts_updated,
            "verdicts_skipped": self.verdicts_skipped,
            "runs_copied": self.runs_copied,
        }


class MergeEngine:
    """Single-writer merge into one Database."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self._lock = threading.Lock()

    def merge(
        self,
        listings: Iterable[ListingRecord],
        verdicts: Iterable[FitVerdict] = (),
    ) -> MergeResult:
        """Upsert listings, then verdicts, in one transaction."""
        result = MergeResult()
        with self._lock, self.database.session() as session:
            self._apply(session, listings, verdicts, result)
        self._log_result(result)
        return result

    def _apply(
        self,
        session: Session,
        listings: Iterable[ListingRecord],
        verdicts: Iterable[FitVerdict],
        result: MergeResult,
    ) -> None:
        listing_repo = ListingRepository(session)
        for record in listings:
            self._merge_listing(listing_repo, record, result)

        verdict_repo = VerdictRepository(session)
        for verdict in verdicts:
            self._merge_verdict(verdict_repo, verdict, result)

    def _log_result(self, result: MergeResult) -> None:
        logger.info(
            f"Merged {result.merged_count} row(s): listings +{result.inserted} ~{result.updated} "
            f"={result.skipped}, verdicts +{result.verdicts_inserted} ~{result.verdicts_updated} "
            f"={result.verdicts_skipped}"
        )

    def _merge_listing(self, repo: ListingRepository, record: ListingRecord, result: MergeResult) -> None:
        row = repo.get(record.listing_id)
        if row is None:
            repo.insert(record)
            result.inserted += 1
            return

        if record.updated_at <= row.updated_at:
            result.skipped += 1
            return

        diff = compute_diff(to_listing_record(row), record)
        repo.replace(row, record)
        result.updated += 1
        if diff.has_changes:
            logger.info(
                f"Listing {record.listing_id} updated. {diff.summary}",
                extra={"listing_id": record.listing_id, "stage": "merge"},
            )

    def _merge_verdict(self, repo: VerdictRepository, verdict: FitVerdict, result: MergeResult) -> None:
        row = repo.get(verdict.listing_id, verdict.analysis_type)
        if row is None:
            repo.insert(verdict)
            result.verdicts_inserted += 1
            return

        if verdict.analyzed_at <= row.analyzed_at:
            result.verdicts_skipped += 1
            return

        if row.score != verdict.score or row.rating != verdict.rating.value:
            logger.info(
                f"Verdict {verdict.listing_id}/{verdict.analysis_type}: "
                f"{row.score} ({row.rating}) -> {verdict.score} ({verdict.rating.value})",
                extra={"listing_id": verdict.listing_id, "stage": "merge"},
            )
        repo.replace(row, verdict)
        result.verdicts_updated += 1

    def reconcile(
        self,
        source: Database,
        finalize: Callable[[Session, MergeResult], None] | None = None,
    ) -> MergeResult:
        """Fold a working store into this store in one transaction.

        Listings and verdicts follow the newest-wins rule. Run records are
        appended when their ``run_uid`` is not already present. ``finalize``
        runs inside the same transaction with the merge result; if it raises,
        nothing from this reconcile is committed.
        """
        with source.session() as session:
            listings = list(ListingRepository(session).iter_all())
            verdicts = list(VerdictRepository(session).iter_all())
            runs = [run_record_fields(run) for run in RunRepository(session).iter_all()]

        result = MergeResult()
        with self._lock, self.database.session() as session:
            self._apply(session, listings, verdicts, result)

            run_repo = RunRepository(session)
            for fields in runs:
                if run_repo.get_by_uid(fields["run_uid"]) is None:
                    run_repo.add(**fields)
                    result.runs_copied += 1

            if finalize is not None:
                session.flush()
                finalize(session, result)

        self._log_result(result)
        return result
