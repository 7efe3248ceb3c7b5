"""
Repository pattern for database operations.

Provides clean abstractions over the ORM rows, converting to and from the
domain dataclasses the pipeline works with.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterator, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rfpscout.core.analysis.verdict import FitVerdict
from rfpscout.core.normalize.canonical import ListingRecord
from rfpscout.core.normalize.parsing import utcnow

from .models import FitVerdictRow, Listing, RunRecord


# =============================================================================
# Listing Repository
# =============================================================================


class ListingRepository:
    """Repository for Listing rows."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, listing_id: str) -> Listing | None:
        return self.session.get(Listing, listing_id)

    def get_record(self, listing_id: str) -> ListingRecord | None:
        row = self.get(listing_id)
        return to_listing_record(row) if row is not None else None

    def insert(self, record: ListingRecord) -> Listing:
        row = Listing(**record.to_dict(), first_seen_at=utcnow())
        self.session.add(row)
        self.session.flush()
        return row

    def replace(self, row: Listing, record: ListingRecord) -> Listing:
        """Overwrite every mutable column with the incoming record."""
        for key, value in record.to_dict().items():
            if key == "listing_id":
                continue
            setattr(row, key, value)
        self.session.flush()
        return row

    def iter_all(self) -> Iterator[ListingRecord]:
        stmt = select(Listing).order_by(Listing.listing_id)
        for row in self.session.execute(stmt).scalars():
            yield to_listing_record(row)

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(Listing)) or 0


def to_listing_record(row: Listing) -> ListingRecord:
    return ListingRecord.from_dict({
        "listing_id": row.listing_id,
        "title": row.title,
        "detail_url": row.detail_url,
        "updated_at": row.updated_at,
        "institution": row.institution,
        "posted_at": row.posted_at,
        "due_at": row.due_at,
        "download_url": row.download_url,
        "attachments": row.attachments,
        "content": row.content,
        "category": row.category,
    })


# =============================================================================
# Verdict Repository
# =============================================================================


class VerdictRepository:
    """Repository for FitVerdictRow rows keyed by (listing_id, analysis_type)."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, listing_id: str, analysis_type: str) -> FitVerdictRow | None:
        stmt = select(FitVerdictRow).where(
            FitVerdictRow.listing_id == listing_id,
            FitVerdictRow.analysis_type == analysis_type,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def insert(self, verdict: FitVerdict) -> FitVerdictRow:
        row = FitVerdictRow(**verdict.to_dict())
        self.session.add(row)
        self.session.flush()
        return row

    def replace(self, row: FitVerdictRow, verdict: FitVerdict) -> FitVerdictRow:
        for key, value in verdict.to_dict().items():
            setattr(row, key, value)
        self.session.flush()
        return row

    def iter_all(self) -> Iterator[FitVerdict]:
        stmt = select(FitVerdictRow).order_by(FitVerdictRow.listing_id, FitVerdictRow.analysis_type)
        for row in self.session.execute(stmt).scalars():
            yield to_fit_verdict(row)

    def analyzed_before(
        self,
        cutoff: datetime,
        analysis_type: str | None = None,
    ) -> list[FitVerdict]:
        """Verdicts whose analysis happened at or before ``cutoff``."""
        stmt = select(FitVerdictRow).where(FitVerdictRow.analyzed_at <= cutoff)
        if analysis_type is not None:
            stmt = stmt.where(FitVerdictRow.analysis_type == analysis_type)
        stmt = stmt.order_by(FitVerdictRow.analyzed_at)
        return [to_fit_verdict(row) for row in self.session.execute(stmt).scalars()]

    def count_by_rating(self) -> dict[str, int]:
        stmt = select(FitVerdictRow.rating, func.count()).group_by(FitVerdictRow.rating)
        return {rating: count for rating, count in self.session.execute(stmt).all()}


def to_fit_verdict(row: FitVerdictRow) -> FitVerdict:
    return FitVerdict.from_dict({
        "listing_id": row.listing_id,
        "analysis_type": row.analysis_type,
        "score": row.score,
        "rating": row.rating,
        "confidence": row.confidence,
        "rationale": row.rationale,
        "analyzed_at": row.analyzed_at,
        "parse_failed": row.parse_failed,
    })


# =============================================================================
# Run Repository
# =============================================================================


RUN_COUNT_FIELDS = (
    "items_found",
    "items_promising",
    "items_fetched",
    "items_analyzed",
    "high_score_count",
    "merged_count",
    "cleaned_count",
    "errors_count",
)


class RunRepository:
    """Repository for RunRecord operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, **fields: Any) -> RunRecord:
        run = RunRecord(**fields)
        self.session.add(run)
        self.session.flush()
        return run

    def get_by_uid(self, run_uid: str) -> RunRecord | None:
        stmt = select(RunRecord).where(RunRecord.run_uid == run_uid)
        return self.session.execute(stmt).scalar_one_or_none()

    def last_completed(self, kind: str) -> RunRecord | None:
        stmt = (
            select(RunRecord)
            .where(RunRecord.kind == kind, RunRecord.status == "COMPLETED")
            .order_by(RunRecord.started_at.desc(), RunRecord.id.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_recent(self, kind: str | None = None, limit: int = 20) -> Sequence[RunRecord]:
        stmt = select(RunRecord)
        if kind is not None:
            stmt = stmt.where(RunRecord.kind == kind)
        stmt = stmt.order_by(RunRecord.started_at.desc(), RunRecord.id.desc()).limit(limit)
        return self.session.execute(stmt).scalars().all()

    def iter_all(self) -> Iterator[RunRecord]:
        yield from self.session.execute(select(RunRecord).order_by(RunRecord.id)).scalars()


def run_record_fields(run: RunRecord) -> dict[str, Any]:
    """Column values of a RunRecord, for copying between stores."""
    fields: dict[str, Any] = {
        "run_uid": run.run_uid,
        "kind": run.kind,
        "status": run.status,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "lower_bound": run.lower_bound,
        "error_message": run.error_message,
    }
    for name in RUN_COUNT_FIELDS:
        fields[name] = getattr(run, name)
    return fields
