"""
SQLAlchemy ORM models for RFPScout.

Defines the durable store schema:
- Listings: one row per listing id (the merge target)
- FitVerdicts: current fit verdict per (listing id, analysis type)
- RunRecords: append-only run ledger
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rfpscout.core.normalize.parsing import utcnow


# =============================================================================
# Base Class
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
        list[Any]: JSON,
    }


# =============================================================================
# Listing Model
# =============================================================================


class Listing(Base):
    """A procurement listing observed by the pipeline."""

    __tablename__ = "listings"

    listing_id: Mapped[str] = mapped_column(String(500), primary_key=True)
    title: Mapped[str] = mapped_column(String(1000), nullable=False)
    detail_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    institution: Mapped[str | None] = mapped_column(String(500), nullable=True)
    category: Mapped[str | None] = mapped_column(String(200), nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    download_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    attachments: Mapped[list[Any]] = mapped_column(JSON, default=list, nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Recency key for merge; never moves backward
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Listing(id='{self.listing_id}', updated_at={self.updated_at})>"


# =============================================================================
# Fit Verdict Model
# =============================================================================


class FitVerdictRow(Base):
    """Current fit verdict for a listing; overwritten on re-analysis."""

    __tablename__ = "fit_verdicts"
    __table_args__ = (
        UniqueConstraint("listing_id", "analysis_type", name="uq_verdict_listing_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_id: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    analysis_type: Mapped[str] = mapped_column(String(50), nullable=False, default="fit")

    score: Mapped[int] = mapped_column(Integer, nullable=False)
    rating: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rationale: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    parse_failed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    analyzed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<FitVerdictRow(listing='{self.listing_id}', score={self.score}, rating='{self.rating}')>"


# =============================================================================
# Run Record Model
# =============================================================================


class RunRecord(Base):
    """Ledger entry for one pipeline invocation."""

    __tablename__ = "run_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_uid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="run", index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="RUNNING", index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    lower_bound: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Counts
    items_found: Mapped[int] = mapped_column(Integer, default=0)
    items_promising: Mapped[int] = mapped_column(Integer, default=0)
    items_fetched: Mapped[int] = mapped_column(Integer, default=0)
    items_analyzed: Mapped[int] = mapped_column(Integer, default=0)
    high_score_count: Mapped[int] = mapped_column(Integer, default=0)
    merged_count: Mapped[int] = mapped_column(Integer, default=0)
    cleaned_count: Mapped[int] = mapped_column(Integer, default=0)
    errors_count: Mapped[int] = mapped_column(Integer, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def duration_seconds(self) -> float | None:
        """Calculate run duration in seconds."""
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def __repr__(self) -> str:
        return f"<RunRecord(uid='{self.run_uid}', kind='{self.kind}', status='{self.status}')>"
