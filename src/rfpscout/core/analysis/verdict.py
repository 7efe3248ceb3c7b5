"""
Fit verdict types and band derivation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from rfpscout.core.normalize.parsing import utcnow

if TYPE_CHECKING:
    from rfpscout.core.config.models import FitBandsConfig


DEFAULT_ANALYSIS_TYPE = "fit"

# Fixed fallback when a scoring response cannot be parsed
FALLBACK_SCORE = 25
FALLBACK_CONFIDENCE = 0
FALLBACK_RED_FLAG = "Analysis parsing failed"


class FitRating(str, Enum):
    """Ordered fit bands, best first."""

    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value: Any) -> "FitRating | None":
        """Recognize a rating label; returns None for anything else."""
        if isinstance(value, FitRating):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class FitBands:
    """Score floors for the bands. Each band is [floor, next floor)."""

    excellent: int = 80
    good: int = 60
    poor: int = 25

    def __post_init__(self) -> None:
        if not (self.excellent > self.good > self.poor):
            raise ValueError("band floors must satisfy excellent > good > poor")

    @classmethod
    def from_config(cls, config: "FitBandsConfig") -> "FitBands":
        return cls(excellent=config.excellent, good=config.good, poor=config.poor)

    def band_for(self, score: float) -> FitRating:
        if score >= self.excellent:
            return FitRating.EXCELLENT
        if score >= self.good:
            return FitRating.GOOD
        if score >= self.poor:
            return FitRating.POOR
        return FitRating.REJECTED


@dataclass
class FitRationale:
    """Structured reasons behind a fit score."""

    requirements: list[str] = field(default_factory=list)
    technologies: list[str] = field(default_factory=list)
    red_flags: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)
    explanation: str = ""
    budget_estimate: str | None = None
    institution_type: str | None = None
    project_type: str | None = None
    recommendation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FitRationale":
        data = data or {}
        return cls(
            requirements=list(data.get("requirements") or []),
            technologies=list(data.get("technologies") or []),
            red_flags=list(data.get("red_flags") or []),
            opportunities=list(data.get("opportunities") or []),
            explanation=data.get("explanation") or "",
            budget_estimate=data.get("budget_estimate"),
            institution_type=data.get("institution_type"),
            project_type=data.get("project_type"),
            recommendation=data.get("recommendation"),
        )


@dataclass
class FitVerdict:
    """Normalized outcome of fit analysis for one listing."""

    listing_id: str
    score: int
    rating: FitRating
    confidence: int
    rationale: FitRationale = field(default_factory=FitRationale)
    analysis_type: str = DEFAULT_ANALYSIS_TYPE
    analyzed_at: datetime = field(default_factory=utcnow)
    parse_failed: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.listing_id, self.analysis_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "analysis_type": self.analysis_type,
            "score": self.score,
            "rating": self.rating.value,
            "confidence": self.confidence,
            "rationale": self.rationale.to_dict(),
            "analyzed_at": self.analyzed_at,
            "parse_failed": self.parse_failed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FitVerdict":
        return cls(
            listing_id=data["listing_id"],
            analysis_type=data.get("analysis_type") or DEFAULT_ANALYSIS_TYPE,
            score=int(data["score"]),
            rating=FitRating(data["rating"]),
            confidence=int(data.get("confidence") or 0),
            rationale=FitRationale.from_dict(data.get("rationale")),
            analyzed_at=data["analyzed_at"],
            parse_failed=bool(data.get("parse_failed", False)),
        )


def fallback_verdict(
    listing_id: str,
    reason: str,
    *,
    analysis_type: str = DEFAULT_ANALYSIS_TYPE,
    analyzed_at: datetime | None = None,
) -> FitVerdict:
    """Low-confidence verdict substituted for an unparsable scoring response."""
    return FitVerdict(
        listing_id=listing_id,
        score=FALLBACK_SCORE,
        rating=FitRating.POOR,
        confidence=FALLBACK_CONFIDENCE,
        rationale=FitRationale(
            red_flags=[FALLBACK_RED_FLAG],
            explanation=f"Scoring response could not be parsed: {reason}",
            recommendation="Review manually",
        ),
        analysis_type=analysis_type,
        analyzed_at=analyzed_at or utcnow(),
        parse_failed=True,
    )
