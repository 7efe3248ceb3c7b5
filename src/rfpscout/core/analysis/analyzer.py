"""
Fit analyzer: adapter between a scoring collaborator and FitVerdict.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from rfpscout.core.fetch.retries import PermanentError, TransientError
from rfpscout.core.normalize.parsing import utcnow

from .schema import ScoringMalformed, ScoringResponse, parse_scoring_response
from .scorers import ScoringCollaborator, ScoringRequest
from .verdict import (
    DEFAULT_ANALYSIS_TYPE,
    FitBands,
    FitRating,
    FitRationale,
    FitVerdict,
    fallback_verdict,
)

if TYPE_CHECKING:
    from rfpscout.core.normalize.canonical import ListingRecord

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Scoring collaborator failed after retries; the item is skipped."""

    def __init__(self, message: str, listing_id: str, cause: Exception | None = None):
        super().__init__(message)
        self.listing_id = listing_id
        self.cause = cause


class FitAnalyzer:
    """Scores listings and normalizes the answer into a FitVerdict."""

    def __init__(
        self,
        scorer: ScoringCollaborator,
        bands: FitBands | None = None,
        analysis_type: str = DEFAULT_ANALYSIS_TYPE,
        max_content_chars: int = 15_000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.scorer = scorer
        self.bands = bands or FitBands()
        self.analysis_type = analysis_type
        self.max_content_chars = max_content_chars
        self._clock = clock

    def to_verdict(self, listing_id: str, response: ScoringResponse) -> FitVerdict:
        """Normalize a validated response.

        An explicit, recognized ``fitRating`` wins; otherwise the rating is
        derived from the score with the configured bands.
        """
        rating = FitRating.parse(response.fit_rating) or self.bands.band_for(response.fit_score)
        return FitVerdict(
            listing_id=listing_id,
            score=response.fit_score,
            rating=rating,
            confidence=response.confidence,
            rationale=FitRationale(
                requirements=list(response.key_requirements),
                technologies=list(response.technologies),
                red_flags=list(response.red_flags),
                opportunities=list(response.opportunities),
                explanation=response.reasoning,
                budget_estimate=response.budget_estimate,
                institution_type=response.institution_type,
                project_type=response.project_type,
                recommendation=response.recommendation,
            ),
            analysis_type=self.analysis_type,
            analyzed_at=self._clock(),
        )

    async def analyze(self, record: "ListingRecord") -> FitVerdict:
        """Score one listing.

        Raises:
            AnalysisError: The collaborator failed (transport or auth)
        """
        request = ScoringRequest.from_record(record, self.max_content_chars, self.analysis_type)

        try:
            raw = await self.scorer.score(request)
        except (TransientError, PermanentError) as e:
            raise AnalysisError(
                f"Scoring failed for {record.listing_id}: {e}",
                listing_id=record.listing_id,
                cause=e,
            ) from e
        except Exception as e:
            logger.exception(
                f"Scoring collaborator error for {record.listing_id}: {e}",
                extra={"listing_id": record.listing_id, "stage": "analyze"},
            )
            raise AnalysisError(
                f"Scoring failed for {record.listing_id}: {e}",
                listing_id=record.listing_id,
                cause=e,
            ) from e

        result = parse_scoring_response(raw)
        if isinstance(result, ScoringMalformed):
            logger.warning(
                f"Malformed scoring response for {record.listing_id}: {result.reason}",
                extra={"listing_id": record.listing_id, "stage": "analyze"},
            )
            return fallback_verdict(
                record.listing_id,
                result.reason,
                analysis_type=self.analysis_type,
                analyzed_at=self._clock(),
            )

        verdict = self.to_verdict(record.listing_id, result.response)
        logger.info(
            f"Scored {record.listing_id}: {verdict.score} ({verdict.rating.value})",
            extra={"listing_id": record.listing_id, "stage": "analyze"},
        )
        return verdict
