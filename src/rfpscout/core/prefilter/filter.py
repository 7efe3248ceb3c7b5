"""
Relevance pre-filter: bound the expensive detail fetch to a small,
high-confidence candidate set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from .strategies import ClassifierStrategy, PreFilterVerdict

if TYPE_CHECKING:
    from rfpscout.core.config.models import PreFilterConfig
    from rfpscout.core.feed.ingestor import FeedItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreFilterCriteria:
    """Selection criteria applied after classification."""

    min_confidence: float = 0.5
    require_topical_match: bool = True
    min_estimated_budget: float | None = None
    exclude_red_flagged: bool = True
    max_results: int = 20

    @classmethod
    def from_config(cls, config: "PreFilterConfig") -> "PreFilterCriteria":
        return cls(
            min_confidence=config.min_confidence,
            require_topical_match=config.require_topical_match,
            min_estimated_budget=config.min_estimated_budget,
            exclude_red_flagged=config.exclude_red_flagged,
            max_results=config.max_results,
        )

    def rejection_reason(self, verdict: PreFilterVerdict) -> str | None:
        """Why ``verdict`` fails these criteria, or None if it passes."""
        if not verdict.is_promising:
            return "not promising"
        if verdict.confidence < self.min_confidence:
            return f"confidence {verdict.confidence:.2f} below {self.min_confidence:.2f}"
        if self.require_topical_match and not verdict.topical_match:
            return "no topical match"
        if (
            self.min_estimated_budget is not None
            and verdict.estimated_budget is not None
            and verdict.estimated_budget < self.min_estimated_budget
        ):
            return f"estimated budget {verdict.estimated_budget:,.0f} below minimum"
        if self.exclude_red_flagged and verdict.red_flags:
            return f"red flags: {', '.join(verdict.red_flags)}"
        return None


class RelevancePreFilter:
    """Classifies items and selects the promising subset."""

    def __init__(self, strategy: ClassifierStrategy) -> None:
        self.strategy = strategy

    async def evaluate(self, items: Iterable["FeedItem"]) -> list[PreFilterVerdict]:
        """Classify every item, in input order."""
        return [await self.strategy.classify(item) for item in items]

    def select(self, verdicts: Iterable[PreFilterVerdict], criteria: PreFilterCriteria) -> list[PreFilterVerdict]:
        """Filter by criteria, sort by confidence (descending), truncate."""
        kept: list[PreFilterVerdict] = []
        for verdict in verdicts:
            reason = criteria.rejection_reason(verdict)
            if reason is None:
                kept.append(verdict)
            else:
                logger.debug(f"Filtered out '{verdict.item.title}': {reason}")

        kept.sort(key=lambda v: v.confidence, reverse=True)
        return kept[: criteria.max_results]

    async def filter(self, items: Iterable["FeedItem"], criteria: PreFilterCriteria) -> list[PreFilterVerdict]:
        """Return the promising subset of ``items``."""
        verdicts = await self.evaluate(items)
        selected = self.select(verdicts, criteria)
        logger.info(f"Pre-filter kept {len(selected)} of {len(verdicts)} items ({self.strategy.name})")
        return selected
