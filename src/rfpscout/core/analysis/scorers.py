"""
Scoring collaborators.

A collaborator turns a ``ScoringRequest`` into raw JSON text in the shape
``ScoringResponse`` validates. ``RuleBasedScorer`` works offline from the
keyword profile; ``LLMScorer`` (see ``llm.py``) asks a language model.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import orjson

from rfpscout.core.config.models import BudgetConfig, KeywordConfig
from rfpscout.core.fetch.retries import PermanentError
from rfpscout.core.normalize.parsing import find_money_mentions

from .verdict import DEFAULT_ANALYSIS_TYPE, FitBands

if TYPE_CHECKING:
    from rfpscout.core.normalize.canonical import ListingRecord


@dataclass(frozen=True)
class ScoringRequest:
    """Everything a collaborator sees about one listing."""

    listing_id: str
    title: str
    detail_url: str
    institution: str | None = None
    posted_at: datetime | None = None
    due_at: datetime | None = None
    content: str = ""
    category: str | None = None
    analysis_type: str = DEFAULT_ANALYSIS_TYPE

    @classmethod
    def from_record(
        cls,
        record: "ListingRecord",
        max_content_chars: int,
        analysis_type: str = DEFAULT_ANALYSIS_TYPE,
    ) -> "ScoringRequest":
        return cls(
            listing_id=record.listing_id,
            title=record.title,
            detail_url=record.detail_url,
            institution=record.institution,
            posted_at=record.posted_at,
            due_at=record.due_at,
            content=record.content[:max_content_chars],
            category=record.category,
            analysis_type=analysis_type,
        )

    @property
    def text(self) -> str:
        return " ".join(p for p in (self.title, self.institution or "", self.content) if p)


class ScoringCollaborator(ABC):
    """Produces raw scoring JSON for a request."""

    name: str = "base"

    @abstractmethod
    async def score(self, request: ScoringRequest) -> str:
        """Return JSON text for ``request``.

        Raises:
            TransientError / PermanentError subclasses on transport failure
        """

    async def complete(self, prompt: str) -> str:
        """Free-form completion, used by the external pre-filter classifier."""
        raise PermanentError(f"{self.name} scorer does not support free-form completion")

    async def close(self) -> None:
        pass


def _contains_any(text: str, keywords: list[str]) -> list[str]:
    found = []
    for kw in keywords:
        if kw and re.search(r"\b" + re.escape(kw) + r"\b", text) and kw not in found:
            found.append(kw)
    return found


INSTITUTION_TYPES = (
    ("university", ("university",)),
    ("college", ("college", "community college")),
    ("school", ("school district", "school", "academy")),
    ("government", ("city of", "county", "state of", "department", "agency", "municipal")),
)

PROJECT_TYPES = (
    ("redesign", ("redesign", "refresh", "modernization")),
    ("migration", ("migration", "migrate", "replatform")),
    ("development", ("development", "redevelopment", "build")),
    ("maintenance", ("maintenance", "support", "hosting")),
)


def _classify(text: str, table: tuple[tuple[str, tuple[str, ...]], ...]) -> str:
    for label, words in table:
        if _contains_any(text, list(words)):
            return label
    return "other"


class RuleBasedScorer(ScoringCollaborator):
    """Offline weighted keyword scorer.

    Points: topical 30, preferred technology 20 (or acceptable 10),
    project type 15, budget 20/10/5 by tier, 5 per positive tech keyword,
    minus 15 per red flag. The total is clamped to 0..100.
    """

    name = "rules"

    TOPICAL = 30
    TECH_PREFERRED = 20
    TECH_ACCEPTABLE = 10
    PROJECT_TYPE = 15
    BUDGET_HIGH = 20
    BUDGET_MEDIUM = 10
    BUDGET_LOW = 5
    TECH_KEYWORD = 5
    RED_FLAG = -15

    def __init__(
        self,
        keywords: KeywordConfig,
        budget: BudgetConfig | None = None,
        bands: FitBands | None = None,
    ) -> None:
        self.keywords = keywords
        self.budget = budget or BudgetConfig()
        self.bands = bands or FitBands()

    def evaluate(self, request: ScoringRequest) -> dict:
        text = request.text.lower()
        score = 0
        reasons: list[str] = []
        opportunities: list[str] = []

        topical = _contains_any(text, self.keywords.topical)
        if topical:
            score += self.TOPICAL
            reasons.append(f"sector match ({', '.join(topical)})")

        preferred = _contains_any(text, self.keywords.technologies_preferred)
        acceptable = _contains_any(text, self.keywords.technologies_acceptable)
        if preferred:
            score += self.TECH_PREFERRED
            reasons.append(f"preferred platform ({', '.join(preferred)})")
        elif acceptable:
            score += self.TECH_ACCEPTABLE
            reasons.append(f"acceptable platform ({', '.join(acceptable)})")

        project = _contains_any(text, self.keywords.project_types)
        if project:
            score += self.PROJECT_TYPE
            reasons.append(f"project type ({', '.join(project)})")

        amounts = find_money_mentions(request.text)
        budget_estimate = None
        if amounts:
            highest = max(amounts)
            budget_estimate = f"${highest:,.0f}"
            if highest >= self.budget.min_preferred:
                score += self.BUDGET_HIGH
                opportunities.append(f"budget at or above preferred ({budget_estimate})")
            elif highest >= self.budget.min_acceptable:
                score += self.BUDGET_MEDIUM
            else:
                score += self.BUDGET_LOW
            reasons.append(f"budget {budget_estimate}")

        tech_positive = _contains_any(text, self.keywords.tech_positive)
        if tech_positive:
            score += self.TECH_KEYWORD * len(tech_positive)
            opportunities.extend(tech_positive)

        red_flags = _contains_any(text, self.keywords.red_flags)
        score += self.RED_FLAG * len(red_flags)

        score = max(0, min(100, score))
        if score >= self.bands.excellent:
            recommendation = "pursue"
        elif score >= self.bands.good:
            recommendation = "consider"
        else:
            recommendation = "skip"

        matched = sum(bool(x) for x in (topical, preferred or acceptable, project, amounts))
        return {
            "fitScore": score,
            "fitRating": None,
            "reasoning": "Rule-based analysis: " + ("; ".join(reasons) if reasons else "no profile matches"),
            "keyRequirements": project + preferred,
            "budgetEstimate": budget_estimate or "not specified",
            "technologies": preferred + acceptable,
            "institutionType": _classify(text, INSTITUTION_TYPES),
            "projectType": _classify(text, PROJECT_TYPES),
            "redFlags": red_flags,
            "opportunities": opportunities,
            "recommendation": recommendation,
            "confidence": min(90, 30 + 15 * matched),
        }

    async def score(self, request: ScoringRequest) -> str:
        return orjson.dumps(self.evaluate(request)).decode("utf-8")
