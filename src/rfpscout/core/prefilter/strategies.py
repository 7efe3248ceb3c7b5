"""
Classifier strategies for the relevance pre-filter.

``HeuristicClassifier`` scores items from keyword matches. ``ExternalClassifier``
asks a language model and falls back to the heuristic per item when the call
fails or the answer does not fit the expected shape.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from rfpscout.core.analysis.schema import parse_prefilter_response
from rfpscout.core.config.models import KeywordConfig, PreFilterWeights
from rfpscout.core.fetch.retries import PermanentError, TransientError
from rfpscout.core.normalize.parsing import find_money_mentions

if TYPE_CHECKING:
    from rfpscout.core.analysis.scorers import ScoringCollaborator
    from rfpscout.core.feed.ingestor import FeedItem

logger = logging.getLogger(__name__)

TAG_TOPICAL = "topical"
TAG_PROJECT_TYPE = "project_type"
TAG_TECHNOLOGY = "technology"


@dataclass(frozen=True)
class PreFilterVerdict:
    """Relevance judgement for one feed item."""

    item: "FeedItem"
    is_promising: bool
    confidence: float
    categories: frozenset[str] = field(default_factory=frozenset)
    estimated_budget: float | None = None
    red_flags: tuple[str, ...] = ()
    reasoning: str = ""
    source: str = "heuristic"

    @property
    def topical_match(self) -> bool:
        return TAG_TOPICAL in self.categories


def keyword_pattern(keywords: Iterable[str]) -> re.Pattern[str] | None:
    """Word-bounded alternation over ``keywords``; None when empty."""
    words = sorted({k for k in keywords if k}, key=len, reverse=True)
    if not words:
        return None
    return re.compile(r"\b(" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE)


def find_keywords(pattern: re.Pattern[str] | None, text: str) -> list[str]:
    """Distinct keywords found in ``text``, in order of first appearance."""
    if pattern is None:
        return []
    found: list[str] = []
    for match in pattern.finditer(text):
        word = match.group(1).lower()
        if word not in found:
            found.append(word)
    return found


class ClassifierStrategy(ABC):
    """Produces a PreFilterVerdict for a single item."""

    name: str = "base"

    @abstractmethod
    async def classify(self, item: "FeedItem") -> PreFilterVerdict:
        """Classify one item independently of all others."""


class HeuristicClassifier(ClassifierStrategy):
    """Additive keyword confidence with a red-flag veto."""

    name = "heuristic"

    def __init__(self, keywords: KeywordConfig, weights: PreFilterWeights | None = None) -> None:
        self.keywords = keywords
        self.weights = weights or PreFilterWeights()
        self._topical = keyword_pattern(keywords.topical)
        self._project = keyword_pattern(keywords.project_types)
        self._tech = keyword_pattern(keywords.technologies_preferred)
        self._red = keyword_pattern(keywords.red_flags)

    def classify_sync(self, item: "FeedItem") -> PreFilterVerdict:
        text = item.text
        topical = find_keywords(self._topical, text)
        project = find_keywords(self._project, text)
        tech = find_keywords(self._tech, text)
        red = find_keywords(self._red, text)

        w = self.weights
        confidence = 0.0
        categories: set[str] = set()
        if topical:
            confidence += w.topical
            categories.add(TAG_TOPICAL)
        if project:
            confidence += w.project_type
            categories.add(TAG_PROJECT_TYPE)
        if tech:
            confidence += w.technology
            categories.add(TAG_TECHNOLOGY)
        confidence -= w.red_flag_penalty * len(red)
        confidence = round(min(1.0, max(0.0, confidence)), 4)

        is_promising = confidence >= w.promising_floor and bool(topical) and not red

        amounts = find_money_mentions(text)
        estimated_budget = float(max(amounts)) if amounts else None

        return PreFilterVerdict(
            item=item,
            is_promising=is_promising,
            confidence=confidence,
            categories=frozenset(categories),
            estimated_budget=estimated_budget,
            red_flags=tuple(red),
            reasoning=_reasoning(topical, project, tech, red),
            source=self.name,
        )

    async def classify(self, item: "FeedItem") -> PreFilterVerdict:
        return self.classify_sync(item)


def _reasoning(topical: list[str], project: list[str], tech: list[str], red: list[str]) -> str:
    parts = []
    if topical:
        parts.append(f"topical match ({', '.join(topical)})")
    if project:
        parts.append(f"project type ({', '.join(project)})")
    if tech:
        parts.append(f"preferred technology ({', '.join(tech)})")
    if red:
        parts.append(f"red flags ({', '.join(red)})")
    if not parts:
        return "Keyword analysis: no relevant keywords"
    return "Keyword analysis: " + "; ".join(parts)


PREFILTER_PROMPT = """\
You screen procurement notices for a web agency. Decide whether this notice \
is worth fetching in full.

Profile:
- Target sector keywords: {topical}
- Project types: {project_types}
- Preferred technologies: {technologies}
- Red flags (disqualifying): {red_flags}

Notice:
Title: {title}
Category: {category}
Description: {description}

Answer with only a JSON object:
{{"isPromising": true|false, "confidence": 0.0-1.0, "categories": ["..."], \
"estimatedBudget": number|null, "redFlags": ["..."], "reasoning": "..."}}
"""


def build_prefilter_prompt(item: "FeedItem", keywords: KeywordConfig, max_chars: int = 2000) -> str:
    return PREFILTER_PROMPT.format(
        topical=", ".join(keywords.topical),
        project_types=", ".join(keywords.project_types),
        technologies=", ".join(keywords.technologies_preferred),
        red_flags=", ".join(keywords.red_flags),
        title=item.title,
        category=item.category or "n/a",
        description=item.description[:max_chars],
    )


class ExternalClassifier(ClassifierStrategy):
    """Language-model classifier wrapping its own heuristic fallback.

    Decision table per item:

    ============================  =====================================
    model call                    verdict
    ============================  =====================================
    raises (after retries)        heuristic verdict
    reply not the JSON shape      heuristic verdict
    valid reply                   model verdict, heuristic tags merged,
                                  red flags still veto
    ============================  =====================================
    """

    name = "external"

    def __init__(self, client: "ScoringCollaborator", fallback: HeuristicClassifier) -> None:
        self.client = client
        self.fallback = fallback

    async def classify(self, item: "FeedItem") -> PreFilterVerdict:
        heuristic = self.fallback.classify_sync(item)
        prompt = build_prefilter_prompt(item, self.fallback.keywords)

        try:
            raw = await self.client.complete(prompt)
        except (TransientError, PermanentError) as e:
            logger.warning(f"External classifier failed for '{item.title}', using heuristic: {e}")
            return heuristic
        except Exception as e:
            logger.exception(f"External classifier error for '{item.title}', using heuristic: {e}")
            return heuristic

        response = parse_prefilter_response(raw)
        if response is None:
            logger.warning(f"External classifier reply malformed for '{item.title}', using heuristic")
            return heuristic

        red_flags = tuple(dict.fromkeys([*heuristic.red_flags, *(f.lower() for f in response.red_flags)]))
        categories = heuristic.categories | {c.lower() for c in response.categories}
        return PreFilterVerdict(
            item=item,
            is_promising=response.is_promising and not red_flags,
            confidence=round(response.confidence, 4),
            categories=frozenset(categories),
            estimated_budget=response.estimated_budget if response.estimated_budget is not None else heuristic.estimated_budget,
            red_flags=red_flags,
            reasoning=response.reasoning or heuristic.reasoning,
            source=self.name,
        )
