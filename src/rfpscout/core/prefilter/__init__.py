"""Relevance pre-filter."""

from .filter import PreFilterCriteria, RelevancePreFilter
from .strategies import (
    ClassifierStrategy,
    ExternalClassifier,
    HeuristicClassifier,
    PreFilterVerdict,
    build_prefilter_prompt,
)

__all__ = [
    "PreFilterCriteria",
    "RelevancePreFilter",
    "ClassifierStrategy",
    "ExternalClassifier",
    "HeuristicClassifier",
    "PreFilterVerdict",
    "build_prefilter_prompt",
]
