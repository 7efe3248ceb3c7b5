"""Fit analysis: scoring collaborators and verdict normalization."""

from .analyzer import AnalysisError, FitAnalyzer
from .llm import LLMClient, LLMError, LLMScorer, build_fit_prompt
from .schema import (
    PreFilterResponse,
    ScoringMalformed,
    ScoringOk,
    ScoringResponse,
    parse_prefilter_response,
    parse_scoring_response,
)
from .scorers import RuleBasedScorer, ScoringCollaborator, ScoringRequest
from .verdict import (
    DEFAULT_ANALYSIS_TYPE,
    FitBands,
    FitRating,
    FitRationale,
    FitVerdict,
    fallback_verdict,
)

__all__ = [
    "AnalysisError",
    "FitAnalyzer",
    "LLMClient",
    "LLMError",
    "LLMScorer",
    "build_fit_prompt",
    "PreFilterResponse",
    "ScoringMalformed",
    "ScoringOk",
    "ScoringResponse",
    "parse_prefilter_response",
    "parse_scoring_response",
    "RuleBasedScorer",
    "ScoringCollaborator",
    "ScoringRequest",
    "DEFAULT_ANALYSIS_TYPE",
    "FitBands",
    "FitRating",
    "FitRationale",
    "FitVerdict",
    "fallback_verdict",
]
