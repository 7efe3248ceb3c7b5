"""
Strict schema for scoring collaborator responses.

``parse_scoring_response`` never raises: it returns ``ScoringOk`` with a
validated payload or ``ScoringMalformed`` carrying the raw text, so the
analyzer's fallback is an ordinary branch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class ScoringResponse(BaseModel):
    """Expected JSON object from a scoring collaborator."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fit_score: int = Field(alias="fitScore", ge=0, le=100)
    fit_rating: str | None = Field(default=None, alias="fitRating")
    reasoning: str
    key_requirements: list[str] = Field(alias="keyRequirements")
    budget_estimate: str | None = Field(default=None, alias="budgetEstimate")
    technologies: list[str]
    institution_type: str = Field(alias="institutionType")
    project_type: str = Field(alias="projectType")
    red_flags: list[str] = Field(alias="redFlags")
    opportunities: list[str]
    recommendation: str
    confidence: int = Field(ge=0, le=100)

    @field_validator("budget_estimate", mode="before")
    @classmethod
    def budget_as_text(cls, v: object) -> object:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return f"${v:,.0f}"
        return v


class PreFilterResponse(BaseModel):
    """Expected JSON object from an external pre-filter classifier."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_promising: bool = Field(alias="isPromising")
    confidence: float = Field(ge=0, le=1)
    categories: list[str] = Field(default_factory=list)
    estimated_budget: float | None = Field(default=None, alias="estimatedBudget", ge=0)
    red_flags: list[str] = Field(default_factory=list, alias="redFlags")
    reasoning: str = ""


@dataclass(frozen=True)
class ScoringOk:
    response: ScoringResponse


@dataclass(frozen=True)
class ScoringMalformed:
    raw_text: str
    reason: str


ScoringResult = Union[ScoringOk, ScoringMalformed]


def extract_json_object(raw: str) -> object:
    """Pull the first ``{...}`` block out of free text and decode it.

    Raises:
        ValueError: No object present or it is not valid JSON
    """
    match = _JSON_OBJECT.search(raw or "")
    if match is None:
        raise ValueError("no JSON object in response")
    try:
        return orjson.loads(match.group(0))
    except orjson.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e


def parse_scoring_response(raw: str) -> ScoringResult:
    """Validate a raw collaborator response against ``ScoringResponse``."""
    try:
        payload = extract_json_object(raw)
    except ValueError as e:
        return ScoringMalformed(raw_text=raw, reason=str(e))

    if not isinstance(payload, dict):
        return ScoringMalformed(raw_text=raw, reason="response is not a JSON object")

    try:
        return ScoringOk(ScoringResponse.model_validate(payload))
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        return ScoringMalformed(raw_text=raw, reason=f"schema mismatch: {fields}")


def parse_prefilter_response(raw: str) -> PreFilterResponse | None:
    """Validate an external classifier response; None when malformed."""
    try:
        payload = extract_json_object(raw)
        if not isinstance(payload, dict):
            return None
        return PreFilterResponse.model_validate(payload)
    except (ValueError, ValidationError):
        return None
