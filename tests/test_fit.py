import asyncio
from datetime import datetime

import httpx
import orjson
import pytest

from conftest import FakeScorer, scoring_payload
from rfpscout.core.analysis import (
    AnalysisError,
    FitAnalyzer,
    FitBands,
    FitRating,
    LLMClient,
    LLMError,
    LLMScorer,
    RuleBasedScorer,
    ScoringRequest,
    parse_scoring_response,
)
from rfpscout.core.analysis.schema import ScoringMalformed, ScoringOk
from rfpscout.core.backends.base import AuthError, FetchError
from rfpscout.core.config import ConfigError
from rfpscout.core.config.models import AnalysisConfig, KeywordConfig, ScoringProvider
from rfpscout.core.fetch.retries import PermanentError, RetryConfig
from rfpscout.core.normalize.canonical import ListingRecord

ANALYZED_AT = datetime(2024, 1, 6, 8, 0)


def record(listing_id="rfp-2", content="Full Drupal redesign for the state university."):
    return ListingRecord(
        listing_id=listing_id,
        title="State University Website Redesign",
        detail_url=f"https://rfps.example.org/{listing_id}",
        institution="State University",
        content=content,
    )


def analyze(scorer, **kwargs):
    analyzer = FitAnalyzer(scorer, clock=lambda: ANALYZED_AT, **kwargs)
    return asyncio.run(analyzer.analyze(record()))


@pytest.mark.parametrize(
    "score, rating",
    [(100, FitRating.EXCELLENT), (80, FitRating.EXCELLENT), (79, FitRating.GOOD), (60, FitRating.GOOD),
     (59, FitRating.POOR), (25, FitRating.POOR), (24, FitRating.REJECTED), (0, FitRating.REJECTED)],
)
def test_band_floors_are_half_open(score, rating):
    assert FitBands().band_for(score) == rating


def test_bands_must_descend():
    with pytest.raises(ValueError):
        FitBands(excellent=60, good=60, poor=25)


def test_rating_derived_from_score_when_absent():
    verdict = analyze(FakeScorer(scoring_payload(60)))

    assert verdict.score == 60
    assert verdict.rating == FitRating.GOOD
    assert verdict.confidence == 80
    assert verdict.analyzed_at == ANALYZED_AT
    assert verdict.rationale.requirements == ["Drupal 10", "WCAG 2.1 AA"]
    assert not verdict.parse_failed


def test_explicit_rating_wins_over_score():
    verdict = analyze(FakeScorer(scoring_payload(40, rating="Excellent")))
    assert verdict.rating == FitRating.EXCELLENT


def test_unrecognized_rating_falls_back_to_bands():
    verdict = analyze(FakeScorer(scoring_payload(85, rating="stellar")))
    assert verdict.rating == FitRating.EXCELLENT


def test_custom_bands_apply():
    verdict = analyze(FakeScorer(scoring_payload(70)), bands=FitBands(excellent=90, good=75, poor=50))
    assert verdict.rating == FitRating.POOR


@pytest.mark.parametrize(
    "raw",
    [
        "Sorry, I cannot help with that.",
        '{"fitScore": 85}',
        scoring_payload(150),
        '{"fitScore": "high", "reasoning": ',
    ],
)
def test_malformed_response_yields_fallback_verdict(raw):
    verdict = analyze(FakeScorer(raw))

    assert verdict.score == 25
    assert verdict.rating == FitRating.POOR
    assert verdict.confidence == 0
    assert verdict.parse_failed
    assert verdict.rationale.red_flags == ["Analysis parsing failed"]


def test_json_embedded_in_prose_is_accepted():
    raw = "Here is my assessment:\n" + scoring_payload(72) + "\nLet me know if you need more."
    result = parse_scoring_response(raw)

    assert isinstance(result, ScoringOk)
    assert result.response.fit_score == 72


def test_schema_mismatch_names_fields():
    result = parse_scoring_response('{"fitScore": 50}')
    assert isinstance(result, ScoringMalformed)
    assert "reasoning" in result.reason


def test_collaborator_failure_raises_analysis_error():
    with pytest.raises(AnalysisError) as exc_info:
        analyze(FakeScorer(error=FetchError("quota exhausted")))
    assert exc_info.value.listing_id == "rfp-2"


def test_unexpected_collaborator_error_is_confined_to_the_item():
    with pytest.raises(AnalysisError) as exc_info:
        analyze(FakeScorer(error=RuntimeError("client bug")))
    assert isinstance(exc_info.value.cause, RuntimeError)


def test_request_content_is_truncated():
    scorer = FakeScorer()
    analyzer = FitAnalyzer(scorer, max_content_chars=500)
    asyncio.run(analyzer.analyze(record(content="x" * 2000)))

    assert len(scorer.requests[0].content) == 500


# =============================================================================
# Rule-based scorer
# =============================================================================


def rules_request(content):
    return ScoringRequest(
        listing_id="rfp-7",
        title="State University Website Redesign",
        detail_url="https://rfps.example.org/rfp-7",
        content=content,
    )


def test_rule_based_scorer_weights():
    scorer = RuleBasedScorer(KeywordConfig())
    result = scorer.evaluate(rules_request("Drupal platform. Budget $150,000. Responsive design required."))

    assert result["fitScore"] == 30 + 20 + 15 + 20 + 5
    assert result["fitRating"] is None
    assert result["recommendation"] == "pursue"
    assert result["institutionType"] == "university"
    assert result["projectType"] == "redesign"
    assert result["budgetEstimate"] == "$150,000"
    assert result["confidence"] == 90


def test_rule_based_scorer_penalizes_red_flags():
    scorer = RuleBasedScorer(KeywordConfig())
    clean = scorer.evaluate(rules_request("Drupal platform."))["fitScore"]
    flagged = scorer.evaluate(rules_request("Drupal platform, hosting only."))

    assert flagged["fitScore"] == clean - 15
    assert flagged["redFlags"] == ["hosting only"]


def test_rule_based_output_passes_the_response_schema():
    verdict = analyze(RuleBasedScorer(KeywordConfig()))

    assert not verdict.parse_failed
    assert verdict.rating == FitBands().band_for(verdict.score)


def test_rule_based_scorer_has_no_free_form_completion():
    with pytest.raises(PermanentError):
        asyncio.run(RuleBasedScorer(KeywordConfig()).complete("hello"))


# =============================================================================
# LLM client
# =============================================================================


FAST_RETRY = RetryConfig(max_attempts=3, min_wait=0, max_wait=0, multiplier=0)


def llm_client(provider, handler):
    return LLMClient(provider, "sk-test", retry=FAST_RETRY, transport=httpx.MockTransport(handler))


def test_openai_request_and_reply():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": scoring_payload(88)}}]})

    text = asyncio.run(llm_client(ScoringProvider.OPENAI, handler).complete("score this"))

    assert orjson.loads(text)["fitScore"] == 88
    assert seen[0].headers["authorization"] == "Bearer sk-test"
    body = orjson.loads(seen[0].content)
    assert body["model"] == "gpt-4o-mini"
    assert body["messages"] == [{"role": "user", "content": "score this"}]


def test_anthropic_request_and_reply():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]})

    text = asyncio.run(llm_client(ScoringProvider.ANTHROPIC, handler).complete("hi"))

    assert text == "ok"
    assert seen[0].headers["x-api-key"] == "sk-test"
    assert seen[0].headers["anthropic-version"] == "2023-06-01"


def test_llm_server_errors_are_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(502)
        return httpx.Response(200, json={"choices": [{"message": {"content": "done"}}]})

    assert asyncio.run(llm_client(ScoringProvider.OPENAI, handler).complete("x")) == "done"
    assert len(attempts) == 3


def test_llm_auth_failure_is_permanent():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(401)

    with pytest.raises(AuthError):
        asyncio.run(llm_client(ScoringProvider.OPENAI, handler).complete("x"))
    assert len(attempts) == 1


def test_llm_protocol_errors_become_permanent_failures():
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.TooManyRedirects("redirect loop", request=request)

    with pytest.raises(LLMError):
        asyncio.run(llm_client(ScoringProvider.OPENAI, handler).complete("x"))
    assert len(attempts) == 1


def test_llm_scorer_feeds_the_analyzer():
    def handler(request):
        prompt = orjson.loads(request.content)["messages"][0]["content"]
        assert "State University Website Redesign" in prompt
        return httpx.Response(200, json={"choices": [{"message": {"content": scoring_payload(66)}}]})

    scorer = LLMScorer(llm_client(ScoringProvider.OPENAI, handler), KeywordConfig())
    verdict = analyze(scorer)

    assert scorer.name == "openai"
    assert verdict.rating == FitRating.GOOD


def test_llm_client_requires_api_key():
    with pytest.raises(ConfigError):
        LLMClient.from_config(AnalysisConfig(provider=ScoringProvider.ANTHROPIC, api_key=""))
