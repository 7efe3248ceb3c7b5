import asyncio

import httpx

from conftest import FakeScorer, make_item
from rfpscout.core.backends.base import FetchError, TransientFetchError
from rfpscout.core.config.models import KeywordConfig, PreFilterWeights
from rfpscout.core.prefilter import (
    ExternalClassifier,
    HeuristicClassifier,
    PreFilterCriteria,
    PreFilterVerdict,
    RelevancePreFilter,
)
from rfpscout.core.prefilter.strategies import TAG_PROJECT_TYPE, TAG_TECHNOLOGY, TAG_TOPICAL


def heuristic(**weights):
    return HeuristicClassifier(KeywordConfig(), PreFilterWeights(**weights))


def test_heuristic_scores_additive_keyword_matches():
    item = make_item("State University Website Redesign", "Seeking a Drupal partner.")
    verdict = heuristic().classify_sync(item)

    assert verdict.is_promising
    assert verdict.confidence == 0.9
    assert verdict.categories == {TAG_TOPICAL, TAG_PROJECT_TYPE, TAG_TECHNOLOGY}
    assert verdict.red_flags == ()
    assert verdict.reasoning.startswith("Keyword analysis:")
    assert verdict.source == "heuristic"


def test_topical_match_is_required():
    verdict = heuristic().classify_sync(make_item("Hospital Website Redesign", "Drupal migration"))

    assert verdict.confidence == 0.5
    assert not verdict.topical_match
    assert not verdict.is_promising


def test_keywords_match_whole_words_only():
    verdict = heuristic().classify_sync(make_item("Homeschooling Portal Redesign"))
    assert not verdict.topical_match


def test_red_flag_vetoes_regardless_of_confidence():
    item = make_item("University Drupal Redesign", "Maintenance only for two years.")
    verdict = heuristic(red_flag_penalty=0.0).classify_sync(item)

    assert verdict.confidence == 0.9
    assert verdict.red_flags == ("maintenance only",)
    assert not verdict.is_promising


def test_red_flag_penalty_lowers_confidence():
    verdict = heuristic().classify_sync(make_item("College Website", "Hosting only engagement."))
    assert verdict.confidence == 0.2


def test_estimated_budget_is_largest_amount_mentioned():
    item = make_item("University Redesign", "Phase one $40,000; total budget $120,000.")
    assert heuristic().classify_sync(item).estimated_budget == 120000.0


def verdict_for(title, confidence, **kwargs):
    kwargs.setdefault("categories", frozenset({TAG_TOPICAL}))
    return PreFilterVerdict(item=make_item(title), is_promising=True, confidence=confidence, **kwargs)


def test_select_sorts_by_confidence_and_truncates():
    prefilter = RelevancePreFilter(heuristic())
    verdicts = [
        verdict_for("a", 0.6),
        verdict_for("b", 0.9),
        verdict_for("c", 0.7),
        verdict_for("d", 0.9),
    ]
    selected = prefilter.select(verdicts, PreFilterCriteria(max_results=3))

    assert [v.item.title for v in selected] == ["b", "d", "c"]


def test_criteria_rejections():
    criteria = PreFilterCriteria(min_confidence=0.5, min_estimated_budget=50_000)

    assert criteria.rejection_reason(verdict_for("ok", 0.8)) is None
    assert criteria.rejection_reason(verdict_for("low", 0.4)) is not None
    assert criteria.rejection_reason(verdict_for("off-topic", 0.8, categories=frozenset())) == "no topical match"
    assert criteria.rejection_reason(verdict_for("cheap", 0.8, estimated_budget=10_000.0)) is not None
    assert criteria.rejection_reason(verdict_for("rich", 0.8, estimated_budget=90_000.0)) is None
    assert criteria.rejection_reason(verdict_for("flagged", 0.8, red_flags=("hosting only",))) is not None


def test_filter_returns_promising_subset():
    items = [
        make_item("State University Website Redesign", "Drupal platform."),
        make_item("Community College Hosting Contract", "Hosting only."),
        make_item("City Parks Brochure"),
    ]
    selected = asyncio.run(RelevancePreFilter(heuristic()).filter(items, PreFilterCriteria()))

    assert [v.item.title for v in selected] == ["State University Website Redesign"]


def test_external_classifier_uses_model_verdict():
    reply = '{"isPromising": true, "confidence": 0.83, "categories": ["Web"], "estimatedBudget": 75000}'
    scorer = FakeScorer(completion=reply)
    classifier = ExternalClassifier(scorer, heuristic())
    verdict = asyncio.run(classifier.classify(make_item("State University Redesign")))

    assert verdict.source == "external"
    assert verdict.is_promising
    assert verdict.confidence == 0.83
    assert {"web", TAG_TOPICAL} <= verdict.categories
    assert verdict.estimated_budget == 75000
    assert "State University Redesign" in scorer.prompts[0]


def test_external_classifier_keeps_red_flag_veto():
    scorer = FakeScorer(completion='{"isPromising": true, "confidence": 0.95}')
    classifier = ExternalClassifier(scorer, heuristic())
    verdict = asyncio.run(classifier.classify(make_item("College Website", "Minor updates to the homepage.")))

    assert verdict.red_flags == ("minor updates",)
    assert not verdict.is_promising


def test_external_classifier_falls_back_on_failure():
    for failure in (TransientFetchError("timeout"), FetchError("forbidden")):
        classifier = ExternalClassifier(FakeScorer(completion=failure), heuristic())
        verdict = asyncio.run(classifier.classify(make_item("State University Redesign")))

        assert verdict.source == "heuristic"
        assert verdict.confidence == 0.7


def test_external_classifier_falls_back_on_unexpected_client_errors():
    for failure in (httpx.DecodingError("bad gzip"), RuntimeError("client bug")):
        classifier = ExternalClassifier(FakeScorer(completion=failure), heuristic())
        verdict = asyncio.run(classifier.classify(make_item("University Website Redesign")))

        assert verdict.source == "heuristic"
        assert verdict.is_promising


def test_external_classifier_falls_back_on_malformed_reply():
    for reply in ("I think this one looks good!", '{"confidence": 2.5}', "[1, 2]"):
        classifier = ExternalClassifier(FakeScorer(completion=reply), heuristic())
        verdict = asyncio.run(classifier.classify(make_item("State University Redesign")))
        assert verdict.source == "heuristic"
