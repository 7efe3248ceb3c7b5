import asyncio
import shutil
from datetime import datetime

import orjson
import pytest

from conftest import FakeFetcher, FakeScorer, app_settings, feed_transport, scoring_payload
from rfpscout.core.backends.base import FetchError
from rfpscout.core.config.models import AppConfig
from rfpscout.core.orchestrator import MODE_SCRAPE, PipelineError, build_runner
from rfpscout.persistence.db import Database
from rfpscout.persistence.ledger import STATUS_COMPLETED, STATUS_FAILED, RunLedger
from rfpscout.persistence.locks import LockManager
from rfpscout.persistence.repo import ListingRepository, VerdictRepository

SINCE = datetime(2024, 1, 3)


def run_pipeline(config, since=SINCE, fetcher=None, scorer=None, feed=None, **kwargs):
    runner = build_runner(
        config,
        fetcher=fetcher or FakeFetcher(),
        scorer=scorer or FakeScorer(),
        feed_transport=feed or feed_transport(),
    )
    return runner, asyncio.run(runner.run(since=since, **kwargs))


def open_store(runner):
    return Database.for_path(runner.local_store_path)


def test_full_run_end_to_end(app_config):
    fetcher = FakeFetcher()
    scorer = FakeScorer(scoring_payload(85))
    runner, stats = run_pipeline(app_config, fetcher=fetcher, scorer=scorer)

    assert stats.lower_bound == SINCE
    assert stats.items_found == 2
    assert stats.items_promising == 1
    assert stats.items_fetched == 1
    assert stats.items_analyzed == 1
    assert stats.high_score_count == 1
    assert stats.merged_count == 2
    assert stats.cleaned_count == 0
    assert stats.errors == []

    assert fetcher.calls == ["https://rfps.example.org/rfp-2"]
    assert fetcher.closed and scorer.closed
    assert scorer.requests[0].institution == "State University"
    assert "Scope of work" in scorer.requests[0].content

    listing_dir = app_config.artifacts_dir / "rfp-2"
    assert sorted(p.name for p in listing_dir.iterdir()) == [
        "combined-text.txt",
        "fit-analysis.json",
        "metadata.json",
        "scope.txt",
    ]
    metadata = orjson.loads((listing_dir / "metadata.json").read_bytes())
    assert metadata["prefilter"]["confidence"] == 0.9
    assert orjson.loads((listing_dir / "fit-analysis.json").read_bytes())["rating"] == "excellent"

    report = orjson.loads(stats.cleanup_report.read_bytes())
    assert report["preservedRFPs"] == ["rfp-2"]
    assert report["cleanedRFPs"] == []

    db = open_store(runner)
    try:
        (record,) = RunLedger(db).recent()
        assert (record.kind, record.status) == ("run", STATUS_COMPLETED)
        assert (record.items_found, record.items_analyzed, record.high_score_count) == (2, 1, 1)
        assert RunLedger(db).last_run_timestamp() == stats.started_at
        with db.session() as session:
            listing = ListingRepository(session).get_record("rfp-2")
            assert listing.title == "State University Website Redesign"
            assert listing.due_at == datetime(2024, 2, 1)
            assert listing.posted_at == datetime(2024, 1, 5, 9, 0)
            assert VerdictRepository(session).count_by_rating() == {"excellent": 1}
    finally:
        db.dispose()
    assert not LockManager(app_config.data_dir).is_locked("store")


def test_failure_after_merge_leaves_durable_rows_untouched(app_config):
    run_pipeline(app_config, since=datetime(2024, 1, 8))
    shutil.rmtree(app_config.reports_dir)
    app_config.reports_dir.write_text("not a directory", encoding="utf-8")

    with pytest.raises(PipelineError):
        run_pipeline(app_config)

    db = open_store(build_runner(app_config))
    try:
        assert db.counts() == {"listings": 0, "verdicts": 0, "runs": 2}
        assert sorted(r.status for r in RunLedger(db).recent()) == [STATUS_COMPLETED, STATUS_FAILED]
    finally:
        db.dispose()


def test_next_run_starts_from_last_completed_run(app_config):
    _, first = run_pipeline(app_config)
    runner, second = run_pipeline(app_config, since=None)

    assert second.lower_bound == first.started_at
    assert second.items_found == 0

    db = open_store(runner)
    try:
        assert db.counts() == {"listings": 1, "verdicts": 1, "runs": 2}
    finally:
        db.dispose()


def test_first_run_uses_default_lookback(app_config):
    _, stats = run_pipeline(app_config, since=None)
    assert (stats.started_at - stats.lower_bound).days == app_config.feed.default_lookback_days


def test_low_fit_artifacts_cleaned(app_config):
    _, stats = run_pipeline(app_config, scorer=FakeScorer(scoring_payload(30)))
    listing_dir = app_config.artifacts_dir / "rfp-2"

    assert stats.high_score_count == 0
    assert stats.cleaned_count == 1
    assert sorted(p.name for p in listing_dir.iterdir()) == ["fit-analysis.json", "metadata.json"]


def test_dry_run_cleanup_leaves_files(app_config):
    _, stats = run_pipeline(app_config, scorer=FakeScorer(scoring_payload(30)), dry_run_cleanup=True)

    assert stats.cleaned_count == 0
    assert (app_config.artifacts_dir / "rfp-2" / "scope.txt").exists()
    assert orjson.loads(stats.cleanup_report.read_bytes())["cleanedRFPs"] == ["rfp-2"]


def test_malformed_scoring_reply_still_completes(app_config):
    _, stats = run_pipeline(app_config, scorer=FakeScorer("not json"))

    assert stats.items_analyzed == 1
    assert stats.high_score_count == 0


def test_per_item_failures_are_recorded_not_fatal(app_config):
    fetcher = FakeFetcher(failures={"https://rfps.example.org/rfp-2": FetchError("gone")})
    _, stats = run_pipeline(app_config, fetcher=fetcher)

    assert stats.items_fetched == 0
    assert stats.items_analyzed == 0
    assert stats.errors == ["fetch rfp-2: gone"]


def test_scoring_failure_skips_the_item(app_config):
    _, stats = run_pipeline(app_config, scorer=FakeScorer(error=FetchError("quota")))

    assert stats.items_fetched == 1
    assert stats.items_analyzed == 0
    assert len(stats.errors) == 1


def test_scrape_mode_skips_analysis_and_keeps_lower_bound(app_config):
    scorer = FakeScorer()
    runner, stats = run_pipeline(app_config, scorer=scorer, mode=MODE_SCRAPE)

    assert stats.items_fetched == 1
    assert stats.items_analyzed == 0
    assert stats.cleanup_report is None
    assert scorer.requests == []

    db = open_store(runner)
    try:
        assert RunLedger(db).last_run_timestamp("run") is None
        assert RunLedger(db).last_run_timestamp("scrape") == stats.started_at
        assert db.counts()["listings"] == 1
    finally:
        db.dispose()


def test_feed_failure_aborts_and_leaves_failed_marker(app_config):
    with pytest.raises(PipelineError) as exc_info:
        run_pipeline(app_config, feed=feed_transport(b"", status_code=500))

    runner = build_runner(app_config)
    db = open_store(runner)
    try:
        (record,) = RunLedger(db).recent()
        assert record.status == STATUS_FAILED
        assert record.run_uid == exc_info.value.run_id
        assert RunLedger(db).last_run_timestamp() is None
    finally:
        db.dispose()


def test_failed_run_does_not_upload(tmp_path):
    config = AppConfig.model_validate(app_settings(tmp_path, store={"transport": "local_dir"}))
    config.ensure_directories()

    run_pipeline(config)
    remote = config.store.remote_dir / config.store.filename
    uploaded = remote.read_bytes()

    with pytest.raises(PipelineError):
        run_pipeline(config, feed=feed_transport(b"", status_code=500))

    assert remote.read_bytes() == uploaded
    assert not LockManager(config.store.remote_dir).is_locked("store")


def test_locked_store_refuses_the_run(app_config):
    LockManager(app_config.data_dir).acquire("store", "someone-else")

    with pytest.raises(PipelineError):
        run_pipeline(app_config)
