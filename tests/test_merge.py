from datetime import datetime, timedelta

import pytest

from rfpscout.core.analysis.verdict import FitRating, FitVerdict
from rfpscout.core.merge import MergeEngine
from rfpscout.core.normalize.canonical import AttachmentInfo, ListingRecord
from rfpscout.persistence.db import Database
from rfpscout.persistence.ledger import RunLedger, RunSummary
from rfpscout.persistence.repo import ListingRepository, VerdictRepository

T0 = datetime(2024, 1, 5, 12, 0)


@pytest.fixture
def db():
    database = Database.in_memory()
    yield database
    database.dispose()


def listing(title="State University Website Redesign", updated_at=T0, **kwargs):
    return ListingRecord(
        listing_id=kwargs.pop("listing_id", "rfp-2"),
        title=title,
        detail_url="https://rfps.example.org/rfp-2",
        updated_at=updated_at,
        **kwargs,
    )


def verdict(score=85, analyzed_at=T0, rating=FitRating.EXCELLENT):
    return FitVerdict(listing_id="rfp-2", score=score, rating=rating, confidence=80, analyzed_at=analyzed_at)


def stored_title(db):
    with db.session() as session:
        return ListingRepository(session).get_record("rfp-2").title


def test_insert_then_remerge_is_idempotent(db):
    engine = MergeEngine(db)
    first = engine.merge([listing()], [verdict()])
    second = engine.merge([listing()], [verdict()])

    assert (first.inserted, first.verdicts_inserted, first.merged_count) == (1, 1, 2)
    assert (second.skipped, second.verdicts_skipped, second.merged_count) == (1, 1, 0)
    assert db.counts() == {"listings": 1, "verdicts": 1, "runs": 0}


def test_strictly_newer_listing_replaces(db):
    engine = MergeEngine(db)
    engine.merge([listing()])
    result = engine.merge([listing(title="Revised Title", updated_at=T0 + timedelta(minutes=1))])

    assert result.updated == 1
    assert stored_title(db) == "Revised Title"


def test_tie_keeps_stored_row(db):
    engine = MergeEngine(db)
    engine.merge([listing()])
    result = engine.merge([listing(title="Same Instant")])

    assert result.skipped == 1
    assert stored_title(db) == "State University Website Redesign"


def test_older_listing_is_ignored(db):
    engine = MergeEngine(db)
    engine.merge([listing()])
    engine.merge([listing(title="Stale", updated_at=T0 - timedelta(days=1))])

    assert stored_title(db) == "State University Website Redesign"


def test_listing_fields_round_trip(db):
    original = listing(
        institution="State University",
        posted_at=datetime(2024, 1, 5),
        due_at=datetime(2024, 2, 1),
        attachments=[AttachmentInfo("scope.txt", 36, "text/plain", "ab" * 32)],
        content="Scope of work",
        category="Web Design",
    )
    MergeEngine(db).merge([original])

    with db.session() as session:
        assert ListingRepository(session).get_record("rfp-2") == original


def test_newer_verdict_replaces_older(db):
    engine = MergeEngine(db)
    engine.merge([], [verdict()])
    result = engine.merge([], [verdict(score=40, rating=FitRating.POOR, analyzed_at=T0 + timedelta(hours=1))])

    assert result.verdicts_updated == 1
    with db.session() as session:
        stored = VerdictRepository(session).iter_all()
        (current,) = list(stored)
    assert current.score == 40
    assert current.rating == FitRating.POOR


def test_verdicts_are_keyed_by_analysis_type(db):
    other = FitVerdict(listing_id="rfp-2", score=50, rating=FitRating.POOR, confidence=60, analysis_type="scope", analyzed_at=T0)
    MergeEngine(db).merge([], [verdict(), other])
    assert db.counts()["verdicts"] == 2


def test_reconcile_folds_working_store_and_copies_runs_once(db):
    working = Database.in_memory()
    try:
        MergeEngine(working).merge([listing()], [verdict()])
        RunLedger(working).record_run(RunSummary(run_uid="run-a", started_at=T0))

        first = MergeEngine(db).reconcile(working)
        second = MergeEngine(db).reconcile(working)
    finally:
        working.dispose()

    assert (first.inserted, first.verdicts_inserted, first.runs_copied) == (1, 1, 1)
    assert (second.merged_count, second.runs_copied) == (0, 0)
    assert db.counts() == {"listings": 1, "verdicts": 1, "runs": 1}


def test_reconcile_finalize_commits_with_the_merged_rows(db):
    working = Database.in_memory()
    try:
        MergeEngine(working).merge([listing()], [verdict()])

        def complete(session, result):
            RunLedger.append(session, RunSummary(run_uid="run-b", started_at=T0, merged_count=result.merged_count))

        MergeEngine(db).reconcile(working, finalize=complete)
    finally:
        working.dispose()

    (run,) = RunLedger(db).recent()
    assert (run.run_uid, run.merged_count) == ("run-b", 2)


def test_reconcile_rolls_back_when_finalize_fails(db):
    MergeEngine(db).merge([listing(title="Original")])
    working = Database.in_memory()
    try:
        MergeEngine(working).merge([listing(title="Newer", updated_at=T0 + timedelta(hours=1))], [verdict()])
        RunLedger(working).record_run(RunSummary(run_uid="run-a", started_at=T0))

        def complete(session, result):
            raise OSError("disk full")

        with pytest.raises(OSError):
            MergeEngine(db).reconcile(working, finalize=complete)
    finally:
        working.dispose()

    assert stored_title(db) == "Original"
    assert db.counts() == {"listings": 1, "verdicts": 0, "runs": 0}
