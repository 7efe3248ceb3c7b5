"""
Pipeline runner.

Coordinates one invocation end to end:
ingest → pre-filter → detail fetch → analyze → cleanup → merge and ledger.

The run works against an in-memory working store and reconciles it into
the local copy of the durable store, which is uploaded only on success.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Sequence

import httpx
from sqlalchemy.orm import Session

from rfpscout.core.analysis.analyzer import AnalysisError, FitAnalyzer
from rfpscout.core.analysis.llm import LLMClient, LLMScorer
from rfpscout.core.analysis.scorers import RuleBasedScorer, ScoringCollaborator
from rfpscout.core.analysis.verdict import FitBands, FitRating, FitVerdict
from rfpscout.core.artifacts import FIT_ANALYSIS, ArtifactStore
from rfpscout.core.backends.base import DetailFetcher
from rfpscout.core.backends.http_backend import HttpDetailFetcher
from rfpscout.core.config.models import AppConfig, ClassifierType, ScoringProvider, TransportType
from rfpscout.core.extract.text import PlainTextExtractor
from rfpscout.core.feed.ingestor import FeedIngestor
from rfpscout.core.fetch.retries import RetryConfig
from rfpscout.core.logging import get_contextual_logger
from rfpscout.core.merge.engine import MergeEngine, MergeResult
from rfpscout.core.normalize.canonical import ListingRecord
from rfpscout.core.normalize.parsing import utcnow
from rfpscout.core.prefilter.filter import PreFilterCriteria, RelevancePreFilter
from rfpscout.core.prefilter.strategies import ClassifierStrategy, ExternalClassifier, HeuristicClassifier
from rfpscout.core.retention.policy import CleanupEngine, CleanupOptions, validate_cleanup_options
from rfpscout.core.retention.report import write_cleanup_report
from rfpscout.persistence.db import Database
from rfpscout.persistence.ledger import (
    STATUS_COMPLETED,
    RunLedger,
    RunSummary,
    default_lower_bound,
)
from rfpscout.persistence.store import open_durable_store
from rfpscout.persistence.transport import LocalDirectoryTransport, NullTransport, StoreTransport

from .detail import DetailFetchOrchestrator

logger = logging.getLogger(__name__)

MODE_RUN = "run"
MODE_SCRAPE = "scrape"

HIGH_RATINGS = (FitRating.EXCELLENT, FitRating.GOOD)


class PipelineError(Exception):
    """A run aborted; the durable store was not uploaded."""

    def __init__(self, message: str, run_id: str | None = None, cause: BaseException | None = None):
        super().__init__(message)
        self.run_id = run_id
        self.cause = cause


@dataclass
class RunStats:
    """Statistics for one pipeline run."""

    run_id: str
    mode: str = MODE_RUN
    lower_bound: datetime | None = None

    items_found: int = 0
    items_promising: int = 0
    items_fetched: int = 0
    items_analyzed: int = 0
    high_score_count: int = 0
    merged_count: int = 0
    cleaned_count: int = 0

    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cleanup_report: Path | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "lower_bound": self.lower_bound.isoformat() if self.lower_bound else None,
            "items_found": self.items_found,
            "items_promising": self.items_promising,
            "items_fetched": self.items_fetched,
            "items_analyzed": self.items_analyzed,
            "high_score_count": self.high_score_count,
            "merged_count": self.merged_count,
            "cleaned_count": self.cleaned_count,
            "errors_count": len(self.errors),
            "duration_seconds": self.duration_seconds,
        }

    def to_summary(self, status: str = STATUS_COMPLETED) -> RunSummary:
        return RunSummary(
            run_uid=self.run_id,
            kind=self.mode,
            status=status,
            started_at=self.started_at,
            finished_at=self.finished_at,
            lower_bound=self.lower_bound,
            items_found=self.items_found,
            items_promising=self.items_promising,
            items_fetched=self.items_fetched,
            items_analyzed=self.items_analyzed,
            high_score_count=self.high_score_count,
            merged_count=self.merged_count,
            cleaned_count=self.cleaned_count,
            errors_count=len(self.errors),
        )


def new_run_id(mode: str, now: datetime | None = None) -> str:
    stamp = (now or utcnow()).strftime("%Y%m%dT%H%M%S")
    return f"{mode}-{stamp}-{uuid.uuid4().hex[:8]}"


class PipelineRunner:
    """Runs the staged pipeline with injected collaborators."""

    def __init__(
        self,
        config: AppConfig,
        *,
        transport: StoreTransport,
        ingestor: FeedIngestor,
        prefilter: RelevancePreFilter,
        detail: DetailFetchOrchestrator,
        analyzer: FitAnalyzer,
        cleanup: CleanupEngine,
        criteria: PreFilterCriteria | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.transport = transport
        self.ingestor = ingestor
        self.prefilter = prefilter
        self.detail = detail
        self.analyzer = analyzer
        self.cleanup = cleanup
        self.criteria = criteria or PreFilterCriteria.from_config(config.prefilter)
        self._clock = clock

    @property
    def local_store_path(self) -> Path:
        return self.config.database.sqlite_path or self.config.data_dir / self.config.store.filename

    async def run(
        self,
        since: datetime | None = None,
        mode: str = MODE_RUN,
        dry_run_cleanup: bool = False,
    ) -> RunStats:
        """Execute one pipeline run.

        Args:
            since: Explicit feed lower bound; defaults to the last completed run
            mode: ``run`` for the full pipeline, ``scrape`` to stop after merge
            dry_run_cleanup: Plan cleanup without touching files

        Returns:
            RunStats for the completed run

        Raises:
            PipelineError: Any fatal-to-run failure; nothing was uploaded
        """
        if mode not in (MODE_RUN, MODE_SCRAPE):
            raise ValueError(f"Unknown run mode: {mode}")

        started = self._clock()
        stats = RunStats(run_id=new_run_id(mode, started), mode=mode, started_at=started)
        log = get_contextual_logger("pipeline", run_id=stats.run_id)
        log.info(f"Starting {mode} run with {self.transport.describe()}")

        try:
            with open_durable_store(
                self.transport,
                self.local_store_path,
                holder_id=stats.run_id,
                ttl_minutes=self.config.store.lock_ttl_minutes,
            ) as durable:
                ledger = RunLedger(durable)
                try:
                    await self._execute(durable, ledger, stats, since, dry_run_cleanup)
                except Exception as e:
                    stats.finished_at = self._clock()
                    stats.errors.append(str(e))
                    ledger.record_failure(stats.to_summary(), e)
                    raise
        except Exception as e:
            log.exception(f"{mode} run failed: {e}")
            raise PipelineError(f"{mode} run {stats.run_id} failed: {e}", run_id=stats.run_id, cause=e) from e
        finally:
            await self.detail.fetcher.close()
            await self.analyzer.scorer.close()

        log.info(f"Run complete: {stats.to_dict()}")
        return stats

    async def _execute(
        self,
        durable: Database,
        ledger: RunLedger,
        stats: RunStats,
        since: datetime | None,
        dry_run_cleanup: bool,
    ) -> None:
        working = Database.in_memory()
        try:
            stats.lower_bound = (
                since
                or ledger.last_run_timestamp(MODE_RUN)
                or default_lower_bound(stats.started_at, self.config.feed.default_lookback_days)
            )

            log = get_contextual_logger("pipeline", run_id=stats.run_id, stage="ingest")
            items = list(await self.ingestor.fetch_since(stats.lower_bound, self.config.feed.max_items))
            stats.items_found = len(items)
            log.info(f"{len(items)} item(s) since {stats.lower_bound.isoformat()}")

            log = log.with_context(stage="prefilter")
            candidates = await self.prefilter.filter(items, self.criteria)
            stats.items_promising = len(candidates)
            log.info(f"{len(candidates)} promising candidate(s)")

            log = log.with_context(stage="fetch")
            batch = await self.detail.fetch_all(candidates)
            stats.items_fetched = len(batch.records)
            stats.errors.extend(f"fetch {listing_id}: {reason}" for listing_id, reason in batch.failures)

            verdicts: list[FitVerdict] = []
            if stats.mode == MODE_RUN:
                log = log.with_context(stage="analyze")
                verdicts = await self._analyze_all(batch.records, stats)
                stats.items_analyzed = len(verdicts)
                stats.high_score_count = sum(1 for v in verdicts if v.rating in HIGH_RATINGS)
                log.info(f"{len(verdicts)} analyzed, {stats.high_score_count} high-fit")

            MergeEngine(working).merge(batch.records, verdicts)

            if stats.mode == MODE_RUN and self.config.retention.enabled:
                self._cleanup(verdicts, stats, dry_run_cleanup)

            def complete(session: Session, result: MergeResult) -> None:
                stats.merged_count = result.merged_count
                stats.finished_at = self._clock()
                RunLedger.append(session, stats.to_summary(STATUS_COMPLETED))

            # Rows and the COMPLETED record commit together.
            result = MergeEngine(durable).reconcile(working, finalize=complete)
            log.with_context(stage="merge").info(f"{result.merged_count} row(s) merged into durable store")
        finally:
            working.dispose()

    async def _analyze_all(self, records: Sequence[ListingRecord], stats: RunStats) -> list[FitVerdict]:
        semaphore = asyncio.Semaphore(max(1, self.config.analysis.concurrency))

        async def guarded(record: ListingRecord) -> FitVerdict | None:
            async with semaphore:
                try:
                    verdict = await self.analyzer.analyze(record)
                except AnalysisError as e:
                    logger.error(
                        f"Analysis failed for {record.listing_id}: {e}",
                        extra={"listing_id": record.listing_id, "stage": "analyze"},
                    )
                    stats.errors.append(f"analyze {record.listing_id}: {e}")
                    return None
            self.detail.artifacts.write_json(record.listing_id, FIT_ANALYSIS, verdict.to_dict())
            return verdict

        results = await asyncio.gather(*(guarded(r) for r in records))
        return [v for v in results if v is not None]

    def _cleanup(self, verdicts: Sequence[FitVerdict], stats: RunStats, dry_run: bool) -> None:
        options = CleanupOptions.from_config(self.config.retention, dry_run=dry_run)
        warnings = validate_cleanup_options(options, self.cleanup.bands)
        for warning in warnings:
            logger.warning(f"Cleanup config: {warning}")

        outcome = self.cleanup.cleanup({v.listing_id: v for v in verdicts}, options)
        stats.cleaned_count = 0 if dry_run else len(outcome.cleaned)
        stats.warnings.extend(outcome.errors)
        stats.cleanup_report = write_cleanup_report(outcome, self.config.reports_dir, warnings=warnings)


# =============================================================================
# Default wiring
# =============================================================================


def build_transport(config: AppConfig) -> StoreTransport:
    """Transport for the configured durable store."""
    if config.store.transport == TransportType.LOCAL_DIR:
        return LocalDirectoryTransport(
            config.store.remote_dir,
            filename=config.store.filename,
            keep_backups=config.store.keep_backups,
        )
    return NullTransport(lock_dir=config.data_dir)


def build_scorer(config: AppConfig, retry: RetryConfig | None = None) -> ScoringCollaborator:
    """Scoring collaborator for the configured provider.

    Raises:
        ConfigError: An LLM provider is selected without an API key
    """
    if config.analysis.provider == ScoringProvider.RULES:
        return RuleBasedScorer(config.keywords, config.budget, FitBands.from_config(config.bands))
    return LLMScorer(LLMClient.from_config(config.analysis, retry), config.keywords, config.budget)


def build_classifier(config: AppConfig, scorer: ScoringCollaborator) -> ClassifierStrategy:
    heuristic = HeuristicClassifier(config.keywords, config.prefilter.weights)
    if config.prefilter.classifier != ClassifierType.EXTERNAL:
        return heuristic
    if isinstance(scorer, RuleBasedScorer):
        logger.warning("External classifier needs an LLM provider; using the heuristic classifier")
        return heuristic
    return ExternalClassifier(scorer, heuristic)


def build_runner(
    config: AppConfig,
    *,
    transport: StoreTransport | None = None,
    fetcher: DetailFetcher | None = None,
    scorer: ScoringCollaborator | None = None,
    feed_transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> PipelineRunner:
    """Wire a PipelineRunner from configuration.

    Any collaborator passed explicitly replaces the default built from
    ``config``.
    """
    retry = RetryConfig.from_settings(config.retry)
    bands = FitBands.from_config(config.bands)
    scorer = scorer or build_scorer(config, retry)

    ingestor = FeedIngestor(
        config.feed.url,
        timeout=config.feed.timeout_seconds,
        user_agent=config.feed.user_agent,
        retry=retry,
        transport=feed_transport,
        clock=clock,
    )
    fetcher = fetcher or HttpDetailFetcher(
        timeout=config.fetch.timeout_seconds,
        user_agent=config.fetch.user_agent,
        max_attachments=config.fetch.max_attachments,
    )
    detail = DetailFetchOrchestrator(
        fetcher,
        PlainTextExtractor(),
        ArtifactStore(config.artifacts_dir),
        concurrency=config.fetch.concurrency,
        retry=retry,
        clock=clock,
    )
    analyzer = FitAnalyzer(
        scorer,
        bands=bands,
        analysis_type=config.analysis.analysis_type,
        max_content_chars=config.analysis.max_content_chars,
        clock=clock,
    )

    return PipelineRunner(
        config,
        transport=transport or build_transport(config),
        ingestor=ingestor,
        prefilter=RelevancePreFilter(build_classifier(config, scorer)),
        detail=detail,
        analyzer=analyzer,
        cleanup=CleanupEngine(config.artifacts_dir, bands),
        clock=clock,
    )
