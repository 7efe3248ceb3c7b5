"""
Detail fetch stage: fetch, store and extract each promising listing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Sequence

from rfpscout.core.artifacts import COMBINED_TEXT, METADATA, ArtifactStore
from rfpscout.core.backends.base import BackendError, DetailFetcher
from rfpscout.core.extract.base import TextExtractor
from rfpscout.core.extract.text import extract_all
from rfpscout.core.fetch.retries import RetryConfig, retry_async
from rfpscout.core.normalize.canonical import ListingRecord, build_listing_record
from rfpscout.core.normalize.parsing import normalize_whitespace, utcnow

if TYPE_CHECKING:
    from rfpscout.core.prefilter.strategies import PreFilterVerdict

logger = logging.getLogger(__name__)


@dataclass
class FetchBatch:
    """Outcome of the detail fetch stage."""

    records: list[ListingRecord] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)  # (listing_id, reason)


class DetailFetchOrchestrator:
    """Fetches listing details concurrently under a semaphore."""

    def __init__(
        self,
        fetcher: DetailFetcher,
        extractor: TextExtractor,
        artifacts: ArtifactStore,
        *,
        concurrency: int = 3,
        retry: RetryConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.fetcher = fetcher
        self.extractor = extractor
        self.artifacts = artifacts
        self.concurrency = max(1, concurrency)
        self.retry = retry or RetryConfig()
        self._clock = clock

    async def fetch_one(self, verdict: "PreFilterVerdict") -> ListingRecord:
        """Fetch and normalize one listing.

        Raises:
            BackendError: After retries are exhausted or on a permanent failure
        """
        item = verdict.item
        listing_id = item.identifier
        detail = await retry_async(self.fetcher.fetch, item, config=self.retry)

        manifest = [self.artifacts.write_attachment(listing_id, a) for a in detail.attachments]
        extraction = extract_all(
            self.extractor,
            [(info.name, a.content, a.content_type) for info, a in zip(manifest, detail.attachments)],
        )
        for warning in extraction.warnings:
            logger.warning(warning, extra={"listing_id": listing_id, "stage": "fetch"})

        description = normalize_whitespace(detail.description) or item.description
        content = "\n\n".join(part for part in (description, extraction.combined) if part)

        record = build_listing_record(
            listing_id,
            title=detail.title,
            detail_url=item.link,
            fallback_title=item.title,
            institution=detail.institution,
            posted_at=detail.posted_at or item.published_at,
            due_at=detail.due_at,
            download_url=detail.download_url,
            attachments=manifest,
            content=content,
            category=item.category,
            updated_at=self._clock(),
        )

        if content:
            self.artifacts.write_text(listing_id, COMBINED_TEXT, content)
        self.artifacts.write_json(
            listing_id,
            METADATA,
            {
                **{k: v for k, v in record.to_dict().items() if k != "content"},
                "prefilter": {
                    "confidence": verdict.confidence,
                    "categories": sorted(verdict.categories),
                    "estimated_budget": verdict.estimated_budget,
                    "reasoning": verdict.reasoning,
                    "source": verdict.source,
                },
            },
        )
        return record

    async def fetch_all(self, verdicts: Sequence["PreFilterVerdict"]) -> FetchBatch:
        """Fetch every candidate; failures are per item and never abort the batch."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(verdict: "PreFilterVerdict") -> ListingRecord | tuple[str, str]:
            listing_id = verdict.item.identifier
            async with semaphore:
                try:
                    return await self.fetch_one(verdict)
                except BackendError as e:
                    logger.error(
                        f"Detail fetch failed for {listing_id}: {e}",
                        extra={"listing_id": listing_id, "stage": "fetch", "url": verdict.item.link},
                    )
                    return (listing_id, str(e))

        batch = FetchBatch()
        for outcome in await asyncio.gather(*(guarded(v) for v in verdicts)):
            if isinstance(outcome, ListingRecord):
                batch.records.append(outcome)
            else:
                batch.failures.append(outcome)

        logger.info(f"Fetched {len(batch.records)} of {len(verdicts)} listings ({len(batch.failures)} failed)")
        return batch
