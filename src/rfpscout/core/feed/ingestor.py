"""
Feed ingestion: fetch a listing feed and yield normalized items.

The feed is fetched once per pass with httpx and parsed with feedparser.
Items come back as a lazy, single-use generator in the feed's own order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator

import feedparser
import httpx

from rfpscout import __version__
from rfpscout.core.backends.base import BackendError, FetchError, TransientFetchError
from rfpscout.core.backends.http_backend import check_response
from rfpscout.core.fetch.retries import RetryConfig, retry_async
from rfpscout.core.normalize.parsing import (
    normalize_whitespace,
    parse_date,
    strip_html,
    struct_time_to_datetime,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"RFPScout/{__version__}"


class FeedError(Exception):
    """The feed could not be fetched or parsed (fatal to the run)."""

    def __init__(self, message: str, url: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.url = url
        self.cause = cause


@dataclass(frozen=True)
class FeedItem:
    """One normalized feed entry."""

    identifier: str
    title: str
    link: str
    published_at: datetime
    description: str = ""
    category: str | None = None
    author: str | None = None
    date_defaulted: bool = False

    @property
    def text(self) -> str:
        """Title and description, for keyword matching."""
        return f"{self.title} {self.description}"


@dataclass
class FeedStats:
    """Counters for one ingestion pass."""

    entries: int = 0
    yielded: int = 0
    dropped: int = 0
    older_than_bound: int = 0
    dates_defaulted: int = 0


def entry_to_item(entry: Any, now: datetime) -> tuple[FeedItem | None, str | None]:
    """Normalize a feedparser entry.

    Returns:
        (item, None) on success, (None, reason) when the entry is rejected
    """
    title = normalize_whitespace(strip_html(entry.get("title")))
    link = (entry.get("link") or "").strip()
    if not title:
        return None, "missing title"
    if not link:
        return None, "missing link"

    published = struct_time_to_datetime(entry.get("published_parsed") or entry.get("updated_parsed"))
    if published is None:
        raw_date = entry.get("published") or entry.get("updated")
        published = parse_date(raw_date).value if raw_date else None
    date_defaulted = published is None
    if date_defaulted:
        published = now

    content = entry.get("content") or []
    raw_description = (content[0].get("value") if content else None) or entry.get("summary") or ""

    tags = entry.get("tags") or []
    category = (tags[0].get("term") or None) if tags else None

    item = FeedItem(
        identifier=(entry.get("id") or link).strip(),
        title=title,
        link=link,
        published_at=published,
        description=strip_html(raw_description),
        category=category,
        author=entry.get("author") or None,
        date_defaulted=date_defaulted,
    )
    return item, None


class FeedIngestor:
    """Fetches a syndication feed and yields items newer than a bound."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent
        self.retry = retry or RetryConfig()
        self._transport = transport
        self._clock = clock
        self.stats = FeedStats()

    async def _get_once(self, client: httpx.AsyncClient) -> bytes:
        try:
            response = await client.get(self.url)
        except httpx.TransportError as e:
            raise TransientFetchError(f"Transport error: {e}", url=self.url, cause=e) from e
        except httpx.HTTPError as e:
            raise FetchError(f"HTTP error: {e}", url=self.url, cause=e) from e
        check_response(response, self.url)
        return response.content

    async def fetch_raw(self) -> bytes:
        """Download the feed body, retrying transient failures.

        Raises:
            FeedError: On any failure after retries
        """
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
            },
            transport=self._transport,
        ) as client:
            try:
                return await retry_async(self._get_once, client, config=self.retry)
            except BackendError as e:
                raise FeedError(f"Feed fetch failed: {e}", url=self.url, cause=e) from e

    def parse(self, content: bytes | str) -> Any:
        """Parse a feed document.

        Raises:
            FeedError: When the document is not a usable feed
        """
        feed = feedparser.parse(content)
        if feed.bozo:
            if not feed.entries:
                raise FeedError(
                    f"Feed could not be parsed: {feed.get('bozo_exception')}",
                    url=self.url,
                )
            logger.warning(f"Feed has parsing issues: {feed.get('bozo_exception')}")
        if not feed.entries and not feed.get("feed"):
            raise FeedError("Document is not a feed", url=self.url)
        return feed

    def iter_items(self, feed: Any, lower_bound: datetime, max_items: int) -> Iterator[FeedItem]:
        """Yield items published at or after ``lower_bound``, up to ``max_items``."""
        now = self._clock()
        self.stats = FeedStats(entries=len(feed.entries))

        for entry in feed.entries:
            if self.stats.yielded >= max_items:
                return

            item, reason = entry_to_item(entry, now)
            if item is None:
                self.stats.dropped += 1
                logger.info(f"Dropping feed entry ({reason}): {entry.get('link') or entry.get('title') or '?'}")
                continue

            if item.date_defaulted:
                self.stats.dates_defaulted += 1
                logger.warning(f"No usable publication date for '{item.title}'; treating as published now")

            if item.published_at < lower_bound:
                self.stats.older_than_bound += 1
                continue

            self.stats.yielded += 1
            yield item

    async def fetch_since(self, lower_bound: datetime, max_items: int) -> Iterator[FeedItem]:
        """Fetch the feed and return a lazy iterator over fresh items.

        Args:
            lower_bound: Items published before this are skipped
            max_items: Maximum items to yield

        Returns:
            Single-use iterator of FeedItems in feed order

        Raises:
            FeedError: Feed unreachable or unparsable
        """
        content = await self.fetch_raw()
        feed = self.parse(content)
        logger.info(f"Fetched feed with {len(feed.entries)} entries; lower bound {lower_bound.isoformat()}")
        return self.iter_items(feed, lower_bound, max_items)
