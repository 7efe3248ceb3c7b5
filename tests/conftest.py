"""Shared fixtures: isolated config, feed documents and fake collaborators."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import orjson
import pytest
import yaml

from rfpscout.core.analysis.scorers import ScoringCollaborator, ScoringRequest
from rfpscout.core.backends.base import AttachmentPayload, DetailFetcher, ListingDetail
from rfpscout.core.config.models import AppConfig
from rfpscout.core.feed.ingestor import FeedItem

FEED_URL = "https://feeds.example.org/rfps"


@pytest.fixture(autouse=True)
def reset_rfpscout_logging():
    yield
    logger = logging.getLogger("rfpscout")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def app_settings(root: Path, **overrides: Any) -> dict[str, Any]:
    """Config mapping with every path under ``root`` and instant retries."""
    settings: dict[str, Any] = {
        "data_dir": str(root / "data"),
        "artifacts_dir": str(root / "data" / "rfps"),
        "reports_dir": str(root / "data" / "reports"),
        "working_dir": str(root / "data" / "work"),
        "database": {"url": f"sqlite:///{(root / 'data' / 'rfpscout.db').as_posix()}"},
        "logging": {"level": "DEBUG", "file": None, "json_format": False, "rich_console": False},
        "feed": {"url": FEED_URL},
        "retry": {"max_attempts": 2, "min_wait": 0, "max_wait": 0, "multiplier": 0},
        "store": {"remote_dir": str(root / "remote")},
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(settings.get(key), dict):
            settings[key] = {**settings[key], **value}
        else:
            settings[key] = value
    return settings


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    config = AppConfig.model_validate(app_settings(tmp_path))
    config.ensure_directories()
    return config


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "app.yaml"
    path.write_text(yaml.safe_dump(app_settings(tmp_path)), encoding="utf-8")
    return path


# =============================================================================
# Feed documents
# =============================================================================


def rss_item(
    title: str | None,
    *,
    guid: str | None = None,
    link: str | None = None,
    published: datetime | None = None,
    description: str = "",
    category: str | None = None,
) -> str:
    parts = []
    if title is not None:
        parts.append(f"<title>{title}</title>")
    parts.append(f"<link>{link or f'https://rfps.example.org/{guid}'}</link>")
    if guid:
        parts.append(f'<guid isPermaLink="false">{guid}</guid>')
    if published is not None:
        parts.append(f"<pubDate>{published.strftime('%a, %d %b %Y %H:%M:%S')} GMT</pubDate>")
    if description:
        parts.append(f"<description><![CDATA[{description}]]></description>")
    if category:
        parts.append(f"<category>{category}</category>")
    return "<item>" + "".join(parts) + "</item>"


def rss_feed(*items: str) -> bytes:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        "<title>Web Design RFPs</title>"
        "<link>https://rfps.example.org/</link>"
        "<description>New requests for proposals</description>"
        + "".join(items)
        + "</channel></rss>"
    ).encode("utf-8")


SAMPLE_FEED = rss_feed(
    rss_item(
        "Municipal Library Website Redesign",
        guid="rfp-1",
        published=datetime(2024, 1, 1, 9, 0),
        description="University partner library seeks a redesign.",
    ),
    rss_item(
        "State University Website Redesign",
        guid="rfp-2",
        published=datetime(2024, 1, 5, 9, 0),
        description="Seeking a Drupal partner for a full website redesign.",
        category="Web Design",
    ),
    rss_item(
        "Community College Hosting Contract",
        guid="rfp-3",
        published=datetime(2024, 1, 10, 9, 0),
        description="Hosting only engagement for the college website.",
    ),
)


def feed_transport(content: bytes = SAMPLE_FEED, status_code: int = 200, calls: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(
            status_code,
            content=content,
            headers={"content-type": "application/rss+xml"},
        )

    return httpx.MockTransport(handler)


def make_item(
    title: str,
    description: str = "",
    *,
    identifier: str | None = None,
    published_at: datetime = datetime(2024, 1, 5),
    category: str | None = None,
) -> FeedItem:
    identifier = identifier or title.lower().replace(" ", "-")
    return FeedItem(
        identifier=identifier,
        title=title,
        link=f"https://rfps.example.org/{identifier}",
        published_at=published_at,
        description=description,
        category=category,
    )


# =============================================================================
# Fake collaborators
# =============================================================================


def scoring_payload(score: int = 85, rating: str | None = None, **overrides: Any) -> str:
    payload = {
        "fitScore": score,
        "fitRating": rating,
        "reasoning": "Strong sector and platform match",
        "keyRequirements": ["Drupal 10", "WCAG 2.1 AA"],
        "budgetEstimate": "$120,000",
        "technologies": ["drupal"],
        "institutionType": "university",
        "projectType": "redesign",
        "redFlags": [],
        "opportunities": ["multi-year support"],
        "recommendation": "pursue",
        "confidence": 80,
    }
    payload.update(overrides)
    return orjson.dumps(payload).decode("utf-8")


class FakeFetcher(DetailFetcher):
    """Returns canned details keyed by link; records calls."""

    def __init__(
        self,
        details: dict[str, ListingDetail] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.details = details or {}
        self.failures = failures or {}
        self.calls: list[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    async def fetch(self, item: FeedItem) -> ListingDetail:
        self.calls.append(item.link)
        if item.link in self.failures:
            raise self.failures[item.link]
        if item.link in self.details:
            return self.details[item.link]
        return ListingDetail(
            title=item.title,
            institution="State University",
            due_at="2024-02-01",
            description=item.description,
            attachments=[AttachmentPayload("scope.txt", b"Scope of work: full Drupal redesign.", "text/plain")],
        )

    async def close(self) -> None:
        self.closed = True


class FakeScorer(ScoringCollaborator):
    """Scoring collaborator with scripted replies."""

    name = "fake"

    def __init__(
        self,
        default: str | None = None,
        responses: dict[str, str] | None = None,
        error: Exception | None = None,
        completion: str | Exception | None = None,
    ) -> None:
        self.default = default if default is not None else scoring_payload()
        self.responses = responses or {}
        self.error = error
        self.completion = completion
        self.requests: list[ScoringRequest] = []
        self.prompts: list[str] = []
        self.closed = False

    async def score(self, request: ScoringRequest) -> str:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.responses.get(request.listing_id, self.default)

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.completion, Exception):
            raise self.completion
        return self.completion or ""

    async def close(self) -> None:
        self.closed = True
