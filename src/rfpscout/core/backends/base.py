"""
Detail fetch collaborator contract.

Defines what the pipeline needs from whatever fetches a listing's detail
page and documents, plus the error types it may raise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from rfpscout.core.fetch.retries import PermanentError, TransientError

if TYPE_CHECKING:
    from rfpscout.core.feed.ingestor import FeedItem


@dataclass(frozen=True)
class AttachmentPayload:
    """An opaque document downloaded alongside a listing."""

    name: str
    content: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ListingDetail:
    """Everything a fetch collaborator learned about one listing."""

    title: str | None = None
    institution: str | None = None
    posted_at: datetime | str | None = None
    due_at: datetime | str | None = None
    description: str | None = None
    download_url: str | None = None
    attachments: list[AttachmentPayload] = field(default_factory=list)


class DetailFetcher(ABC):
    """Abstract base class for detail fetch collaborators."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Fetcher identifier."""

    @abstractmethod
    async def fetch(self, item: "FeedItem") -> ListingDetail:
        """Fetch detail for a promising feed item.

        Args:
            item: The feed item (its link is the detail URL)

        Returns:
            ListingDetail

        Raises:
            TransientFetchError: Worth retrying
            AuthError: Credentials rejected
            FetchError: Any other unrecoverable failure
        """

    async def close(self) -> None:
        """Clean up fetcher resources."""

    async def __aenter__(self) -> "DetailFetcher":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class BackendError(Exception):
    """Base exception for fetch collaborator errors."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.cause = cause


class FetchError(BackendError, PermanentError):
    """Unrecoverable error during fetch."""


class AuthError(FetchError):
    """Credentials missing or rejected (401/403)."""


class TransientFetchError(BackendError, TransientError):
    """Network failure or 5xx; retried."""


class RateLimitError(TransientFetchError):
    """Rate limit hit (429)."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, url, status_code=429)
        self.retry_after = retry_after
