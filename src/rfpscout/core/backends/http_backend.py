"""
HTTP detail fetcher using httpx and lxml.

Fetches a listing's public detail page, pulls the fields that are commonly
labelled on RFP pages, and downloads linked documents.
"""

from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

import httpx
import lxml.html
from lxml.etree import ParserError

from rfpscout.core.normalize.parsing import normalize_whitespace

from .base import (
    AttachmentPayload,
    AuthError,
    DetailFetcher,
    FetchError,
    ListingDetail,
    RateLimitError,
    TransientFetchError,
)

if TYPE_CHECKING:
    from rfpscout.core.feed.ingestor import FeedItem

logger = logging.getLogger(__name__)


# Status codes that indicate missing or rejected credentials
AUTH_STATUS_CODES = {401, 403}

# Status codes that should trigger retry
RETRY_STATUS_CODES = {500, 502, 503, 504}

DOCUMENT_EXTENSIONS = {".pdf", ".doc", ".docx", ".rtf", ".txt", ".zip", ".xlsx"}

MAX_DESCRIPTION_CHARS = 20_000

_LABELLED = {
    "institution": re.compile(r"(?:Agency|Organization|Institution|Issued by)\s*:\s*([^\n|]{2,200})", re.I),
    "due_at": re.compile(r"(?:Due|Deadline|Closing)\s*(?:Date)?\s*:\s*([^\n|]{4,80})", re.I),
    "posted_at": re.compile(r"(?:Posted|Published|Issue)\s*(?:Date)?\s*:\s*([^\n|]{4,80})", re.I),
}


def check_response(response: httpx.Response, url: str) -> None:
    """Map an HTTP status onto the fetch error taxonomy.

    Raises:
        AuthError: 401/403
        RateLimitError: 429
        TransientFetchError: 5xx
        FetchError: Any other non-2xx status
    """
    status = response.status_code
    if 200 <= status < 300:
        return
    if status in AUTH_STATUS_CODES:
        raise AuthError(f"Access denied with status {status}", url=url, status_code=status)
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        try:
            retry_seconds = float(retry_after) if retry_after else None
        except ValueError:
            retry_seconds = None
        raise RateLimitError("Rate limit exceeded", url=url, retry_after=retry_seconds)
    if status in RETRY_STATUS_CODES:
        raise TransientFetchError(f"Server error {status}", url=url, status_code=status)
    raise FetchError(f"Unexpected status {status}", url=url, status_code=status)


class HttpDetailFetcher(DetailFetcher):
    """Detail fetcher for publicly reachable listing pages."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "RFPScout/0.1",
        max_attachments: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds
            user_agent: User-Agent header
            max_attachments: Documents downloaded per listing
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.timeout = timeout
        self.max_attachments = max_attachments
        self.headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "http"

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def _get(self, url: str) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.get(url)
        except httpx.TransportError as e:
            raise TransientFetchError(f"Transport error: {e}", url=url, cause=e) from e
        except httpx.HTTPError as e:
            raise FetchError(f"HTTP error: {e}", url=url, cause=e) from e
        check_response(response, url)
        return response

    async def fetch(self, item: "FeedItem") -> ListingDetail:
        response = await self._get(item.link)

        try:
            doc = lxml.html.fromstring(response.text)
        except (ParserError, ValueError) as e:
            raise FetchError(f"Unparsable detail page: {e}", url=item.link, cause=e) from e
        doc.make_links_absolute(str(response.url), resolve_base_href=True)

        for node in doc.xpath("//script|//style|//noscript"):
            node.drop_tree()

        page_text = doc.text_content()
        detail = ListingDetail(
            title=_first_text(doc, "//h1") or _first_text(doc, "//title"),
            description=_meta_description(doc) or normalize_whitespace(page_text)[:MAX_DESCRIPTION_CHARS],
        )
        for field_name, pattern in _LABELLED.items():
            match = pattern.search(page_text)
            if match:
                setattr(detail, field_name, normalize_whitespace(match.group(1)))

        document_links = _document_links(doc)
        if document_links:
            detail.download_url = document_links[0]
        for link in document_links[: self.max_attachments]:
            try:
                doc_response = await self._get(link)
            except (FetchError, TransientFetchError) as e:
                logger.warning(f"Skipping attachment {link}: {e}")
                continue
            detail.attachments.append(AttachmentPayload(
                name=_filename_from_url(link),
                content=doc_response.content,
                content_type=doc_response.headers.get("Content-Type"),
            ))

        return detail

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def _first_text(doc: lxml.html.HtmlElement, xpath: str) -> str | None:
    nodes = doc.xpath(xpath)
    if not nodes:
        return None
    return normalize_whitespace(nodes[0].text_content()) or None


def _meta_description(doc: lxml.html.HtmlElement) -> str | None:
    values = doc.xpath("//meta[@name='description' or @property='og:description']/@content")
    for value in values:
        text = normalize_whitespace(value)
        if text:
            return text
    return None


def _document_links(doc: lxml.html.HtmlElement) -> list[str]:
    seen: list[str] = []
    for href in doc.xpath("//a/@href"):
        path = urlparse(href).path.lower()
        if PurePosixPath(path).suffix in DOCUMENT_EXTENSIONS and href not in seen:
            seen.append(href)
    return seen


def _filename_from_url(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name
    return name or "document"
