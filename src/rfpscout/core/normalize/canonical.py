"""
Canonical listing model for normalized data.

Provides a clean interface between detail fetch/extraction and database
persistence. A ListingRecord is what the merge engine reconciles.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .parsing import normalize_whitespace, parse_date, utcnow


@dataclass(frozen=True)
class AttachmentInfo:
    """Manifest entry for one attachment saved to the artifact directory."""

    name: str
    size: int
    content_type: str | None = None
    sha256: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AttachmentInfo":
        return cls(
            name=str(data["name"]),
            size=int(data.get("size", 0)),
            content_type=data.get("content_type"),
            sha256=data.get("sha256"),
        )


@dataclass
class ListingRecord:
    """Normalized listing data ready for persistence.

    This is the durable entity: one row per listing id. The row is replaced
    only by a record with a strictly newer ``updated_at``.
    """

    listing_id: str
    title: str
    detail_url: str
    updated_at: datetime = field(default_factory=utcnow)

    institution: str | None = None
    posted_at: datetime | None = None
    due_at: datetime | None = None
    download_url: str | None = None

    attachments: list[AttachmentInfo] = field(default_factory=list)
    content: str = ""

    # Carried through from the pre-filter for reporting
    category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat dictionary (ORM column names)."""
        return {
            "listing_id": self.listing_id,
            "title": self.title,
            "detail_url": self.detail_url,
            "updated_at": self.updated_at,
            "institution": self.institution,
            "posted_at": self.posted_at,
            "due_at": self.due_at,
            "download_url": self.download_url,
            "attachments": [a.to_dict() for a in self.attachments],
            "content": self.content,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ListingRecord":
        return cls(
            listing_id=data["listing_id"],
            title=data["title"],
            detail_url=data["detail_url"],
            updated_at=data["updated_at"],
            institution=data.get("institution"),
            posted_at=data.get("posted_at"),
            due_at=data.get("due_at"),
            download_url=data.get("download_url"),
            attachments=[AttachmentInfo.from_dict(a) for a in data.get("attachments") or []],
            content=data.get("content") or "",
            category=data.get("category"),
        )

    def compute_fingerprint(self) -> str:
        """Content fingerprint over the fields a reader cares about."""
        parts = [
            self.listing_id,
            self.title,
            self.institution or "",
            str(self.due_at or ""),
            self.download_url or "",
            ",".join(sorted(a.sha256 or a.name for a in self.attachments)),
            self.content,
        ]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:32]


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_listing_dirname(listing_id: str) -> str:
    """Filesystem-safe directory name for a listing id.

    Ids are often URLs or guids; they are slugged and, when long, suffixed
    with a short hash so distinct ids never collide.
    """
    slug = _UNSAFE_CHARS.sub("_", listing_id).strip("._")
    if len(slug) <= 80 and slug == listing_id:
        return slug
    digest = hashlib.sha1(listing_id.encode("utf-8")).hexdigest()[:10]
    return f"{slug[:80]}-{digest}" if slug else digest


def coerce_datetime(value: Any) -> datetime | None:
    """Accept datetimes or strings from collaborators."""
    if value is None or value == "":
        return None
    return parse_date(value).value


def build_listing_record(
    listing_id: str,
    *,
    title: str | None,
    detail_url: str,
    fallback_title: str,
    institution: str | None = None,
    posted_at: Any = None,
    due_at: Any = None,
    download_url: str | None = None,
    attachments: list[AttachmentInfo] | None = None,
    content: str = "",
    category: str | None = None,
    updated_at: datetime | None = None,
) -> ListingRecord:
    """Normalize collaborator output into a ListingRecord."""
    return ListingRecord(
        listing_id=listing_id,
        title=normalize_whitespace(title) or fallback_title,
        detail_url=detail_url,
        updated_at=updated_at or utcnow(),
        institution=normalize_whitespace(institution) or None,
        posted_at=coerce_datetime(posted_at),
        due_at=coerce_datetime(due_at),
        download_url=download_url or None,
        attachments=list(attachments or []),
        content=content.strip(),
        category=category,
    )
