"""
Per-listing artifact directories.

Layout::

    <artifacts_dir>/<safe listing id>/
        <downloaded attachments>
        combined-text.txt
        metadata.json
        fit-analysis.json
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson

from rfpscout.core.normalize.canonical import AttachmentInfo, safe_listing_dirname

if TYPE_CHECKING:
    from rfpscout.core.backends.base import AttachmentPayload

logger = logging.getLogger(__name__)

COMBINED_TEXT = "combined-text.txt"
METADATA = "metadata.json"
FIT_ANALYSIS = "fit-analysis.json"

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._ -]+")


def safe_filename(name: str) -> str:
    base = Path(name.replace("\\", "/")).name
    cleaned = _UNSAFE_FILENAME.sub("_", base).strip(" .")
    return cleaned or "attachment"


class ArtifactStore:
    """Writes listing artifacts under one root directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def dir_for(self, listing_id: str, create: bool = False) -> Path:
        path = self.root / safe_listing_dirname(listing_id)
        if create:
            path.mkdir(parents=True, exist_ok=True)
        return path

    def write_attachment(self, listing_id: str, payload: "AttachmentPayload") -> AttachmentInfo:
        """Store one downloaded document and describe it for the manifest."""
        name = safe_filename(payload.name)
        path = self.dir_for(listing_id, create=True) / name
        path.write_bytes(payload.content)
        return AttachmentInfo(
            name=name,
            size=payload.size,
            content_type=payload.content_type,
            sha256=hashlib.sha256(payload.content).hexdigest(),
        )

    def write_text(self, listing_id: str, name: str, text: str) -> Path:
        path = self.dir_for(listing_id, create=True) / name
        path.write_text(text, encoding="utf-8")
        return path

    def write_json(self, listing_id: str, name: str, data: Any) -> Path:
        path = self.dir_for(listing_id, create=True) / name
        path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))
        return path
