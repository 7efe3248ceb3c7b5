"""
Plain-text extractor for text-like attachments.

Binary formats (PDF, Word, archives) are left to a dedicated extractor;
this one returns "" for them so the listing still merges.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath

from rfpscout.core.normalize.parsing import strip_html

from .base import ExtractionResult, TextExtractor

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".tsv", ".json", ".xml"}
HTML_EXTENSIONS = {".html", ".htm", ".xhtml"}


class PlainTextExtractor(TextExtractor):
    """Decodes text files and strips HTML documents."""

    @property
    def name(self) -> str:
        return "plain"

    def supports(self, filename: str, content_type: str | None = None) -> bool:
        suffix = PurePosixPath(filename.lower()).suffix
        if suffix in TEXT_EXTENSIONS or suffix in HTML_EXTENSIONS:
            return True
        return bool(content_type and content_type.split(";")[0].strip().startswith("text/"))

    def extract(self, filename: str, payload: bytes, content_type: str | None = None) -> str:
        if not self.supports(filename, content_type):
            return ""
        text = _decode(payload)
        suffix = PurePosixPath(filename.lower()).suffix
        is_html = suffix in HTML_EXTENSIONS or (content_type or "").startswith("text/html")
        return strip_html(text) if is_html else text.strip()


def _decode(payload: bytes) -> str:
    for encoding in ("utf-8", "cp1252"):
        try:
            return payload.decode(encoding)
        except UnicodeDecodeError:
            continue
    return payload.decode("latin-1")


def extract_all(
    extractor: TextExtractor,
    attachments: list[tuple[str, bytes, str | None]],
) -> ExtractionResult:
    """Run ``extractor`` over every attachment, collecting per-file text."""
    result = ExtractionResult()
    for name, payload, content_type in attachments:
        if not extractor.supports(name, content_type):
            result.skipped.append(name)
            continue
        try:
            result.texts[name] = extractor.extract(name, payload, content_type)
        except (ValueError, OSError) as e:
            result.add_warning(f"{name}: {e}")
            logger.warning(f"Text extraction failed for {name}: {e}")
    return result
