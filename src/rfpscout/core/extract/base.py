"""
Extraction base classes.

Defines the interface for turning attachment payloads into text.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ExtractionResult:
    """Text pulled from one listing's attachments."""

    texts: dict[str, str] = field(default_factory=dict)  # attachment name -> text
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def combined(self) -> str:
        """All extracted text, one section per attachment."""
        sections = [f"=== {name} ===\n{text}" for name, text in self.texts.items() if text.strip()]
        return "\n\n".join(sections)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)


class TextExtractor(ABC):
    """Abstract base class for document text extractors."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor identifier."""

    @abstractmethod
    def supports(self, filename: str, content_type: str | None = None) -> bool:
        """Whether this extractor can read the given document."""

    @abstractmethod
    def extract(self, filename: str, payload: bytes, content_type: str | None = None) -> str:
        """Return the document's text, or "" when nothing is readable."""
