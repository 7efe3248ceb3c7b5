"""Document text extraction collaborators."""

from .base import ExtractionResult, TextExtractor
from .text import PlainTextExtractor, extract_all

__all__ = [
    "ExtractionResult",
    "TextExtractor",
    "PlainTextExtractor",
    "extract_all",
]
