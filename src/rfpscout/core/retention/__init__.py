"""Artifact retention and cleanup."""

from .policy import (
    CleanupEngine,
    CleanupOptions,
    CleanupOutcome,
    should_clean,
    validate_cleanup_options,
    verdicts_by_listing,
)
from .report import write_cleanup_report

__all__ = [
    "CleanupEngine",
    "CleanupOptions",
    "CleanupOutcome",
    "should_clean",
    "validate_cleanup_options",
    "verdicts_by_listing",
    "write_cleanup_report",
]
