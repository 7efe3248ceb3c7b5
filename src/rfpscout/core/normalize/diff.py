"""
Diff computation for change tracking during merge.

Describes which fields changed when a newer listing overwrites a stored one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .canonical import ListingRecord


@dataclass
class FieldChange:
    """A single field change."""

    field: str
    old_value: Any
    new_value: Any
    significance: str = "medium"  # low, medium, high


@dataclass
class DiffResult:
    """Result of comparing two listing versions."""

    changes: list[FieldChange]
    old_fingerprint: str
    new_fingerprint: str

    @property
    def has_changes(self) -> bool:
        return len(self.changes) > 0

    @property
    def is_significant(self) -> bool:
        return any(c.significance == "high" for c in self.changes)

    @property
    def summary(self) -> str:
        if not self.changes:
            return "No changes"
        return "Changed: " + ", ".join(c.field for c in self.changes)


FIELD_SIGNIFICANCE: dict[str, str] = {
    "title": "high",
    "due_at": "high",
    "download_url": "high",
    "attachments": "high",
    "institution": "medium",
    "posted_at": "medium",
    "content": "medium",
    "detail_url": "low",
    "category": "low",
}


def compute_diff(old: ListingRecord | dict[str, Any], new: ListingRecord | dict[str, Any]) -> DiffResult:
    """Compute the difference between two listing versions.

    ``updated_at`` is ignored; it always differs on an overwrite.

    Args:
        old: Stored version of the listing
        new: Incoming version of the listing

    Returns:
        DiffResult with list of changes
    """
    old_record = old if isinstance(old, ListingRecord) else ListingRecord.from_dict(old)
    new_record = new if isinstance(new, ListingRecord) else ListingRecord.from_dict(new)

    old_dict = old_record.to_dict()
    new_dict = new_record.to_dict()

    changes: list[FieldChange] = []
    for field_name, significance in FIELD_SIGNIFICANCE.items():
        old_value = old_dict.get(field_name)
        new_value = new_dict.get(field_name)
        if _values_equal(old_value, new_value):
            continue
        changes.append(FieldChange(
            field=field_name,
            old_value=old_value,
            new_value=new_value,
            significance=significance,
        ))

    return DiffResult(
        changes=changes,
        old_fingerprint=old_record.compute_fingerprint(),
        new_fingerprint=new_record.compute_fingerprint(),
    )


def _values_equal(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return " ".join(a.split()) == " ".join(b.split())
    if isinstance(a, datetime) and isinstance(b, datetime):
        return a.replace(microsecond=0) == b.replace(microsecond=0)
    return a == b
