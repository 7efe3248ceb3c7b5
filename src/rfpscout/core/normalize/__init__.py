"""Normalization of feed and listing data."""

from .parsing import (
    ParsedDate,
    ParsedMoney,
    clean_html_text,
    find_money_mentions,
    normalize_whitespace,
    parse_date,
    parse_money,
    strip_html,
    struct_time_to_datetime,
    to_naive_utc,
    utcnow,
)
from .canonical import (
    AttachmentInfo,
    ListingRecord,
    build_listing_record,
    safe_listing_dirname,
)
from .diff import DiffResult, FieldChange, compute_diff

__all__ = [
    # Parsing
    "ParsedDate",
    "ParsedMoney",
    "clean_html_text",
    "find_money_mentions",
    "normalize_whitespace",
    "parse_date",
    "parse_money",
    "strip_html",
    "struct_time_to_datetime",
    "to_naive_utc",
    "utcnow",
    # Canonical
    "AttachmentInfo",
    "ListingRecord",
    "build_listing_record",
    "safe_listing_dirname",
    # Diff
    "DiffResult",
    "FieldChange",
    "compute_diff",
]
