"""
Parsing utilities for normalizing feed and listing data.

Handles date, money, and HTML-to-text parsing from various formats.
"""

from __future__ import annotations

import calendar
import re
import time as _time
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal

import dateparser
import lxml.html
from lxml.etree import ParserError


# =============================================================================
# Timestamps
# =============================================================================


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def struct_time_to_datetime(value: _time.struct_time | None) -> datetime | None:
    """Convert a UTC struct_time (as produced by feedparser) to naive UTC."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, ValueError, TypeError):
        return None


# =============================================================================
# Date Parsing
# =============================================================================


@dataclass
class ParsedDate:
    """Result of parsing a date string."""

    value: datetime | None
    original: str
    confidence: float  # 0.0 - 1.0
    format_detected: str | None = None


def parse_date(
    value: str | datetime | date | None,
    *,
    prefer_day_first: bool = False,
    relative_base: datetime | None = None,
) -> ParsedDate:
    """Parse a date/datetime from various formats.

    Handles:
    - ISO 8601 formats
    - US formats (MM/DD/YYYY)
    - RFC 822 feed dates ("Wed, 10 Jan 2024 09:00:00 GMT")
    - Relative dates ("2 days ago")

    Parsed values are returned as naive UTC datetimes.

    Args:
        value: String or datetime to parse
        prefer_day_first: Prefer DD/MM/YYYY over MM/DD/YYYY
        relative_base: Base datetime for relative parsing

    Returns:
        ParsedDate with parsed value and metadata
    """
    if value is None:
        return ParsedDate(value=None, original="", confidence=0.0)

    original = str(value).strip()

    if not original:
        return ParsedDate(value=None, original=original, confidence=0.0)

    if isinstance(value, datetime):
        return ParsedDate(
            value=to_naive_utc(value),
            original=original,
            confidence=1.0,
            format_detected="datetime",
        )

    if isinstance(value, date):
        return ParsedDate(
            value=datetime.combine(value, time.min),
            original=original,
            confidence=1.0,
            format_detected="date",
        )

    text = _clean_date_string(original)

    if not text:
        return ParsedDate(value=None, original=original, confidence=0.0)

    # Try common patterns first (faster than dateparser)
    result = _try_common_patterns(text)
    if result:
        return ParsedDate(
            value=result[0],
            original=original,
            confidence=result[1],
            format_detected=result[2],
        )

    settings = {
        "PREFER_DAY_OF_MONTH": "first",
        "PREFER_DATES_FROM": "past",  # Publication dates are behind us
        "RETURN_AS_TIMEZONE_AWARE": True,
        "TO_TIMEZONE": "UTC",
        "STRICT_PARSING": False,
        "DATE_ORDER": "DMY" if prefer_day_first else "MDY",
    }

    if relative_base:
        settings["RELATIVE_BASE"] = relative_base

    try:
        parsed = dateparser.parse(text, settings=settings)
    except (ValueError, TypeError, OverflowError):
        parsed = None

    if parsed:
        return ParsedDate(
            value=to_naive_utc(parsed),
            original=original,
            confidence=_calculate_date_confidence(text),
            format_detected="dateparser",
        )

    return ParsedDate(value=None, original=original, confidence=0.0)


def _clean_date_string(text: str) -> str:
    """Clean and normalize a date string for parsing."""
    prefixes = [
        r"^due:\s*",
        r"^deadline:\s*",
        r"^posted:\s*",
        r"^published:\s*",
        r"^date:\s*",
    ]
    for prefix in prefixes:
        text = re.sub(prefix, "", text, flags=re.IGNORECASE)

    return " ".join(text.split()).strip()


def _try_common_patterns(text: str) -> tuple[datetime, float, str] | None:
    """Try to parse using common date patterns (fast path)."""
    # ISO 8601 with an offset or Z goes through fromisoformat
    if re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}", text):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            return (to_naive_utc(parsed), 1.0, "iso8601")
        except ValueError:
            pass

    patterns = [
        (r"^(\d{4})-(\d{2})-(\d{2})\s+(\d{2}):(\d{2})(?::(\d{2}))?$", 0.95, "iso_space"),
        (r"^(\d{4})-(\d{2})-(\d{2})$", 0.9, "iso_date"),
        (r"^(\d{1,2})/(\d{1,2})/(\d{4})$", 0.85, "us_date"),
    ]

    for pattern, confidence, name in patterns:
        match = re.match(pattern, text)
        if not match:
            continue
        groups = match.groups()
        try:
            if name.startswith("iso"):
                year, month, day = int(groups[0]), int(groups[1]), int(groups[2])
            else:
                month, day, year = int(groups[0]), int(groups[1]), int(groups[2])
            hour = int(groups[3]) if len(groups) > 3 and groups[3] else 0
            minute = int(groups[4]) if len(groups) > 4 and groups[4] else 0
            second = int(groups[5]) if len(groups) > 5 and groups[5] else 0
            return (datetime(year, month, day, hour, minute, second), confidence, name)
        except ValueError:
            continue

    return None


def _calculate_date_confidence(text: str) -> float:
    """Calculate confidence score for a dateparser result."""
    confidence = 0.7  # Base for dateparser

    if re.search(r"\d{4}", text):  # Has 4-digit year
        confidence += 0.1

    if re.search(r"\d{1,2}:\d{2}", text):  # Has time
        confidence += 0.1

    relative_words = ["today", "tomorrow", "yesterday", "ago", "next", "last"]
    if any(word in text.lower() for word in relative_words):
        confidence -= 0.1

    return min(1.0, max(0.0, confidence))


# =============================================================================
# Money Parsing
# =============================================================================


@dataclass
class ParsedMoney:
    """Result of parsing a money/currency value."""

    amount: Decimal | None
    currency: str
    original: str
    confidence: float


CURRENCY_SYMBOLS = {
    "US$": "USD",
    "CA$": "CAD",
    "C$": "CAD",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
}

CURRENCY_CODES = {"USD", "EUR", "GBP", "CAD", "AUD"}

# "$150,000", "$1.5M", "USD 75,000", "200k dollars"
MONEY_MENTION = re.compile(
    r"(?:US\$|CA\$|C\$|\$|€|£|\b(?:USD|CAD|EUR|GBP)\s?)\s?\d[\d,]*(?:\.\d+)?\s*(?:[KkMm]\b|million\b|thousand\b)?"
    r"|\b\d[\d,]*(?:\.\d+)?\s*(?:[KkMm]\b|million\b|thousand\b)?\s*(?:dollars|USD)\b",
    re.IGNORECASE,
)


def parse_money(
    value: str | float | Decimal | None,
    *,
    default_currency: str = "USD",
) -> ParsedMoney:
    """Parse a monetary value from various formats.

    Handles:
    - Currency symbols ($1,234.56)
    - Currency codes (USD 1234.56)
    - Plain numbers (1234.56)
    - Ranges (returns midpoint)
    - K/M suffixes ($1.5M) and "million"/"thousand"

    Args:
        value: String or number to parse
        default_currency: Currency code when not detected

    Returns:
        ParsedMoney with parsed amount and currency
    """
    if value is None:
        return ParsedMoney(amount=None, currency=default_currency, original="", confidence=0.0)

    original = str(value).strip()

    if not original:
        return ParsedMoney(amount=None, currency=default_currency, original=original, confidence=0.0)

    if isinstance(value, (int, float, Decimal)):
        return ParsedMoney(
            amount=Decimal(str(value)),
            currency=default_currency,
            original=original,
            confidence=1.0,
        )

    text = original.upper()
    currency = default_currency
    confidence = 0.8

    for code in CURRENCY_CODES:
        if code in text:
            currency = code
            confidence = 0.95
            break

    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in original:
            currency = code
            confidence = 0.9
            break

    numeric_text = text
    for code in CURRENCY_CODES:
        numeric_text = numeric_text.replace(code, "")
    for symbol in CURRENCY_SYMBOLS:
        numeric_text = numeric_text.replace(symbol.upper(), "")
    numeric_text = numeric_text.replace("MILLION", "M").replace("THOUSAND", "K")

    multipliers = {"K": 1_000, "M": 1_000_000}

    range_match = re.search(r"([\d,.]+)\s*([KM])?\s*(?:-|TO)\s*([\d,.]+)\s*([KM])?", numeric_text)
    if range_match:
        low = _parse_numeric(range_match.group(1))
        high = _parse_numeric(range_match.group(3))
        if low is not None and high is not None:
            high_mult = multipliers.get(range_match.group(4) or "", 1)
            low_mult = multipliers.get(range_match.group(2) or "", high_mult)
            amount = (low * low_mult + high * high_mult) / 2
            return ParsedMoney(
                amount=Decimal(str(amount)),
                currency=currency,
                original=original,
                confidence=confidence * 0.9,  # Lower confidence for ranges
            )

    suffix_match = re.search(r"([\d,.]+)\s*([KM])\b", numeric_text)
    if suffix_match:
        base = _parse_numeric(suffix_match.group(1))
        if base is not None:
            return ParsedMoney(
                amount=Decimal(str(base * multipliers[suffix_match.group(2)])),
                currency=currency,
                original=original,
                confidence=confidence,
            )

    number_match = re.search(r"[\d,.]+", numeric_text)
    if number_match:
        amount = _parse_numeric(number_match.group())
        if amount is not None:
            return ParsedMoney(
                amount=Decimal(str(amount)),
                currency=currency,
                original=original,
                confidence=confidence,
            )

    return ParsedMoney(amount=None, currency=currency, original=original, confidence=0.0)


def _parse_numeric(text: str) -> float | None:
    """Parse a numeric string, handling commas and decimals."""
    text = text.strip().strip(".,")
    if not text:
        return None

    last_comma = text.rfind(",")
    last_period = text.rfind(".")

    if last_comma > last_period and len(text) - last_comma - 1 != 3:
        # European format: 1.234,56
        text = text.replace(".", "").replace(",", ".")
    else:
        # US format: 1,234.56
        text = text.replace(",", "")

    try:
        return float(text)
    except ValueError:
        return None


def find_money_mentions(text: str | None) -> list[Decimal]:
    """Return every monetary amount mentioned in free text."""
    if not text:
        return []
    amounts: list[Decimal] = []
    for match in MONEY_MENTION.finditer(text):
        parsed = parse_money(match.group(0))
        if parsed.amount is not None and parsed.amount > 0:
            amounts.append(parsed.amount)
    return amounts


# =============================================================================
# Text Utilities
# =============================================================================


def normalize_whitespace(text: str | None) -> str:
    """Normalize whitespace in text."""
    if text is None:
        return ""
    return " ".join(text.split())


def clean_html_text(text: str | None) -> str:
    """Clean text extracted from HTML."""
    if text is None:
        return ""

    text = re.sub(r"&nbsp;?", " ", text)
    text = re.sub(r"&amp;?", "&", text)
    text = re.sub(r"&lt;?", "<", text)
    text = re.sub(r"&gt;?", ">", text)
    text = re.sub(r"&quot;?", '"', text)
    text = re.sub(r"&#39;?", "'", text)

    return normalize_whitespace(text)


def strip_html(text: str | None) -> str:
    """Convert an HTML fragment to plain, whitespace-normalized text."""
    if not text:
        return ""
    if "<" not in text:
        return clean_html_text(text)
    try:
        fragment = lxml.html.fromstring(text)
    except (ParserError, ValueError):
        return clean_html_text(re.sub(r"<[^>]+>", " ", text))
    for node in fragment.xpath("//script|//style"):
        node.drop_tree()
    return clean_html_text(fragment.text_content())
