"""Normalization of free-text registry dates into UTC instants."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from dateutil import parser as date_parser

from .errors import ParseError

_TRAILING_GMT_RE = re.compile(r"\s*\bGMT$", re.IGNORECASE)
_DAY_MONTH_YEAR_RE = re.compile(r"(\d{1,2})[-/ ]([A-Za-z]{3,9})[-/ ](\d{4})")
_EPOCH_RE = re.compile(r"^-?\d+(\.\d+)?$")

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

# Epoch values above this are taken as milliseconds.
_EPOCH_MILLIS_CUTOFF = 100_000_000_000


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_general(text: str) -> datetime | None:
    # Long digit runs are epochs, not compact YYYYMMDD dates.
    if _EPOCH_RE.match(text) and len(text) > 8:
        return None
    try:
        return _as_utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def _parse_day_month_year(text: str) -> datetime | None:
    m = _DAY_MONTH_YEAR_RE.search(text)
    if not m:
        return None
    month = _MONTHS.get(m.group(2)[:3].lower())
    if month is None:
        return None
    try:
        return datetime(int(m.group(3)), month, int(m.group(1)), tzinfo=timezone.utc)
    except ValueError:
        return None


def _parse_epoch(text: str) -> datetime | None:
    if not _EPOCH_RE.match(text):
        return None
    value = float(text)
    if abs(value) >= _EPOCH_MILLIS_CUTOFF:
        value /= 1000.0
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def normalize_date(text: str) -> datetime:
    """Parse a registry date string into an aware UTC datetime.

    Tried in order, first success wins:

    1. a trailing ``GMT`` token is stripped and the value is read as UTC,
    2. a general calendar parse (ISO-8601, RFC 2822 and similar),
    3. ``day [-/ ] month-name [-/ ] year`` such as ``20-Jul-2025``,
    4. a numeric epoch in seconds or milliseconds.

    Raises:
        ParseError: if no strategy yields an instant. ``raw`` holds the input.
    """
    original = text
    cleaned = _TRAILING_GMT_RE.sub("", str(text or "").strip()).strip()
    if not cleaned:
        raise ParseError(f"Could not parse date: {original!r}", raw=original)

    for strategy in (_parse_general, _parse_day_month_year, _parse_epoch):
        parsed = strategy(cleaned)
        if parsed is not None:
            return parsed

    raise ParseError(f"Could not parse date: {original!r}", raw=original)
