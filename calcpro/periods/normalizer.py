"""
Time Key Normalization

A session's period is stored as a canonical "YYYY-MM" key. Older
records and hand-typed values use other shapes, so every reader goes
through normalize_time_key(). Persistence and archive bucketing both
call it; nothing else derives a year or month from a session.

Resolution order (first match wins):
1. raw "YYYY-M" / "YYYY-MM"
2. raw "M-YYYY" / "MM-YYYY"
3. raw "YYYY/M" / "YYYY/MM"
4. raw "M/YYYY" / "MM/YYYY"
5. a trailing "M/YYYY" (or "M-YYYY") at the end of the title
6. the creation timestamp's own year and month
"""

import re
from datetime import datetime
from typing import Optional, Union

_YEAR_FIRST_DASH = re.compile(r"^(\d{4})-(\d{1,2})$")
_MONTH_FIRST_DASH = re.compile(r"^(\d{1,2})-(\d{4})$")
_YEAR_FIRST_SLASH = re.compile(r"^(\d{4})/(\d{1,2})$")
_MONTH_FIRST_SLASH = re.compile(r"^(\d{1,2})/(\d{4})$")
_TITLE_SUFFIX = re.compile(r"(\d{1,2})[/\-](\d{4})$")
_TITLE_SLASH_SUFFIX = re.compile(r"\s*\d{1,2}/\d{4}$")
_TIMESTAMP_PREFIX = re.compile(r"^(\d{4})-(\d{1,2})")

MIN_YEAR = 1900
MAX_YEAR = 9999


def _key(year: Union[str, int], month: Union[str, int]) -> str:
    return f"{int(year):04d}-{int(month):02d}"


def _from_raw(raw: str) -> Optional[str]:
    match = _YEAR_FIRST_DASH.match(raw)
    if match:
        return _key(match.group(1), match.group(2))
    match = _MONTH_FIRST_DASH.match(raw)
    if match:
        return _key(match.group(2), match.group(1))
    match = _YEAR_FIRST_SLASH.match(raw)
    if match:
        return _key(match.group(1), match.group(2))
    match = _MONTH_FIRST_SLASH.match(raw)
    if match:
        return _key(match.group(2), match.group(1))
    return None


def _from_timestamp(created_at: Union[datetime, str, None]) -> Optional[str]:
    if isinstance(created_at, datetime):
        return _key(created_at.year, created_at.month)
    if isinstance(created_at, str):
        match = _TIMESTAMP_PREFIX.match(created_at.strip())
        if match and 1 <= int(match.group(2)) <= 12:
            return _key(match.group(1), match.group(2))
    return None


def normalize_time_key(
    raw: Optional[str],
    title: Optional[str] = None,
    created_at: Union[datetime, str, None] = None,
) -> str:
    """
    Canonicalize a session's period to "YYYY-MM".

    Never fails: when neither the raw tag, the title nor the creation
    timestamp yields a period, the current month is used.

    Examples:
        normalize_time_key("2025-9")                -> "2025-09"
        normalize_time_key("9-2025")                -> "2025-09"
        normalize_time_key("", "Report 9/2025")     -> "2025-09"
        normalize_time_key("", "Report", "2025-01-15T00:00:00Z") -> "2025-01"
    """
    text = (raw or "").strip()
    if text:
        key = _from_raw(text)
        if key:
            return key

    match = _TITLE_SUFFIX.search((title or "").strip())
    if match:
        return _key(match.group(2), match.group(1))

    return _from_timestamp(created_at) or current_time_key()


def current_time_key(now: Optional[datetime] = None) -> str:
    """The key of the current (or given) month."""
    now = now or datetime.now()
    return _key(now.year, now.month)


def split_time_key(key: str) -> tuple[str, str]:
    """Split a canonical key into its ("YYYY", "MM") parts."""
    year, _, month = key.partition("-")
    return year, month


def format_time_key(key: str) -> str:
    """Display form of a key: "2025-09" -> "09/2025". Empty for malformed keys."""
    year, month = split_time_key(key or "")
    if not year or not month:
        return ""
    return f"{month}/{year}"


def time_key_from_parts(year: Union[int, str], month: int) -> str:
    """
    Build a key from a year and a month number.

    The year is clamped to 1900..9999; a non-numeric year becomes the
    current year. The month must be 1..12.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    try:
        year_number = int(year)
    except (TypeError, ValueError):
        year_number = datetime.now().year
    year_number = min(MAX_YEAR, max(MIN_YEAR, year_number))
    return _key(year_number, month)


def apply_time_key_to_title(title: str, key: str) -> str:
    """
    Replace a trailing "M/YYYY" in the title with the given period.

    "Rent 3/2025" + "2025-09" -> "Rent 9/2025"
    """
    year, month = split_time_key(key)
    suffix = f"{int(month)}/{year}"
    base = _TITLE_SLASH_SUFFIX.sub("", title or "").strip()
    return f"{base} {suffix}".strip()
