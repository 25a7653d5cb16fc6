"""
Shared helpers for timestamps, log truncation and date normalisation.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil import parser as date_parser

SHORT_DATE_PATTERN = re.compile(r'^(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})$')
ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return utc_now().isoformat()


def iso_after(ms: int) -> str:
    """ISO timestamp `ms` milliseconds from now."""
    return (utc_now() + timedelta(milliseconds=ms)).isoformat()


def iso_before(ms: int) -> str:
    """ISO timestamp `ms` milliseconds ago."""
    return (utc_now() - timedelta(milliseconds=ms)).isoformat()


def today_iso() -> str:
    return utc_now().date().isoformat()


def truncate_for_log(value: Optional[str], max_len: int = 1200) -> str:
    """
    Trim long strings (page HTML, error bodies) before they go into events.

    Args:
        value: Text to trim
        max_len: Maximum number of characters kept

    Returns:
        The original text, or its first `max_len` characters followed by an ellipsis
    """
    if not value:
        return ""
    if len(value) <= max_len:
        return value
    return f"{value[:max_len]}…"


def normalize_date(value: Optional[str]) -> Optional[str]:
    """
    Convert a day-first short date to ISO format.

    Accepts "05/03/24", "5-3-2024" and similar. Two digit years above 50 are
    read as 19xx, everything else as 20xx.

    Args:
        value: Date string scraped from a page

    Returns:
        "YYYY-MM-DD" or None if the value is not a short date
    """
    if not value:
        return None

    match = SHORT_DATE_PATTERN.match(value.strip())
    if not match:
        return None

    day = match.group(1).zfill(2)
    month = match.group(2).zfill(2)
    year = match.group(3)
    if len(year) == 2:
        year = ('19' if int(year) > 50 else '20') + year

    return f"{year}-{month}-{day}"


def normalize_date_input(value: Optional[str]) -> Optional[str]:
    """
    Normalise a free-form date ("12 March 2024", "2024-03-12T00:00:00Z") to ISO.

    Short numeric dates are handled by normalize_date so they stay day-first.

    Args:
        value: Date string from a search result

    Returns:
        "YYYY-MM-DD" or None if the value can't be parsed
    """
    if not value:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    short = normalize_date(trimmed)
    if short:
        return short

    # dayfirst would swap month and day of an ISO date
    if ISO_DATE_PATTERN.match(trimmed):
        try:
            return date_parser.isoparse(trimmed).date().isoformat()
        except ValueError:
            return None

    try:
        return date_parser.parse(trimmed, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError):
        return None
