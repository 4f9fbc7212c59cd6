"""Lenient coercion helpers for user-entered journal data.

Bad numbers become 0.0 and bad dates become None so one malformed
record never blocks a recalculation.
"""

from __future__ import annotations

import math
from datetime import date, datetime

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

_FULL_MONTHS = {
    "january": "Jan", "february": "Feb", "march": "Mar", "april": "Apr",
    "may": "May", "june": "Jun", "july": "Jul", "august": "Aug",
    "september": "Sep", "october": "Oct", "november": "Nov", "december": "Dec",
}

_DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%m/%d/%Y", "%Y/%m/%d")


def safe_float(val: object) -> float:
    """Convert to a finite float, substituting 0.0 for anything unusable."""
    if val is None or isinstance(val, bool):
        return 0.0
    try:
        num = float(val)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num) or math.isinf(num):
        return 0.0
    return num


def parse_date(val: object) -> date | None:
    """Parse ISO-ish date input; returns None when it can't be read."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    text = str(val).strip()
    if not text:
        return None
    # Accept full ISO timestamps by trimming the time part
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_month(month: str | int) -> str:
    """Return the short month name ("Jan") for "Jan", "January", "jan" or 1-12.

    Raises ValueError for anything that isn't a month.
    """
    if isinstance(month, int):
        if 1 <= month <= 12:
            return MONTHS[month - 1]
        raise ValueError(f"Invalid month: {month}")
    text = str(month).strip()
    if text.isdigit():
        return normalize_month(int(text))
    short = text[:1].upper() + text[1:3].lower()
    if len(text) == 3 and short in MONTHS:
        return short
    full = _FULL_MONTHS.get(text.lower())
    if full:
        return full
    raise ValueError(f"Invalid month: {month}. Expected short month names like 'Jan', 'Feb'")


def month_index(month: str | int) -> int:
    """1-based month number."""
    return MONTHS.index(normalize_month(month)) + 1


def month_of(day: date) -> tuple[str, int]:
    """(short month name, year) for a date."""
    return MONTHS[day.month - 1], day.year
