"""Date parsing utilities for free-form clinic dates"""

import re
from datetime import date, datetime
from typing import Optional

_DOTTED = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
_ISO = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_SLASHED = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def normalize_date(value) -> Optional[str]:
    """
    Normalize a date to YYYY-MM-DD.

    Accepts DD.MM.YYYY, YYYY-MM-DD (optionally with a time part), DD/MM/YYYY,
    and date/datetime objects (spreadsheets often hand those over directly).
    Returns None for anything else, including impossible calendar dates.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return None

    text = value.strip()
    for pattern, order in ((_DOTTED, "dmy"), (_ISO, "ymd"), (_SLASHED, "dmy")):
        m = pattern.match(text)
        if not m:
            continue
        if order == "dmy":
            day, month, year = (int(g) for g in m.groups())
        else:
            year, month, day = (int(g) for g in m.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            return None
    return None


def parse_date(value) -> Optional[date]:
    """Parse any format accepted by normalize_date into a date"""
    normalized = normalize_date(value)
    return date.fromisoformat(normalized) if normalized else None


def to_month(value) -> Optional[str]:
    """YYYY-MM for a free-form date, None if it cannot be parsed"""
    normalized = normalize_date(value)
    return normalized[:7] if normalized else None


def current_month(today: Optional[date] = None) -> str:
    """YYYY-MM for today (or the given date)"""
    today = today or date.today()
    return f"{today.year:04d}-{today.month:02d}"
