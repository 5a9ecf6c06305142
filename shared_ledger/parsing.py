"""
Date and amount parsing helpers.

These are deliberately lenient: they are used where bad input should
mean "no constraint" (filter bounds) rather than an error.
Strict parsing of stored rows goes through the pydantic models instead.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a user-supplied number.

    Returns None for anything that is not a finite number
    ('', 'abc', None, NaN, booleans).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # str() keeps 0.1 as 0.1 instead of its binary expansion
        value = str(value)
    if not isinstance(value, str):
        return None

    text = value.strip().replace(",", "")
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a calendar day from a date, datetime or ISO-8601 string.

    Returns None when the value can't be read as a day.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return local_date(value)
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return local_date(datetime.fromisoformat(text))
    except ValueError:
        return None


def local_date(moment: datetime) -> date:
    """
    The local calendar day a moment falls on.

    Naive datetimes are taken to already be local time.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date()


def chronological_key(moment: datetime) -> float:
    """
    Sort key that orders naive and aware datetimes together.

    Naive values are interpreted as local time, matching `local_date`.
    """
    return moment.timestamp()
