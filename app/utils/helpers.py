"""Shared date/time helpers.

parse_date:      strict YYYY-MM-DD → date (None on bad input)
parse_datetime:  ISO 8601 → aware UTC datetime (None on bad input)
as_utc:          normalise naive DB values to aware UTC before comparing
"""
from datetime import date, datetime, timezone


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return ``value`` as an aware UTC datetime.

    SQLite drops tzinfo on round-trip, PostgreSQL keeps it. Every datetime
    comparison in the service layer goes through this function.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value):
    """Parse ``YYYY-MM-DD`` (or pass through a date). Returns None for empty/invalid input."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if len(text) != 10:
        return None
    try:
        return date.fromisoformat(text)
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO 8601 datetime; a bare date means midnight UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        return None


def round_money(value):
    return round(float(value or 0), 2)
