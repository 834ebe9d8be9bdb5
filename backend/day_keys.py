"""
Calendar day keys.

Every day the engine compares, stores or returns is a plain ``datetime.date``.
``normalize_day`` is the one place raw input becomes a day key, so a value
never drifts by a day when it moves between a local timestamp and storage.
"""
import re
from datetime import date, datetime, timedelta, timezone

from backend.errors import ValidationError

DAY_KEY_FORMAT = '%Y-%m-%d'
_DAY_KEY_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def normalize_day(raw, field='day'):
    """Return the calendar day described by ``raw``.

    ``yyyy-mm-dd`` strings are read literally. Timestamps (``datetime`` values
    or ISO strings) keep the date as observed in their own offset; the
    time-of-day part is dropped.
    """
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        value = raw.strip()
        if _DAY_KEY_RE.match(value):
            try:
                return datetime.strptime(value, DAY_KEY_FORMAT).date()
            except ValueError:
                raise ValidationError(f'Invalid {field}: {raw}') from None
        if value:
            if value.endswith('Z'):
                value = value[:-1] + '+00:00'
            try:
                return datetime.fromisoformat(value).date()
            except ValueError:
                pass
    raise ValidationError(f'Invalid {field}: {raw!r}')


def parse_optional_day(raw, field='day'):
    if raw is None or raw == '':
        return None
    return normalize_day(raw, field=field)


def format_day(day_value):
    return day_value.isoformat()


def to_storage_datetime(day_value):
    """UTC midnight of the day, the form timestamps are exchanged in."""
    return datetime(day_value.year, day_value.month, day_value.day, tzinfo=timezone.utc)


def shift_day(day_value, days):
    return day_value + timedelta(days=days)


def days_between(start, end):
    """Whole days from ``start`` to ``end`` (negative when ``end`` is earlier)."""
    return (end - start).days
