"""
Merge of generated series days with stored rows for a date window.

Stored rows of a series (overrides and tombstones) shadow the generated day
they sit on. A shadowed day is emitted from the row, or not at all when the
row is a tombstone, so no day appears twice and a deleted day never falls
back to generation.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from backend.day_keys import days_between, format_day, normalize_day, to_storage_datetime
from backend.errors import ValidationError
from backend.recurrence import expand

logger = logging.getLogger(__name__)

VIRTUAL_ID_PREFIX = 'recurring_'
_VIRTUAL_ID_RE = re.compile(r'^recurring_(\d+)_(\d{4}-\d{2}-\d{2})$')


@dataclass
class EffectiveOccurrence:
    id: str
    title: str
    description: Optional[str]
    day: object
    color: Optional[str]
    completed: bool
    recurrence_id: Optional[int]
    is_generated: bool
    created_at: Optional[datetime] = None

    def sort_key(self):
        # Stored rows before generated ones on a tie, stored rows by numeric id.
        created = self.created_at or datetime.min
        row_id = 0 if self.is_generated else int(self.id)
        return (self.day, created, self.is_generated, row_id, self.id)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'day': format_day(self.day),
            'date': to_storage_datetime(self.day).isoformat(),
            'color': self.color,
            'completed': self.completed,
            'recurrence_id': self.recurrence_id,
            'is_generated': self.is_generated,
        }


@dataclass(frozen=True)
class OccurrenceRef:
    """Either a stored row id, or a (series, day) pair for a generated day."""
    occurrence_id: Optional[int] = None
    series_id: Optional[int] = None
    day: object = None

    @property
    def is_virtual(self):
        return self.occurrence_id is None


def make_virtual_id(series_id, day_value):
    return f'{VIRTUAL_ID_PREFIX}{series_id}_{format_day(day_value)}'


def parse_occurrence_identity(raw):
    value = str(raw or '').strip()
    if value.isdigit():
        return OccurrenceRef(occurrence_id=int(value))
    match = _VIRTUAL_ID_RE.match(value)
    if not match:
        raise ValidationError(f'Invalid occurrence id: {raw!r}')
    return OccurrenceRef(
        series_id=int(match.group(1)),
        day=normalize_day(match.group(2), field='occurrence day'),
    )


def validate_window(start, end, max_window_days=None):
    """``max_window_days`` of None leaves the span unbounded."""
    if start > end:
        raise ValidationError('start must be on or before end')
    if max_window_days and days_between(start, end) + 1 > max_window_days:
        raise ValidationError(f'Date window may not exceed {max_window_days} days')


def from_stored(row):
    return EffectiveOccurrence(
        id=str(row.id),
        title=row.title,
        description=row.description,
        day=row.day,
        color=row.color,
        completed=bool(row.completed),
        recurrence_id=row.recurrence_id,
        is_generated=False,
        created_at=row.created_at,
    )


def from_series(series, day_value, completed):
    return EffectiveOccurrence(
        id=make_virtual_id(series.id, day_value),
        title=series.title,
        description=series.description,
        day=day_value,
        color=series.color,
        completed=completed,
        recurrence_id=series.id,
        is_generated=True,
        created_at=series.created_at,
    )


def effective_occurrences(repo, ledger, user_id, start, end, max_window_days=None):
    """Return the ordered occurrences visible to ``user_id`` in [start, end]."""
    start = normalize_day(start, field='start')
    end = normalize_day(end, field='end')
    validate_window(start, end, max_window_days)

    results = [from_stored(row) for row in repo.find_independent_occurrences(user_id, start, end)]

    series_list = repo.find_series(user_id, start, end)
    series_ids = [s.id for s in series_list]
    stored_rows = repo.find_series_occurrences(user_id, series_ids, start, end)
    completed = ledger.completed_days(user_id, series_ids, start, end)

    shadows = {}
    for row in stored_rows:
        shadows.setdefault(row.recurrence_id, set()).add(row.day)
        if not row.is_tombstone:
            results.append(from_stored(row))

    generated = 0
    for series in series_list:
        shadowed = shadows.get(series.id, set())
        done = completed.get(series.id, set())
        for day_value in expand(series.rule, series.start_day, series.end_day, start, end):
            if day_value in shadowed:
                continue
            results.append(from_series(series, day_value, day_value in done))
            generated += 1

    results.sort(key=EffectiveOccurrence.sort_key)
    logger.debug(
        "Window %s..%s for user %s: %s occurrences (%s generated)",
        start, end, user_id, len(results), generated
    )
    return results
