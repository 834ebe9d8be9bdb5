"""
Write side of the calendar: creation, completion toggles and scoped edits/deletes.

An occurrence identity is in one of three states. A generated (virtual) day
is promoted to a stored override on its first mutation. A stored override is
changed in place. A tombstone is terminal for its day: ``this``-scoped edits
and toggles on it report not-found, and deleting it again changes nothing.

Every public function here runs inside a single ``repo.unit_of_work()`` so a
purge and the series update that goes with it commit together.
"""
import logging
from datetime import datetime, timedelta

from backend.day_keys import normalize_day, parse_optional_day
from backend.errors import ConflictError, NotFoundError, ValidationError
from backend.occurrence_engine import OccurrenceRef, from_stored, parse_occurrence_identity
from backend.recurrence import next_occurrence, occurs_on, rule_to_fields
from backend.repository import OccurrenceFilter
from models import DEFAULT_EVENT_COLOR, CalendarEvent, RecurringEvent

logger = logging.getLogger(__name__)

SCOPE_THIS = 'this'
SCOPE_FUTURE = 'future'
SCOPE_ALL = 'all'
ALLOWED_SCOPES = (SCOPE_THIS, SCOPE_FUTURE, SCOPE_ALL)

CONTENT_FIELDS = ('title', 'description', 'color')
SERIES_EDIT_FIELDS = ('title', 'description', 'color', 'rule', 'start_day', 'end_day')


def _require_title(value):
    title = (value or '').strip() if isinstance(value, str) else ''
    if not title:
        raise ValidationError('Title is required')
    return title


def _check_scope(scope):
    if scope not in ALLOWED_SCOPES:
        raise ValidationError(f'Invalid scope: {scope!r}')
    return scope


def _content_updates(fields):
    updates = {}
    for key in CONTENT_FIELDS:
        if key in fields:
            updates[key] = fields[key]
    if 'title' in updates:
        updates['title'] = _require_title(updates['title'])
    return updates


def _normalize_day_fields(fields):
    """Copy of ``fields`` with every day-like value turned into a day key."""
    fields = dict(fields)
    if fields.get('day') is not None:
        fields['day'] = normalize_day(fields['day'])
    if 'start_day' in fields:
        fields['start_day'] = parse_optional_day(fields['start_day'], field='start_day')
    if 'end_day' in fields:
        fields['end_day'] = parse_optional_day(fields['end_day'], field='end_day')
    return fields


def _apply(row, updates):
    for key, value in updates.items():
        setattr(row, key, value)
    row.updated_at = datetime.utcnow()


def _set_row_completion(row, completed):
    row.completed = completed
    row.completed_at = datetime.utcnow() if completed else None
    row.updated_at = datetime.utcnow()


def _as_ref(identity):
    if isinstance(identity, OccurrenceRef):
        return identity
    return parse_occurrence_identity(identity)


def _get_series(repo, user_id, series_id):
    series = repo.get_series(user_id, series_id)
    if series is None:
        raise NotFoundError('Recurring event not found')
    return series


def _resolve(repo, user_id, identity):
    """Return ``(row, series, day)`` for an identity. ``row`` is None for a generated day."""
    ref = _as_ref(identity)
    if not ref.is_virtual:
        row = repo.get_occurrence(user_id, ref.occurrence_id)
        if row is None:
            raise NotFoundError('Event not found')
        if row.recurrence_id is None:
            return row, None, row.day
        return row, _get_series(repo, user_id, row.recurrence_id), row.day

    series = _get_series(repo, user_id, ref.series_id)
    row = repo.find_series_occurrence(user_id, series.id, ref.day)
    if row is None and not occurs_on(series, ref.day):
        raise NotFoundError('Occurrence not found')
    return row, series, ref.day


def _seed_from_series(series, completed, tombstone=False):
    return {
        'title': series.title,
        'description': series.description,
        'color': series.color or DEFAULT_EVENT_COLOR,
        'completed': completed,
        'completed_at': datetime.utcnow() if completed else None,
        'is_tombstone': tombstone,
    }


def promote(repo, ledger, user_id, series, day):
    """Find or create the stored override for one series day.

    The new row starts with the series' current content and the ledger's
    completion for that day. Returns ``(row, created)``.
    """
    completed = ledger.is_completed(user_id, series.id, day)
    row, created = repo.upsert_occurrence(user_id, series.id, day, _seed_from_series(series, completed))
    if created:
        logger.debug("Promoted series %s on %s to occurrence %s", series.id, day, row.id)
    return row, created


def _validate_series_bounds(start_day, end_day):
    if end_day is not None and end_day < start_day:
        raise ValidationError('end_day must be on or after start_day')


def create_independent_event(repo, user_id, day, fields):
    day = normalize_day(day)
    title = _require_title(fields.get('title'))
    with repo.unit_of_work():
        if repo.find_independent_on_day(user_id, day) is not None:
            raise ConflictError('An event already exists on this date')
        event = CalendarEvent(
            user_id=user_id,
            day=day,
            title=title,
            description=fields.get('description'),
            color=fields.get('color') or DEFAULT_EVENT_COLOR,
            completed=False,
            is_tombstone=False,
        )
        repo.add_occurrence(event)
    logger.info("Created event %s on %s for user %s", event.id, day, user_id)
    return event


def create_series(repo, user_id, rule, start_day, end_day=None, fields=None):
    fields = fields or {}
    start_day = normalize_day(start_day, field='start_day')
    end_day = normalize_day(end_day, field='end_day') if end_day is not None else None
    title = _require_title(fields.get('title'))
    _validate_series_bounds(start_day, end_day)
    frequency, interval, days_of_week = rule_to_fields(rule)

    with repo.unit_of_work():
        series = RecurringEvent(
            user_id=user_id,
            title=title,
            description=fields.get('description'),
            color=fields.get('color') or DEFAULT_EVENT_COLOR,
            frequency=frequency,
            interval=interval,
            days_of_week=days_of_week,
            start_day=start_day,
            end_day=end_day,
        )
        repo.add_series(series)
    logger.info("Created recurring event %s (%s) for user %s", series.id, frequency, user_id)
    return series


def _toggle(repo, ledger, user_id, identity, completed):
    row, series, day = _resolve(repo, user_id, identity)
    if row is not None and row.is_tombstone:
        raise NotFoundError('Occurrence was deleted')
    if series is not None:
        if row is None:
            row, _ = promote(repo, ledger, user_id, series, day)
        ledger.set_completed(user_id, series.id, day, completed)
    _set_row_completion(row, completed)
    return from_stored(row), day


def toggle_completion(repo, ledger, user_id, identity, completed):
    """Mark one occurrence done or not done and return its effective view."""
    completed = bool(completed)
    with repo.unit_of_work():
        result, day = _toggle(repo, ledger, user_id, identity, completed)
    logger.info("Set completed=%s on occurrence %s (%s) for user %s", completed, result.id, day, user_id)
    return result


def _edit_independent(repo, user_id, row, fields):
    updates = _content_updates(fields)
    new_day = fields.get('day')
    if new_day is not None and new_day != row.day:
        existing = repo.find_independent_on_day(user_id, new_day)
        if existing is not None and existing.id != row.id:
            raise ConflictError('An event already exists on this date')
        updates['day'] = new_day
    _apply(row, updates)
    return row


def _move_series_day(repo, ledger, user_id, series, row, day, target, updates):
    """Detach one series day onto ``target`` as an independent event."""
    if repo.find_independent_on_day(user_id, target) is not None:
        raise ConflictError('An event already exists on this date')
    if row is None:
        row, _ = promote(repo, ledger, user_id, series, day)

    moved = CalendarEvent(
        user_id=user_id,
        day=target,
        title=updates.get('title', row.title),
        description=updates.get('description', row.description),
        color=updates.get('color', row.color),
        completed=bool(row.completed),
        completed_at=row.completed_at,
        is_tombstone=False,
    )
    row.is_tombstone = True
    row.completed = False
    row.completed_at = None
    row.updated_at = datetime.utcnow()
    ledger.set_completed(user_id, series.id, day, False)
    repo.add_occurrence(moved)
    return moved


def _edit_series_day(repo, ledger, user_id, series, row, day, fields):
    if row is not None and row.is_tombstone:
        raise NotFoundError('Occurrence was deleted')
    updates = _content_updates(fields)
    target = fields.get('day')
    if target is not None and target != day:
        return _move_series_day(repo, ledger, user_id, series, row, day, target, updates)
    if row is None:
        row, _ = promote(repo, ledger, user_id, series, day)
    _apply(row, updates)
    return row


def _series_updates(series, fields):
    updates = {key: fields[key] for key in SERIES_EDIT_FIELDS if key in fields}
    if 'title' in updates:
        updates['title'] = _require_title(updates['title'])
    if 'color' in updates and not updates['color']:
        updates['color'] = DEFAULT_EVENT_COLOR
    start_day = updates.get('start_day', series.start_day)
    end_day = updates.get('end_day', series.end_day)
    if start_day is None:
        raise ValidationError('start_day is required')
    _validate_series_bounds(start_day, end_day)
    return updates


def _edit_series_scope(repo, user_id, series, scope, pivot, fields):
    updates = _series_updates(series, fields)
    purge = OccurrenceFilter(
        user_id=user_id,
        series_id=series.id,
        from_day=pivot if scope == SCOPE_FUTURE else None,
    )
    removed = repo.delete_occurrences(purge)
    repo.update_series(series, updates)
    return removed


def _edit(repo, ledger, user_id, row, series, day, scope, fields):
    if series is None:
        return from_stored(_edit_independent(repo, user_id, row, fields)), 'occurrence'
    if scope == SCOPE_THIS:
        return from_stored(_edit_series_day(repo, ledger, user_id, series, row, day, fields)), 'occurrence'
    _edit_series_scope(repo, user_id, series, scope, day, fields)
    return series, 'series'


def edit_occurrence(repo, ledger, user_id, identity, scope, fields):
    """Apply an edit at the scope requested.

    Returns the edited occurrence (``EffectiveOccurrence``) for independent
    events and ``this`` scope, or the updated series for ``future``/``all``.
    Both expose ``to_dict()``.
    """
    _check_scope(scope)
    fields = _normalize_day_fields(fields)
    with repo.unit_of_work():
        row, series, day = _resolve(repo, user_id, identity)
        result, kind = _edit(repo, ledger, user_id, row, series, day, scope, fields)
    logger.info("Edited %s via %s (scope=%s, day=%s) for user %s", kind, identity, scope, day, user_id)
    return result


def update_occurrence(repo, ledger, user_id, identity, scope, fields=None, completed=None):
    """Edit and/or set completion on one occurrence in a single transaction.

    The edit runs first. When it moves a series day, the completion is set on
    the independent event the day became. If either step fails nothing is
    saved.
    """
    _check_scope(scope)
    fields = _normalize_day_fields(fields or {})
    if not fields and completed is None:
        raise ValidationError('Nothing to update')
    with repo.unit_of_work():
        row, series, day = _resolve(repo, user_id, identity)
        target = identity
        result = None
        if fields:
            result, kind = _edit(repo, ledger, user_id, row, series, day, scope, fields)
            if kind == 'occurrence' and result.recurrence_id is None:
                target = result.id
        if completed is not None:
            result, _ = _toggle(repo, ledger, user_id, target, bool(completed))
    logger.info("Updated occurrence %s (scope=%s, day=%s, completed=%s) for user %s",
                identity, scope, day, completed, user_id)
    return result


def _tombstone(repo, user_id, series, row, day):
    if row is None:
        row, created = repo.upsert_occurrence(user_id, series.id, day, _seed_from_series(series, False, tombstone=True))
        if created:
            return row
    row.is_tombstone = True
    row.completed = False
    row.completed_at = None
    row.updated_at = datetime.utcnow()
    return row


def _delete_whole_series(repo, ledger, user_id, series):
    removed = repo.delete_occurrences(OccurrenceFilter(user_id=user_id, series_id=series.id))
    ledger.clear(user_id, series.id)
    repo.delete_series(series)
    return removed


def _delete(repo, ledger, user_id, row, series, day, scope):
    if series is None:
        occurrence_id = row.id
        repo.delete_occurrences(OccurrenceFilter(user_id=user_id, occurrence_id=occurrence_id))
        return {'deleted': 'occurrence', 'id': str(occurrence_id)}

    if scope == SCOPE_THIS:
        _tombstone(repo, user_id, series, row, day)
        return {'deleted': 'occurrence', 'recurrence_id': series.id, 'day': day.isoformat()}

    series_id = series.id
    if scope == SCOPE_FUTURE and day > series.start_day:
        removed = repo.delete_occurrences(OccurrenceFilter(user_id=user_id, series_id=series_id, from_day=day))
        end_day = day - timedelta(days=1)
        if series.end_day is not None and series.end_day < end_day:
            end_day = series.end_day
        repo.update_series(series, {'end_day': end_day})
        return {'deleted': 'future', 'recurrence_id': series_id, 'end_day': series.end_day.isoformat(),
                'removed_occurrences': removed}

    # A future delete from the first day leaves nothing behind.
    removed = _delete_whole_series(repo, ledger, user_id, series)
    return {'deleted': 'series', 'recurrence_id': series_id, 'removed_occurrences': removed}


def delete_occurrence(repo, ledger, user_id, identity, scope):
    _check_scope(scope)
    with repo.unit_of_work():
        row, series, day = _resolve(repo, user_id, identity)
        result = _delete(repo, ledger, user_id, row, series, day, scope)
    logger.info("Deleted %s via %s (scope=%s) for user %s", result['deleted'], identity, scope, user_id)
    return result


def _series_pivot(series, scope, pivot):
    if pivot is None:
        if scope != SCOPE_ALL:
            raise ValidationError('event_date is required for this scope')
        return series.start_day
    return normalize_day(pivot, field='event_date')


def edit_series(repo, ledger, user_id, series_id, scope, pivot, fields):
    """Series-level edit; ``pivot`` picks the day for ``this``/``future``."""
    _check_scope(scope)
    fields = _normalize_day_fields(fields)
    with repo.unit_of_work():
        series = _get_series(repo, user_id, series_id)
        day = _series_pivot(series, scope, pivot)
        row = None
        if scope == SCOPE_THIS:
            row, series, day = _resolve(repo, user_id, OccurrenceRef(series_id=series.id, day=day))
        result, kind = _edit(repo, ledger, user_id, row, series, day, scope, fields)
    logger.info("Edited %s of recurring event %s (scope=%s, day=%s)", kind, series_id, scope, day)
    return result


def delete_series(repo, ledger, user_id, series_id, scope, pivot=None):
    _check_scope(scope)
    with repo.unit_of_work():
        series = _get_series(repo, user_id, series_id)
        day = _series_pivot(series, scope, pivot)
        row = None
        if scope == SCOPE_THIS:
            row, series, day = _resolve(repo, user_id, OccurrenceRef(series_id=series.id, day=day))
        result = _delete(repo, ledger, user_id, row, series, day, scope)
    logger.info("Deleted %s of recurring event %s (scope=%s, day=%s)", result['deleted'], series_id, scope, day)
    return result


def series_summary(series, today=None):
    """Series dict plus the next day it occurs on, counting from ``today``."""
    today = today or datetime.utcnow().date()
    data = series.to_dict()
    upcoming = next_occurrence(series.rule, series.start_day, today - timedelta(days=1), series.end_day)
    data['next_occurrence'] = upcoming.isoformat() if upcoming else None
    return data
