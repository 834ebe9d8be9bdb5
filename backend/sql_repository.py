"""SQLAlchemy-backed implementations of the occurrence repository and completion ledger."""
import logging
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.errors import CalendarError, ConflictError, StorageError
from backend.recurrence import rule_to_fields
from backend.repository import CompletionLedger, OccurrenceRepository
from models import CalendarEvent, RecurrenceCompletion, RecurringEvent

logger = logging.getLogger(__name__)

SERIES_FIELDS = {'title', 'description', 'color', 'start_day', 'end_day'}


def insert_ignore(session, model, values):
    """Insert a row unless it collides with a unique constraint. Returns True if inserted."""
    dialect = session.get_bind().dialect.name
    if dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    elif dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    else:
        try:
            with session.begin_nested():
                session.add(model(**values))
            return True
        except IntegrityError:
            return False

    stmt = insert(model.__table__).values(**values).on_conflict_do_nothing()
    result = session.execute(stmt)
    return result.rowcount > 0


class SqlOccurrenceRepository(OccurrenceRepository):

    def __init__(self, session, promotion_retries=2):
        self.session = session
        self.promotion_retries = max(int(promotion_retries), 0)

    @contextmanager
    def unit_of_work(self, readonly=False):
        try:
            yield self
            if not readonly:
                self.session.commit()
        except CalendarError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Calendar storage failure: %s", exc)
            raise StorageError('Storage operation failed') from exc
        except Exception:
            self.session.rollback()
            raise

    def find_independent_occurrences(self, user_id, start, end):
        return CalendarEvent.query.filter(
            CalendarEvent.user_id == user_id,
            CalendarEvent.recurrence_id.is_(None),
            CalendarEvent.is_tombstone.is_(False),
            CalendarEvent.day >= start,
            CalendarEvent.day <= end
        ).order_by(CalendarEvent.day.asc(), CalendarEvent.created_at.asc(), CalendarEvent.id.asc()).all()

    def find_series(self, user_id, start, end):
        return RecurringEvent.query.filter(
            RecurringEvent.user_id == user_id,
            RecurringEvent.start_day <= end,
            or_(RecurringEvent.end_day.is_(None), RecurringEvent.end_day >= start)
        ).order_by(RecurringEvent.created_at.asc(), RecurringEvent.id.asc()).all()

    def find_series_occurrences(self, user_id, series_ids, start, end):
        if not series_ids:
            return []
        return CalendarEvent.query.filter(
            CalendarEvent.user_id == user_id,
            CalendarEvent.recurrence_id.in_(list(series_ids)),
            CalendarEvent.day >= start,
            CalendarEvent.day <= end
        ).order_by(CalendarEvent.day.asc(), CalendarEvent.created_at.asc(), CalendarEvent.id.asc()).all()

    def list_series(self, user_id):
        return RecurringEvent.query.filter_by(user_id=user_id).order_by(
            RecurringEvent.title.asc(), RecurringEvent.id.asc()
        ).all()

    def get_series(self, user_id, series_id):
        return RecurringEvent.query.filter_by(id=series_id, user_id=user_id).first()

    def get_occurrence(self, user_id, occurrence_id):
        return CalendarEvent.query.filter_by(id=occurrence_id, user_id=user_id).first()

    def find_series_occurrence(self, user_id, series_id, day):
        return CalendarEvent.query.filter_by(user_id=user_id, recurrence_id=series_id, day=day).first()

    def find_independent_on_day(self, user_id, day):
        return CalendarEvent.query.filter(
            CalendarEvent.user_id == user_id,
            CalendarEvent.recurrence_id.is_(None),
            CalendarEvent.day == day
        ).first()

    def add_series(self, series):
        self.session.add(series)
        self.session.flush()
        return series

    def add_occurrence(self, occurrence):
        self.session.add(occurrence)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConflictError('An event already exists on this date') from exc
        return occurrence

    def upsert_occurrence(self, user_id, series_id, day, defaults):
        for attempt in range(self.promotion_retries + 1):
            row = self.find_series_occurrence(user_id, series_id, day)
            if row is not None:
                return row, False
            now = datetime.utcnow()
            values = dict(defaults)
            values.update(
                user_id=user_id,
                recurrence_id=series_id,
                day=day,
                created_at=now,
                updated_at=now,
            )
            if insert_ignore(self.session, CalendarEvent, values):
                row = self.find_series_occurrence(user_id, series_id, day)
                if row is not None:
                    return row, True
            logger.info(
                "Promotion of series %s on %s lost an insert race (attempt %s), retrying find",
                series_id, day, attempt + 1
            )
        raise ConflictError('Could not resolve a single occurrence for that day')

    def delete_occurrences(self, occurrence_filter):
        query = CalendarEvent.query.filter(CalendarEvent.user_id == occurrence_filter.user_id)
        if occurrence_filter.occurrence_id is not None:
            query = query.filter(CalendarEvent.id == occurrence_filter.occurrence_id)
        if occurrence_filter.series_id is not None:
            query = query.filter(CalendarEvent.recurrence_id == occurrence_filter.series_id)
        if occurrence_filter.day is not None:
            query = query.filter(CalendarEvent.day == occurrence_filter.day)
        if occurrence_filter.from_day is not None:
            query = query.filter(CalendarEvent.day >= occurrence_filter.from_day)
        return query.delete(synchronize_session='fetch')

    def update_series(self, series, fields):
        for key, value in fields.items():
            if key == 'rule':
                series.frequency, series.interval, series.days_of_week = rule_to_fields(value)
            elif key in SERIES_FIELDS:
                setattr(series, key, value)
        series.updated_at = datetime.utcnow()
        self.session.flush()
        return series

    def delete_series(self, series):
        self.session.delete(series)
        self.session.flush()


class SqlCompletionLedger(CompletionLedger):

    def __init__(self, session):
        self.session = session

    def set_completed(self, user_id, series_id, day, completed):
        if completed:
            insert_ignore(self.session, RecurrenceCompletion, {
                'user_id': user_id,
                'recurrence_id': series_id,
                'day': day,
                'completed_at': datetime.utcnow(),
            })
            return
        RecurrenceCompletion.query.filter_by(
            user_id=user_id, recurrence_id=series_id, day=day
        ).delete(synchronize_session='fetch')

    def is_completed(self, user_id, series_id, day):
        return RecurrenceCompletion.query.filter_by(
            user_id=user_id, recurrence_id=series_id, day=day
        ).first() is not None

    def completed_days(self, user_id, series_ids, start, end):
        if not series_ids:
            return {}
        rows = RecurrenceCompletion.query.filter(
            RecurrenceCompletion.user_id == user_id,
            RecurrenceCompletion.recurrence_id.in_(list(series_ids)),
            RecurrenceCompletion.day >= start,
            RecurrenceCompletion.day <= end
        ).all()
        completed = {}
        for row in rows:
            completed.setdefault(row.recurrence_id, set()).add(row.day)
        return completed

    def clear(self, user_id, series_id):
        return RecurrenceCompletion.query.filter_by(
            user_id=user_id, recurrence_id=series_id
        ).delete(synchronize_session='fetch')
