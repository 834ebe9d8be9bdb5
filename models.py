from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

from backend.day_keys import format_day, to_storage_datetime
from backend.recurrence import describe_rule, rule_from_fields

db = SQLAlchemy()

DEFAULT_EVENT_COLOR = '#3b82f6'


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class RecurringEvent(db.Model):
    """
    Series definition. Occurrences are generated on read; only overrides,
    tombstones and completions are ever stored.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(20), default=DEFAULT_EVENT_COLOR)
    frequency = db.Column(db.String(20), nullable=False)  # daily | every_n_days | days_of_week
    interval = db.Column(db.Integer, default=1)
    days_of_week = db.Column(db.String(50), nullable=True)  # "0,2,4" with 0 = Sunday
    start_day = db.Column(db.Date, nullable=False)
    end_day = db.Column(db.Date, nullable=True)  # inclusive
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_recurring_event_user_start', 'user_id', 'start_day'),
    )

    @property
    def rule(self):
        days = [int(d) for d in self.days_of_week.split(',') if d.strip()] if self.days_of_week else []
        return rule_from_fields(self.frequency, self.interval, days)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'color': self.color or DEFAULT_EVENT_COLOR,
            'frequency': self.frequency,
            'interval': self.interval,
            'days_of_week': [int(d) for d in self.days_of_week.split(',')] if self.days_of_week else [],
            'recurrence_label': describe_rule(self.rule),
            'start_day': format_day(self.start_day) if self.start_day else None,
            'end_day': format_day(self.end_day) if self.end_day else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class CalendarEvent(db.Model):
    """
    Stored occurrence. Without recurrence_id it is an independent event; with
    one it overrides (or, when is_tombstone is set, hides) that series day.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    recurrence_id = db.Column(db.Integer, db.ForeignKey('recurring_event.id'), nullable=True, index=True)
    day = db.Column(db.Date, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(20), default=DEFAULT_EVENT_COLOR)
    completed = db.Column(db.Boolean, default=False, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    is_tombstone = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'recurrence_id', 'day', name='uq_calendar_event_series_day'),
        db.Index(
            'uq_calendar_event_single_day',
            'user_id',
            'day',
            unique=True,
            sqlite_where=db.text('recurrence_id IS NULL'),
            postgresql_where=db.text('recurrence_id IS NULL'),
        ),
        db.Index('ix_calendar_event_user_day', 'user_id', 'day'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'recurrence_id': self.recurrence_id,
            'title': self.title,
            'description': self.description,
            'day': format_day(self.day) if self.day else None,
            'date': to_storage_datetime(self.day).isoformat() if self.day else None,
            'color': self.color or DEFAULT_EVENT_COLOR,
            'completed': bool(self.completed),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'is_tombstone': bool(self.is_tombstone),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class RecurrenceCompletion(db.Model):
    """Completion ledger: one row per completed (user, series, day)."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    recurrence_id = db.Column(db.Integer, db.ForeignKey('recurring_event.id'), nullable=False)
    day = db.Column(db.Date, nullable=False)
    completed_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'recurrence_id', 'day', name='uq_recurrence_completion_day'),
    )
