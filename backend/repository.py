"""
Storage contracts the calendar engine runs against.

The engine never talks to the database directly. Uniqueness of series days,
idempotent ledger writes and atomic commits are promises made by
implementations of these classes (see ``backend.sql_repository``).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass
class OccurrenceFilter:
    """Selects stored occurrences for deletion. Unset fields do not filter."""
    user_id: int
    series_id: Optional[int] = None
    occurrence_id: Optional[int] = None
    day: Optional[date] = None
    from_day: Optional[date] = None


class OccurrenceRepository(ABC):

    @abstractmethod
    def find_independent_occurrences(self, user_id, start, end):
        """Stored occurrences without a series, with day in [start, end]."""

    @abstractmethod
    def find_series(self, user_id, start, end):
        """Series whose [start_day, end_day] range intersects [start, end]."""

    @abstractmethod
    def find_series_occurrences(self, user_id, series_ids, start, end):
        """Overrides and tombstones of the given series with day in [start, end]."""

    @abstractmethod
    def list_series(self, user_id):
        pass

    @abstractmethod
    def get_series(self, user_id, series_id):
        pass

    @abstractmethod
    def get_occurrence(self, user_id, occurrence_id):
        pass

    @abstractmethod
    def find_series_occurrence(self, user_id, series_id, day):
        pass

    @abstractmethod
    def find_independent_on_day(self, user_id, day):
        pass

    @abstractmethod
    def add_series(self, series):
        pass

    @abstractmethod
    def add_occurrence(self, occurrence):
        """Persist a new occurrence; raises ConflictError if its day is taken."""

    @abstractmethod
    def upsert_occurrence(self, user_id, series_id, day, defaults):
        """Find or create the row for (user, series, day).

        Must converge to a single row when callers race. Returns
        ``(row, created)``.
        """

    @abstractmethod
    def delete_occurrences(self, occurrence_filter):
        """Delete matching rows and return how many were removed."""

    @abstractmethod
    def update_series(self, series, fields):
        pass

    @abstractmethod
    def delete_series(self, series):
        pass

    @abstractmethod
    def unit_of_work(self, readonly=False):
        """Context manager: commit on success, roll back on any error."""


class CompletionLedger(ABC):
    """Per-series set of completed day keys, kept apart from occurrence rows."""

    @abstractmethod
    def set_completed(self, user_id, series_id, day, completed):
        """Add or remove ``day``; repeating a call is a no-op."""

    @abstractmethod
    def is_completed(self, user_id, series_id, day):
        pass

    @abstractmethod
    def completed_days(self, user_id, series_ids, start, end):
        """Return ``{series_id: set(days)}`` for days in [start, end]."""

    @abstractmethod
    def clear(self, user_id, series_id):
        pass
