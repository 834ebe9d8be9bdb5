"""Error types raised by the calendar engine and rendered by the API."""


class CalendarError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class ValidationError(CalendarError):
    """Malformed day, bad recurrence config, or otherwise invalid input."""

    status_code = 400


class NotFoundError(CalendarError):
    status_code = 404


class ConflictError(CalendarError):
    """An independent event already occupies the day, or a promotion could not converge."""

    status_code = 409


class StorageError(CalendarError):
    status_code = 500
