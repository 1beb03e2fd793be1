"""Errors raised by the scheduling layer.

Route handlers translate these into HTTP responses; the engine itself never
retries or reinterprets datastore failures.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class ScheduleValidationError(SchedulingError):
    """Malformed or inconsistent date/time input."""


class DataAccessError(SchedulingError):
    """The underlying datastore read or write failed."""


class NotFoundError(SchedulingError):
    """A referenced record does not exist."""


class ConflictError(SchedulingError):
    """A write collides with existing appointments, blocked time or client records."""

    def __init__(self, message: str, conflicts: list | None = None):
        super().__init__(message)
        self.conflicts = conflicts or []
