from __future__ import annotations


class SchedulingError(Exception):
    """Base error for calendar scheduling issues."""


class InvalidRange(SchedulingError, ValueError):
    """Raised when a time range does not end strictly after it starts."""


class InvalidRecurrenceRule(SchedulingError, ValueError):
    """Raised when a recurrence rule cannot be expanded."""


class UnknownOccurrence(SchedulingError, LookupError):
    """Raised when a date is not generated by a recurring event's rule."""
