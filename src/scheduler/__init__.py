"""Calendar scheduling engine: grid geometry, column layout, availability and recurrence."""

from .availability import AvailabilityChecker, ConflictReport, EventLookup
from .errors import InvalidRange, InvalidRecurrenceRule, SchedulingError, UnknownOccurrence
from .grid import GridPosition, Scale, TimeGridConfig
from .layout import ColumnPlacement, PositionedEvent, pack_columns, position_events
from .models import Event, EventStatus, Frequency, Occurrence, RecurrenceRule, as_naive_utc
from .recurrence import detach_occurrence, expand, expand_event, expand_events

__all__ = [
    "AvailabilityChecker",
    "ColumnPlacement",
    "ConflictReport",
    "Event",
    "EventLookup",
    "EventStatus",
    "Frequency",
    "GridPosition",
    "InvalidRange",
    "InvalidRecurrenceRule",
    "Occurrence",
    "PositionedEvent",
    "RecurrenceRule",
    "Scale",
    "SchedulingError",
    "TimeGridConfig",
    "UnknownOccurrence",
    "as_naive_utc",
    "detach_occurrence",
    "expand",
    "expand_event",
    "expand_events",
    "pack_columns",
    "position_events",
]
