from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from .errors import InvalidRange, InvalidRecurrenceRule


class EventStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    """How a recurring event repeats.

    ``days_of_week`` uses 0 for Sunday through 6 for Saturday and only applies to
    weekly rules. At most one of ``ends_on`` and ``count`` may be set; with neither
    the series is open-ended and callers bound it with a query window.
    """

    frequency: Frequency
    interval: int = 1
    days_of_week: frozenset[int] = field(default_factory=frozenset)
    ends_on: date | None = None
    count: int | None = None
    exceptions: frozenset[date] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not isinstance(self.frequency, Frequency):
            try:
                object.__setattr__(self, "frequency", Frequency(self.frequency))
            except ValueError as exc:
                raise InvalidRecurrenceRule(f"Unknown frequency: {self.frequency!r}") from exc
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise InvalidRecurrenceRule("interval must be a positive integer")
        if self.ends_on is not None and self.count is not None:
            raise InvalidRecurrenceRule("Only one of ends_on and count may be set")
        if self.count is not None and self.count < 1:
            raise InvalidRecurrenceRule("count must be at least 1")
        days = frozenset(self.days_of_week)
        if any(day < 0 or day > 6 for day in days):
            raise InvalidRecurrenceRule("days_of_week values must be within 0..6")
        object.__setattr__(self, "days_of_week", days)
        object.__setattr__(self, "exceptions", frozenset(as_date(day) for day in self.exceptions))

    def with_exception(self, day: date) -> "RecurrenceRule":
        return replace(self, exceptions=self.exceptions | {as_date(day)})

    def is_excluded(self, day: date) -> bool:
        return as_date(day) in self.exceptions


@dataclass(frozen=True)
class Event:
    """A scheduled block of time assigned to a teacher."""

    event_id: str
    title: str
    start: datetime
    end: datetime
    resource_id: str
    schedule_id: str
    status: EventStatus = field(default=EventStatus.ACTIVE, kw_only=True)
    recurrence: RecurrenceRule | None = field(default=None, kw_only=True)
    parent_event_id: str | None = field(default=None, kw_only=True)
    substitute_id: str | None = field(default=None, kw_only=True)
    description: str | None = field(default=None, kw_only=True)
    substitution_reason: str | None = field(default=None, kw_only=True)

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_naive_utc(self.start))
        object.__setattr__(self, "end", as_naive_utc(self.end))
        if self.end <= self.start:
            raise InvalidRange("end must be after start")
        if not isinstance(self.status, EventStatus):
            object.__setattr__(self, "status", EventStatus(self.status))

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @property
    def is_active(self) -> bool:
        return self.status is EventStatus.ACTIVE

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def occupies(self, resource_id: str) -> bool:
        """Whether the teacher is busy during this event, as owner or substitute."""

        return resource_id in (self.resource_id, self.substitute_id)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

    def cancel(self) -> "Event":
        return replace(self, status=EventStatus.CANCELLED)

    def assign_substitute(self, substitute_id: str, reason: str | None = None) -> "Event":
        return replace(self, substitute_id=substitute_id, substitution_reason=reason)


@dataclass(frozen=True)
class Occurrence:
    """One concrete instance produced by expanding a recurring event."""

    parent_event_id: str
    occurrence_date: date
    start: datetime
    end: datetime
    resource_id: str
    schedule_id: str
    title: str
    substitute_id: str | None = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

    def to_event(self, event_id: str | None = None) -> Event:
        """Materialize the occurrence as a standalone event linked to its series."""

        return Event(
            event_id=event_id or f"{self.parent_event_id}:{self.occurrence_date.isoformat()}",
            title=self.title,
            start=self.start,
            end=self.end,
            resource_id=self.resource_id,
            schedule_id=self.schedule_id,
            parent_event_id=self.parent_event_id,
            substitute_id=self.substitute_id,
        )


def ensure_range(start: datetime, end: datetime) -> None:
    if start >= end:
        raise InvalidRange(f"Range end {end.isoformat()} must be after start {start.isoformat()}")


def as_naive_utc(value: datetime) -> datetime:
    """Drop the offset from an aware datetime after converting it to UTC.

    Event times are compared as naive wall-clock values; an explicit offset such
    as a trailing ``Z`` is honoured by shifting to UTC first.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_date(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
