from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Protocol, Sequence, Tuple

from .models import Event, as_naive_utc, ensure_range
from .recurrence import expand

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 366


class EventLookup(Protocol):
    """Read access to the events a teacher is assigned to."""

    def events_for_resource(self, resource_id: str) -> Iterable[Event]:
        ...


@dataclass(frozen=True)
class ConflictReport:
    """Outcome of checking both teachers assigned to an event."""

    resource_conflicts: List[Event] = field(default_factory=list)
    substitute_conflicts: List[Event] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.resource_conflicts or self.substitute_conflicts)


class AvailabilityChecker:
    """Advisory double-booking check for teachers.

    The check reads the current events and reports overlap; it does not lock
    anything, so two concurrent bookings can both pass before either is saved.
    Open-ended series being booked are checked ``horizon_days`` ahead of their
    first occurrence.
    """

    def __init__(
        self,
        lookup: EventLookup,
        *,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        logger_instance: logging.Logger | None = None,
    ) -> None:
        self._lookup = lookup
        self._horizon = timedelta(days=horizon_days)
        self._logger = logger_instance or logger

    def has_conflict(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: str | None = None,
    ) -> bool:
        return bool(self.find_conflicts(resource_id, start, end, exclude_event_id))

    def find_conflicts(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: str | None = None,
    ) -> List[Event]:
        """Active events for the teacher overlapping ``[start, end)``.

        Recurring events are expanded over the candidate range, and each
        overlapping occurrence is reported as its own event. ``exclude_event_id``
        may name a whole event or a single ``<series>:<date>`` occurrence.
        """

        start, end = as_naive_utc(start), as_naive_utc(end)
        ensure_range(start, end)
        existing = self._busy_events(resource_id, exclude_event_id)
        conflicts = _conflicts_within(existing, start, end, exclude_event_id)
        if conflicts:
            self._logger.debug(
                "Resource %s has %s conflicting events between %s and %s",
                resource_id,
                len(conflicts),
                start.isoformat(),
                end.isoformat(),
            )
        return conflicts

    def check_event(self, event: Event, exclude_event_id: str | None = None) -> ConflictReport:
        """Check the main teacher and, independently, the substitute of ``event``.

        A recurring event is checked occurrence by occurrence.
        """

        ranges = self._candidate_ranges(event)
        resource_conflicts = self._conflicts_for_ranges(event.resource_id, ranges, exclude_event_id)
        substitute_conflicts: List[Event] = []
        if event.substitute_id and event.substitute_id != event.resource_id:
            substitute_conflicts = self._conflicts_for_ranges(event.substitute_id, ranges, exclude_event_id)
        return ConflictReport(resource_conflicts, substitute_conflicts)

    def find_available_substitutes(
        self,
        candidate_ids: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> List[str]:
        start, end = as_naive_utc(start), as_naive_utc(end)
        ensure_range(start, end)
        return [
            candidate for candidate in candidate_ids if not self.has_conflict(candidate, start, end)
        ]

    def _busy_events(self, resource_id: str, exclude_event_id: str | None) -> List[Event]:
        return [
            event
            for event in self._lookup.events_for_resource(resource_id)
            if event.is_active and event.occupies(resource_id) and event.event_id != exclude_event_id
        ]

    def _candidate_ranges(self, event: Event) -> List[Tuple[datetime, datetime]]:
        if event.recurrence is None:
            return [(event.start, event.end)]
        rule = event.recurrence
        first_day = event.start.date()
        if rule.ends_on is not None:
            last_day = rule.ends_on
        elif rule.count is not None:
            # the count ends the expansion on its own
            last_day = date.max
        else:
            last_day = first_day + self._horizon
        return [(item.start, item.end) for item in expand(rule, event, first_day, last_day)]

    def _conflicts_for_ranges(
        self,
        resource_id: str,
        ranges: Sequence[Tuple[datetime, datetime]],
        exclude_event_id: str | None,
    ) -> List[Event]:
        existing = self._busy_events(resource_id, exclude_event_id)
        found: Dict[str, Event] = {}
        for start, end in ranges:
            for conflict in _conflicts_within(existing, start, end, exclude_event_id):
                found.setdefault(conflict.event_id, conflict)
        if found:
            self._logger.debug(
                "Resource %s has %s conflicting events across %s candidate ranges",
                resource_id,
                len(found),
                len(ranges),
            )
        return list(found.values())


def _conflicts_within(
    events: Iterable[Event],
    start: datetime,
    end: datetime,
    exclude_event_id: str | None,
) -> List[Event]:
    conflicts: List[Event] = []
    for event in events:
        if event.recurrence is None:
            if event.overlaps(start, end):
                conflicts.append(event)
            continue
        conflicts.extend(
            occurrence
            for occurrence in _overlapping_occurrences(event, start, end)
            if occurrence.event_id != exclude_event_id
        )
    return conflicts


def _overlapping_occurrences(series: Event, start: datetime, end: datetime) -> List[Event]:
    assert series.recurrence is not None
    # an occurrence starting the day before can still run into the range
    window_start = (start - series.duration - timedelta(days=1)).date()
    window_end = end.date()
    return [
        occurrence.to_event()
        for occurrence in expand(series.recurrence, series, window_start, window_end)
        if occurrence.overlaps(start, end)
    ]
