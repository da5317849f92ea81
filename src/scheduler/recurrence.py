"""Expansion of recurring events into concrete occurrences."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Iterator, List

from dateutil.relativedelta import relativedelta

from .errors import InvalidRecurrenceRule, UnknownOccurrence
from .models import Event, Frequency, Occurrence, RecurrenceRule, as_date

logger = logging.getLogger(__name__)


def expand(
    rule: RecurrenceRule,
    anchor: Event,
    window_start: date,
    window_end: date,
) -> Iterator[Occurrence]:
    """Yield occurrences of ``rule`` whose date falls within the window.

    The series starts on the anchor's date and inherits its time of day, duration
    and assignment. Exception dates are skipped and do not count towards
    ``rule.count``; occurrences before ``window_start`` still do. Expansion stops
    at ``rule.ends_on``, after ``rule.count`` occurrences or past ``window_end``,
    whichever comes first.
    """

    first_day = as_date(window_start)
    last_day = as_date(window_end)
    if last_day < first_day:
        return

    produced = 0
    for day in _candidate_dates(rule, anchor.start.date()):
        if day > last_day:
            return
        if rule.ends_on is not None and day > rule.ends_on:
            return
        if rule.is_excluded(day):
            continue
        produced += 1
        if day >= first_day:
            yield _occurrence(anchor, day)
        if rule.count is not None and produced >= rule.count:
            return


def expand_event(event: Event, window_start: date, window_end: date) -> Iterator[Occurrence]:
    """Occurrences of any event, recurring or not, within the window."""

    if not event.is_active:
        return iter(())
    if event.recurrence is None:
        day = event.start.date()
        if as_date(window_start) <= day <= as_date(window_end):
            return iter((_occurrence(event, day),))
        return iter(())
    return expand(event.recurrence, event, window_start, window_end)


def expand_events(events: Iterable[Event], window_start: date, window_end: date) -> List[Event]:
    """Concrete events to render for the window, series replaced by their occurrences."""

    concrete: List[Event] = []
    for event in events:
        if not event.is_active:
            continue
        if event.recurrence is None:
            if as_date(window_start) <= event.start.date() <= as_date(window_end):
                concrete.append(event)
            continue
        concrete.extend(
            occurrence.to_event() for occurrence in expand(event.recurrence, event, window_start, window_end)
        )
    return sorted(concrete, key=lambda item: (item.start, item.end))


def detach_occurrence(
    series: Event,
    occurrence_date: date,
    new_event_id: str | None = None,
    **changes: Any,
) -> tuple[Event, Event]:
    """Split one occurrence off a series so it can be edited on its own.

    Returns the series with the date added to its exceptions and the standalone
    event that now represents that date.
    """

    if series.recurrence is None:
        raise InvalidRecurrenceRule(f"Event {series.event_id} is not recurring")

    day = as_date(occurrence_date)
    occurrence = next(expand(series.recurrence, series, day, day), None)
    if occurrence is None:
        raise UnknownOccurrence(f"{day.isoformat()} is not an occurrence of event {series.event_id}")

    updated_series = replace(series, recurrence=series.recurrence.with_exception(day))
    detached = occurrence.to_event(new_event_id)
    if changes:
        detached = replace(detached, **changes)
    logger.debug("Detached occurrence %s from series %s as %s", day, series.event_id, detached.event_id)
    return updated_series, detached


def _candidate_dates(rule: RecurrenceRule, anchor_day: date) -> Iterator[date]:
    if rule.frequency is Frequency.DAILY:
        step = timedelta(days=rule.interval)
        current = anchor_day
        while True:
            yield current
            current = current + step

    elif rule.frequency is Frequency.WEEKLY:
        if not rule.days_of_week:
            return
        offsets = sorted(rule.days_of_week)
        # weeks start on Sunday, matching the 0 = Sunday numbering of days_of_week
        week_start = anchor_day - timedelta(days=_sunday_based_weekday(anchor_day))
        step = timedelta(weeks=rule.interval)
        while True:
            for offset in offsets:
                day = week_start + timedelta(days=offset)
                if day >= anchor_day:
                    yield day
            week_start = week_start + step

    elif rule.frequency is Frequency.MONTHLY:
        months = 0
        while True:
            # relativedelta clamps to the last day of shorter months
            yield anchor_day + relativedelta(months=months)
            months += rule.interval

    else:  # pragma: no cover - guarded by RecurrenceRule validation
        raise InvalidRecurrenceRule(f"Unsupported frequency: {rule.frequency!r}")


def _occurrence(anchor: Event, day: date) -> Occurrence:
    start = datetime.combine(day, anchor.start.timetz())
    return Occurrence(
        parent_event_id=anchor.event_id,
        occurrence_date=day,
        start=start,
        end=start + anchor.duration,
        resource_id=anchor.resource_id,
        schedule_id=anchor.schedule_id,
        title=anchor.title,
        substitute_id=anchor.substitute_id,
    )


def _sunday_based_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7
