from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Sequence

from .grid import TimeGridConfig, pixels_per_minute, time_to_pixels
from .models import Event


@dataclass(frozen=True)
class ColumnPlacement:
    """Lane assigned to an event when overlapping events share a day."""

    event: Event
    column: int
    column_count: int

    @property
    def width_percent(self) -> float:
        return 100 / self.column_count

    @property
    def left_percent(self) -> float:
        return self.width_percent * self.column


@dataclass(frozen=True)
class PositionedEvent:
    event: Event
    column: int
    column_count: int
    top_pixels: float
    height_pixels: float
    left_percent: float
    width_percent: float


def pack_columns(events: Iterable[Event]) -> List[ColumnPlacement]:
    """Assign each event to the lowest column it does not overlap.

    Events are processed by start time, then end time. ``column_count`` reflects
    the columns opened when the event was placed; earlier placements keep the
    width they were given even when a later event opens another column.
    """

    ordered = sorted(events, key=lambda event: (event.start, event.end))
    columns: List[List[Event]] = []
    placements: List[ColumnPlacement] = []

    for event in ordered:
        column_index = _first_free_column(columns, event)
        if column_index == len(columns):
            columns.append([])
        columns[column_index].append(event)
        placements.append(ColumnPlacement(event, column_index, len(columns)))

    return placements


def position_events(events: Iterable[Event], config: TimeGridConfig) -> List[PositionedEvent]:
    """Project packed events onto the grid, clipping them to its visible hours."""

    per_minute = pixels_per_minute(config)
    grid_height = config.total_minutes * per_minute
    positioned: List[PositionedEvent] = []
    for placement in pack_columns(events):
        event = placement.event
        top = min(max(time_to_pixels(config, event.start), 0.0), grid_height)
        bottom = min(max(time_to_pixels(config, event.end), 0.0), grid_height)
        positioned.append(
            PositionedEvent(
                event=event,
                column=placement.column,
                column_count=placement.column_count,
                top_pixels=top,
                height_pixels=bottom - top,
                left_percent=placement.left_percent,
                width_percent=placement.width_percent,
            )
        )
    return positioned


def events_on_day(events: Iterable[Event], day: date) -> List[Event]:
    return [event for event in events if event.is_active and event.start.date() == day]


def _first_free_column(columns: Sequence[Sequence[Event]], event: Event) -> int:
    for index, column in enumerate(columns):
        if not any(existing.overlaps(event.start, event.end) for existing in column):
            return index
    return len(columns)
