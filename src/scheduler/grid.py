"""Pixel and wall-clock conversions for a single-day time grid."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import List

from .models import as_naive_utc

logger = logging.getLogger(__name__)

MIN_ZOOM = 0.25
MAX_ZOOM = 3.0
SNAP_TOLERANCE_PX = 5
MIN_COLUMN_WIDTH_PX = 200


class Scale(str, Enum):
    MINUTES = "minutes"
    FIVE_MINUTES = "5minutes"
    FIFTEEN_MINUTES = "15minutes"
    THIRTY_MINUTES = "30minutes"
    HOURS = "hours"

    @property
    def increment(self) -> int:
        return _SCALES[self][0]

    @property
    def pixels_per_hour(self) -> int:
        return _SCALES[self][1]


# scale -> (snap increment in minutes, base pixels per hour)
_SCALES = {
    Scale.MINUTES: (1, 360),
    Scale.FIVE_MINUTES: (5, 300),
    Scale.FIFTEEN_MINUTES: (15, 240),
    Scale.THIRTY_MINUTES: (30, 180),
    Scale.HOURS: (60, 120),
}


def get_current_scale(zoom_level: float) -> Scale:
    if zoom_level >= 2:
        return Scale.MINUTES
    if zoom_level >= 1.5:
        return Scale.FIVE_MINUTES
    if zoom_level >= 1:
        return Scale.FIFTEEN_MINUTES
    if zoom_level >= 0.5:
        return Scale.THIRTY_MINUTES
    return Scale.HOURS


@dataclass(frozen=True)
class TimeGridConfig:
    """Geometry settings for one rendered day.

    The grid never spans midnight: ``end_hour`` may be 24 at most, in which case
    the last slot boundary is the closing midnight of ``day``.
    """

    min_increment_minutes: int = 15
    start_hour: int = 7
    end_hour: int = 19
    zoom_level: float = 1.5
    column_count: int = 1
    day: date = field(default_factory=date.today)

    def __post_init__(self) -> None:
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError("start_hour must be before end_hour within one day")
        if not MIN_ZOOM <= self.zoom_level <= MAX_ZOOM:
            raise ValueError(f"zoom_level must be within [{MIN_ZOOM}, {MAX_ZOOM}]")
        if self.column_count < 1:
            raise ValueError("column_count must be at least 1")
        if self.min_increment_minutes <= 0:
            raise ValueError("min_increment_minutes must be positive")

    @property
    def scale(self) -> Scale:
        return get_current_scale(self.zoom_level)

    @property
    def day_start(self) -> datetime:
        return datetime.combine(self.day, time(self.start_hour))

    @property
    def day_end(self) -> datetime:
        return datetime.combine(self.day, time()) + timedelta(hours=self.end_hour)

    @property
    def total_minutes(self) -> int:
        return (self.end_hour - self.start_hour) * 60


@dataclass(frozen=True)
class GridPosition:
    time: datetime
    column: int
    exact_y: float
    snapped_y: float
    is_snapped: bool


def get_time_slots(config: TimeGridConfig) -> List[datetime]:
    """Every slot boundary from the first to the last hour, inclusive."""

    step = timedelta(minutes=config.scale.increment)
    slots: List[datetime] = []
    current = config.day_start
    while current <= config.day_end:
        slots.append(current)
        current = current + step
    return slots


def snap_time_to_grid(value: datetime, scale: Scale) -> datetime:
    """Round to the nearest multiple of the scale increment, ties rounding up.

    Seconds take part in the rounding and are dropped from the result. A rounded
    minute of 60 carries into the next hour.
    """

    increment = scale.increment
    minutes = value.minute + (value.second + value.microsecond / 1_000_000) / 60
    snapped = math.floor(minutes / increment + 0.5) * increment
    base = value.replace(minute=0, second=0, microsecond=0)
    return base + timedelta(minutes=snapped)


def pixels_per_minute(config: TimeGridConfig) -> float:
    return config.scale.pixels_per_hour * config.zoom_level / 60


def time_to_pixels(config: TimeGridConfig, value: datetime) -> float:
    """Vertical offset of ``value`` measured from the top of the grid."""

    minutes = (as_naive_utc(value) - config.day_start).total_seconds() / 60
    return minutes * pixels_per_minute(config)


def get_grid_position(
    pixel_y: float,
    container_height: float,
    pixel_x: float,
    container_width: float,
    config: TimeGridConfig,
) -> GridPosition:
    """Translate a pointer offset into a snapped grid slot.

    Coordinates outside the container or past the grid's hours are clamped, so a
    pointer above the grid resolves to ``start_hour``.
    """

    per_minute = pixels_per_minute(config)
    exact_y = min(max(pixel_y, 0.0), max(container_height, 0.0))
    # float noise must not push an aligned offset below its boundary
    minutes_from_start = round(exact_y / per_minute, 6)
    minutes_from_start = min(max(minutes_from_start, 0.0), float(config.total_minutes))

    exact_time = config.day_start + timedelta(minutes=minutes_from_start)
    snapped_time = snap_time_to_grid(exact_time, config.scale)
    if snapped_time > config.day_end:
        snapped_time = config.day_end
    snapped_y = time_to_pixels(config, snapped_time)

    column = 0
    if container_width > 0:
        column_width = container_width / config.column_count
        column = math.floor(pixel_x / column_width)
    column = max(0, min(column, config.column_count - 1))

    logger.debug(
        "Grid position y=%s x=%s resolved to %s (column %s)",
        pixel_y,
        pixel_x,
        snapped_time.isoformat(),
        column,
    )
    return GridPosition(
        time=snapped_time,
        column=column,
        exact_y=exact_y,
        snapped_y=snapped_y,
        is_snapped=abs(exact_y - snapped_y) < SNAP_TOLERANCE_PX,
    )


def get_column_width(config: TimeGridConfig, container_width: float) -> float:
    return max(MIN_COLUMN_WIDTH_PX, container_width / config.column_count)


def is_valid_time(config: TimeGridConfig, value: datetime) -> bool:
    return config.start_hour <= value.hour <= config.end_hour


def adjust_zoom(config: TimeGridConfig, new_level: float) -> TimeGridConfig:
    zoom_level = max(MIN_ZOOM, min(MAX_ZOOM, new_level))
    return replace(config, zoom_level=zoom_level)


def set_column_count(config: TimeGridConfig, count: int) -> TimeGridConfig:
    return replace(config, column_count=max(1, count))
