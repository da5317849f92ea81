"""REST API for interacting with the scheduling engine."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import List, Literal, Optional, Union

from fastapi import FastAPI, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from ..integrations.event_store import (
    DocumentEventStore,
    EventNotFoundError,
    EventStoreError,
    InMemoryEventStore,
)
from ..scheduler.availability import AvailabilityChecker, ConflictReport
from ..scheduler.errors import InvalidRange, InvalidRecurrenceRule, UnknownOccurrence
from ..scheduler.grid import (
    TimeGridConfig,
    get_grid_position,
    get_time_slots,
    pixels_per_minute,
)
from ..scheduler.layout import PositionedEvent, events_on_day, position_events
from ..scheduler.models import Event, Frequency, Occurrence, RecurrenceRule, as_naive_utc
from ..scheduler.recurrence import detach_occurrence, expand_event, expand_events
from .config import ServiceSettings

logger = logging.getLogger(__name__)

EventStore = Union[InMemoryEventStore, DocumentEventStore]


class RecurrencePayload(BaseModel):
    frequency: Literal["daily", "weekly", "monthly"]
    interval: int = Field(default=1, ge=1)
    days_of_week: List[int] = Field(default_factory=list)
    ends_on: Optional[date] = None
    count: Optional[int] = Field(default=None, ge=1)
    exceptions: List[date] = Field(default_factory=list)

    def build_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            frequency=Frequency(self.frequency),
            interval=self.interval,
            days_of_week=frozenset(self.days_of_week),
            ends_on=self.ends_on,
            count=self.count,
            exceptions=frozenset(self.exceptions),
        )

    @classmethod
    def from_rule(cls, rule: RecurrenceRule) -> "RecurrencePayload":
        return cls(
            frequency=rule.frequency.value,
            interval=rule.interval,
            days_of_week=sorted(rule.days_of_week),
            ends_on=rule.ends_on,
            count=rule.count,
            exceptions=sorted(rule.exceptions),
        )


class EventPayload(BaseModel):
    """Shared payload for creating and updating events."""

    title: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    resource_id: str = Field(min_length=1)
    schedule_id: str = Field(min_length=1)
    substitute_id: Optional[str] = None
    description: Optional[str] = None
    recurrence: Optional[RecurrencePayload] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        # offsets are folded into naive UTC so stored and queried times compare
        return as_naive_utc(value) if value is not None else None

    @model_validator(mode="after")
    def check_range(self) -> "EventPayload":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def build_event(self, event_id: str, parent_event_id: Optional[str] = None) -> Event:
        return Event(
            event_id=event_id,
            title=self.title,
            start=self.start_time,
            end=self.end_time,
            resource_id=self.resource_id,
            schedule_id=self.schedule_id,
            recurrence=self.recurrence.build_rule() if self.recurrence else None,
            parent_event_id=parent_event_id,
            substitute_id=self.substitute_id,
            description=self.description,
        )


class EventCreateRequest(EventPayload):
    event_id: Optional[str] = Field(default=None, min_length=1)


class EventUpdateRequest(EventPayload):
    ...


class EventResponse(BaseModel):
    event_id: str
    title: str
    start_time: datetime
    end_time: datetime
    resource_id: str
    schedule_id: str
    status: Literal["active", "cancelled"]
    is_recurring: bool
    recurrence: Optional[RecurrencePayload] = None
    parent_event_id: Optional[str] = None
    substitute_id: Optional[str] = None
    description: Optional[str] = None
    substitution_reason: Optional[str] = None

class AvailabilityRequest(BaseModel):
    resource_id: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    exclude_event_id: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value) if value is not None else None


class AvailabilityResponse(BaseModel):
    resource_id: str
    conflict: bool
    conflicting_event_ids: List[str]


class GridSettings(BaseModel):
    day: Optional[date] = None
    start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    end_hour: Optional[int] = Field(default=None, ge=1, le=24)
    zoom_level: Optional[float] = Field(default=None, ge=0.25, le=3)
    column_count: int = Field(default=1, ge=1)


class GridResponse(BaseModel):
    day: date
    scale: str
    increment_minutes: int
    pixels_per_minute: float
    time_slots: List[datetime]


class GridPositionRequest(GridSettings):
    pixel_y: float
    container_height: float
    pixel_x: float = 0.0
    container_width: float = 0.0


class GridPositionResponse(BaseModel):
    time: datetime
    column: int
    exact_y: float
    snapped_y: float
    is_snapped: bool


class OccurrenceResponse(BaseModel):
    parent_event_id: str
    occurrence_date: date
    start_time: datetime
    end_time: datetime
    resource_id: str
    substitute_id: Optional[str] = None


class DetachRequest(BaseModel):
    new_event_id: Optional[str] = Field(default=None, min_length=1)
    title: Optional[str] = Field(default=None, min_length=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    resource_id: Optional[str] = Field(default=None, min_length=1)
    substitute_id: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value) if value is not None else None


class SubstituteRequest(BaseModel):
    substitute_id: str = Field(min_length=1)
    reason: Optional[str] = None


class DetachResponse(BaseModel):
    series: EventResponse
    detached: EventResponse


class PositionedEventResponse(BaseModel):
    event_id: str
    title: str
    start_time: datetime
    end_time: datetime
    resource_id: str
    parent_event_id: Optional[str] = None
    column: int
    column_count: int
    top_pixels: float
    height_pixels: float
    left_percent: float
    width_percent: float


class LayoutResponse(BaseModel):
    schedule_id: str
    day: date
    scale: str
    events: List[PositionedEventResponse]


def _serialize_event(event: Event) -> EventResponse:
    return EventResponse(
        event_id=event.event_id,
        title=event.title,
        start_time=event.start,
        end_time=event.end,
        resource_id=event.resource_id,
        schedule_id=event.schedule_id,
        status=event.status.value,
        is_recurring=event.is_recurring,
        recurrence=RecurrencePayload.from_rule(event.recurrence) if event.recurrence else None,
        parent_event_id=event.parent_event_id,
        substitute_id=event.substitute_id,
        description=event.description,
        substitution_reason=event.substitution_reason,
    )


def _serialize_occurrence(occurrence: Occurrence) -> OccurrenceResponse:
    return OccurrenceResponse(
        parent_event_id=occurrence.parent_event_id,
        occurrence_date=occurrence.occurrence_date,
        start_time=occurrence.start,
        end_time=occurrence.end,
        resource_id=occurrence.resource_id,
        substitute_id=occurrence.substitute_id,
    )


def _serialize_positioned(item: PositionedEvent) -> PositionedEventResponse:
    event = item.event
    return PositionedEventResponse(
        event_id=event.event_id,
        title=event.title,
        start_time=event.start,
        end_time=event.end,
        resource_id=event.resource_id,
        parent_event_id=event.parent_event_id,
        column=item.column,
        column_count=item.column_count,
        top_pixels=item.top_pixels,
        height_pixels=item.height_pixels,
        left_percent=item.left_percent,
        width_percent=item.width_percent,
    )


def _conflict_detail(report: ConflictReport) -> dict[str, object]:
    return {
        "message": "Teacher is already booked during this time.",
        "resource_conflicts": [event.event_id for event in report.resource_conflicts],
        "substitute_conflicts": [event.event_id for event in report.substitute_conflicts],
    }


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def create_app(
    store: Optional[EventStore] = None,
    settings: Optional[ServiceSettings] = None,
) -> FastAPI:
    settings = settings or ServiceSettings.from_env()
    logging.basicConfig(level=settings.log_level)
    store = store if store is not None else InMemoryEventStore()
    checker = AvailabilityChecker(store, horizon_days=settings.max_window_days)

    app = FastAPI(title="Calendar Scheduler API")

    def _grid_config(grid: GridSettings) -> TimeGridConfig:
        try:
            return TimeGridConfig(
                start_hour=settings.start_hour if grid.start_hour is None else grid.start_hour,
                end_hour=settings.end_hour if grid.end_hour is None else grid.end_hour,
                zoom_level=settings.zoom_level if grid.zoom_level is None else grid.zoom_level,
                column_count=grid.column_count,
                day=grid.day or date.today(),
            )
        except ValueError as exc:
            raise _bad_request(exc)

    def _load(event_id: str) -> Event:
        try:
            return store.get(event_id)
        except EventNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    def _ensure_available(event: Event, exclude_event_id: Optional[str] = None) -> None:
        try:
            report = checker.check_event(event, exclude_event_id)
        except InvalidRange as exc:
            raise _bad_request(exc)
        if report.has_conflict:
            logger.warning(
                "Rejected booking %s for resource %s: %s",
                event.event_id,
                event.resource_id,
                _conflict_detail(report),
            )
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=_conflict_detail(report))

    def _check_window(window_start: date, window_end: date) -> None:
        if window_end < window_start:
            raise _bad_request(InvalidRange("window_end must not be before window_start"))
        if window_end - window_start > timedelta(days=settings.max_window_days):
            raise _bad_request(ValueError(f"Window may span at most {settings.max_window_days} days"))

    def _load_active(event_id: str) -> Event:
        event = _load(event_id)
        if not event.is_active:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Event '{event_id}' is cancelled and can no longer be changed.",
            )
        return event

    def _build(payload: EventPayload, event_id: str, parent_event_id: Optional[str] = None) -> Event:
        try:
            return payload.build_event(event_id, parent_event_id)
        except (InvalidRange, InvalidRecurrenceRule) as exc:
            raise _bad_request(exc)

    @app.get("/api/grid", response_model=GridResponse)
    def get_grid(
        day: Optional[date] = None,
        start_hour: Optional[int] = Query(default=None, ge=0, le=23),
        end_hour: Optional[int] = Query(default=None, ge=1, le=24),
        zoom_level: Optional[float] = Query(default=None, ge=0.25, le=3),
    ) -> GridResponse:
        config = _grid_config(
            GridSettings(day=day, start_hour=start_hour, end_hour=end_hour, zoom_level=zoom_level)
        )
        return GridResponse(
            day=config.day,
            scale=config.scale.value,
            increment_minutes=config.scale.increment,
            pixels_per_minute=pixels_per_minute(config),
            time_slots=get_time_slots(config),
        )

    @app.post("/api/grid/position", response_model=GridPositionResponse)
    def locate(payload: GridPositionRequest) -> GridPositionResponse:
        config = _grid_config(payload)
        position = get_grid_position(
            payload.pixel_y,
            payload.container_height,
            payload.pixel_x,
            payload.container_width,
            config,
        )
        return GridPositionResponse(
            time=position.time,
            column=position.column,
            exact_y=position.exact_y,
            snapped_y=position.snapped_y,
            is_snapped=position.is_snapped,
        )

    @app.post("/api/availability", response_model=AvailabilityResponse)
    def check_availability(payload: AvailabilityRequest) -> AvailabilityResponse:
        try:
            conflicts = checker.find_conflicts(
                payload.resource_id,
                payload.start_time,
                payload.end_time,
                payload.exclude_event_id,
            )
        except InvalidRange as exc:
            raise _bad_request(exc)
        return AvailabilityResponse(
            resource_id=payload.resource_id,
            conflict=bool(conflicts),
            conflicting_event_ids=[event.event_id for event in conflicts],
        )

    @app.post("/api/events", status_code=status.HTTP_201_CREATED, response_model=EventResponse)
    def create_event(payload: EventCreateRequest) -> EventResponse:
        event = _build(payload, payload.event_id or uuid.uuid4().hex)
        _ensure_available(event)
        try:
            store.add(event)
        except EventStoreError as exc:
            raise _bad_request(exc)
        return _serialize_event(event)

    @app.get("/api/events/{event_id}", response_model=EventResponse)
    def get_event(event_id: str) -> EventResponse:
        return _serialize_event(_load(event_id))

    @app.put("/api/events/{event_id}", response_model=EventResponse)
    def update_event(event_id: str, payload: EventUpdateRequest) -> EventResponse:
        existing = _load_active(event_id)
        event = _build(payload, event_id, existing.parent_event_id)
        if existing.substitute_id == event.substitute_id:
            event = replace(event, substitution_reason=existing.substitution_reason)
        _ensure_available(event, exclude_event_id=event_id)
        store.update(event)
        return _serialize_event(event)

    @app.delete("/api/events/{event_id}", response_model=EventResponse)
    def cancel_event(event_id: str) -> EventResponse:
        _load(event_id)
        return _serialize_event(store.cancel(event_id))

    @app.get("/api/events/{event_id}/occurrences", response_model=List[OccurrenceResponse])
    def list_occurrences(event_id: str, window_start: date, window_end: date) -> List[OccurrenceResponse]:
        _check_window(window_start, window_end)
        event = _load(event_id)
        return [_serialize_occurrence(item) for item in expand_event(event, window_start, window_end)]

    @app.post(
        "/api/events/{event_id}/occurrences/{occurrence_date}/detach",
        status_code=status.HTTP_201_CREATED,
        response_model=DetachResponse,
    )
    def detach(event_id: str, occurrence_date: date, payload: DetachRequest) -> DetachResponse:
        series = _load_active(event_id)
        changes = {
            key: value
            for key, value in {
                "title": payload.title,
                "start": payload.start_time,
                "end": payload.end_time,
                "resource_id": payload.resource_id,
                "substitute_id": payload.substitute_id,
            }.items()
            if value is not None
        }
        try:
            updated_series, detached = detach_occurrence(
                series, occurrence_date, payload.new_event_id or uuid.uuid4().hex, **changes
            )
        except UnknownOccurrence as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        except (InvalidRange, InvalidRecurrenceRule) as exc:
            raise _bad_request(exc)

        # only the occurrence being replaced is ignored; sibling dates still count
        _ensure_available(detached, exclude_event_id=f"{series.event_id}:{occurrence_date.isoformat()}")
        store.update(updated_series)
        try:
            store.add(detached)
        except EventStoreError as exc:
            store.update(series)
            raise _bad_request(exc)
        return DetachResponse(series=_serialize_event(updated_series), detached=_serialize_event(detached))

    @app.post("/api/events/{event_id}/substitute", response_model=EventResponse)
    def assign_substitute(event_id: str, payload: SubstituteRequest) -> EventResponse:
        existing = _load_active(event_id)
        event = existing.assign_substitute(payload.substitute_id, payload.reason)
        _ensure_available(event, exclude_event_id=event_id)
        store.update(event)
        logger.info("Assigned substitute %s to event %s", payload.substitute_id, event_id)
        return _serialize_event(event)

    @app.get("/api/resources/{resource_id}/events", response_model=List[EventResponse])
    def get_resource_schedule(resource_id: str, window_start: date, window_end: date) -> List[EventResponse]:
        """Everything the teacher teaches or covers in the window, series expanded."""

        _check_window(window_start, window_end)
        concrete = expand_events(store.events_for_resource(resource_id), window_start, window_end)
        return [_serialize_event(event) for event in concrete if event.occupies(resource_id)]

    @app.get("/api/schedules/{schedule_id}/layout", response_model=LayoutResponse)
    def get_layout(
        schedule_id: str,
        day: date,
        start_hour: Optional[int] = Query(default=None, ge=0, le=23),
        end_hour: Optional[int] = Query(default=None, ge=1, le=24),
        zoom_level: Optional[float] = Query(default=None, ge=0.25, le=3),
    ) -> LayoutResponse:
        config = _grid_config(
            GridSettings(day=day, start_hour=start_hour, end_hour=end_hour, zoom_level=zoom_level)
        )
        concrete = expand_events(store.list_for_schedule(schedule_id), day, day)
        positioned = position_events(events_on_day(concrete, day), config)
        return LayoutResponse(
            schedule_id=schedule_id,
            day=day,
            scale=config.scale.value,
            events=[_serialize_positioned(item) for item in positioned],
        )

    return app


app = create_app()
