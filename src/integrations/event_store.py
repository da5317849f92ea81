from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Protocol

from dateutil.parser import isoparse

from ..scheduler.models import Event, EventStatus, Frequency, RecurrenceRule

logger = logging.getLogger(__name__)


class EventStoreError(Exception):
    """Base error for event persistence issues."""


class EventNotFoundError(EventStoreError, LookupError):
    """Raised when an event id is not present in the store."""


class DocumentCollection(Protocol):
    """The subset of a document collection the store relies on."""

    def find(self, filter: dict[str, Any]) -> Iterable[dict[str, Any]]:
        ...

    def insert_one(self, document: dict[str, Any]) -> Any:
        ...

    def replace_one(self, filter: dict[str, Any], document: dict[str, Any]) -> Any:
        ...


class InMemoryEventStore:
    """Process-local event store used by the API and in tests."""

    def __init__(self, events: Iterable[Event] = (), *, logger_instance: logging.Logger | None = None) -> None:
        self._events: Dict[str, Event] = {event.event_id: event for event in events}
        self._lock = threading.Lock()
        self._logger = logger_instance or logger

    def add(self, event: Event) -> Event:
        with self._lock:
            if event.event_id in self._events:
                raise EventStoreError(f"Event '{event.event_id}' already exists.")
            self._events[event.event_id] = event
        self._logger.info("Stored event %s for resource %s", event.event_id, event.resource_id)
        return event

    def get(self, event_id: str) -> Event:
        try:
            return self._events[event_id]
        except KeyError as exc:
            raise EventNotFoundError(f"Event '{event_id}' was not found.") from exc

    def update(self, event: Event) -> Event:
        with self._lock:
            if event.event_id not in self._events:
                raise EventNotFoundError(f"Event '{event.event_id}' was not found.")
            self._events[event.event_id] = event
        self._logger.info("Updated event %s", event.event_id)
        return event

    def cancel(self, event_id: str) -> Event:
        return self.update(self.get(event_id).cancel())

    def list_for_schedule(self, schedule_id: str, *, include_cancelled: bool = False) -> List[Event]:
        events = [
            event
            for event in self._events.values()
            if event.schedule_id == schedule_id and (include_cancelled or event.is_active)
        ]
        return sorted(events, key=lambda event: (event.start, event.end))

    def events_for_resource(self, resource_id: str) -> List[Event]:
        return [event for event in list(self._events.values()) if event.occupies(resource_id)]


class DocumentEventStore:
    """Event store backed by a generic document collection.

    Only equality filters are issued, so any collection offering ``find``,
    ``insert_one`` and ``replace_one`` can back it.
    """

    def __init__(self, collection: DocumentCollection, *, logger_instance: logging.Logger | None = None) -> None:
        self._collection = collection
        self._logger = logger_instance or logger

    def add(self, event: Event) -> Event:
        if self._find({"id": event.event_id}):
            raise EventStoreError(f"Event '{event.event_id}' already exists.")
        try:
            self._collection.insert_one(event_to_document(event))
        except Exception as exc:
            self._logger.exception("Failed to insert event %s: %s", event.event_id, exc)
            raise EventStoreError("Failed to persist event") from exc
        self._logger.info("Stored event %s for resource %s", event.event_id, event.resource_id)
        return event

    def get(self, event_id: str) -> Event:
        documents = self._find({"id": event_id})
        if not documents:
            raise EventNotFoundError(f"Event '{event_id}' was not found.")
        return event_from_document(documents[0])

    def update(self, event: Event) -> Event:
        self.get(event.event_id)
        try:
            self._collection.replace_one({"id": event.event_id}, event_to_document(event))
        except Exception as exc:
            self._logger.exception("Failed to update event %s: %s", event.event_id, exc)
            raise EventStoreError("Failed to persist event") from exc
        self._logger.info("Updated event %s", event.event_id)
        return event

    def cancel(self, event_id: str) -> Event:
        return self.update(self.get(event_id).cancel())

    def list_for_schedule(self, schedule_id: str, *, include_cancelled: bool = False) -> List[Event]:
        events = [event_from_document(document) for document in self._find({"scheduleId": schedule_id})]
        if not include_cancelled:
            events = [event for event in events if event.is_active]
        return sorted(events, key=lambda event: (event.start, event.end))

    def events_for_resource(self, resource_id: str) -> List[Event]:
        seen: Dict[str, Event] = {}
        for key in ("resourceId", "substituteId"):
            for document in self._find({key: resource_id}):
                event = event_from_document(document)
                seen.setdefault(event.event_id, event)
        return list(seen.values())

    def _find(self, filter: dict[str, Any]) -> List[dict[str, Any]]:
        try:
            return list(self._collection.find(filter))
        except Exception as exc:
            self._logger.exception("Event lookup %s failed: %s", filter, exc)
            raise EventStoreError("Failed to load events") from exc


def event_to_document(event: Event) -> dict[str, Any]:
    document: dict[str, Any] = {
        "id": event.event_id,
        "title": event.title,
        "startTime": event.start.isoformat(),
        "endTime": event.end.isoformat(),
        "resourceId": event.resource_id,
        "scheduleId": event.schedule_id,
        "status": event.status.value,
        "isRecurring": event.is_recurring,
    }
    if event.recurrence is not None:
        document["recurrence"] = _rule_to_document(event.recurrence)
    if event.parent_event_id is not None:
        document["parentEventId"] = event.parent_event_id
    if event.substitute_id is not None:
        document["substituteId"] = event.substitute_id
    if event.description is not None:
        document["description"] = event.description
    if event.substitution_reason is not None:
        document["substitutionReason"] = event.substitution_reason
    return document


def event_from_document(document: dict[str, Any]) -> Event:
    try:
        recurrence_payload = document.get("recurrence")
        if document.get("isRecurring") and recurrence_payload is None:
            raise EventStoreError("Recurring event document is missing its recurrence rule")
        recurrence = _rule_from_document(recurrence_payload) if recurrence_payload else None
        return Event(
            event_id=str(document["id"]),
            title=document["title"],
            start=_parse_datetime(document["startTime"]),
            end=_parse_datetime(document["endTime"]),
            resource_id=str(document["resourceId"]),
            schedule_id=str(document["scheduleId"]),
            status=EventStatus(document.get("status", EventStatus.ACTIVE.value)),
            recurrence=recurrence,
            parent_event_id=document.get("parentEventId"),
            substitute_id=document.get("substituteId"),
            description=document.get("description"),
            substitution_reason=document.get("substitutionReason"),
        )
    except KeyError as exc:
        raise EventStoreError(f"Event document missing field {exc}") from exc
    except ValueError as exc:
        raise EventStoreError(f"Malformed event document {document.get('id')!r}: {exc}") from exc


def _rule_to_document(rule: RecurrenceRule) -> dict[str, Any]:
    document: dict[str, Any] = {
        "frequency": rule.frequency.value,
        "interval": rule.interval,
    }
    if rule.days_of_week:
        document["daysOfWeek"] = sorted(rule.days_of_week)
    if rule.ends_on is not None:
        document["endsOn"] = rule.ends_on.isoformat()
    if rule.count is not None:
        document["count"] = rule.count
    if rule.exceptions:
        document["exceptions"] = [day.isoformat() for day in sorted(rule.exceptions)]
    return document


def _rule_from_document(document: dict[str, Any]) -> RecurrenceRule:
    ends_on = document.get("endsOn")
    return RecurrenceRule(
        frequency=Frequency(document["frequency"]),
        interval=int(document.get("interval", 1)),
        days_of_week=frozenset(document.get("daysOfWeek") or ()),
        ends_on=_parse_date(ends_on) if ends_on else None,
        count=document.get("count"),
        exceptions=frozenset(_parse_date(value) for value in document.get("exceptions") or ()),
    )


def _parse_datetime(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return isoparse(value)


def _parse_date(value: str | date) -> date:
    if isinstance(value, date):
        return value if not isinstance(value, datetime) else value.date()
    return isoparse(value).date()
