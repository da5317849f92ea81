"""Persistence collaborators for scheduled events."""

from .event_store import (
    DocumentCollection,
    DocumentEventStore,
    EventNotFoundError,
    EventStoreError,
    InMemoryEventStore,
    event_from_document,
    event_to_document,
)

__all__ = [
    "DocumentCollection",
    "DocumentEventStore",
    "EventNotFoundError",
    "EventStoreError",
    "InMemoryEventStore",
    "event_from_document",
    "event_to_document",
]
