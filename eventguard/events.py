"""
Event registry for EventGuard.

The EventRegistry owns the lifecycle of Event records:
- Creation against a registered event type
- Lookup (soft-deleted events hidden unless asked for)
- Updates of mutable fields
- Soft deletion (deactivate), restore, and purge

Lifecycle:
    active --deactivate--> deactivated --restore--> active
                               |
                               +--purge--> removed (slug freed)

Invariants:
    - Slugs are unique among all stored events, soft-deleted included
    - deactivate() keeps assignment rows; it only makes checks fail closed
    - Listeners are notified after the store write has completed

How to change safely:
    - Keep every query filtering on deleted_at unless include_deleted is set
    - Notify listeners for any change that affects permission results
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Callable, Dict, Optional

from .catalog import CatalogStore
from .errors import EventGuardError, NotFoundError, UnknownEventTypeError
from .store import Event, EventStore, now_ms

logger = logging.getLogger(__name__)

# Called with (event_id, change) where change is "deactivated", "restored" or "purged"
EventListener = Callable[[str, str], None]

_UNSET: Any = object()

# Lifecycle transitions hash onto a fixed pool of locks
LOCK_STRIPES = 64


class EventRegistry:
    """Creates, updates and soft-deletes events.

    Thread safety:
        Lifecycle transitions of one event are serialized by one of
        LOCK_STRIPES striped locks; the store serializes writes across events.

    Example:
        >>> registry = EventRegistry(catalog, store)
        >>> event = registry.create_event("shop", "Acme", "acme", "user:1")
        >>> registry.deactivate(event.event_id)
        >>> registry.get_event(event.event_id)
        Traceback (most recent call last):
        ...
        eventguard.errors.NotFoundError: Event not found: ...
    """

    def __init__(
        self,
        catalog: CatalogStore,
        store: EventStore,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self._clock = clock
        self._listeners: list[EventListener] = []
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    def add_listener(self, listener: EventListener) -> None:
        """Subscribe to lifecycle changes that affect permission results."""
        self._listeners.append(listener)

    def _notify(self, event_id: str, change: str) -> None:
        for listener in self._listeners:
            listener(event_id, change)

    def _event_lock(self, event_id: str) -> threading.Lock:
        return self._locks[hash(event_id) % LOCK_STRIPES]

    def create_event(
        self,
        type_slug: str,
        name: str,
        slug: str,
        owner_id: str,
        settings: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> Event:
        """Create a new active event.

        Args:
            type_slug: Registered event type
            name: Human name
            slug: Globally unique slug
            owner_id: Owning subject
            settings: Optional opaque settings
            description: Optional description

        Returns:
            The created Event

        Raises:
            UnknownEventTypeError: If type_slug is not registered
            SlugConflictError: If the slug is taken (soft-deleted events included)
            ValueError: If name, slug or owner is empty
        """
        if not self.catalog.has_event_type(type_slug):
            raise UnknownEventTypeError(type_slug)
        if not name or not slug or not owner_id:
            raise ValueError("Event name, slug and owner_id are required")

        now = self._clock()
        event = Event(
            event_id=str(uuid.uuid4()),
            event_type=type_slug,
            name=name,
            slug=slug,
            owner_id=owner_id,
            description=description,
            settings=dict(settings) if settings is not None else None,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_event(event)

        logger.debug(
            f"Created event {slug}",
            extra={"event_id": event.event_id, "event_type": type_slug, "owner_id": owner_id},
        )
        return event.copy()

    def get_event(self, event_id: str, include_deleted: bool = False) -> Event:
        """Get an event by id.

        Raises:
            NotFoundError: If missing, or soft-deleted and include_deleted is False
        """
        event = self.store.get_event(event_id)
        if event is None or (event.is_deleted and not include_deleted):
            raise NotFoundError(f"Event not found: {event_id}", "event", event_id)
        return event

    def find_event(self, event_id: str) -> Optional[Event]:
        """Like get_event(include_deleted=True) but returns None when missing."""
        return self.store.get_event(event_id)

    def get_by_slug(self, slug: str, include_deleted: bool = False) -> Event:
        """Get an event by slug.

        Raises:
            NotFoundError: If missing, or soft-deleted and include_deleted is False
        """
        event = self.store.get_event_by_slug(slug)
        if event is None or (event.is_deleted and not include_deleted):
            raise NotFoundError(f"Event not found: {slug}", "event", slug)
        return event

    def list_events(
        self,
        event_type: Optional[str] = None,
        owner_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[Event]:
        return self.store.list_events(
            event_type=event_type, owner_id=owner_id, include_deleted=include_deleted
        )

    def update_event(
        self,
        event_id: str,
        name: Optional[str] = None,
        description: Any = _UNSET,
        settings: Any = _UNSET,
    ) -> Event:
        """Update mutable fields of a live event.

        Pass ``description=None`` or ``settings=None`` to clear them.

        Raises:
            NotFoundError: If missing or soft-deleted
        """
        with self._event_lock(event_id):
            event = self.get_event(event_id)
            if name is not None:
                if not name:
                    raise ValueError("Event name cannot be empty")
                event.name = name
            if description is not _UNSET:
                event.description = description
            if settings is not _UNSET:
                event.settings = dict(settings) if settings is not None else None
            event.updated_at = self._clock()
            self.store.save_event(event)

        logger.debug("Updated event", extra={"event_id": event_id})
        return event

    def deactivate(self, event_id: str) -> Event:
        """Soft-delete an event.

        Sets deleted_at, clears is_active and notifies listeners so cached
        permissions for the event are invalidated. Assignment rows are kept.
        Deactivating an already deactivated event is a no-op.

        Raises:
            NotFoundError: If the event does not exist
        """
        with self._event_lock(event_id):
            event = self.get_event(event_id, include_deleted=True)
            if event.is_deleted:
                return event
            now = self._clock()
            event.deleted_at = now
            event.updated_at = now
            event.is_active = False
            self.store.save_event(event)

        logger.info(f"Deactivated event {event.slug}", extra={"event_id": event_id})
        self._notify(event_id, "deactivated")
        return event

    def restore(self, event_id: str) -> Event:
        """Reverse a soft delete.

        Raises:
            NotFoundError: If the event does not exist
        """
        with self._event_lock(event_id):
            event = self.get_event(event_id, include_deleted=True)
            if not event.is_deleted and event.is_active:
                return event
            event.deleted_at = None
            event.is_active = True
            event.updated_at = self._clock()
            self.store.save_event(event)

        logger.info(f"Restored event {event.slug}", extra={"event_id": event_id})
        self._notify(event_id, "restored")
        return event

    def purge(self, event_id: str) -> None:
        """Physically remove a soft-deleted event and its assignments.

        Frees the slug for reuse.

        Raises:
            NotFoundError: If the event does not exist
            EventGuardError: If the event has not been deactivated first
        """
        with self._event_lock(event_id):
            event = self.get_event(event_id, include_deleted=True)
            if not event.is_deleted:
                raise EventGuardError(
                    f"Event {event_id} must be deactivated before it can be purged",
                    code="EVENT_ACTIVE",
                    details={"event_id": event_id},
                )
            self.store.delete_event(event_id)

        logger.info(f"Purged event {event.slug}", extra={"event_id": event_id})
        self._notify(event_id, "purged")
