"""
In-memory storage backend for EventGuard.

This module provides a process-local backend for:
- Unit tests
- Applications that rebuild authorization state at startup
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Same uniqueness and soft-delete semantics as the SQLite backend
    - Thread-safe: every write is serialized under one re-entrant lock
    - Returned events are copies; callers never mutate stored state

How to change safely:
    - Keep interface compatible with the GuardStore protocol
    - Mirror any behaviour change in the SQLite backend
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Dict, Optional, Tuple

from ..errors import SlugConflictError
from .base import Event, Holdings

logger = logging.getLogger(__name__)


class InMemoryStore:
    """In-memory implementation of the GuardStore protocol.

    Thread safety:
        Uses a threading.RLock. Reads take the lock too, so every read
        observes a consistent snapshot of completed writes.

    Example:
        >>> store = InMemoryStore()
        >>> store.insert_event(event)
        >>> store.add_role("user:2", event.event_id, "staff")
        True
    """

    def __init__(self) -> None:
        self._events: Dict[str, Event] = {}
        self._slugs: Dict[str, str] = {}
        self._holdings: Dict[Tuple[str, str], Holdings] = defaultdict(Holdings)
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Nothing to prepare in memory."""
        logger.debug("InMemoryStore initialized")

    def sync_catalog(self, catalog) -> None:
        """The catalog lives in process memory already."""
        return None

    def insert_event(self, event: Event) -> None:
        with self._lock:
            existing_id = self._slugs.get(event.slug)
            if existing_id is not None:
                raise SlugConflictError(event.slug, existing_id)
            self._events[event.event_id] = event.copy()
            self._slugs[event.slug] = event.event_id

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            event = self._events.get(event_id)
            return event.copy() if event else None

    def get_event_by_slug(self, slug: str) -> Optional[Event]:
        with self._lock:
            event_id = self._slugs.get(slug)
            return self._events[event_id].copy() if event_id else None

    def save_event(self, event: Event) -> None:
        with self._lock:
            if event.event_id not in self._events:
                return
            self._events[event.event_id] = event.copy()

    def delete_event(self, event_id: str) -> bool:
        with self._lock:
            event = self._events.pop(event_id, None)
            if event is None:
                return False
            self._slugs.pop(event.slug, None)
            for key in [k for k in self._holdings if k[1] == event_id]:
                del self._holdings[key]
            return True

    def list_events(
        self,
        event_type: Optional[str] = None,
        owner_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[Event]:
        with self._lock:
            events = [
                e.copy()
                for e in self._events.values()
                if (event_type is None or e.event_type == event_type)
                and (owner_id is None or e.owner_id == owner_id)
                and (include_deleted or not e.is_deleted)
            ]
        return sorted(events, key=lambda e: e.created_at)

    def add_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        with self._lock:
            roles = self._holdings[(subject_id, event_id)].roles
            if role_name in roles:
                return False
            roles.add(role_name)
            return True

    def remove_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        with self._lock:
            held = self._holdings.get((subject_id, event_id))
            if held is None or role_name not in held.roles:
                return False
            held.roles.discard(role_name)
            return True

    def add_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        with self._lock:
            permissions = self._holdings[(subject_id, event_id)].permissions
            if permission in permissions:
                return False
            permissions.add(permission)
            return True

    def remove_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        with self._lock:
            held = self._holdings.get((subject_id, event_id))
            if held is None or permission not in held.permissions:
                return False
            held.permissions.discard(permission)
            return True

    def holdings(self, subject_id: str, event_id: str) -> Holdings:
        with self._lock:
            held = self._holdings.get((subject_id, event_id))
            if held is None:
                return Holdings()
            return Holdings(roles=set(held.roles), permissions=set(held.permissions))

    def event_holders(self, event_id: str) -> Dict[str, Holdings]:
        with self._lock:
            return {
                subject_id: Holdings(roles=set(h.roles), permissions=set(h.permissions))
                for (subject_id, eid), h in self._holdings.items()
                if eid == event_id and (h.roles or h.permissions)
            }

    def subject_events(self, subject_id: str) -> list[str]:
        with self._lock:
            return sorted(
                eid for (sid, eid), h in self._holdings.items() if sid == subject_id and h.roles
            )
