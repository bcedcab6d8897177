"""
Base protocols and records for EventGuard storage.

This module defines the records the engine persists and the protocols
that every storage backend must implement:
- Event: a tenant-scoped resource instance with soft-delete state
- EventStore: event persistence with slug uniqueness
- AssignmentStore: subject role assignments and direct permission grants

Invariants:
    - Event slugs are unique across all stored events, soft-deleted included
    - Soft deletion is a state field (deleted_at), inspected by every query
    - Assignment writes are idempotent at the storage level
    - Backend errors surface as StoreFailureError, uniqueness as SlugConflictError

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the in-memory and SQLite backends behaviourally identical
"""

from __future__ import annotations

import copy
import time
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..catalog import CatalogStore
    from ..config import GuardSettings


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Event:
    """A concrete event (shop, forum, ...) subject to access control.

    Attributes:
        event_id: Opaque identifier (UUID string)
        event_type: Slug of the event type
        name: Human name
        slug: Globally unique slug
        owner_id: Subject that owns the event
        description: Optional description
        settings: Optional opaque key-value settings
        is_active: Whether the event is active
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        deleted_at: Soft-deletion timestamp (Unix ms) or None
    """

    event_id: str
    event_type: str
    name: str
    slug: str
    owner_id: str
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    is_active: bool = True
    created_at: int = 0
    updated_at: int = 0
    deleted_at: Optional[int] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_available(self) -> bool:
        """Whether permission checks on this event can succeed."""
        return self.is_active and not self.is_deleted

    def copy(self) -> Event:
        """Detached copy, so callers never share mutable state with a store."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "name": self.name,
            "slug": self.slug,
            "owner_id": self.owner_id,
            "description": self.description,
            "settings": self.settings,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }


@dataclass
class Holdings:
    """Everything a subject holds on one event."""

    roles: set[str] = field(default_factory=set)
    permissions: set[str] = field(default_factory=set)


@runtime_checkable
class EventStore(Protocol):
    """Protocol for event persistence backends."""

    @abstractmethod
    def insert_event(self, event: Event) -> None:
        """Insert a new event.

        Raises:
            SlugConflictError: If the slug is already used (soft-deleted included)
            StoreFailureError: On backend failure
        """
        ...

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[Event]:
        """Get an event by id, soft-deleted included. None if absent."""
        ...

    @abstractmethod
    def get_event_by_slug(self, slug: str) -> Optional[Event]:
        """Get an event by slug, soft-deleted included. None if absent."""
        ...

    @abstractmethod
    def save_event(self, event: Event) -> None:
        """Persist the mutable fields of an existing event.

        Raises:
            StoreFailureError: On backend failure
        """
        ...

    @abstractmethod
    def delete_event(self, event_id: str) -> bool:
        """Physically delete an event and its assignments. True if deleted."""
        ...

    @abstractmethod
    def list_events(
        self,
        event_type: Optional[str] = None,
        owner_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[Event]:
        """List events ordered by creation time."""
        ...


@runtime_checkable
class AssignmentStore(Protocol):
    """Protocol for subject-to-role and subject-to-permission links."""

    @abstractmethod
    def add_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        """Link a role. Returns False if it was already held."""
        ...

    @abstractmethod
    def remove_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        """Unlink a role. Returns False if it was not held."""
        ...

    @abstractmethod
    def add_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        """Link a direct permission. Returns False if it was already held."""
        ...

    @abstractmethod
    def remove_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        """Unlink a direct permission. Returns False if it was not held."""
        ...

    @abstractmethod
    def holdings(self, subject_id: str, event_id: str) -> Holdings:
        """Roles and direct permissions a subject holds on an event."""
        ...

    @abstractmethod
    def event_holders(self, event_id: str) -> Dict[str, Holdings]:
        """Every subject holding something on an event."""
        ...

    @abstractmethod
    def subject_events(self, subject_id: str) -> list[str]:
        """Event ids on which a subject holds at least one role."""
        ...


class GuardStore(EventStore, AssignmentStore, Protocol):
    """A backend that stores both events and assignments."""

    def sync_catalog(self, catalog: "CatalogStore") -> None:
        """Persist catalog definitions where the backend keeps them."""
        ...

    def initialize(self) -> None:
        """Prepare the backend (create schema, directories)."""
        ...


def create_store(settings: "GuardSettings") -> GuardStore:
    """Factory function to create a storage backend from settings.

    Raises:
        ValueError: If the backend is not supported
    """
    from ..config import StorageBackend
    from .memory import InMemoryStore
    from .sqlite import SqliteStore

    backend = settings.storage.backend
    if backend == StorageBackend.MEMORY:
        return InMemoryStore()
    elif backend == StorageBackend.SQLITE:
        return SqliteStore(
            settings.storage.database_path,
            table_names=settings.table_names,
            column_names=settings.column_names,
            wal_mode=settings.storage.wal_mode,
            busy_timeout_ms=settings.storage.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {backend}")
