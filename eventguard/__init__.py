"""
EventGuard - role/permission authorization for multi-tenant events.

An event type (shop, forum, announcement, group) declares roles and
permissions; an event is one tenant of a type, owned by a subject;
subjects hold roles on events; the engine answers permission checks
through a time-bounded, eagerly invalidated cache.

Architecture:
    ┌──────────────┐     ┌──────────────────┐     ┌─────────────────┐
    │ CatalogStore │◀────│ PermissionResolver│────▶│ PermissionCache │
    └──────┬───────┘     └────────┬─────────┘     └────────▲────────┘
           │                      │                        │ invalidate
           ▼                      ▼                        │
    ┌──────────────┐     ┌───────────────────┐             │
    │ EventRegistry│────▶│RoleAssignmentTable│─────────────┘
    └──────┬───────┘     └────────┬──────────┘
           │                      │
           ▼                      ▼
    ┌─────────────────────────────────────────┐
    │   GuardStore (in-memory or SQLite)      │
    └─────────────────────────────────────────┘

Invariants:
    - Permission checks fail closed and never raise for unknown subjects
    - Every mutation invalidates the cache after its write is visible
    - Events are soft-deleted; their slugs stay reserved until purged
    - The catalog is frozen before checks are served

How to change safely:
    - New permission sources must invalidate the cache from their writers
    - Catalog changes mean building a new catalog and clearing the cache
"""

from ._version import __version__
from .assignments import RoleAssignmentTable
from .cache import NullPermissionCache, PermissionCache
from .catalog import CatalogStore, EventTypeDef, PermissionDef, RoleDef
from .config import GuardSettings
from .errors import (
    AccessDeniedError,
    CatalogFrozenError,
    DuplicateSlugError,
    EventGuardError,
    InvalidPermissionError,
    InvalidRoleError,
    NotFoundError,
    SlugConflictError,
    StoreFailureError,
    UnknownEventTypeError,
)
from .events import EventRegistry
from .guard import EventGuard
from .resolver import PermissionResolver
from .store import Event, InMemoryStore, SqliteStore

__all__ = [
    "__version__",
    # Facade
    "EventGuard",
    "GuardSettings",
    # Components
    "CatalogStore",
    "EventRegistry",
    "RoleAssignmentTable",
    "PermissionResolver",
    "PermissionCache",
    "NullPermissionCache",
    # Records
    "EventTypeDef",
    "RoleDef",
    "PermissionDef",
    "Event",
    # Stores
    "InMemoryStore",
    "SqliteStore",
    # Errors
    "EventGuardError",
    "NotFoundError",
    "DuplicateSlugError",
    "SlugConflictError",
    "UnknownEventTypeError",
    "InvalidRoleError",
    "InvalidPermissionError",
    "CatalogFrozenError",
    "AccessDeniedError",
    "StoreFailureError",
]
