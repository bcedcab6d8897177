"""
Catalog module for EventGuard.

This module provides the static vocabulary of the engine:
- Type definitions (EventTypeDef, RoleDef, PermissionDef)
- CatalogStore for registration and lookup
- The default event types (shop, forum, announcement, group)

Invariants:
    - Event type slugs are never reused within a catalog
    - Definitions are immutable after registration
    - The catalog is frozen before the engine serves checks

How to change safely:
    - Ship new event types as new entries, never rename existing slugs
    - Compare fingerprints between deployments to detect catalog drift
"""

from .defaults import DEFAULT_EVENT_TYPES
from .registry import CatalogStore
from .types import EventTypeDef, PermissionDef, RoleDef, build_event_type

__all__ = [
    # Types
    "EventTypeDef",
    "RoleDef",
    "PermissionDef",
    "build_event_type",
    # Registry
    "CatalogStore",
    # Defaults
    "DEFAULT_EVENT_TYPES",
]
