"""
EventGuard facade.

Wires every component from one GuardSettings object:
- CatalogStore loaded with the configured event types, then frozen
- Storage backend (in-memory or SQLite) with the catalog synced into it
- PermissionCache with the configured TTL, key and store
- EventRegistry, RoleAssignmentTable and PermissionResolver

Invariants:
    - The catalog is frozen before the guard serves any check
    - All components share the same catalog, store and cache
    - Event owners receive the owner role when assign_owner_role is set

How to change safely:
    - Construct components here, never ad hoc in application code
    - Keep the facade thin; behaviour belongs to the components
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from .assignments import RoleAssignmentTable
from .cache import PermissionCache, create_permission_cache
from .catalog import CatalogStore
from .config import GuardSettings
from .events import EventRegistry
from .resolver import PermissionResolver
from .store import Event, GuardStore, create_store

logger = logging.getLogger(__name__)


class EventGuard:
    """Role/permission authorization engine for events.

    Attributes:
        settings: Guard configuration
        catalog: Event types, roles and permissions
        store: Storage backend
        cache: Permission cache
        events: Event registry
        assignments: Role assignment table
        resolver: Permission resolver

    Example:
        >>> guard = EventGuard()
        >>> shop = guard.create_event("shop", "Acme", "acme", owner_id="user:1")
        >>> guard.assign_role("user:2", shop.event_id, "staff")
        >>> guard.has_permission("user:2", shop.event_id, "manage products")
        False
    """

    def __init__(
        self,
        settings: Optional[GuardSettings] = None,
        catalog: Optional[CatalogStore] = None,
        store: Optional[GuardStore] = None,
        cache: Optional[PermissionCache] = None,
    ) -> None:
        """Initialize the guard.

        Args:
            settings: Configuration (loaded from environment if not provided)
            catalog: Prebuilt catalog (built from settings.event_types if not provided)
            store: Storage backend (created from settings if not provided)
            cache: Permission cache (created from settings if not provided)
        """
        self.settings = settings or GuardSettings()
        self.settings.validate_settings()
        self.settings.log_settings()

        if catalog is None:
            catalog = CatalogStore()
            catalog.load_event_types(self.settings.event_type_mapping())
        if not catalog.frozen:
            catalog.freeze()
        self.catalog = catalog

        self.store = store or create_store(self.settings)
        self.store.initialize()
        self.store.sync_catalog(self.catalog)

        self.cache = cache or create_permission_cache(self.settings.cache)
        self.events = EventRegistry(self.catalog, self.store)
        self.assignments = RoleAssignmentTable(self.catalog, self.events, self.store, self.cache)
        self.resolver = PermissionResolver(
            self.catalog,
            self.events,
            self.assignments,
            self.cache,
            ttl=self.settings.cache.expiration_time,
        )

        logger.info(
            "EventGuard ready",
            extra={
                "event_types": len(self.catalog.list_event_types()),
                "catalog_fingerprint": self.catalog.fingerprint,
                "store": type(self.store).__name__,
            },
        )

    def create_event(
        self,
        type_slug: str,
        name: str,
        slug: str,
        owner_id: str,
        settings: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> Event:
        """Create an event, giving the owner the type's owner role when configured."""
        event = self.events.create_event(
            type_slug, name, slug, owner_id, settings=settings, description=description
        )
        if self.settings.assign_owner_role:
            owner_role = self.catalog.get_event_type(type_slug).owner_role
            if owner_role is not None:
                self.assignments.assign_role(owner_id, event.event_id, owner_role.name)
        return event

    def get_event(self, event_id: str, include_deleted: bool = False) -> Event:
        return self.events.get_event(event_id, include_deleted=include_deleted)

    def deactivate(self, event_id: str) -> Event:
        return self.events.deactivate(event_id)

    def assign_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        return self.assignments.assign_role(subject_id, event_id, role_name)

    def revoke_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        return self.assignments.revoke_role(subject_id, event_id, role_name)

    def roles_of(self, subject_id: str, event_id: str) -> frozenset[str]:
        return self.assignments.roles_of(subject_id, event_id)

    def effective_permissions(self, subject_id: str, event_id: str) -> frozenset[str]:
        return self.resolver.effective_permissions(subject_id, event_id)

    def has_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        return self.resolver.has_permission(subject_id, event_id, permission)

    def has_any_permission(
        self, subject_id: str, event_id: str, permissions: Iterable[str]
    ) -> bool:
        return self.resolver.has_any_permission(subject_id, event_id, permissions)

    def authorize(self, subject_id: str, event_id: str, permission: str) -> None:
        self.resolver.authorize(subject_id, event_id, permission)
