"""
Permission resolution for EventGuard.

Answers "which permissions does subject S hold on event E?":

    effective(S, E) = union(permissions(role) for role in roles_of(S, E))
                      | direct_permissions_of(S, E)

Results are memoized in the PermissionCache. The uncached path,
compute_permissions(), is the authority: after any invalidation or expiry
the cached path must return exactly what it returns.

Invariants:
    - Fail closed: unknown subjects, unknown or soft-deleted or inactive
      events, and subjects without roles resolve to the empty set
    - Permission checks never raise for missing subjects or events
    - Roles no longer defined in the catalog contribute nothing
    - A computation racing a mutation never overwrites the invalidation

How to change safely:
    - Keep compute_permissions() free of caching side effects
    - Any new source of permissions must be invalidated by its writers
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .assignments import RoleAssignmentTable
from .cache import PermissionCache
from .catalog import CatalogStore
from .errors import AccessDeniedError, InvalidRoleError
from .events import EventRegistry

logger = logging.getLogger(__name__)

EMPTY: frozenset[str] = frozenset()


class PermissionResolver:
    """Computes effective permission sets through the permission cache.

    Thread safety:
        Stateless apart from the cache, which is thread-safe.

    Example:
        >>> resolver = PermissionResolver(catalog, events, assignments, cache)
        >>> resolver.has_permission("user:2", event.event_id, "manage products")
        False
    """

    def __init__(
        self,
        catalog: CatalogStore,
        events: EventRegistry,
        assignments: RoleAssignmentTable,
        cache: PermissionCache,
        ttl: Optional[float] = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            catalog: Role definitions
            events: Event lookups
            assignments: Role assignments
            cache: Permission cache
            ttl: Entry lifetime in seconds (default: the cache's TTL)
        """
        self.catalog = catalog
        self.events = events
        self.assignments = assignments
        self.cache = cache
        self.ttl = ttl

    def compute_permissions(self, subject_id: str, event_id: str) -> frozenset[str]:
        """Authoritative, uncached permission set."""
        event = self.events.find_event(event_id)
        if event is None or not event.is_available:
            return EMPTY

        held = self.assignments.store.holdings(subject_id, event_id)
        permissions: set[str] = set(held.permissions)
        for role_name in held.roles:
            try:
                permissions |= self.catalog.role_permissions(event.event_type, role_name)
            except InvalidRoleError:
                logger.warning(
                    f"Ignoring undefined role '{role_name}' held by {subject_id}",
                    extra={"event_id": event_id, "event_type": event.event_type},
                )
        return frozenset(permissions)

    def effective_permissions(self, subject_id: str, event_id: str) -> frozenset[str]:
        """Permission set of a subject on an event, served from cache when possible."""
        cached = self.cache.get(subject_id, event_id)
        if cached is not None:
            return cached

        token = self.cache.token(subject_id, event_id)
        try:
            permissions = self.compute_permissions(subject_id, event_id)
        except Exception:
            self.cache.release(token)
            raise
        self.cache.put(subject_id, event_id, permissions, ttl=self.ttl, token=token)
        return permissions

    def has_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        return permission in self.effective_permissions(subject_id, event_id)

    def has_any_permission(
        self, subject_id: str, event_id: str, permissions: Iterable[str]
    ) -> bool:
        effective = self.effective_permissions(subject_id, event_id)
        return any(p in effective for p in permissions)

    def has_all_permissions(
        self, subject_id: str, event_id: str, permissions: Iterable[str]
    ) -> bool:
        effective = self.effective_permissions(subject_id, event_id)
        return all(p in effective for p in permissions)

    def has_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        """Whether the subject holds a role on an available event."""
        event = self.events.find_event(event_id)
        if event is None or not event.is_available:
            return False
        return role_name in self.assignments.roles_of(subject_id, event_id)

    def authorize(self, subject_id: str, event_id: str, permission: str) -> None:
        """Strict form of has_permission().

        Raises:
            AccessDeniedError: If the subject lacks the permission
        """
        if not self.has_permission(subject_id, event_id, permission):
            raise AccessDeniedError(subject_id, event_id, permission)
