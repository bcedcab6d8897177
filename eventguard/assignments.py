"""
Role assignment table for EventGuard.

Maps (subject, event) pairs to the roles and direct permissions a subject
holds on an event. It is the only writer of subject links and the one
place where mutations are turned into cache invalidations.

Invariants:
    - A role is assignable only if defined for the event's type or globally
    - Assignments only target existing, active events
    - assign/grant are idempotent; revoke of an unheld link is a no-op
    - The cache entry is invalidated after the store write returns

How to change safely:
    - Every new mutation must invalidate the affected cache entries
    - Never invalidate before writing; a concurrent read could re-cache
      the old state
"""

from __future__ import annotations

import logging
from typing import Dict

from .cache import PermissionCache
from .catalog import CatalogStore
from .errors import InvalidPermissionError, NotFoundError
from .events import EventRegistry
from .store import AssignmentStore, Event

logger = logging.getLogger(__name__)


class RoleAssignmentTable:
    """Subject role assignments and direct permission grants per event.

    Subjects are opaque identifiers; the table never dereferences them.

    Example:
        >>> table = RoleAssignmentTable(catalog, events, store, cache)
        >>> table.assign_role("user:2", event.event_id, "staff")
        >>> table.roles_of("user:2", event.event_id)
        frozenset({'staff'})
    """

    def __init__(
        self,
        catalog: CatalogStore,
        events: EventRegistry,
        store: AssignmentStore,
        cache: PermissionCache,
    ) -> None:
        self.catalog = catalog
        self.events = events
        self.store = store
        self.cache = cache
        events.add_listener(self.handle_event_change)

    def _live_event(self, event_id: str) -> Event:
        event = self.events.get_event(event_id)
        if not event.is_active:
            raise NotFoundError(f"Event is not active: {event_id}", "event", event_id)
        return event

    def assign_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        """Give a subject a role on an event.

        Returns:
            True if the role was added, False if it was already held

        Raises:
            NotFoundError: If the event is missing, soft-deleted or inactive
            InvalidRoleError: If the role is not defined for the event's type
        """
        event = self._live_event(event_id)
        self.catalog.resolve_role(event.event_type, role_name)

        added = self.store.add_role(subject_id, event_id, role_name)
        self.cache.invalidate(subject_id, event_id)

        if added:
            logger.debug(
                "Assigned role",
                extra={"subject_id": subject_id, "event_id": event_id, "role": role_name},
            )
        return added

    def revoke_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        """Remove a role from a subject. No-op if not held.

        Returns:
            True if the role was removed
        """
        removed = self.store.remove_role(subject_id, event_id, role_name)
        self.cache.invalidate(subject_id, event_id)

        if removed:
            logger.debug(
                "Revoked role",
                extra={"subject_id": subject_id, "event_id": event_id, "role": role_name},
            )
        return removed

    def roles_of(self, subject_id: str, event_id: str) -> frozenset[str]:
        """Roles currently held; empty for unknown subjects or events."""
        return frozenset(self.store.holdings(subject_id, event_id).roles)

    def grant_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        """Give a subject a permission directly, outside any role.

        Raises:
            NotFoundError: If the event is missing, soft-deleted or inactive
            InvalidPermissionError: If the permission is not defined for the event's type
        """
        event = self._live_event(event_id)
        if not self.catalog.is_permission_defined(event.event_type, permission):
            raise InvalidPermissionError(permission, event.event_type)

        added = self.store.add_permission(subject_id, event_id, permission)
        self.cache.invalidate(subject_id, event_id)

        if added:
            logger.debug(
                "Granted permission",
                extra={"subject_id": subject_id, "event_id": event_id, "permission": permission},
            )
        return added

    def revoke_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        """Remove a direct permission. No-op if not held."""
        removed = self.store.remove_permission(subject_id, event_id, permission)
        self.cache.invalidate(subject_id, event_id)
        return removed

    def direct_permissions_of(self, subject_id: str, event_id: str) -> frozenset[str]:
        return frozenset(self.store.holdings(subject_id, event_id).permissions)

    def holders(self, event_id: str) -> Dict[str, frozenset[str]]:
        """Subjects holding at least one role on an event, with their roles."""
        return {
            subject_id: frozenset(held.roles)
            for subject_id, held in self.store.event_holders(event_id).items()
            if held.roles
        }

    def events_of(self, subject_id: str) -> list[str]:
        """Event ids on which the subject holds at least one role."""
        return self.store.subject_events(subject_id)

    def handle_event_change(self, event_id: str, change: str) -> None:
        """Invalidate cached permissions of every subject on a changed event.

        Assignment rows are left in place; a purged event's rows were
        already removed by the store.
        """
        removed = self.cache.invalidate_event(event_id)
        if change != "purged":
            # Holders without a cached entry still need their key stamped
            # so an in-flight computation cannot store its result
            for subject_id in self.store.event_holders(event_id):
                self.cache.invalidate(subject_id, event_id)
        logger.debug(
            f"Event {change}: invalidated cached permissions",
            extra={"event_id": event_id, "entries": removed},
        )
