"""
Error types for EventGuard.

This module defines all exception types raised by the engine:
- EventGuardError: Base exception
- NotFoundError: Referenced entity absent or soft-deleted
- DuplicateSlugError: Catalog entry registered twice
- SlugConflictError: Event slug already taken
- UnknownEventTypeError: Event type not in the catalog
- InvalidRoleError / InvalidPermissionError: Name not defined for the scope
- CatalogFrozenError: Catalog modified after freeze
- AccessDeniedError: Strict authorization check failed
- StoreFailureError: Persistence layer failure (not interpreted)

Invariants:
    - All errors inherit from EventGuardError
    - Errors include context for debugging in `details`
    - Permission checks never raise for unknown subjects or events
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EventGuardError(Exception):
    """Base exception for all EventGuard errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "EVENTGUARD_ERROR"
        self.details = details or {}


class NotFoundError(EventGuardError):
    """Resource not found.

    Raised when:
    - Event doesn't exist or is soft-deleted
    - Event type or role lookup misses in the catalog
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class DuplicateSlugError(EventGuardError):
    """Catalog entry (event type, global role or permission) already registered."""

    def __init__(self, message: str, slug: str) -> None:
        super().__init__(message, code="DUPLICATE_SLUG", details={"slug": slug})
        self.slug = slug


class SlugConflictError(EventGuardError):
    """Event slug is already used by another event.

    Soft-deleted events keep their slug reserved until purged.
    """

    def __init__(self, slug: str, existing_id: Optional[str] = None) -> None:
        super().__init__(
            f"Event slug '{slug}' is already taken",
            code="SLUG_CONFLICT",
            details={"slug": slug, "existing_id": existing_id},
        )
        self.slug = slug
        self.existing_id = existing_id


class UnknownEventTypeError(EventGuardError):
    """Event type slug is not registered in the catalog."""

    def __init__(self, type_slug: str) -> None:
        super().__init__(
            f"Unknown event type '{type_slug}'",
            code="UNKNOWN_EVENT_TYPE",
            details={"type_slug": type_slug},
        )
        self.type_slug = type_slug


class InvalidRoleError(EventGuardError):
    """Role is not defined for the event type nor globally."""

    def __init__(self, role_name: str, type_slug: Optional[str]) -> None:
        scope = f"event type '{type_slug}'" if type_slug else "global scope"
        super().__init__(
            f"Role '{role_name}' is not defined for {scope}",
            code="INVALID_ROLE",
            details={"role": role_name, "type_slug": type_slug},
        )
        self.role_name = role_name
        self.type_slug = type_slug


class InvalidPermissionError(EventGuardError):
    """Permission is not defined for the event type nor globally."""

    def __init__(self, permission: str, type_slug: Optional[str]) -> None:
        scope = f"event type '{type_slug}'" if type_slug else "global scope"
        super().__init__(
            f"Permission '{permission}' is not defined for {scope}",
            code="INVALID_PERMISSION",
            details={"permission": permission, "type_slug": type_slug},
        )
        self.permission = permission
        self.type_slug = type_slug


class CatalogFrozenError(EventGuardError):
    """Raised when attempting to modify a frozen catalog."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CATALOG_FROZEN")


class AccessDeniedError(EventGuardError):
    """Subject lacks the required permission on an event."""

    def __init__(self, subject_id: str, event_id: str, permission: str) -> None:
        super().__init__(
            f"Access denied: {subject_id} lacks '{permission}' on {event_id}",
            code="ACCESS_DENIED",
            details={
                "subject_id": subject_id,
                "event_id": event_id,
                "required_permission": permission,
            },
        )
        self.subject_id = subject_id
        self.event_id = event_id
        self.permission = permission


class StoreFailureError(EventGuardError):
    """Persistence layer failure.

    Wraps backend errors (connection loss, locked database, constraint
    violations from concurrent races). The original exception is chained.
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message, code="STORE_FAILURE", details={"operation": operation})
        self.operation = operation
