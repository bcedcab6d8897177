"""
Core type definitions for the EventGuard catalog.

This module defines the vocabulary an event type brings with it:
- PermissionDef: An atomic named capability
- RoleDef: A named bundle of permissions
- EventTypeDef: A category of events with its roles and permissions

Invariants:
    - Slugs and names are non-empty
    - Role and permission names are unique within their scope
    - A role only grants permissions defined in its scope or globally
    - Definitions are immutable once created (frozen dataclasses)

How to change safely:
    - Add new roles/permissions by registering a new catalog, never by
      mutating a registered definition
    - Keep to_dict() output stable; it feeds the catalog fingerprint

Example:
    >>> shop = EventTypeDef(
    ...     slug="shop",
    ...     name="Shop",
    ...     roles=(RoleDef("owner", "shop", ("view shop",)),),
    ...     permissions=("view shop",),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class PermissionDef:
    """A permission name bound to a scope.

    Attributes:
        name: Permission name (e.g. "manage products")
        scope: Event type slug, or None for a global permission
    """

    name: str
    scope: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Permission name cannot be empty")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "scope": self.scope}


@dataclass(frozen=True)
class RoleDef:
    """A role and the permissions it grants.

    Attributes:
        name: Role name, unique within its scope
        scope: Event type slug, or None for a global role
        permissions: Permission names granted by this role
    """

    name: str
    scope: Optional[str] = None
    permissions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Role name cannot be empty")
        if len(set(self.permissions)) != len(self.permissions):
            raise ValueError(f"Role '{self.name}' grants a permission more than once")

    @property
    def is_global(self) -> bool:
        return self.scope is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "scope": self.scope,
            "permissions": list(self.permissions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoleDef:
        return cls(
            name=data["name"],
            scope=data.get("scope"),
            permissions=tuple(data.get("permissions", ())),
        )


@dataclass(frozen=True)
class EventTypeDef:
    """Definition of an event type.

    Attributes:
        slug: Identity key (e.g. "shop")
        name: Display name
        description: Human-readable description
        roles: Ordered role definitions; the first one is the owner role
        permissions: Ordered permission names

    Invariants:
        - Role names are unique within the type
        - Permission names are unique within the type
        - Every role is scoped to this type
    """

    slug: str
    name: str
    description: str = ""
    roles: tuple[RoleDef, ...] = ()
    permissions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate event type definition."""
        if not self.slug:
            raise ValueError("Event type slug cannot be empty")
        if not self.name:
            raise ValueError(f"Event type '{self.slug}' must have a name")

        role_names = [r.name for r in self.roles]
        if len(set(role_names)) != len(role_names):
            raise ValueError(f"Duplicate role names in event type '{self.slug}'")
        if len(set(self.permissions)) != len(self.permissions):
            raise ValueError(f"Duplicate permission names in event type '{self.slug}'")

        for role in self.roles:
            if role.scope != self.slug:
                raise ValueError(
                    f"Role '{role.name}' is scoped to '{role.scope}', expected '{self.slug}'"
                )

    @property
    def role_names(self) -> tuple[str, ...]:
        """Role names in declaration order."""
        return tuple(r.name for r in self.roles)

    @property
    def owner_role(self) -> Optional[RoleDef]:
        """The first declared role, granted to event owners."""
        return self.roles[0] if self.roles else None

    def get_role(self, name: str) -> Optional[RoleDef]:
        for role in self.roles:
            if role.name == name:
                return role
        return None

    def has_permission(self, name: str) -> bool:
        return name in self.permissions

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "roles": [r.to_dict() for r in self.roles],
            "permissions": list(self.permissions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventTypeDef:
        """Create from dictionary representation."""
        return cls(
            slug=data["slug"],
            name=data["name"],
            description=data.get("description", ""),
            roles=tuple(RoleDef.from_dict(r) for r in data.get("roles", ())),
            permissions=tuple(data.get("permissions", ())),
        )


def build_event_type(
    slug: str,
    name: str,
    description: str = "",
    roles: tuple[str, ...] | list[str] = (),
    permissions: tuple[str, ...] | list[str] = (),
    grants: Optional[dict[str, list[str]]] = None,
) -> EventTypeDef:
    """Build an EventTypeDef from plain configuration values.

    When ``grants`` is None the first role (the owner role) grants every
    permission of the type and the remaining roles grant nothing.

    Raises:
        ValueError: If grants reference undeclared roles
    """
    roles = tuple(roles)
    permissions = tuple(permissions)

    if grants is None:
        grants = {roles[0]: list(permissions)} if roles else {}

    unknown = set(grants) - set(roles)
    if unknown:
        raise ValueError(
            f"Grants for event type '{slug}' reference undeclared roles: {sorted(unknown)}"
        )

    return EventTypeDef(
        slug=slug,
        name=name,
        description=description,
        roles=tuple(
            RoleDef(name=role, scope=slug, permissions=tuple(grants.get(role, ())))
            for role in roles
        ),
        permissions=permissions,
    )
