"""
Catalog store for EventGuard.

The CatalogStore is the central authority for event type, role and
permission definitions. It provides:
- Registration of event types (with their scoped roles and permissions)
- Registration of global roles and permissions
- Role and permission resolution for an event type
- Catalog fingerprinting and a freeze mechanism

Invariants:
    - Catalog is mutable during startup, frozen before serving
    - Once frozen, nothing can be registered
    - Event type slugs are unique; global role/permission names are unique
    - A type-scoped role shadows a global role with the same name
    - list_event_types() yields types in registration order

How to change safely:
    - Register all types before calling freeze()
    - Reconfiguration means building a new catalog, never mutating one
    - Invalidate the permission cache when swapping catalogs

Example:
    >>> catalog = CatalogStore()
    >>> catalog.register_event_type(
    ...     "shop", "Shop", "E-commerce shop",
    ...     roles=["owner", "customer"],
    ...     permissions=["view shop"],
    ...     grants={"owner": ["view shop"], "customer": ["view shop"]},
    ... )
    >>> catalog.freeze()
    'sha256:...'
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

from ..errors import (
    CatalogFrozenError,
    DuplicateSlugError,
    InvalidPermissionError,
    InvalidRoleError,
    NotFoundError,
)
from .types import EventTypeDef, PermissionDef, RoleDef, build_event_type

logger = logging.getLogger(__name__)


class _EventTypeView:
    """Restartable view over registered event types in registration order."""

    def __init__(self, types: Dict[str, EventTypeDef]) -> None:
        self._types = types

    def __iter__(self) -> Iterator[EventTypeDef]:
        yield from list(self._types.values())

    def __len__(self) -> int:
        return len(self._types)


class CatalogStore:
    """Registry of event types, roles and permissions.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups are lock-free; the catalog is read-mostly
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the catalog is frozen (immutable)
        fingerprint: SHA-256 hash of the catalog (computed on freeze)
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable catalog."""
        # dicts preserve insertion order, which is the registration order
        self._event_types: Dict[str, EventTypeDef] = {}
        self._global_roles: Dict[str, RoleDef] = {}
        self._global_permissions: Dict[str, PermissionDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the catalog is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Catalog fingerprint (available after freeze)."""
        return self._fingerprint

    def _check_mutable(self, what: str) -> None:
        if self._frozen:
            raise CatalogFrozenError(f"Cannot register {what}: catalog is frozen")

    def register_event_type(
        self,
        slug: str,
        name: str,
        description: str = "",
        roles: Iterable[str] = (),
        permissions: Iterable[str] = (),
        grants: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> EventTypeDef:
        """Register an event type from plain configuration values.

        Args:
            slug: Identity key of the type
            name: Display name
            description: Human-readable description
            roles: Ordered role names; the first is the owner role
            permissions: Permission names of the type
            grants: Role name to granted permissions. When omitted the
                owner role grants every permission.

        Returns:
            The registered EventTypeDef

        Raises:
            CatalogFrozenError: If catalog is frozen
            DuplicateSlugError: If slug is already registered
            InvalidPermissionError: If a grant names an undefined permission
            ValueError: If the definition is malformed
        """
        event_type = build_event_type(
            slug=slug,
            name=name,
            description=description,
            roles=tuple(roles),
            permissions=tuple(permissions),
            grants={r: list(p) for r, p in grants.items()} if grants is not None else None,
        )
        self.add_event_type(event_type)
        return event_type

    def add_event_type(self, event_type: EventTypeDef) -> None:
        """Register a prebuilt event type definition.

        Raises:
            CatalogFrozenError: If catalog is frozen
            DuplicateSlugError: If slug is already registered
            InvalidPermissionError: If a role grants an undefined permission
        """
        with self._lock:
            self._check_mutable(f"event type '{event_type.slug}'")

            if event_type.slug in self._event_types:
                raise DuplicateSlugError(
                    f"Event type '{event_type.slug}' already registered", event_type.slug
                )

            for role in event_type.roles:
                for permission in role.permissions:
                    if (
                        permission not in event_type.permissions
                        and permission not in self._global_permissions
                    ):
                        raise InvalidPermissionError(permission, event_type.slug)

            self._event_types[event_type.slug] = event_type
            logger.debug(
                f"Registered event type: {event_type.slug} "
                f"({len(event_type.roles)} roles, {len(event_type.permissions)} permissions)"
            )

    def register_permission(self, name: str) -> PermissionDef:
        """Register a global permission.

        Raises:
            CatalogFrozenError: If catalog is frozen
            DuplicateSlugError: If the permission is already registered
        """
        permission = PermissionDef(name=name)
        with self._lock:
            self._check_mutable(f"permission '{name}'")
            if name in self._global_permissions:
                raise DuplicateSlugError(f"Global permission '{name}' already registered", name)
            self._global_permissions[name] = permission
        logger.debug(f"Registered global permission: {name}")
        return permission

    def register_role(self, name: str, permissions: Iterable[str] = ()) -> RoleDef:
        """Register a global role granting global permissions.

        Raises:
            CatalogFrozenError: If catalog is frozen
            DuplicateSlugError: If the role is already registered
            InvalidPermissionError: If a granted permission is not global
        """
        role = RoleDef(name=name, scope=None, permissions=tuple(permissions))
        with self._lock:
            self._check_mutable(f"role '{name}'")
            if name in self._global_roles:
                raise DuplicateSlugError(f"Global role '{name}' already registered", name)
            for permission in role.permissions:
                if permission not in self._global_permissions:
                    raise InvalidPermissionError(permission, None)
            self._global_roles[name] = role
        logger.debug(f"Registered global role: {name}")
        return role

    def load_event_types(self, event_types: Mapping[str, Mapping[str, Any]]) -> None:
        """Register every event type of a configuration mapping.

        Args:
            event_types: ``{slug: {name, description, roles, permissions, grants?}}``
        """
        for slug, spec in event_types.items():
            self.register_event_type(
                slug=slug,
                name=spec["name"],
                description=spec.get("description", ""),
                roles=spec.get("roles", ()),
                permissions=spec.get("permissions", ()),
                grants=spec.get("grants"),
            )

    def get_event_type(self, slug: str) -> EventTypeDef:
        """Get an event type by slug.

        Raises:
            NotFoundError: If the slug is not registered
        """
        event_type = self._event_types.get(slug)
        if event_type is None:
            raise NotFoundError(f"Event type not found: {slug}", "event_type", slug)
        return event_type

    def has_event_type(self, slug: str) -> bool:
        return slug in self._event_types

    def list_event_types(self) -> _EventTypeView:
        """Event types in registration order.

        The returned view is lazy and can be iterated any number of times.
        """
        return _EventTypeView(self._event_types)

    def global_roles(self) -> Iterator[RoleDef]:
        yield from list(self._global_roles.values())

    def global_permissions(self) -> Iterator[PermissionDef]:
        yield from list(self._global_permissions.values())

    def resolve_role(self, type_slug: Optional[str], role_name: str) -> RoleDef:
        """Find the role definition that applies to an event type.

        A role defined on the type wins over a global role of the same name.

        Raises:
            InvalidRoleError: If the role is defined neither on the type nor globally
        """
        event_type = self._event_types.get(type_slug) if type_slug else None
        if event_type is not None:
            role = event_type.get_role(role_name)
            if role is not None:
                return role

        role = self._global_roles.get(role_name)
        if role is None:
            raise InvalidRoleError(role_name, type_slug)
        return role

    def is_role_defined(self, type_slug: Optional[str], role_name: str) -> bool:
        try:
            self.resolve_role(type_slug, role_name)
        except InvalidRoleError:
            return False
        return True

    def is_permission_defined(self, type_slug: Optional[str], name: str) -> bool:
        """Whether a permission exists on the type or globally."""
        event_type = self._event_types.get(type_slug) if type_slug else None
        if event_type is not None and event_type.has_permission(name):
            return True
        return name in self._global_permissions

    def role_permissions(self, type_slug: Optional[str], role_name: str) -> frozenset[str]:
        """Permissions granted by a role on an event type.

        Raises:
            InvalidRoleError: If the role is not defined for the type
        """
        return frozenset(self.resolve_role(type_slug, role_name).permissions)

    def freeze(self) -> str:
        """Freeze the catalog and compute its fingerprint.

        Returns:
            Catalog fingerprint string

        Raises:
            CatalogFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise CatalogFrozenError("Catalog is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Catalog frozen with {len(self._event_types)} event types, "
                f"{len(self._global_roles)} global roles, fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint from the canonical JSON of the catalog."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"

    def to_dict(self) -> dict:
        """Convert catalog to dictionary representation.

        Event types keep registration order; global entries are sorted.
        """
        return {
            "event_types": [t.to_dict() for t in self._event_types.values()],
            "roles": [
                self._global_roles[name].to_dict() for name in sorted(self._global_roles)
            ],
            "permissions": sorted(self._global_permissions),
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> CatalogStore:
        """Create catalog from dictionary representation (not frozen)."""
        catalog = cls()
        for name in data.get("permissions", []):
            catalog.register_permission(name)
        for role_data in data.get("roles", []):
            catalog.register_role(role_data["name"], role_data.get("permissions", ()))
        for type_data in data.get("event_types", []):
            catalog.add_event_type(EventTypeDef.from_dict(type_data))
        return catalog

    @classmethod
    def from_json(cls, json_str: str) -> CatalogStore:
        return cls.from_dict(json.loads(json_str))
