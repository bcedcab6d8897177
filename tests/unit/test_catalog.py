"""
Unit tests for the catalog store.

Tests cover:
- Event type registration and lookup
- Registration order of list_event_types()
- Global roles and permissions
- Role resolution for an event type
- Freezing and fingerprints
"""

import pytest

from eventguard.catalog import DEFAULT_EVENT_TYPES, CatalogStore, EventTypeDef, RoleDef
from eventguard.errors import (
    CatalogFrozenError,
    DuplicateSlugError,
    InvalidPermissionError,
    InvalidRoleError,
    NotFoundError,
)


def register_shop(catalog: CatalogStore) -> EventTypeDef:
    return catalog.register_event_type(
        "shop",
        "Shop",
        "E-commerce shop",
        roles=["owner", "manager", "staff", "customer"],
        permissions=["view shop", "manage products"],
        grants={
            "owner": ["view shop", "manage products"],
            "manager": ["view shop", "manage products"],
            "staff": ["view shop"],
        },
    )


class TestEventTypes:
    """Tests for event type registration."""

    def test_register_and_get(self):
        """Registered type can be fetched by slug."""
        catalog = CatalogStore()
        shop = register_shop(catalog)

        assert catalog.get_event_type("shop") == shop
        assert shop.role_names == ("owner", "manager", "staff", "customer")
        assert shop.owner_role.name == "owner"

    def test_duplicate_slug_raises(self):
        """Registering the same slug twice fails."""
        catalog = CatalogStore()
        register_shop(catalog)

        with pytest.raises(DuplicateSlugError, match="'shop' already registered"):
            register_shop(catalog)

    def test_get_unknown_raises_not_found(self):
        """Unknown slug raises NotFoundError."""
        catalog = CatalogStore()

        with pytest.raises(NotFoundError):
            catalog.get_event_type("missing")

    def test_list_is_ordered_and_restartable(self):
        """Types come back in registration order, on every iteration."""
        catalog = CatalogStore()
        catalog.load_event_types(DEFAULT_EVENT_TYPES)

        view = catalog.list_event_types()

        first = [t.slug for t in view]
        second = [t.slug for t in view]
        assert first == ["shop", "forum", "announcement", "group"]
        assert second == first
        assert len(view) == 4

    def test_grants_default_to_owner_role(self):
        """Without grants, the first role gets every permission."""
        catalog = CatalogStore()
        board = catalog.register_event_type(
            "board", "Board", roles=["owner", "viewer"], permissions=["view", "post"]
        )

        assert set(board.get_role("owner").permissions) == {"view", "post"}
        assert board.get_role("viewer").permissions == ()

    def test_grant_of_undefined_permission_raises(self):
        """A role cannot grant a permission the type does not define."""
        catalog = CatalogStore()

        with pytest.raises(InvalidPermissionError):
            catalog.register_event_type(
                "board",
                "Board",
                roles=["owner"],
                permissions=["view"],
                grants={"owner": ["view", "fly"]},
            )

    def test_grant_to_undeclared_role_raises(self):
        """Grants may only name declared roles."""
        catalog = CatalogStore()

        with pytest.raises(ValueError, match="undeclared roles"):
            catalog.register_event_type(
                "board", "Board", roles=["owner"], permissions=["view"], grants={"ghost": ["view"]}
            )

    def test_duplicate_role_names_rejected(self):
        """Role names are unique within a type."""
        with pytest.raises(ValueError, match="Duplicate role names"):
            EventTypeDef(
                slug="x",
                name="X",
                roles=(RoleDef("owner", "x"), RoleDef("owner", "x")),
            )

    def test_duplicate_permission_names_rejected(self):
        """Permission names are unique within a type."""
        with pytest.raises(ValueError, match="Duplicate permission names"):
            EventTypeDef(slug="x", name="X", permissions=("view", "view"))


class TestRoleResolution:
    """Tests for role and permission lookups."""

    @pytest.fixture
    def catalog(self):
        catalog = CatalogStore()
        catalog.register_permission("impersonate")
        catalog.register_role("support", ["impersonate"])
        register_shop(catalog)
        return catalog

    def test_type_role_permissions(self, catalog):
        """Role permissions come from the type's grants."""
        assert catalog.role_permissions("shop", "manager") == {"view shop", "manage products"}
        assert catalog.role_permissions("shop", "customer") == frozenset()

    def test_global_role_resolves_for_any_type(self, catalog):
        """Global roles apply to every event type."""
        role = catalog.resolve_role("shop", "support")

        assert role.is_global
        assert catalog.role_permissions("shop", "support") == {"impersonate"}

    def test_type_role_shadows_global_role(self):
        """A type-scoped role wins over a global role of the same name."""
        catalog = CatalogStore()
        catalog.register_role("owner")
        register_shop(catalog)

        assert catalog.resolve_role("shop", "owner").scope == "shop"

    def test_unknown_role_raises(self, catalog):
        """Undefined role raises InvalidRoleError."""
        with pytest.raises(InvalidRoleError):
            catalog.resolve_role("shop", "moderator")

        assert catalog.is_role_defined("shop", "staff") is True
        assert catalog.is_role_defined("shop", "moderator") is False

    def test_permission_defined(self, catalog):
        """Permissions resolve on the type or globally."""
        assert catalog.is_permission_defined("shop", "view shop")
        assert catalog.is_permission_defined("shop", "impersonate")
        assert not catalog.is_permission_defined("shop", "view forum")

    def test_global_role_requires_global_permissions(self, catalog):
        """Global roles cannot grant type-scoped permissions."""
        with pytest.raises(InvalidPermissionError):
            catalog.register_role("auditor", ["view shop"])

    def test_duplicate_global_role_raises(self, catalog):
        with pytest.raises(DuplicateSlugError):
            catalog.register_role("support")


class TestFreeze:
    """Tests for freezing and fingerprints."""

    def test_freeze_returns_fingerprint(self):
        catalog = CatalogStore()
        register_shop(catalog)

        fingerprint = catalog.freeze()

        assert catalog.frozen is True
        assert fingerprint.startswith("sha256:")
        assert catalog.fingerprint == fingerprint

    def test_register_after_freeze_raises(self):
        catalog = CatalogStore()
        catalog.freeze()

        with pytest.raises(CatalogFrozenError):
            register_shop(catalog)
        with pytest.raises(CatalogFrozenError):
            catalog.register_permission("impersonate")

    def test_freeze_twice_raises(self):
        catalog = CatalogStore()
        catalog.freeze()

        with pytest.raises(CatalogFrozenError):
            catalog.freeze()

    def test_round_trip_keeps_fingerprint(self):
        """from_dict(to_dict()) rebuilds an identical catalog."""
        catalog = CatalogStore()
        catalog.register_permission("impersonate")
        catalog.register_role("support", ["impersonate"])
        catalog.load_event_types(DEFAULT_EVENT_TYPES)

        rebuilt = CatalogStore.from_json(catalog.to_json())

        assert rebuilt.freeze() == catalog.freeze()

    def test_fingerprint_changes_with_catalog(self):
        first = CatalogStore()
        register_shop(first)
        second = CatalogStore()
        register_shop(second)
        second.register_permission("impersonate")

        assert first.freeze() != second.freeze()


class TestDefaults:
    """Tests for the shipped default catalog."""

    def test_default_types_load(self):
        catalog = CatalogStore()
        catalog.load_event_types(DEFAULT_EVENT_TYPES)

        forum = catalog.get_event_type("forum")
        assert forum.role_names == ("owner", "moderator", "member", "guest")
        assert len(forum.permissions) == 13

    def test_owner_roles_grant_everything(self):
        catalog = CatalogStore()
        catalog.load_event_types(DEFAULT_EVENT_TYPES)

        for event_type in catalog.list_event_types():
            owner = event_type.owner_role
            assert owner.name == "owner"
            assert set(owner.permissions) == set(event_type.permissions)

    def test_manage_products_only_for_owner_and_manager(self):
        catalog = CatalogStore()
        catalog.load_event_types(DEFAULT_EVENT_TYPES)

        holders = {
            role.name
            for role in catalog.get_event_type("shop").roles
            if "manage products" in role.permissions
        }
        assert holders == {"owner", "manager"}
