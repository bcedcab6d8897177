"""
Integration tests for the EventGuard facade.

Tests the complete flow from settings through the catalog, store, cache
and resolver:
- Shop walkthrough on both storage backends
- Owner role on event creation
- Soft deletion through the facade
- Concurrent mutations and checks
- Logging setup
"""

import io
import json
import logging
import threading

import pytest

from eventguard import EventGuard, GuardSettings
from eventguard.cache import NullPermissionCache
from eventguard.errors import AccessDeniedError, InvalidRoleError, NotFoundError
from eventguard.logging_config import setup_logging
from eventguard.store import InMemoryStore, SqliteStore


@pytest.fixture(params=["memory", "sqlite"])
def guard(request, data_dir):
    """A guard on each storage backend."""
    settings = GuardSettings(
        storage={
            "backend": request.param,
            "database_path": f"{data_dir}/guard.db",
            "wal_mode": False,
        }
    )
    return EventGuard(settings)


class TestShopWalkthrough:
    """End-to-end permission checks on a shop."""

    def test_staff_then_manager(self, guard):
        shop = guard.create_event("shop", "Acme", "acme", "user:1")

        guard.assign_role("user:2", shop.event_id, "staff")
        assert guard.has_permission("user:2", shop.event_id, "manage products") is False

        guard.assign_role("user:2", shop.event_id, "manager")
        assert guard.has_permission("user:2", shop.event_id, "manage products") is True

        guard.revoke_role("user:2", shop.event_id, "manager")
        assert guard.has_permission("user:2", shop.event_id, "manage products") is False
        assert guard.has_permission("user:2", shop.event_id, "manage orders") is True

    def test_owner_gets_owner_role(self, guard):
        shop = guard.create_event("shop", "Acme", "acme", "user:1")

        assert guard.roles_of("user:1", shop.event_id) == {"owner"}
        assert guard.effective_permissions("user:1", shop.event_id) == set(
            guard.catalog.get_event_type("shop").permissions
        )

    def test_role_from_another_type_rejected(self, guard):
        shop = guard.create_event("shop", "Acme", "acme", "user:1")

        with pytest.raises(InvalidRoleError):
            guard.assign_role("user:2", shop.event_id, "moderator")

    def test_deactivate_denies_everyone(self, guard):
        shop = guard.create_event("shop", "Acme", "acme", "user:1")
        assert guard.has_permission("user:1", shop.event_id, "view shop")

        guard.deactivate(shop.event_id)

        assert guard.has_permission("user:1", shop.event_id, "view shop") is False
        with pytest.raises(NotFoundError):
            guard.get_event(shop.event_id)
        assert guard.get_event(shop.event_id, include_deleted=True).is_deleted

    def test_authorize(self, guard):
        shop = guard.create_event("shop", "Acme", "acme", "user:1")
        guard.assign_role("user:3", shop.event_id, "customer")

        guard.authorize("user:3", shop.event_id, "view shop")
        with pytest.raises(AccessDeniedError):
            guard.authorize("user:3", shop.event_id, "manage orders")
        assert guard.has_any_permission("user:3", shop.event_id, ["edit shop", "view shop"])


class TestConstruction:
    """Tests for wiring from settings."""

    def test_backend_selection(self, data_dir):
        memory = EventGuard(GuardSettings())
        sqlite = EventGuard(
            GuardSettings(storage={"backend": "sqlite", "database_path": f"{data_dir}/g.db"})
        )

        assert isinstance(memory.store, InMemoryStore)
        assert isinstance(sqlite.store, SqliteStore)
        assert memory.catalog.frozen and sqlite.catalog.frozen

    def test_owner_role_can_be_disabled(self):
        guard = EventGuard(GuardSettings(assign_owner_role=False))

        shop = guard.create_event("shop", "Acme", "acme", "user:1")

        assert guard.roles_of("user:1", shop.event_id) == frozenset()
        assert guard.has_permission("user:1", shop.event_id, "view shop") is False

    def test_null_cache_still_answers(self):
        guard = EventGuard(GuardSettings(cache={"store": "null"}))
        shop = guard.create_event("shop", "Acme", "acme", "user:1")

        assert isinstance(guard.cache, NullPermissionCache)
        assert guard.has_permission("user:1", shop.event_id, "delete shop")

    def test_custom_event_types(self):
        guard = EventGuard(
            GuardSettings(
                event_types={
                    "board": {
                        "name": "Board",
                        "roles": ["owner", "viewer"],
                        "permissions": ["view", "post"],
                        "grants": {"owner": ["view", "post"], "viewer": ["view"]},
                    }
                }
            )
        )
        board = guard.create_event("board", "Notices", "notices", "user:1")
        guard.assign_role("user:2", board.event_id, "viewer")

        assert guard.effective_permissions("user:2", board.event_id) == {"view"}

    def test_sqlite_state_survives_restart(self, data_dir):
        settings = GuardSettings(
            storage={"backend": "sqlite", "database_path": f"{data_dir}/g.db"}
        )
        first = EventGuard(settings)
        shop = first.create_event("shop", "Acme", "acme", "user:1")
        first.assign_role("user:2", shop.event_id, "manager")

        second = EventGuard(settings)

        assert second.has_permission("user:2", shop.event_id, "manage products")


class TestConcurrency:
    """Concurrent mutations never leave a stale cached answer behind."""

    def test_mutations_and_checks(self, guard):
        shop = guard.create_event("shop", "Acme", "acme", "user:1")
        subjects = [f"user:{n}" for n in range(10, 16)]
        errors = []

        def mutate(subject_id):
            try:
                for _ in range(20):
                    guard.assign_role(subject_id, shop.event_id, "manager")
                    guard.revoke_role(subject_id, shop.event_id, "manager")
                    guard.assign_role(subject_id, shop.event_id, "staff")
            except Exception as e:
                errors.append(e)

        def check(subject_id):
            try:
                for _ in range(40):
                    guard.has_permission(subject_id, shop.event_id, "manage products")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=mutate, args=(s,)) for s in subjects]
        threads += [threading.Thread(target=check, args=(s,)) for s in subjects]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        for subject_id in subjects:
            assert guard.effective_permissions(
                subject_id, shop.event_id
            ) == guard.resolver.compute_permissions(subject_id, shop.event_id)
            assert guard.roles_of(subject_id, shop.event_id) == {"staff"}
            assert not guard.has_permission(subject_id, shop.event_id, "manage products")


class TestLogging:
    """Tests for setup_logging()."""

    @pytest.fixture
    def package_logger(self):
        logger = logging.getLogger("eventguard")
        level, handlers, propagate = logger.level, list(logger.handlers), logger.propagate
        yield logger
        logger.setLevel(level)
        logger.handlers = handlers
        logger.propagate = propagate

    def test_json_format(self, package_logger):
        setup_logging(GuardSettings(log_format="json", log_level="DEBUG"))

        stream = io.StringIO()
        package_logger.handlers[0].setStream(stream)
        logging.getLogger("eventguard.events").info("Deactivated event", extra={"event_id": "e1"})

        record = json.loads(stream.getvalue())
        assert record["message"] == "Deactivated event"
        assert record["event_id"] == "e1"
        assert package_logger.level == logging.DEBUG

    def test_text_format(self, package_logger):
        setup_logging(GuardSettings(log_level="WARNING"))

        assert len(package_logger.handlers) == 1
        assert package_logger.propagate is False
        assert package_logger.level == logging.WARNING
