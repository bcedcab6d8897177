"""
Shared fixtures for EventGuard tests.
"""

import tempfile

import pytest

from eventguard.assignments import RoleAssignmentTable
from eventguard.cache import PermissionCache
from eventguard.catalog import DEFAULT_EVENT_TYPES, CatalogStore
from eventguard.events import EventRegistry
from eventguard.resolver import PermissionResolver
from eventguard.store import InMemoryStore, SqliteStore


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    """Frozen catalog with the default event types."""
    catalog = CatalogStore()
    catalog.load_event_types(DEFAULT_EVENT_TYPES)
    catalog.freeze()
    return catalog


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(params=["memory", "sqlite"])
def store(request, data_dir, catalog):
    """Every storage backend, initialized with the default catalog."""
    if request.param == "memory":
        backend = InMemoryStore()
    else:
        backend = SqliteStore(f"{data_dir}/guard.db", wal_mode=False)
    backend.initialize()
    backend.sync_catalog(catalog)
    return backend


@pytest.fixture
def cache(clock):
    return PermissionCache(ttl=3600, clock=clock)


@pytest.fixture
def events(catalog, store):
    return EventRegistry(catalog, store)


@pytest.fixture
def assignments(catalog, events, store, cache):
    return RoleAssignmentTable(catalog, events, store, cache)


@pytest.fixture
def resolver(catalog, events, assignments, cache):
    return PermissionResolver(catalog, events, assignments, cache)


@pytest.fixture
def shop(events):
    """An active shop owned by user:1."""
    return events.create_event("shop", "Acme", "acme", "user:1")
