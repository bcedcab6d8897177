"""
Storage backends for EventGuard.

This module provides a pluggable persistence interface supporting:
- SQLite (durable, table names from configuration)
- In-memory (tests and rebuild-at-startup deployments)

Invariants:
    - Stores are the authority for events and assignments
    - Slug uniqueness is enforced by the store, soft-deleted rows included
    - Backend failures surface as StoreFailureError

How to change safely:
    - New backends must implement the GuardStore protocol
    - Run the shared store test-suite against every backend
"""

from .base import (
    AssignmentStore,
    Event,
    EventStore,
    GuardStore,
    Holdings,
    create_store,
    now_ms,
)
from .memory import InMemoryStore
from .sqlite import SqliteStore

__all__ = [
    # Protocols and records
    "EventStore",
    "AssignmentStore",
    "GuardStore",
    "Event",
    "Holdings",
    "now_ms",
    # Factory
    "create_store",
    # Implementations
    "InMemoryStore",
    "SqliteStore",
]
