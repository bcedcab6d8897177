"""
EventGuard Test Suite.

This package contains:
- unit/: Unit tests per component, run against every storage backend
- integration/: Integration tests of the EventGuard facade (SQLite, in-memory)
"""
