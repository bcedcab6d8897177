"""
Unit tests for the permission cache.

Tests cover:
- Hit/miss behaviour
- TTL expiry (lazy, on read)
- Invalidation (single, per event, all)
- Stale write rejection via tokens
- Factory and null cache
- Bounded stale-write bookkeeping
- Keys that cannot collide across ids
"""

import pytest

from eventguard.cache import NullPermissionCache, PermissionCache, create_permission_cache
from eventguard.config import CacheSettings, CacheStore


class TestPermissionCache:
    """Tests for PermissionCache."""

    def test_miss_then_hit(self, cache):
        assert cache.get("user:1", "evt-1") is None

        cache.put("user:1", "evt-1", {"view shop"})

        assert cache.get("user:1", "evt-1") == frozenset({"view shop"})
        assert cache.stats() == {"hits": 1, "misses": 1, "size": 1}

    def test_empty_set_is_a_hit(self, cache):
        """An empty permission set is cached, not confused with a miss."""
        cache.put("user:1", "evt-1", set())

        assert cache.get("user:1", "evt-1") == frozenset()

    def test_entry_expires_after_ttl(self, cache, clock):
        """Expiry is computed at write time and checked on read."""
        cache.put("user:1", "evt-1", {"view shop"})

        clock.advance(3599)
        assert cache.get("user:1", "evt-1") is not None

        clock.advance(1)
        assert cache.get("user:1", "evt-1") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self, cache, clock):
        cache.put("user:1", "evt-1", {"view shop"}, ttl=10)

        clock.advance(10)

        assert cache.get("user:1", "evt-1") is None

    def test_invalidate_ignores_ttl(self, cache):
        cache.put("user:1", "evt-1", {"view shop"})

        cache.invalidate("user:1", "evt-1")

        assert cache.get("user:1", "evt-1") is None

    def test_invalidate_missing_entry_is_noop(self, cache):
        cache.invalidate("user:1", "evt-1")

        assert len(cache) == 0

    def test_invalidate_event(self, cache):
        """Only entries of the given event are removed."""
        cache.put("user:1", "evt-1", {"a"})
        cache.put("user:2", "evt-1", {"b"})
        cache.put("user:1", "evt-2", {"c"})

        removed = cache.invalidate_event("evt-1")

        assert removed == 2
        assert cache.get("user:1", "evt-1") is None
        assert cache.get("user:2", "evt-1") is None
        assert cache.get("user:1", "evt-2") == frozenset({"c"})

    def test_invalidate_all(self, cache):
        cache.put("user:1", "evt-1", {"a"})
        cache.put("user:2", "evt-2", {"b"})

        cache.invalidate_all()

        assert len(cache) == 0
        assert cache.get("user:2", "evt-2") is None

    def test_purge_expired(self, cache, clock):
        cache.put("user:1", "evt-1", {"a"}, ttl=5)
        cache.put("user:2", "evt-1", {"b"}, ttl=50)

        clock.advance(10)

        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_stale_token_write_is_dropped(self, cache):
        """A result computed before an invalidation is not stored."""
        token = cache.token("user:1", "evt-1")
        cache.invalidate("user:1", "evt-1")

        stored = cache.put("user:1", "evt-1", {"manage products"}, token=token)

        assert stored is False
        assert cache.get("user:1", "evt-1") is None

    def test_token_survives_unrelated_invalidation(self, cache):
        token = cache.token("user:1", "evt-1")
        cache.invalidate("user:2", "evt-1")

        assert cache.put("user:1", "evt-1", {"view shop"}, token=token) is True

    def test_invalidate_all_outdates_tokens(self, cache):
        token = cache.token("user:1", "evt-1")
        cache.invalidate_all()

        assert cache.put("user:1", "evt-1", {"view shop"}, token=token) is False

    def test_keys_are_namespaced(self, clock):
        cache = PermissionCache(namespace="tenant-a", clock=clock)

        assert cache.key_for("user:1", "evt-1") == ("tenant-a", "evt-1", "user:1")

    def test_colon_bearing_ids_do_not_collide(self, cache):
        """Ids containing the separator map to distinct entries."""
        cache.put("user:2", "evt-1", {"manage products"})

        assert cache.get("2", "evt-1:user") is None
        assert cache.key_for("user:2", "evt-1") != cache.key_for("2", "evt-1:user")

        cache.put("2", "evt-1:user", set())
        cache.invalidate("2", "evt-1:user")

        assert cache.get("user:2", "evt-1") == frozenset({"manage products"})

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            PermissionCache(ttl=0)


class TestCacheFactory:
    """Tests for create_permission_cache."""

    def test_default_store(self):
        cache = create_permission_cache(CacheSettings(expiration_time=60, key="ns"))

        assert type(cache) is PermissionCache
        assert cache.ttl == 60
        assert cache.namespace == "ns"

    def test_null_store_never_stores(self):
        cache = create_permission_cache(CacheSettings(store=CacheStore.NULL))

        assert isinstance(cache, NullPermissionCache)
        assert cache.put("user:1", "evt-1", {"a"}) is False
        assert cache.get("user:1", "evt-1") is None


class TestBookkeeping:
    """Stale-write tracking stays bounded."""

    def test_invalidations_without_tokens_leave_nothing_behind(self, cache):
        for n in range(1000):
            cache.invalidate(f"user:{n}", "evt-1")

        cache.purge_expired()

        assert len(cache) == 0
        assert cache.pending() == {"tokens": 0, "stamps": 0}

    def test_stamps_cleared_once_tokens_retire(self, cache):
        token = cache.token("user:1", "evt-1")
        for n in range(100):
            cache.invalidate(f"user:{n}", "evt-1")

        assert cache.pending() == {"tokens": 1, "stamps": 100}

        assert cache.put("user:1", "evt-1", {"view shop"}, token=token) is False
        assert cache.pending() == {"tokens": 0, "stamps": 0}

    def test_release_retires_token(self, cache):
        token = cache.token("user:1", "evt-1")
        cache.invalidate("user:2", "evt-1")

        cache.release(token)

        assert cache.pending() == {"tokens": 0, "stamps": 0}

    def test_event_invalidation_with_token_in_flight(self, cache):
        """Stamps from invalidate_event still reject a racing write."""
        cache.put("user:1", "evt-1", {"view shop"})
        token = cache.token("user:1", "evt-1")

        assert cache.invalidate_event("evt-1") == 1

        assert cache.put("user:1", "evt-1", {"view shop"}, token=token) is False
        assert cache.get("user:1", "evt-1") is None
        assert cache.pending()["stamps"] == 0

    def test_old_stamps_pruned_while_tokens_in_flight(self, cache):
        """Stamps older than every outstanding token are discarded."""
        first = cache.token("user:0", "evt-1")
        for n in range(2000):
            cache.invalidate(f"user:{n}", "evt-1")
        second = cache.token("user:x", "evt-1")

        cache.put("user:0", "evt-1", {"a"}, token=first)

        assert cache.pending() == {"tokens": 1, "stamps": 0}
        assert cache.put("user:x", "evt-1", {"b"}, token=second) is True

    def test_null_cache_retires_tokens(self):
        cache = NullPermissionCache()
        token = cache.token("user:1", "evt-1")

        cache.put("user:1", "evt-1", {"a"}, token=token)

        assert cache.pending() == {"tokens": 0, "stamps": 0}
