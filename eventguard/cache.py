"""
Permission cache for EventGuard.

Memoizes resolved permission sets per (subject, event) with:
- An absolute expiry computed when the entry is written
- Eager invalidation of single entries, whole events, or everything
- Tokens that keep a computation racing an invalidation from storing a
  stale result

The cache holds derived state only; it can always be rebuilt from the
stores and the catalog.

Stale-write detection:
    Every invalidation advances a sequence number. token() returns the
    current sequence and registers the token as outstanding; put() or
    release() retires it. While tokens are outstanding, invalidations
    stamp their key with the new sequence, and a put() whose token
    predates its key's stamp is dropped. Stamps older than every
    outstanding token can no longer reject anything and are discarded,
    so with no token in flight the stamp map is empty.

Invariants:
    - Expired entries are misses (checked lazily on read)
    - invalidate() removes an entry regardless of its TTL
    - A put() carrying a token older than the latest invalidation is dropped
    - Keys are (namespace, event_id, subject_id) tuples; ids never collide
    - Bookkeeping is bounded by live entries and in-flight tokens

How to change safely:
    - Never use the TTL as a consistency mechanism; mutations must invalidate
    - Every token() must be retired by put() or release()
    - Keep NullPermissionCache interface-compatible with PermissionCache
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Optional, Set, Tuple

if TYPE_CHECKING:
    from .config import CacheSettings

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60

# Stamps are pruned once their count exceeds this while tokens are in flight
STAMP_PRUNE_THRESHOLD = 1024

CacheKey = Tuple[str, str, str]

# (epoch, sequence) observed before a computation
CacheToken = Tuple[int, int]


@dataclass(frozen=True)
class CacheEntry:
    """A cached permission set.

    Attributes:
        permissions: Resolved permission names
        expires_at: Absolute expiry (clock seconds)
    """

    permissions: frozenset[str]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class PermissionCache:
    """Process-wide TTL cache of effective permission sets.

    Thread safety:
        All operations run under a single lock; entries are immutable.

    Example:
        >>> cache = PermissionCache(ttl=3600)
        >>> cache.put("user:1", "evt-1", frozenset({"view shop"}))
        >>> cache.get("user:1", "evt-1")
        frozenset({'view shop'})
        >>> cache.invalidate("user:1", "evt-1")
        >>> cache.get("user:1", "evt-1") is None
        True
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        namespace: str = "eventguard.permission.cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Default entry lifetime in seconds
            namespace: First element of every cache key
            clock: Time source in seconds (injectable for tests)
        """
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")
        self.ttl = ttl
        self.namespace = namespace
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._by_event: Dict[str, Set[CacheKey]] = {}
        self._epoch = 0
        self._sequence = 0
        # sequence -> number of outstanding tokens taken at that sequence
        self._outstanding: Dict[int, int] = {}
        # key -> sequence of its latest invalidation, kept only while tokens are out
        self._stamps: Dict[CacheKey, int] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def key_for(self, subject_id: str, event_id: str) -> CacheKey:
        """Namespaced cache key of a (subject, event) pair."""
        return (self.namespace, event_id, subject_id)

    def token(self, subject_id: str, event_id: str) -> CacheToken:
        """Snapshot the invalidation state before computing a value.

        The token must be passed to put() or release() afterwards.
        """
        with self._lock:
            self._outstanding[self._sequence] = self._outstanding.get(self._sequence, 0) + 1
            return (self._epoch, self._sequence)

    def release(self, token: CacheToken) -> None:
        """Retire a token whose computation will not be stored."""
        with self._lock:
            self._retire(token)

    def _retire(self, token: CacheToken) -> None:
        sequence = token[1]
        count = self._outstanding.get(sequence)
        if count is None:
            return
        if count <= 1:
            del self._outstanding[sequence]
        else:
            self._outstanding[sequence] = count - 1

        if not self._outstanding:
            self._stamps.clear()
        elif len(self._stamps) > STAMP_PRUNE_THRESHOLD:
            oldest = min(self._outstanding)
            self._stamps = {k: s for k, s in self._stamps.items() if s > oldest}

    def _is_stale(self, key: CacheKey, token: CacheToken) -> bool:
        epoch, sequence = token
        return epoch != self._epoch or self._stamps.get(key, -1) > sequence

    def _stamp(self, key: CacheKey) -> None:
        self._sequence += 1
        if self._outstanding:
            self._stamps[key] = self._sequence

    def get(self, subject_id: str, event_id: str) -> Optional[frozenset[str]]:
        """Return the cached permission set, or None on a miss."""
        key = self.key_for(subject_id, event_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                self._drop(key, event_id)
                self._misses += 1
                return None
            self._hits += 1
            return entry.permissions

    def put(
        self,
        subject_id: str,
        event_id: str,
        permissions: Iterable[str],
        ttl: Optional[float] = None,
        token: Optional[CacheToken] = None,
    ) -> bool:
        """Store a permission set.

        Args:
            subject_id: Subject identifier
            event_id: Event identifier
            permissions: Resolved permission names
            ttl: Entry lifetime in seconds (default: cache TTL)
            token: Value of token() taken before computing ``permissions``.
                The write is dropped if the key was invalidated since.

        Returns:
            True if stored, False if dropped as stale
        """
        key = self.key_for(subject_id, event_id)
        lifetime = self.ttl if ttl is None else ttl
        with self._lock:
            if token is not None:
                stale = self._is_stale(key, token)
                self._retire(token)
                if stale:
                    logger.debug(
                        "Dropped stale cache write",
                        extra={"subject_id": subject_id, "event_id": event_id},
                    )
                    return False
            self._entries[key] = CacheEntry(
                permissions=frozenset(permissions),
                expires_at=self._clock() + lifetime,
            )
            self._by_event.setdefault(event_id, set()).add(key)
            return True

    def _drop(self, key: CacheKey, event_id: str) -> None:
        self._entries.pop(key, None)
        keys = self._by_event.get(event_id)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._by_event[event_id]

    def invalidate(self, subject_id: str, event_id: str) -> None:
        """Remove one entry immediately, regardless of TTL."""
        key = self.key_for(subject_id, event_id)
        with self._lock:
            self._stamp(key)
            self._drop(key, event_id)

    def invalidate_event(self, event_id: str) -> int:
        """Remove every entry of an event.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = self._by_event.pop(event_id, set())
            for key in keys:
                self._stamp(key)
                self._entries.pop(key, None)
        logger.debug(f"Invalidated {len(keys)} cache entries for event {event_id}")
        return len(keys)

    def invalidate_all(self) -> None:
        """Clear the entire cache (bulk catalog changes)."""
        with self._lock:
            self._entries.clear()
            self._by_event.clear()
            self._stamps.clear()
            self._epoch += 1
        logger.info(f"Permission cache cleared ({self.namespace})")

    def purge_expired(self) -> int:
        """Drop expired entries to bound memory.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [
                (key, event_id)
                for event_id, keys in self._by_event.items()
                for key in keys
                if self._entries[key].is_expired(now)
            ]
            for key, event_id in expired:
                self._drop(key, event_id)
        return len(expired)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"hits": self._hits, "misses": self._misses, "size": len(self._entries)}

    def pending(self) -> dict[str, int]:
        """Sizes of the stale-write bookkeeping (tokens in flight, key stamps)."""
        with self._lock:
            return {"tokens": sum(self._outstanding.values()), "stamps": len(self._stamps)}

    def __len__(self) -> int:
        return len(self._entries)


class NullPermissionCache(PermissionCache):
    """A cache that never stores anything; every read is a miss."""

    def put(
        self,
        subject_id: str,
        event_id: str,
        permissions: Iterable[str],
        ttl: Optional[float] = None,
        token: Optional[CacheToken] = None,
    ) -> bool:
        if token is not None:
            self.release(token)
        return False


def create_permission_cache(
    settings: "CacheSettings",
    clock: Callable[[], float] = time.monotonic,
) -> PermissionCache:
    """Factory function to create the configured permission cache.

    Raises:
        ValueError: If the store is not supported
    """
    from .config import CacheStore

    if settings.store in (CacheStore.DEFAULT, CacheStore.MEMORY):
        return PermissionCache(ttl=settings.expiration_time, namespace=settings.key, clock=clock)
    elif settings.store == CacheStore.NULL:
        return NullPermissionCache(
            ttl=settings.expiration_time, namespace=settings.key, clock=clock
        )
    else:
        raise ValueError(f"Unsupported cache store: {settings.store}")
