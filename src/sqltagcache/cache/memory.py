"""In-memory tag-aware cache store.

Keeps entries in process memory. Useful for tests, development and single
process deployments. Entries are lost when the process exits.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict, defaultdict
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqltagcache.cache.base import CacheItem
from sqltagcache.exceptions import InvalidCacheKeyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheStats:
    """Cache statistics.

    Thread-safe counters updated by the store.
    """

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    hits: int = 0
    misses: int = 0
    writes: int = 0
    deletes: int = 0
    invalidated_tags: int = 0
    invalidated_entries: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups served from cache."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def record(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate, 4),
            "writes": self.writes,
            "deletes": self.deletes,
            "invalidated_tags": self.invalidated_tags,
            "invalidated_entries": self.invalidated_entries,
            "evictions": self.evictions,
            "expirations": self.expirations,
        }


@dataclass
class _Entry:
    value: Any
    tags: tuple[str, ...]
    expires_at: float | None


class InMemoryTagAwareCache:
    """Thread-safe in-memory implementation of ``TagAwareCache``.

    Concurrent misses on the same key are serialized by a per-key lock, so
    the compute callback runs once and the other callers read its result.
    A callback that raises leaves no entry behind.

    Example:
        >>> cache = InMemoryTagAwareCache()
        >>> cache.get("k", lambda item: item.tag(["users"]) and 42)
        42
        >>> cache.invalidate_tags(["users"])
        True
        >>> "k" in cache
        False
    """

    def __init__(
        self,
        max_entries: int = 0,
        default_ttl: int | None = None,
        deep_copy: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the store.

        Args:
            max_entries: Maximum number of entries (0 for unlimited). The
                least recently used entry is evicted first.
            default_ttl: Lifetime for items whose callback sets none
                (None for no expiry).
            deep_copy: Whether to deep copy values on store and retrieve.
            clock: Monotonic time source in seconds.
        """
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._deep_copy = deep_copy
        self._clock = clock

        self._lock = threading.RLock()
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._tag_index: dict[str, set[str]] = defaultdict(set)
        self._key_locks: dict[str, tuple[threading.Lock, int]] = {}
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_key(key: str) -> None:
        if not isinstance(key, str) or not key:
            raise InvalidCacheKeyError(key)

    def _copy(self, value: Any) -> Any:
        return deepcopy(value) if self._deep_copy else value

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        with self._lock:
            lock, waiters = self._key_locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._key_locks[key] = (lock, waiters + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._lock:
                lock, waiters = self._key_locks[key]
                if waiters <= 1:
                    del self._key_locks[key]
                else:
                    self._key_locks[key] = (lock, waiters - 1)

    def _unindex(self, key: str, entry: _Entry) -> None:
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tag_index[tag]

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._unindex(key, entry)
        return True

    def _lookup(self, key: str) -> tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            if entry.expires_at is not None and self._clock() >= entry.expires_at:
                self._remove(key)
                self._stats.record("expirations")
                return False, None
            self._entries.move_to_end(key)
            return True, self._copy(entry.value)

    def _store(self, item: CacheItem, value: Any) -> None:
        ttl = item.ttl if item.ttl is not None else self._default_ttl
        if ttl is not None and ttl <= 0:
            # Expires immediately; nothing to keep
            return

        expires_at = None if ttl is None else self._clock() + ttl
        entry = _Entry(value=self._copy(value), tags=tuple(item.tags), expires_at=expires_at)

        with self._lock:
            self._remove(item.key)
            self._entries[item.key] = entry
            for tag in entry.tags:
                self._tag_index[tag].add(item.key)
            self._stats.record("writes")

            while self._max_entries > 0 and len(self._entries) > self._max_entries:
                oldest_key, oldest = self._entries.popitem(last=False)
                self._unindex(oldest_key, oldest)
                self._stats.record("evictions")

    # -------------------------------------------------------------------------
    # TagAwareCache
    # -------------------------------------------------------------------------

    def get(self, key: str, callback: Callable[[CacheItem], T]) -> T:
        """Get a value, computing it with ``callback`` on a miss.

        Args:
            key: Cache key.
            callback: Called with a fresh ``CacheItem`` when the key is not
                cached. Its return value is stored and returned.

        Returns:
            The cached or freshly computed value.

        Raises:
            InvalidCacheKeyError: If the key is empty or not a string.
        """
        self._check_key(key)

        hit, value = self._lookup(key)
        if hit:
            self._stats.record("hits")
            return value

        with self._key_lock(key):
            # Another caller may have filled the entry while we waited
            hit, value = self._lookup(key)
            if hit:
                self._stats.record("hits")
                return value

            self._stats.record("misses")
            item = CacheItem(key)
            value = callback(item)
            self._store(item, value)
            return value

    def delete(self, key: str) -> bool:
        self._check_key(key)
        with self._lock:
            removed = self._remove(key)
        if removed:
            self._stats.record("deletes")
        return removed

    def invalidate_tags(self, tags: Iterable[str]) -> bool:
        """Drop every entry tagged with any of ``tags``.

        Unknown tags are ignored.
        """
        removed = 0
        tags = list(tags)
        with self._lock:
            for tag in tags:
                for key in list(self._tag_index.get(tag, ())):
                    if self._remove(key):
                        removed += 1
        self._stats.record("invalidated_tags", len(tags))
        self._stats.record("invalidated_entries", removed)
        logger.debug("Invalidated %d cache entries for tags %s", removed, tags)
        return True

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tag_index.clear()

    def keys_for_tag(self, tag: str) -> set[str]:
        """Keys currently tagged with ``tag``."""
        with self._lock:
            return set(self._tag_index.get(tag, ()))

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            return entry.expires_at is None or self._clock() < entry.expires_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
