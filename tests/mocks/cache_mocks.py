"""Mock implementations of the tag-aware cache store.

These mocks record every call made against the ``TagAwareCache`` protocol so
tests can assert exactly what the proxy and the listener asked of the store.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from sqltagcache.cache.base import CacheItem


class MockCacheError(Exception):
    """Failure raised by a mock store configured to fail."""

    pass


@dataclass
class StoredEntry:
    """Entry kept by ``RecordingCache``."""

    value: Any
    tags: list[str]
    ttl: int | None


@dataclass
class RecordingCache:
    """Dict-backed tag-aware cache that records calls.

    Attributes:
        entries: Stored entries keyed by cache key.
        get_calls: Keys passed to ``get``.
        delete_calls: Keys passed to ``delete``.
        invalidate_calls: Tag lists passed to ``invalidate_tags``.
        computed: Items whose callback ran.
        fail_on_delete: Raise from ``delete``.
        fail_on_invalidate: Raise from ``invalidate_tags``.
    """

    entries: dict[str, StoredEntry] = field(default_factory=dict)
    get_calls: list[str] = field(default_factory=list)
    delete_calls: list[str] = field(default_factory=list)
    invalidate_calls: list[list[str]] = field(default_factory=list)
    computed: list[CacheItem] = field(default_factory=list)
    fail_on_delete: bool = False
    fail_on_invalidate: bool = False

    def get(self, key: str, callback: Callable[[CacheItem], Any]) -> Any:
        self.get_calls.append(key)
        if key in self.entries:
            return self.entries[key].value

        item = CacheItem(key)
        value = callback(item)
        self.computed.append(item)
        self.entries[key] = StoredEntry(value=value, tags=list(item.tags), ttl=item.ttl)
        return value

    def delete(self, key: str) -> bool:
        self.delete_calls.append(key)
        if self.fail_on_delete:
            raise MockCacheError("delete failed")
        return self.entries.pop(key, None) is not None

    def invalidate_tags(self, tags: Iterable[str]) -> bool:
        tags = list(tags)
        self.invalidate_calls.append(tags)
        if self.fail_on_invalidate:
            raise MockCacheError("invalidation failed")
        for key in [k for k, entry in self.entries.items() if set(entry.tags) & set(tags)]:
            del self.entries[key]
        return True

    @property
    def touched(self) -> bool:
        """Whether any protocol method was called."""
        return bool(self.get_calls or self.delete_calls or self.invalidate_calls)

    @property
    def last_item(self) -> CacheItem:
        return self.computed[-1]


def create_recording_cache(**kwargs: Any) -> RecordingCache:
    """Create a recording cache store."""
    return RecordingCache(**kwargs)
