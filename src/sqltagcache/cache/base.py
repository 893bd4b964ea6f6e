"""Tag-aware cache store contract.

The proxy treats the cache store as an external service. It needs three
operations:

- ``get(key, callback)``: return the cached value for ``key``, or call
  ``callback(item)`` to compute it. The callback receives a ``CacheItem``
  used to attach tags and a lifetime to the new entry. Stores must run at
  most one callback per key at a time, and must not keep an entry when the
  callback raises.
- ``delete(key)``: drop one entry.
- ``invalidate_tags(tags)``: drop every entry carrying any of ``tags``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


class CacheItem:
    """Metadata of an entry being computed.

    Attributes:
        key: Cache key of the entry.
        tags: Invalidation tags attached so far.
        ttl: Lifetime in seconds, or None for no expiry.
    """

    def __init__(self, key: str) -> None:
        self.key = key
        self.tags: list[str] = []
        self.ttl: int | None = None

    def tag(self, tags: str | Iterable[str]) -> "CacheItem":
        """Attach one or more tags."""
        if isinstance(tags, str):
            tags = [tags]
        for tag in tags:
            if tag not in self.tags:
                self.tags.append(tag)
        return self

    def expires_after(self, seconds: int | None) -> "CacheItem":
        """Set the lifetime in seconds (None disables expiry)."""
        self.ttl = seconds
        return self

    def __repr__(self) -> str:
        return f"CacheItem(key={self.key!r}, tags={self.tags!r}, ttl={self.ttl!r})"


@runtime_checkable
class TagAwareCache(Protocol):
    """Protocol for tag-aware cache stores."""

    def get(self, key: str, callback: Callable[[CacheItem], T]) -> T:
        """Get a cached value, computing and storing it on a miss."""
        ...

    def delete(self, key: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        ...

    def invalidate_tags(self, tags: Iterable[str]) -> bool:
        """Invalidate every entry tagged with any of ``tags``."""
        ...


def is_tag_aware(obj: Any) -> bool:
    """Check whether ``obj`` satisfies the tag-aware cache contract."""
    return isinstance(obj, TagAwareCache)
