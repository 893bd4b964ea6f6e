"""Tag-aware cache stores.

- base: the ``TagAwareCache`` contract and ``CacheItem`` passed to compute
  callbacks
- memory: thread-safe in-memory store with single-flight computation
"""

from sqltagcache.cache.base import CacheItem, TagAwareCache, is_tag_aware
from sqltagcache.cache.memory import CacheStats, InMemoryTagAwareCache

__all__ = [
    "CacheItem",
    "CacheStats",
    "InMemoryTagAwareCache",
    "TagAwareCache",
    "is_tag_aware",
]
