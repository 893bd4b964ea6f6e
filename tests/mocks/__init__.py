"""Mock implementations for cache store testing.

This module provides recording fakes that match the ``TagAwareCache``
protocol, allowing tests to observe every call without a real store.
"""

from tests.mocks.cache_mocks import (
    MockCacheError,
    RecordingCache,
    StoredEntry,
    create_recording_cache,
)

__all__ = [
    "MockCacheError",
    "RecordingCache",
    "StoredEntry",
    "create_recording_cache",
]
