"""sqltagcache - Tag-based result caching for SQL connections."""

from sqltagcache.cache import CacheItem, CacheStats, InMemoryTagAwareCache, TagAwareCache
from sqltagcache.config import CacheConfig, load_config
from sqltagcache.connection import (
    Connection,
    ConnectionCacheProxy,
    QueryCacheProfile,
    SQLAlchemyConnection,
    TransactionIsolationLevel,
)
from sqltagcache.exceptions import (
    CacheStoreError,
    CommitFailedRollbackOnlyError,
    ConfigError,
    ConfigValidationError,
    EntityIdentityError,
    InvalidCacheKeyError,
    NoActiveTransactionError,
    NoKeyValueError,
    SQLConnectionError,
    SQLTagCacheError,
    TransactionError,
)
from sqltagcache.keys import build_cache_key
from sqltagcache.listeners import EntityChangeCacheInvalidator
from sqltagcache.policy import (
    AllowAllPolicy,
    CachePolicy,
    CachePolicyChain,
    CallablePolicy,
    TablePolicy,
)
from sqltagcache.result import RowSetCursor, generate_rows
from sqltagcache.tags import extract_tags, get_entity_tags

__version__ = "0.1.0"

__all__ = [
    # Proxy and connection
    "ConnectionCacheProxy",
    "Connection",
    "SQLAlchemyConnection",
    "QueryCacheProfile",
    "TransactionIsolationLevel",
    # Cache stores
    "TagAwareCache",
    "CacheItem",
    "CacheStats",
    "InMemoryTagAwareCache",
    # Policies
    "CachePolicy",
    "CachePolicyChain",
    "AllowAllPolicy",
    "CallablePolicy",
    "TablePolicy",
    # Results
    "RowSetCursor",
    "generate_rows",
    # ORM invalidation
    "EntityChangeCacheInvalidator",
    # Tags and keys
    "extract_tags",
    "get_entity_tags",
    "build_cache_key",
    # Configuration
    "CacheConfig",
    "load_config",
    # Exceptions
    "SQLTagCacheError",
    "CacheStoreError",
    "InvalidCacheKeyError",
    "EntityIdentityError",
    "SQLConnectionError",
    "TransactionError",
    "NoActiveTransactionError",
    "CommitFailedRollbackOnlyError",
    "NoKeyValueError",
    "ConfigError",
    "ConfigValidationError",
]
