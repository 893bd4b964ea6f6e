"""SQL connections.

- base: the ``Connection`` contract, ``QueryCacheProfile`` and isolation
  levels
- database: ``SQLAlchemyConnection``, the contract over a SQLAlchemy engine
- proxy: ``ConnectionCacheProxy``, the tag-based result cache
"""

from sqltagcache.connection.base import (
    Connection,
    Params,
    QueryCacheProfile,
    TransactionIsolationLevel,
    Types,
)
from sqltagcache.connection.database import SQLAlchemyConnection, resolve_type
from sqltagcache.connection.proxy import ConnectionCacheProxy

__all__ = [
    "Connection",
    "ConnectionCacheProxy",
    "Params",
    "QueryCacheProfile",
    "SQLAlchemyConnection",
    "TransactionIsolationLevel",
    "Types",
    "resolve_type",
]
