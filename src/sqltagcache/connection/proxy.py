"""Result-caching proxy around a SQL connection.

Reads are served through a tag-aware cache store. Every cached entry is
tagged with the tables its SQL text references, and writes going through the
proxy invalidate the tags of the tables they touch.

Example:
    >>> from sqltagcache import ConnectionCacheProxy, InMemoryTagAwareCache, SQLAlchemyConnection
    >>>
    >>> conn = ConnectionCacheProxy(SQLAlchemyConnection("sqlite:///:memory:"), InMemoryTagAwareCache())
    >>> conn.fetch_all_associative("SELECT * FROM users WHERE active = ?", [1])   # hits the database
    >>> conn.fetch_all_associative("SELECT * FROM users WHERE active = ?", [1])   # served from cache
    >>> conn.update("users", {"active": 0}, {"id": 1})                           # drops users, users_1

Only the SQL text is inspected, and only by keyword heuristics (see
``sqltagcache.tags``). Writes that bypass the proxy are not seen; use
``EntityChangeCacheInvalidator`` for ORM writes. The proxy does not consider
transaction state, so reads inside an open transaction are cached like any
other.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any, TypeVar

from sqltagcache.config import CacheConfig
from sqltagcache.connection.base import (
    Connection,
    Params,
    QueryCacheProfile,
    TransactionIsolationLevel,
    Types,
)
from sqltagcache.keys import build_cache_key
from sqltagcache.policy import CachePolicy, CachePolicyChain
from sqltagcache.result import RowSetCursor, generate_rows
from sqltagcache.tags import extract_tags, write_tags

if TYPE_CHECKING:
    from sqltagcache.cache.base import CacheItem, TagAwareCache

T = TypeVar("T")


class ConnectionCacheProxy:
    """Connection decorator that caches reads and invalidates on writes.

    A read is cached only when the configuration's kill switch is on and the
    policy chain approves the query. The result is stored in a canonical,
    fully materialized form (lists and dicts) so it can be replayed any
    number of times.

    Writes always invalidate, even when caching is switched off, so that
    switching it back on never serves stale entries written meanwhile.

    Every member of the connection contract that is not a read or a write
    is forwarded unchanged.
    """

    def __init__(
        self,
        inner: Connection,
        cache: "TagAwareCache",
        policy: CachePolicy | None = None,
        config: CacheConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the proxy.

        Args:
            inner: Connection that runs the SQL.
            cache: Tag-aware cache store.
            policy: Cache eligibility voter (defaults to an empty chain,
                which allows everything).
            config: Kill switch and TTLs (defaults to ``CacheConfig()``).
            logger: Logger for cache events (defaults to the module logger).
        """
        self._inner = inner
        self._cache = cache
        self._policy = policy if policy is not None else CachePolicyChain()
        self._config = config if config is not None else CacheConfig()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._caching_enabled = True

    @property
    def inner(self) -> Connection:
        """Get the wrapped connection."""
        return self._inner

    @property
    def cache(self) -> "TagAwareCache":
        """Get the cache store."""
        return self._cache

    @property
    def policy(self) -> CachePolicy:
        """Get the policy chain that decides read eligibility."""
        return self._policy

    @property
    def config(self) -> CacheConfig:
        """Get the cache configuration."""
        return self._config

    def is_caching_enabled(self) -> bool:
        """Check whether this proxy currently caches reads."""
        return self._caching_enabled

    def set_caching_enabled(self, enabled: bool) -> None:
        """Turn caching on or off for this proxy.

        While off, eligible reads delete their stale entry and go straight
        to the database. Writes keep invalidating.
        """
        self._caching_enabled = enabled

    # =========================================================================
    # Cache plumbing
    # =========================================================================

    def _call_cache(
        self,
        func: str,
        query: str,
        params: Any,
        callback: Callable[[], T],
        key_params: Any = None,
    ) -> T:
        """Run ``callback`` through the cache.

        Args:
            func: Name of the read operation, part of the cache key.
            query: SQL text.
            params: Query parameters, passed to the policy chain.
            callback: Computes the canonical payload from the inner
                connection.
            key_params: What the key is derived from besides func and query
                (parameters and type hints).
        """
        if not (self._config.enabled and self._policy.decide(query, params)):
            return callback()

        key = build_cache_key(func, query, key_params)
        tags = extract_tags(query)

        if not self._caching_enabled:
            try:
                self._cache.delete(key)
            except Exception as e:
                self._logger.warning("Failed to delete cache entry %s: %s", key, e)
            return callback()

        def compute(item: "CacheItem") -> T:
            item.tag(tags)
            item.expires_after(self._config.resolve_ttl(tags))

            start = time.perf_counter()
            value = callback()
            self._logger.debug(
                "Saved SQL result to cache",
                extra={
                    "func": func,
                    "tags": tags,
                    "duration": round(time.perf_counter() - start, 6),
                    "query": query,
                    "params": params,
                },
            )
            return value

        return self._cache.get(key, compute)

    def _read(self, func: str, query: str, params: Params, types: Types, callback: Callable[[], T]) -> T:
        return self._call_cache(func, query, params, callback, key_params=[params or [], types or []])

    def _invalidate(self, tags: Iterable[str]) -> None:
        tags = [tag for tag in tags if tag]
        if not tags:
            return
        try:
            self._cache.invalidate_tags(tags)
        except Exception:
            self._logger.exception("Failed to invalidate cache tags %s", tags)

    # =========================================================================
    # Reads
    # =========================================================================

    def fetch_associative(self, query: str, params: Params = None, types: Types = None) -> dict[str, Any] | None:
        return self._read(
            "fetch_associative", query, params, types,
            lambda: self._inner.fetch_associative(query, params, types),
        )

    def fetch_numeric(self, query: str, params: Params = None, types: Types = None) -> list[Any] | None:
        return self._read(
            "fetch_numeric", query, params, types,
            lambda: self._inner.fetch_numeric(query, params, types),
        )

    def fetch_one(self, query: str, params: Params = None, types: Types = None) -> Any:
        return self._read(
            "fetch_one", query, params, types,
            lambda: self._inner.fetch_one(query, params, types),
        )

    def fetch_all_numeric(self, query: str, params: Params = None, types: Types = None) -> list[list[Any]]:
        return self._read(
            "fetch_all_numeric", query, params, types,
            lambda: self._inner.fetch_all_numeric(query, params, types),
        )

    def fetch_all_associative(self, query: str, params: Params = None, types: Types = None) -> list[dict[str, Any]]:
        return self._read(
            "fetch_all_associative", query, params, types,
            lambda: self._inner.fetch_all_associative(query, params, types),
        )

    def fetch_all_key_value(self, query: str, params: Params = None, types: Types = None) -> dict[Any, Any]:
        return self._read(
            "fetch_all_key_value", query, params, types,
            lambda: self._inner.fetch_all_key_value(query, params, types),
        )

    def fetch_all_associative_indexed(
        self, query: str, params: Params = None, types: Types = None
    ) -> dict[Any, dict[str, Any]]:
        return self._read(
            "fetch_all_associative_indexed", query, params, types,
            lambda: self._inner.fetch_all_associative_indexed(query, params, types),
        )

    def fetch_first_column(self, query: str, params: Params = None, types: Types = None) -> list[Any]:
        return self._read(
            "fetch_first_column", query, params, types,
            lambda: self._inner.fetch_first_column(query, params, types),
        )

    # The iterate family is materialized: the whole result is cached and
    # replayed through a generator.

    def iterate_numeric(self, query: str, params: Params = None, types: Types = None) -> Iterator[list[Any]]:
        rows = self._read(
            "iterate_numeric", query, params, types,
            lambda: list(self._inner.iterate_numeric(query, params, types)),
        )
        return generate_rows(rows)

    def iterate_associative(self, query: str, params: Params = None, types: Types = None) -> Iterator[dict[str, Any]]:
        rows = self._read(
            "iterate_associative", query, params, types,
            lambda: list(self._inner.iterate_associative(query, params, types)),
        )
        return generate_rows(rows)

    def iterate_key_value(self, query: str, params: Params = None, types: Types = None) -> Iterator[tuple[Any, Any]]:
        rows = self._read(
            "iterate_key_value", query, params, types,
            lambda: [list(pair) for pair in self._inner.iterate_key_value(query, params, types)],
        )
        return generate_rows([(key, value) for key, value in rows])

    def iterate_associative_indexed(
        self, query: str, params: Params = None, types: Types = None
    ) -> Iterator[tuple[Any, dict[str, Any]]]:
        rows = self._read(
            "iterate_associative_indexed", query, params, types,
            lambda: [list(pair) for pair in self._inner.iterate_associative_indexed(query, params, types)],
        )
        return generate_rows([(key, value) for key, value in rows])

    def iterate_column(self, query: str, params: Params = None, types: Types = None) -> Iterator[Any]:
        rows = self._read(
            "iterate_column", query, params, types,
            lambda: list(self._inner.iterate_column(query, params, types)),
        )
        return generate_rows(rows)

    def execute_query(
        self,
        sql: str,
        params: Params = None,
        types: Types = None,
        cache_profile: QueryCacheProfile | None = None,
    ) -> RowSetCursor:
        """Execute a query, caching its rows.

        A query with an explicit ``cache_profile`` is cached by the inner
        connection under that profile instead.
        """
        if cache_profile is not None:
            return self._inner.execute_query(sql, params, types, cache_profile)

        rows = self._read(
            "execute_query", sql, params, types,
            lambda: self._inner.execute_query(sql, params, types).fetch_all_associative(),
        )
        return RowSetCursor(rows)

    def query(self, sql: str) -> RowSetCursor:
        rows = self._call_cache("query", sql, [], lambda: self._inner.query(sql).fetch_all_associative())
        return RowSetCursor(rows)

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, table: str, data: Mapping[str, Any], types: Types = None) -> int:
        """Insert a row, then invalidate the table tag."""
        try:
            return self._inner.insert(table, data, types)
        finally:
            self._invalidate(write_tags(table))

    def update(
        self,
        table: str,
        data: Mapping[str, Any],
        criteria: Mapping[str, Any] | None = None,
        types: Types = None,
    ) -> int:
        """Update rows, then invalidate the table tag and the row tag of ``criteria["id"]``."""
        try:
            return self._inner.update(table, data, criteria, types)
        finally:
            self._invalidate(write_tags(table, criteria))

    def delete(self, table: str, criteria: Mapping[str, Any] | None = None, types: Types = None) -> int:
        """Delete rows, then invalidate the table tag and the row tag of ``criteria["id"]``."""
        try:
            return self._inner.delete(table, criteria, types)
        finally:
            self._invalidate(write_tags(table, criteria))

    def execute_statement(self, sql: str, params: Params = None, types: Types = None) -> int:
        """Execute a statement, then invalidate every table its SQL references."""
        try:
            return self._inner.execute_statement(sql, params, types)
        finally:
            self._invalidate(extract_tags(sql))

    def execute_update(self, sql: str, params: Params = None, types: Types = None) -> int:
        try:
            return self._inner.execute_update(sql, params, types)
        finally:
            self._invalidate(extract_tags(sql))

    def exec(self, sql: str) -> int:
        try:
            return self._inner.exec(sql)
        finally:
            self._invalidate(extract_tags(sql))

    # =========================================================================
    # Forwarded members
    # =========================================================================

    def execute_cache_query(
        self, sql: str, params: Params, types: Types, cache_profile: QueryCacheProfile
    ) -> RowSetCursor:
        return self._inner.execute_cache_query(sql, params, types, cache_profile)

    def connect(self) -> Any:
        return self._inner.connect()

    def close(self) -> None:
        self._inner.close()

    def is_connected(self) -> bool:
        return self._inner.is_connected()

    def get_params(self) -> dict[str, Any]:
        return self._inner.get_params()

    def get_database(self) -> str | None:
        return self._inner.get_database()

    def get_driver(self) -> str:
        return self._inner.get_driver()

    def get_database_platform(self) -> Any:
        return self._inner.get_database_platform()

    def is_auto_commit(self) -> bool:
        return self._inner.is_auto_commit()

    def set_auto_commit(self, auto_commit: bool) -> None:
        self._inner.set_auto_commit(auto_commit)

    def is_transaction_active(self) -> bool:
        return self._inner.is_transaction_active()

    def get_transaction_nesting_level(self) -> int:
        return self._inner.get_transaction_nesting_level()

    def begin_transaction(self) -> None:
        self._inner.begin_transaction()

    def commit(self) -> None:
        self._inner.commit()

    def roll_back(self) -> None:
        self._inner.roll_back()

    def transactional(self, func: Callable[..., T]) -> T:
        """Run ``func`` in a transaction of the inner connection.

        ``func`` receives this proxy, so statements it runs are cached and
        invalidate like any other.
        """
        return self._inner.transactional(lambda _conn: func(self))

    def create_savepoint(self, savepoint: str) -> None:
        self._inner.create_savepoint(savepoint)

    def release_savepoint(self, savepoint: str) -> None:
        self._inner.release_savepoint(savepoint)

    def rollback_savepoint(self, savepoint: str) -> None:
        self._inner.rollback_savepoint(savepoint)

    def set_nest_transactions_with_savepoints(self, nest: bool) -> None:
        self._inner.set_nest_transactions_with_savepoints(nest)

    def get_nest_transactions_with_savepoints(self) -> bool:
        return self._inner.get_nest_transactions_with_savepoints()

    def set_transaction_isolation(self, level: TransactionIsolationLevel) -> None:
        self._inner.set_transaction_isolation(level)

    def get_transaction_isolation(self) -> TransactionIsolationLevel:
        return self._inner.get_transaction_isolation()

    def set_rollback_only(self) -> None:
        self._inner.set_rollback_only()

    def is_rollback_only(self) -> bool:
        return self._inner.is_rollback_only()

    def last_insert_id(self) -> Any:
        return self._inner.last_insert_id()

    def quote(self, value: Any) -> str:
        return self._inner.quote(value)

    def quote_identifier(self, identifier: str) -> str:
        return self._inner.quote_identifier(identifier)

    def prepare(self, sql: str) -> Any:
        return self._inner.prepare(sql)

    def get_native_connection(self) -> Any:
        return self._inner.get_native_connection()

    def create_schema_manager(self) -> Any:
        return self._inner.create_schema_manager()

    def convert_to_database_value(self, value: Any, type_: Any) -> Any:
        return self._inner.convert_to_database_value(value, type_)

    def convert_to_python_value(self, value: Any, type_: Any) -> Any:
        return self._inner.convert_to_python_value(value, type_)

    def __enter__(self) -> "ConnectionCacheProxy":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ConnectionCacheProxy(inner={self._inner!r}, caching_enabled={self._caching_enabled})"
