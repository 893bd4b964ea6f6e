"""SQL connection contract.

``Connection`` lists every member the caching proxy forwards or intercepts.
``SQLAlchemyConnection`` is the shipped implementation; any object with the
same members can be wrapped.

Parameters are either a sequence (positional ``?`` placeholders) or a
mapping (named ``:name`` placeholders). ``types`` carries optional type hints
in the same shape.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from sqltagcache.keys import build_cache_key

if TYPE_CHECKING:
    from sqltagcache.cache.base import TagAwareCache
    from sqltagcache.result import RowSetCursor

T = TypeVar("T")

Params = Sequence[Any] | Mapping[str, Any] | None
Types = Sequence[Any] | Mapping[str, Any] | None


class TransactionIsolationLevel(Enum):
    """Transaction isolation levels, valued with SQLAlchemy's names."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"
    AUTOCOMMIT = "AUTOCOMMIT"

    @classmethod
    def from_string(cls, value: str) -> "TransactionIsolationLevel":
        """Convert a dialect isolation level name to the enum."""
        normalized = value.strip().upper().replace("_", " ")
        for level in cls:
            if level.value == normalized:
                return level
        raise ValueError(f"Unknown isolation level: {value}")


@dataclass
class QueryCacheProfile:
    """Caller-supplied caching for a single ``execute_query`` call.

    A query executed with a profile skips the tag-aware proxy cache and is
    cached by the connection itself under the profile's key and lifetime.

    Attributes:
        lifetime: Seconds to keep the result (0 for no expiry).
        cache_key: Fixed key; generated from the query when None.
        cache: Store to use; required for the profile to take effect.
    """

    lifetime: int = 0
    cache_key: str | None = None
    cache: "TagAwareCache | None" = None

    def generate_cache_key(self, sql: str, params: Params = None, types: Types = None) -> str:
        if self.cache_key is not None:
            return self.cache_key
        return build_cache_key("execute_query", sql, [params or [], types or []])


@runtime_checkable
class Connection(Protocol):
    """Protocol for wrapped SQL connections."""

    # -- reads ---------------------------------------------------------------

    def fetch_associative(self, query: str, params: Params = None, types: Types = None) -> dict[str, Any] | None:
        ...

    def fetch_numeric(self, query: str, params: Params = None, types: Types = None) -> list[Any] | None:
        ...

    def fetch_one(self, query: str, params: Params = None, types: Types = None) -> Any:
        ...

    def fetch_all_numeric(self, query: str, params: Params = None, types: Types = None) -> list[list[Any]]:
        ...

    def fetch_all_associative(self, query: str, params: Params = None, types: Types = None) -> list[dict[str, Any]]:
        ...

    def fetch_all_key_value(self, query: str, params: Params = None, types: Types = None) -> dict[Any, Any]:
        ...

    def fetch_all_associative_indexed(
        self, query: str, params: Params = None, types: Types = None
    ) -> dict[Any, dict[str, Any]]:
        ...

    def fetch_first_column(self, query: str, params: Params = None, types: Types = None) -> list[Any]:
        ...

    def iterate_numeric(self, query: str, params: Params = None, types: Types = None) -> Iterator[list[Any]]:
        ...

    def iterate_associative(
        self, query: str, params: Params = None, types: Types = None
    ) -> Iterator[dict[str, Any]]:
        ...

    def iterate_key_value(self, query: str, params: Params = None, types: Types = None) -> Iterator[tuple[Any, Any]]:
        ...

    def iterate_associative_indexed(
        self, query: str, params: Params = None, types: Types = None
    ) -> Iterator[tuple[Any, dict[str, Any]]]:
        ...

    def iterate_column(self, query: str, params: Params = None, types: Types = None) -> Iterator[Any]:
        ...

    def execute_query(
        self,
        sql: str,
        params: Params = None,
        types: Types = None,
        cache_profile: QueryCacheProfile | None = None,
    ) -> "RowSetCursor":
        ...

    def execute_cache_query(
        self, sql: str, params: Params, types: Types, cache_profile: QueryCacheProfile
    ) -> "RowSetCursor":
        ...

    def query(self, sql: str) -> "RowSetCursor":
        ...

    # -- writes --------------------------------------------------------------

    def insert(self, table: str, data: Mapping[str, Any], types: Types = None) -> int:
        ...

    def update(
        self,
        table: str,
        data: Mapping[str, Any],
        criteria: Mapping[str, Any] | None = None,
        types: Types = None,
    ) -> int:
        ...

    def delete(self, table: str, criteria: Mapping[str, Any] | None = None, types: Types = None) -> int:
        ...

    def execute_statement(self, sql: str, params: Params = None, types: Types = None) -> int:
        ...

    def execute_update(self, sql: str, params: Params = None, types: Types = None) -> int:
        ...

    def exec(self, sql: str) -> int:
        ...

    # -- connection state ----------------------------------------------------

    def connect(self) -> Any:
        ...

    def close(self) -> None:
        ...

    def is_connected(self) -> bool:
        ...

    def get_params(self) -> dict[str, Any]:
        ...

    def get_database(self) -> str | None:
        ...

    def get_driver(self) -> str:
        ...

    def get_database_platform(self) -> Any:
        ...

    def is_auto_commit(self) -> bool:
        ...

    def set_auto_commit(self, auto_commit: bool) -> None:
        ...

    # -- transactions --------------------------------------------------------

    def is_transaction_active(self) -> bool:
        ...

    def get_transaction_nesting_level(self) -> int:
        ...

    def begin_transaction(self) -> None:
        ...

    def commit(self) -> None:
        ...

    def roll_back(self) -> None:
        ...

    def transactional(self, func: Callable[..., T]) -> T:
        ...

    def create_savepoint(self, savepoint: str) -> None:
        ...

    def release_savepoint(self, savepoint: str) -> None:
        ...

    def rollback_savepoint(self, savepoint: str) -> None:
        ...

    def set_nest_transactions_with_savepoints(self, nest: bool) -> None:
        ...

    def get_nest_transactions_with_savepoints(self) -> bool:
        ...

    def set_transaction_isolation(self, level: TransactionIsolationLevel) -> None:
        ...

    def get_transaction_isolation(self) -> TransactionIsolationLevel:
        ...

    def set_rollback_only(self) -> None:
        ...

    def is_rollback_only(self) -> bool:
        ...

    # -- misc ----------------------------------------------------------------

    def last_insert_id(self) -> Any:
        ...

    def quote(self, value: Any) -> str:
        ...

    def quote_identifier(self, identifier: str) -> str:
        ...

    def prepare(self, sql: str) -> Any:
        ...

    def get_native_connection(self) -> Any:
        ...

    def create_schema_manager(self) -> Any:
        ...

    def convert_to_database_value(self, value: Any, type_: Any) -> Any:
        ...

    def convert_to_python_value(self, value: Any, type_: Any) -> Any:
        ...
