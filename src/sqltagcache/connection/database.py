"""SQLAlchemy implementation of the connection contract.

Wraps a SQLAlchemy ``Engine`` behind the fetch/insert/update/delete API the
caching proxy expects, with DBAL-style transaction nesting:

- ``begin_transaction`` may be called repeatedly. The outermost call starts
  the database transaction; inner calls create savepoints (or only count
  levels when savepoint nesting is disabled).
- Rolling back an inner level without savepoints marks the whole
  transaction rollback-only.
- Outside an explicit transaction every statement commits on completion
  (auto-commit). With auto-commit disabled a transaction is always open
  and ``commit`` starts the next one.

Positional parameters are passed to the driver unchanged, so placeholders
follow the driver's paramstyle (``?`` for SQLite). Mapping parameters use
SQLAlchemy ``:name`` placeholders.

Example:
    >>> conn = SQLAlchemyConnection("sqlite:///:memory:")
    >>> conn.execute_statement("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
    0
    >>> conn.insert("users", {"id": 1, "name": "Ada"})
    1
    >>> conn.fetch_associative("SELECT * FROM users WHERE id = ?", [1])
    {'id': 1, 'name': 'Ada'}
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import closing, contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    Numeric,
    SmallInteger,
    String,
    Text,
    Time,
    Uuid,
    and_,
    bindparam,
    column,
    create_engine,
    literal,
    table,
    text,
)
from sqlalchemy import delete as sql_delete
from sqlalchemy import insert as sql_insert
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import update as sql_update
from sqlalchemy.types import TypeEngine

from sqltagcache.connection.base import (
    Params,
    QueryCacheProfile,
    TransactionIsolationLevel,
    Types,
)
from sqltagcache.exceptions import (
    CommitFailedRollbackOnlyError,
    NoActiveTransactionError,
    NoKeyValueError,
    SQLConnectionError,
    TransactionError,
)
from sqltagcache.result import RowSetCursor

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection as SAConnection
    from sqlalchemy.engine import CursorResult, Engine
    from sqlalchemy.engine.interfaces import Dialect
    from sqlalchemy.engine.reflection import Inspector

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Type names accepted wherever a type hint may be given as a string
TYPE_NAMES: dict[str, type[TypeEngine[Any]]] = {
    "string": String,
    "text": Text,
    "integer": Integer,
    "smallint": SmallInteger,
    "bigint": BigInteger,
    "float": Float,
    "decimal": Numeric,
    "numeric": Numeric,
    "boolean": Boolean,
    "date": Date,
    "datetime": DateTime,
    "time": Time,
    "json": JSON,
    "binary": LargeBinary,
    "blob": LargeBinary,
    "uuid": Uuid,
}


def resolve_type(type_: Any) -> TypeEngine[Any]:
    """Turn a type hint (instance, class or name) into a ``TypeEngine``.

    Raises:
        ValueError: If the hint is not recognized.
    """
    if isinstance(type_, TypeEngine):
        return type_
    if isinstance(type_, type) and issubclass(type_, TypeEngine):
        return type_()
    if isinstance(type_, str) and type_.lower() in TYPE_NAMES:
        return TYPE_NAMES[type_.lower()]()
    raise ValueError(f"Unknown type: {type_!r}")


class SQLAlchemyConnection:
    """Connection contract implemented over a SQLAlchemy engine.

    A single underlying connection is opened lazily and reused until
    ``close()``. Instances are not thread-safe; use one per thread.
    """

    def __init__(
        self,
        engine: "Engine | str",
        *,
        auto_commit: bool = True,
        nest_transactions_with_savepoints: bool = True,
        **engine_kwargs: Any,
    ) -> None:
        """Initialize the connection.

        Args:
            engine: Engine to use, or a connection URL to create one from.
            auto_commit: Commit every statement run outside an explicit
                transaction.
            nest_transactions_with_savepoints: Use savepoints for nested
                ``begin_transaction`` calls.
            **engine_kwargs: Passed to ``create_engine`` when ``engine`` is
                a URL.
        """
        if isinstance(engine, str):
            engine = create_engine(engine, **engine_kwargs)
        self._engine = engine
        self._connection: SAConnection | None = None
        self._auto_commit = auto_commit
        self._nest_with_savepoints = nest_transactions_with_savepoints
        self._nesting_level = 0
        self._savepoints: list[Any] = []
        self._rollback_only = False
        self._isolation_level: TransactionIsolationLevel | None = None
        self._last_insert_id: Any = None

    @property
    def engine(self) -> "Engine":
        return self._engine

    # =========================================================================
    # Connection state
    # =========================================================================

    def connect(self) -> "SAConnection":
        """Open the underlying connection if needed and return it."""
        if self._connection is None:
            self._connection = self._engine.connect()
            if self._isolation_level is not None:
                self._connection.execution_options(isolation_level=self._isolation_level.value)
            logger.debug("Opened connection to %s", self._masked_url())
            if not self._auto_commit:
                self.begin_transaction()
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
        self._connection = None
        self._nesting_level = 0
        self._savepoints.clear()
        self._rollback_only = False

    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.closed

    def _masked_url(self) -> str:
        return self._engine.url.render_as_string(hide_password=True)

    def get_params(self) -> dict[str, Any]:
        url = self._engine.url
        return {
            "url": self._masked_url(),
            "dialect": self._engine.dialect.name,
            "driver": self._engine.driver,
            "host": url.host,
            "port": url.port,
            "database": url.database,
        }

    def get_database(self) -> str | None:
        return self._engine.url.database

    def get_driver(self) -> str:
        return self._engine.driver

    def get_database_platform(self) -> "Dialect":
        return self._engine.dialect

    def is_auto_commit(self) -> bool:
        return self._auto_commit

    def set_auto_commit(self, auto_commit: bool) -> None:
        """Switch auto-commit mode.

        Changing the mode commits any open transaction, like DBAL does.
        """
        if auto_commit == self._auto_commit:
            return
        self._auto_commit = auto_commit
        if self._connection is None:
            return

        if self._nesting_level > 0:
            self._connection.commit()
            self._nesting_level = 0
            self._savepoints.clear()
            self._rollback_only = False
        if not auto_commit:
            self.begin_transaction()

    # =========================================================================
    # Statement execution
    # =========================================================================

    @contextmanager
    def _statement(self) -> Iterator["SAConnection"]:
        """Run one statement, ending the implicit transaction outside explicit ones.

        A statement abandoned part way (an iterator closed early) rolls back
        like a failed one.
        """
        conn = self.connect()
        try:
            yield conn
        except BaseException:
            if self._nesting_level == 0 and conn.in_transaction():
                conn.rollback()
            raise
        if self._nesting_level == 0 and conn.in_transaction():
            conn.commit()

    def _execute(self, conn: "SAConnection", sql: str, params: Params, types: Types) -> "CursorResult[Any]":
        if params is None or isinstance(params, Mapping):
            statement = text(sql)
            if isinstance(types, Mapping) and types:
                statement = statement.bindparams(
                    *(bindparam(name, type_=resolve_type(type_)) for name, type_ in types.items())
                )
            return conn.execute(statement, dict(params or {}))

        values = list(params)
        if isinstance(types, Sequence) and not isinstance(types, str):
            for index, type_ in enumerate(types[: len(values)]):
                if type_ is not None:
                    values[index] = self.convert_to_database_value(values[index], type_)
        return conn.exec_driver_sql(sql, tuple(values))

    def _remember_insert_id(self, result: "CursorResult[Any]") -> None:
        try:
            self._last_insert_id = result.lastrowid
        except (AttributeError, NotImplementedError):
            self._last_insert_id = None

    # -- reads ----------------------------------------------------------------

    def fetch_associative(self, query: str, params: Params = None, types: Types = None) -> dict[str, Any] | None:
        with self._statement() as conn:
            row = self._execute(conn, query, params, types).mappings().first()
        return None if row is None else dict(row)

    def fetch_numeric(self, query: str, params: Params = None, types: Types = None) -> list[Any] | None:
        with self._statement() as conn:
            row = self._execute(conn, query, params, types).first()
        return None if row is None else list(row)

    def fetch_one(self, query: str, params: Params = None, types: Types = None) -> Any:
        with self._statement() as conn:
            row = self._execute(conn, query, params, types).first()
        return None if row is None else row[0]

    def fetch_all_numeric(self, query: str, params: Params = None, types: Types = None) -> list[list[Any]]:
        with self._statement() as conn:
            rows = self._execute(conn, query, params, types).all()
        return [list(row) for row in rows]

    def fetch_all_associative(self, query: str, params: Params = None, types: Types = None) -> list[dict[str, Any]]:
        with self._statement() as conn:
            rows = self._execute(conn, query, params, types).mappings().all()
        return [dict(row) for row in rows]

    def fetch_all_key_value(self, query: str, params: Params = None, types: Types = None) -> dict[Any, Any]:
        with self._statement() as conn:
            result = self._execute(conn, query, params, types)
            column_count = len(result.keys())
            if column_count < 2:
                result.close()
                raise NoKeyValueError(column_count)
            rows = result.all()
        return {row[0]: row[1] for row in rows}

    def fetch_all_associative_indexed(
        self, query: str, params: Params = None, types: Types = None
    ) -> dict[Any, dict[str, Any]]:
        indexed: dict[Any, dict[str, Any]] = {}
        for row in self.fetch_all_associative(query, params, types):
            items = list(row.items())
            indexed[items[0][1]] = dict(items[1:])
        return indexed

    def fetch_first_column(self, query: str, params: Params = None, types: Types = None) -> list[Any]:
        with self._statement() as conn:
            rows = self._execute(conn, query, params, types).all()
        return [row[0] for row in rows]

    def _iterate(self, query: str, params: Params, types: Types) -> Iterator[Any]:
        with self._statement() as conn:
            result = self._execute(conn, query, params, types)
            try:
                yield from result
            finally:
                result.close()

    def iterate_numeric(self, query: str, params: Params = None, types: Types = None) -> Iterator[list[Any]]:
        with closing(self._iterate(query, params, types)) as rows:
            for row in rows:
                yield list(row)

    def iterate_associative(self, query: str, params: Params = None, types: Types = None) -> Iterator[dict[str, Any]]:
        with closing(self._iterate(query, params, types)) as rows:
            for row in rows:
                yield dict(row._mapping)

    def iterate_key_value(self, query: str, params: Params = None, types: Types = None) -> Iterator[tuple[Any, Any]]:
        with closing(self._iterate(query, params, types)) as rows:
            for row in rows:
                if len(row) < 2:
                    raise NoKeyValueError(len(row))
                yield row[0], row[1]

    def iterate_associative_indexed(
        self, query: str, params: Params = None, types: Types = None
    ) -> Iterator[tuple[Any, dict[str, Any]]]:
        with closing(self._iterate(query, params, types)) as rows:
            for row in rows:
                items = list(row._mapping.items())
                yield items[0][1], dict(items[1:])

    def iterate_column(self, query: str, params: Params = None, types: Types = None) -> Iterator[Any]:
        with closing(self._iterate(query, params, types)) as rows:
            for row in rows:
                yield row[0]

    def execute_query(
        self,
        sql: str,
        params: Params = None,
        types: Types = None,
        cache_profile: QueryCacheProfile | None = None,
    ) -> RowSetCursor:
        """Execute a query and return its rows as a ``RowSetCursor``.

        The rows are buffered before the implicit transaction ends, so the
        returned cursor does not hold a database cursor open.
        """
        if cache_profile is not None:
            return self.execute_cache_query(sql, params, types, cache_profile)

        with self._statement() as conn:
            result = self._execute(conn, sql, params, types)
            if not result.returns_rows:
                return RowSetCursor([])
            rows = [dict(row) for row in result.mappings().all()]
        return RowSetCursor(rows)

    def execute_cache_query(
        self, sql: str, params: Params, types: Types, cache_profile: QueryCacheProfile
    ) -> RowSetCursor:
        """Execute a query cached under the caller's profile.

        Raises:
            SQLConnectionError: If the profile has no cache store.
        """
        if cache_profile.cache is None:
            raise SQLConnectionError("Query cache profile has no cache store configured")

        def compute(item: Any) -> list[dict[str, Any]]:
            item.expires_after(cache_profile.lifetime or None)
            return self.execute_query(sql, params, types).fetch_all_associative()

        key = cache_profile.generate_cache_key(sql, params, types)
        return RowSetCursor(cache_profile.cache.get(key, compute))

    def query(self, sql: str) -> RowSetCursor:
        return self.execute_query(sql)

    # -- writes ---------------------------------------------------------------

    @staticmethod
    def _table(name: str, columns: Sequence[str], types: Types) -> Any:
        type_map = types if isinstance(types, Mapping) else {}
        return table(
            name,
            *(
                column(name_, resolve_type(type_map[name_])) if type_map.get(name_) is not None else column(name_)
                for name_ in columns
            ),
        )

    def _run_write(self, statement: Any) -> int:
        with self._statement() as conn:
            result = conn.execute(statement)
            self._remember_insert_id(result)
            return result.rowcount

    def insert(self, table_name: str, data: Mapping[str, Any], types: Types = None) -> int:
        """Insert one row.

        Returns:
            Number of affected rows.
        """
        tbl = self._table(table_name, list(data), types)
        return self._run_write(sql_insert(tbl).values(**data))

    def update(
        self,
        table_name: str,
        data: Mapping[str, Any],
        criteria: Mapping[str, Any] | None = None,
        types: Types = None,
    ) -> int:
        """Update rows matching ``criteria`` (equality, ``None`` is ``IS NULL``)."""
        criteria = criteria or {}
        tbl = self._table(table_name, list(dict.fromkeys([*data, *criteria])), types)
        statement = sql_update(tbl).values(**data)
        if criteria:
            statement = statement.where(and_(*(tbl.c[name] == value for name, value in criteria.items())))
        return self._run_write(statement)

    def delete(self, table_name: str, criteria: Mapping[str, Any] | None = None, types: Types = None) -> int:
        """Delete rows matching ``criteria``."""
        criteria = criteria or {}
        tbl = self._table(table_name, list(criteria), types)
        statement = sql_delete(tbl)
        if criteria:
            statement = statement.where(and_(*(tbl.c[name] == value for name, value in criteria.items())))
        return self._run_write(statement)

    def execute_statement(self, sql: str, params: Params = None, types: Types = None) -> int:
        """Execute a data-changing statement.

        Returns:
            Number of affected rows (0 for DDL on most drivers).
        """
        with self._statement() as conn:
            result = self._execute(conn, sql, params, types)
            self._remember_insert_id(result)
            return max(result.rowcount, 0)

    def execute_update(self, sql: str, params: Params = None, types: Types = None) -> int:
        return self.execute_statement(sql, params, types)

    def exec(self, sql: str) -> int:
        return self.execute_statement(sql)

    # =========================================================================
    # Transactions
    # =========================================================================

    def is_transaction_active(self) -> bool:
        return self._nesting_level > 0

    def get_transaction_nesting_level(self) -> int:
        return self._nesting_level

    def begin_transaction(self) -> None:
        conn = self.connect()
        self._nesting_level += 1

        if self._nesting_level == 1:
            if conn.in_transaction():
                # Implicit transaction from a previous auto-committed read
                conn.commit()
            conn.begin()
            logger.debug("Started transaction")
        elif self._nest_with_savepoints:
            self._savepoints.append(conn.begin_nested())
            logger.debug("Created savepoint for nesting level %d", self._nesting_level)

    def commit(self) -> None:
        """Commit the current nesting level.

        Raises:
            NoActiveTransactionError: If no transaction is active.
            CommitFailedRollbackOnlyError: If marked rollback-only.
        """
        if self._nesting_level == 0:
            raise NoActiveTransactionError()
        if self._rollback_only:
            raise CommitFailedRollbackOnlyError()

        conn = self.connect()
        if self._nesting_level == 1:
            conn.commit()
        elif self._nest_with_savepoints and self._savepoints:
            self._savepoints.pop().commit()
        self._nesting_level -= 1

        if self._nesting_level == 0 and not self._auto_commit:
            self.begin_transaction()

    def roll_back(self) -> None:
        """Roll back the current nesting level.

        Raises:
            NoActiveTransactionError: If no transaction is active.
        """
        if self._nesting_level == 0:
            raise NoActiveTransactionError()

        conn = self.connect()
        if self._nesting_level == 1:
            self._nesting_level = 0
            self._savepoints.clear()
            self._rollback_only = False
            conn.rollback()
            if not self._auto_commit:
                self.begin_transaction()
        elif self._nest_with_savepoints and self._savepoints:
            self._savepoints.pop().rollback()
            self._nesting_level -= 1
        else:
            self._rollback_only = True
            self._nesting_level -= 1

    def transactional(self, func: Callable[..., T]) -> T:
        """Run ``func(connection)`` inside a transaction.

        Commits when ``func`` returns, rolls back and re-raises when it
        raises.
        """
        self.begin_transaction()
        try:
            result = func(self)
            self.commit()
            return result
        except Exception:
            self.roll_back()
            raise

    def create_savepoint(self, savepoint: str) -> None:
        self.connect().exec_driver_sql(f"SAVEPOINT {self.quote_identifier(savepoint)}")

    def release_savepoint(self, savepoint: str) -> None:
        self.connect().exec_driver_sql(f"RELEASE SAVEPOINT {self.quote_identifier(savepoint)}")

    def rollback_savepoint(self, savepoint: str) -> None:
        self.connect().exec_driver_sql(f"ROLLBACK TO SAVEPOINT {self.quote_identifier(savepoint)}")

    def set_nest_transactions_with_savepoints(self, nest: bool) -> None:
        """Enable or disable savepoints for nested transactions.

        Raises:
            TransactionError: If called while a transaction is active.
        """
        if self._nesting_level > 0:
            raise TransactionError("May not alter the nested transaction with savepoints behavior while a transaction is open.")
        self._nest_with_savepoints = nest

    def get_nest_transactions_with_savepoints(self) -> bool:
        return self._nest_with_savepoints

    def set_transaction_isolation(self, level: TransactionIsolationLevel) -> None:
        self._isolation_level = level
        if self._connection is not None:
            self._connection.execution_options(isolation_level=level.value)

    def get_transaction_isolation(self) -> TransactionIsolationLevel:
        if self._isolation_level is not None:
            return self._isolation_level
        return TransactionIsolationLevel.from_string(self.connect().get_isolation_level())

    def set_rollback_only(self) -> None:
        if self._nesting_level == 0:
            raise NoActiveTransactionError()
        self._rollback_only = True

    def is_rollback_only(self) -> bool:
        if self._nesting_level == 0:
            raise NoActiveTransactionError()
        return self._rollback_only

    # =========================================================================
    # Misc
    # =========================================================================

    def last_insert_id(self) -> Any:
        return self._last_insert_id

    def quote(self, value: Any) -> str:
        """Render ``value`` as a SQL literal for this dialect."""
        compiled = literal(value).compile(dialect=self._engine.dialect, compile_kwargs={"literal_binds": True})
        return str(compiled)

    def quote_identifier(self, identifier: str) -> str:
        """Quote ``identifier`` for the platform, whether or not it needs it."""
        return self._engine.dialect.identifier_preparer.quote_identifier(identifier)

    def prepare(self, sql: str) -> Any:
        return text(sql)

    def get_native_connection(self) -> Any:
        return self.connect().connection.dbapi_connection

    def create_schema_manager(self) -> "Inspector":
        return sa_inspect(self.connect())

    def convert_to_database_value(self, value: Any, type_: Any) -> Any:
        dialect = self._engine.dialect
        processor = resolve_type(type_).dialect_impl(dialect).bind_processor(dialect)
        return processor(value) if processor is not None else value

    def convert_to_python_value(self, value: Any, type_: Any) -> Any:
        dialect = self._engine.dialect
        processor = resolve_type(type_).dialect_impl(dialect).result_processor(dialect, None)
        return processor(value) if processor is not None else value

    def __enter__(self) -> "SQLAlchemyConnection":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SQLAlchemyConnection(url={self._masked_url()!r}, nesting_level={self._nesting_level})"
