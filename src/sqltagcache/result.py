"""Replay of materialized result sets.

Cached reads hold plain Python lists. ``RowSetCursor`` presents such a list
through the same fetch contract a live database result offers, and
``generate_rows`` turns a list back into a lazy sequence for the
``iterate_*`` family.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


@runtime_checkable
class Result(Protocol):
    """Cursor-based query result contract.

    Fetch-next methods return ``None`` once the rows are exhausted.
    """

    def fetch_numeric(self) -> list[Any] | None:
        ...

    def fetch_associative(self) -> dict[str, Any] | None:
        ...

    def fetch_one(self) -> Any:
        ...

    def fetch_all_numeric(self) -> list[list[Any]]:
        ...

    def fetch_all_associative(self) -> list[dict[str, Any]]:
        ...

    def fetch_first_column(self) -> list[Any]:
        ...

    def row_count(self) -> int:
        ...

    def column_count(self) -> int:
        ...

    def free(self) -> None:
        ...


class RowSetCursor:
    """Restartable cursor over a fully materialized list of rows.

    Each row is a mapping whose key order is the column order. Fetch-next
    methods advance a zero-based position and return ``None`` when no rows
    remain; ``free()`` rewinds to the first row, so the same set can be
    replayed any number of times.

    The fetch-all methods always return the complete set, independent of
    the current position.

    Example:
        >>> cursor = RowSetCursor([{"id": 1}, {"id": 2}])
        >>> cursor.fetch_associative()
        {'id': 1}
        >>> cursor.fetch_one()
        2
        >>> cursor.fetch_one() is None
        True
        >>> cursor.free()
        >>> cursor.fetch_numeric()
        [1]
    """

    def __init__(self, rows: Sequence[Mapping[str, Any]]) -> None:
        self._rows: list[dict[str, Any]] = [dict(row) for row in rows]
        self._position = 0

    def _next_row(self) -> dict[str, Any] | None:
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    def fetch_numeric(self) -> list[Any] | None:
        """Fetch the next row as a list of values."""
        row = self._next_row()
        return None if row is None else list(row.values())

    def fetch_associative(self) -> dict[str, Any] | None:
        """Fetch the next row as a column-keyed dict."""
        row = self._next_row()
        return None if row is None else dict(row)

    def fetch_one(self) -> Any:
        """Fetch the first value of the next row."""
        row = self._next_row()
        if row is None:
            return None
        return next(iter(row.values()), None)

    def fetch_all_numeric(self) -> list[list[Any]]:
        return [list(row.values()) for row in self._rows]

    def fetch_all_associative(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self._rows]

    def fetch_first_column(self) -> list[Any]:
        return [next(iter(row.values()), None) for row in self._rows]

    def fetch_all_key_value(self) -> dict[Any, Any]:
        """Map the first column to the second column of every row."""
        result: dict[Any, Any] = {}
        for row in self._rows:
            values = list(row.values())
            result[values[0]] = values[1] if len(values) > 1 else None
        return result

    def fetch_all_associative_indexed(self) -> dict[Any, dict[str, Any]]:
        """Map the first column to the remaining columns of every row."""
        result: dict[Any, dict[str, Any]] = {}
        for row in self._rows:
            items = list(row.items())
            if items:
                result[items[0][1]] = dict(items[1:])
        return result

    def row_count(self) -> int:
        return len(self._rows)

    def column_count(self) -> int:
        if not self._rows:
            return 0
        return len(self._rows[0])

    def free(self) -> None:
        """Rewind to the first row."""
        self._position = 0

    def __iter__(self) -> Iterator[dict[str, Any]]:
        while (row := self.fetch_associative()) is not None:
            yield row

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self) -> str:
        return f"RowSetCursor(rows={len(self._rows)}, position={self._position})"


def generate_rows(rows: Sequence[T]) -> Iterator[T]:
    """Lazily yield rows of an already materialized list.

    The list is copied first, so the generator is unaffected by later
    changes to ``rows``.
    """
    yield from list(rows)
