"""Invalidation tag derivation.

Tags are plain strings naming an invalidation scope: a table name
(``users``) or a single row of a table (``users_42``). Read queries get the
tags of every table their SQL text references; writes invalidate the tags of
the table they touch.

Table extraction is a keyword-anchored heuristic, not a SQL parser. Each
pattern captures the shortest run of characters between the keyword and the
next single space, so:

- ``SELECT * FROM users`` (no trailing space) yields nothing.
- ``FROM users u`` yields ``users``; the alias is never resolved.
- Subqueries and quoted identifiers containing spaces are not understood.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect as sa_inspect

from sqltagcache.exceptions import EntityIdentityError

TABLE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r" FROM (.*?) "),
    re.compile(r" JOIN (.*?) "),
    re.compile(r"UPDATE (.*?) "),
    re.compile(r"INSERT INTO (.*?) "),
    re.compile(r"DELETE FROM (.*?) "),
)

# Characters removed from identifiers before they become tags
_STRIP_CHARS = str.maketrans("", "", "`\"'\t\r\n")

TEMPORARY_TABLE_PREFIX = "#"


def sanitize_identifier(value: str) -> str:
    """Remove quoting and control characters from an identifier."""
    return value.translate(_STRIP_CHARS)


def is_real_table(name: str) -> bool:
    """Check whether a captured identifier names a persistent table.

    Identifiers starting with ``#`` follow the temporary table convention
    and never produce tags.
    """
    return not name.startswith(TEMPORARY_TABLE_PREFIX)


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def extract_tags(sql: str) -> list[str]:
    """Extract table tags from SQL text.

    Args:
        sql: Query or statement text.

    Returns:
        Table names in first-seen order (pattern order, then position),
        without duplicates.

    Example:
        >>> extract_tags("SELECT * FROM users WHERE id = ?")
        ['users']
    """
    tables: list[str] = []
    for pattern in TABLE_PATTERNS:
        for match in pattern.findall(sql):
            if is_real_table(match):
                tables.append(sanitize_identifier(match).strip())
    return _unique(tables)


def table_tag(table: str) -> str:
    """Tag for a whole table."""
    return sanitize_identifier(table)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, Decimal))


def row_tag(table: str, identity: Any) -> str:
    """Tag for a single row, ``<table>_<identity>``."""
    if isinstance(identity, bool):
        identity = int(identity)
    return f"{table_tag(table)}_{identity}"


def write_tags(table: str, criteria: Mapping[str, Any] | None = None) -> list[str]:
    """Tags to invalidate after a write against ``table``.

    The row tag is only added when the row selector has a scalar ``id``.

    Args:
        table: Table written to.
        criteria: Row selector of an update or delete.

    Returns:
        ``[table]`` or ``[table, table_<id>]``.
    """
    tags = [table_tag(table)]
    if criteria:
        identity = criteria.get("id")
        if identity is not None and _is_scalar(identity):
            tags.append(row_tag(table, identity))
    return tags


# =============================================================================
# Entity Tags
# =============================================================================


def get_class_tag(cls: type) -> str:
    """Tag for every instance of a class, e.g. ``app_models_User``."""
    return sanitize_identifier(f"{cls.__module__}.{cls.__qualname__}".replace(".", "_"))


def get_entity_identity(entity: object) -> str:
    """Primary key of an entity as a tag suffix.

    Mapped instances use their mapper's primary key columns (joined with
    ``_`` for composite keys). Anything else falls back to an ``id``
    attribute.

    Raises:
        EntityIdentityError: If no complete identity is available.
    """
    state = sa_inspect(entity, raiseerr=False)
    if state is not None and hasattr(state, "mapper"):
        # Persisted instances keep their identity even when attributes are expired
        identity = state.identity or state.mapper.primary_key_from_instance(entity)
    else:
        identity = [getattr(entity, "id", None)]

    if not identity or any(value is None for value in identity):
        raise EntityIdentityError(entity)
    return "_".join(str(int(v) if isinstance(v, bool) else v) for v in identity)


def get_table_name(entity: object) -> str | None:
    """Name of the table an entity is mapped to, if any."""
    state = sa_inspect(entity, raiseerr=False)
    if state is None or not hasattr(state, "mapper"):
        return None
    table = state.mapper.local_table
    return getattr(table, "name", None)


def get_entity_tags(entity: object) -> list[str]:
    """All tags touched by a change to ``entity``.

    Returns the class tag, the object tag and, for mapped classes, the table
    and row tags used by SQL-level caching.

    Raises:
        EntityIdentityError: If the entity has no identity.
    """
    identity = get_entity_identity(entity)
    class_tag = get_class_tag(type(entity))
    tags = [class_tag, f"{class_tag}_{identity}"]

    table = get_table_name(entity)
    if table:
        tags.extend([table_tag(table), row_tag(table, identity)])
    return _unique(tags)
