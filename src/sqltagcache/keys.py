"""Cache key derivation for SQL reads."""

from __future__ import annotations

import json
from collections.abc import Mapping, Set
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import xxhash

KEY_PREFIX = "sql"


def _to_canonical(value: Any) -> Any:
    """Convert values json cannot encode into a stable representation."""
    if isinstance(value, (datetime, date, time)):
        return {"__type__": type(value).__name__, "value": value.isoformat()}
    if isinstance(value, timedelta):
        return {"__type__": "timedelta", "value": value.total_seconds()}
    if isinstance(value, Decimal):
        return {"__type__": "decimal", "value": str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"__type__": "bytes", "value": bytes(value).hex()}
    if isinstance(value, UUID):
        return {"__type__": "uuid", "value": str(value)}
    if isinstance(value, Enum):
        return {"__type__": type(value).__name__, "value": _to_canonical(value.value)}
    if isinstance(value, Set):
        return {"__type__": "set", "value": sorted(json.dumps(v, default=_to_canonical) for v in value)}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, tuple):
        return list(value)
    # SQLAlchemy types and anything else: repr is stable for a given value
    return {"__type__": type(value).__name__, "value": repr(value)}


def serialize(query: str, params: Any) -> bytes:
    """Serialize a query and its parameters to stable bytes.

    Mappings are encoded with sorted keys so equal parameter sets always
    produce the same bytes.
    """
    return json.dumps(
        [query, params],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_to_canonical,
    ).encode("utf-8")


def content_hash(data: bytes) -> str:
    """Fixed-width (32 hex chars) content hash."""
    return xxhash.xxh128(data).hexdigest()


def build_cache_key(func: str, query: str, params: Any = None) -> str:
    """Build the cache key for a read operation.

    Args:
        func: Name of the read operation, e.g. ``fetch_associative``.
        query: SQL text.
        params: Parameters and type hints, usually ``[params, types]``.

    Returns:
        ``sql_<func>_<hash>``.

    Example:
        >>> build_cache_key("fetch_one", "SELECT 1", [[], []]).startswith("sql_fetch_one_")
        True
    """
    return f"{KEY_PREFIX}_{func}_{content_hash(serialize(query, params))}"
