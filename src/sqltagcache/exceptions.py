"""Exception hierarchy for sqltagcache.

Failures of the cache layer itself are mostly swallowed and logged by the
proxy and the entity listener. The exceptions below are what surfaces when a
component is used directly (cache stores, configuration loading, the
SQLAlchemy connection wrapper).
"""

from __future__ import annotations


class SQLTagCacheError(Exception):
    """Base exception for all sqltagcache errors."""

    pass


# =============================================================================
# Cache Store Errors
# =============================================================================


class CacheStoreError(SQLTagCacheError):
    """Raised when a cache store rejects an operation."""

    pass


class InvalidCacheKeyError(CacheStoreError):
    """Raised when a key cannot be used with a cache store."""

    def __init__(self, key: object) -> None:
        self.key = key
        super().__init__(f"Invalid cache key: {key!r}")


class EntityIdentityError(SQLTagCacheError):
    """Raised when an entity has no retrievable identity to derive tags from."""

    def __init__(self, entity: object) -> None:
        self.entity_type = type(entity).__name__
        super().__init__(f"Cannot determine identity of {self.entity_type} instance")


# =============================================================================
# Connection Errors
# =============================================================================


class SQLConnectionError(SQLTagCacheError):
    """Base exception for connection wrapper errors."""

    pass


class TransactionError(SQLConnectionError):
    """Raised when a transaction operation is not allowed in the current state."""

    pass


class NoActiveTransactionError(TransactionError):
    """Raised when commit/rollback is requested without an active transaction."""

    def __init__(self) -> None:
        super().__init__("There is no active transaction.")


class CommitFailedRollbackOnlyError(TransactionError):
    """Raised when committing a transaction marked rollback-only."""

    def __init__(self) -> None:
        super().__init__("Transaction commit failed because the transaction has been marked for rollback only.")


class NoKeyValueError(SQLConnectionError):
    """Raised when a key/value fetch runs on a result with fewer than two columns."""

    def __init__(self, column_count: int) -> None:
        self.column_count = column_count
        super().__init__(
            f"Fetching key/value pairs requires at least 2 columns, the query returned {column_count}."
        )


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(SQLTagCacheError):
    """Base configuration error."""

    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {', '.join(errors)}")
