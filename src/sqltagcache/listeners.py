"""ORM change listener for cache invalidation.

Writes made through a SQLAlchemy ``Session`` never pass through the caching
proxy. ``EntityChangeCacheInvalidator`` hooks into the mapper events fired
when an entity is inserted, updated or deleted, and invalidates the tags of
that entity in the same tag-aware cache store.

Example:
    >>> from sqltagcache import EntityChangeCacheInvalidator, InMemoryTagAwareCache
    >>>
    >>> cache = InMemoryTagAwareCache()
    >>> invalidator = EntityChangeCacheInvalidator(cache)
    >>> invalidator.register(Base)   # every mapped subclass of Base
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import event

from sqltagcache.tags import get_entity_tags

if TYPE_CHECKING:
    from sqltagcache.cache.base import TagAwareCache

EVENTS = ("after_insert", "after_update", "after_delete")


class EntityChangeCacheInvalidator:
    """Invalidate entity tags when the ORM writes an entity.

    The tags invalidated for an entity are its class tag, its object tag
    and, for mapped classes, the table and row tags the proxy uses for SQL
    reads (see ``sqltagcache.tags.get_entity_tags``).

    Invalidation failures are logged and never raised, so a cache outage
    cannot abort a flush.
    """

    def __init__(self, cache: "TagAwareCache", logger: logging.Logger | None = None) -> None:
        self._cache = cache
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def after_insert(self, mapper: Any, connection: Any, target: object) -> None:
        self.refresh_cache(target)

    def after_update(self, mapper: Any, connection: Any, target: object) -> None:
        self.refresh_cache(target)

    def after_delete(self, mapper: Any, connection: Any, target: object) -> None:
        self.refresh_cache(target)

    def refresh_cache(self, entity: object) -> None:
        """Invalidate every tag of ``entity``."""
        try:
            tags = get_entity_tags(entity)
            self._cache.invalidate_tags(tags)
        except Exception as e:
            self._logger.error(
                "Failed to invalidate cache for %s: %s",
                type(entity).__name__,
                e,
                exc_info=True,
            )
            return
        self._logger.debug("Invalidated cache tags %s", tags)

    def register(self, target: Any) -> "EntityChangeCacheInvalidator":
        """Listen to changes of ``target`` and its subclasses.

        Args:
            target: Mapped class, declarative base or ``Mapper``.

        Returns:
            The invalidator itself.
        """
        for name in EVENTS:
            event.listen(target, name, getattr(self, name), propagate=True)
        return self

    def unregister(self, target: Any) -> None:
        """Stop listening to changes of ``target``."""
        for name in EVENTS:
            if event.contains(target, name, getattr(self, name)):
                event.remove(target, name, getattr(self, name))
