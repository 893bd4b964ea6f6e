"""Tests for the ORM change listener."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import String, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from sqltagcache.cache import CacheItem, InMemoryTagAwareCache
from sqltagcache.listeners import EntityChangeCacheInvalidator
from sqltagcache.tags import get_class_tag, get_entity_tags
from tests.mocks import RecordingCache


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))


class Membership(Base):
    __tablename__ = "memberships"

    user_id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int] = mapped_column(primary_key=True)


class Plain:
    def __init__(self, id=None):
        self.id = id


def seed(cache: InMemoryTagAwareCache, key: str, tags: list[str]) -> None:
    def callback(item: CacheItem) -> str:
        item.tag(tags)
        return key

    cache.get(key, callback)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def cache() -> InMemoryTagAwareCache:
    return InMemoryTagAwareCache()


@pytest.fixture
def invalidator(cache: InMemoryTagAwareCache):
    """Invalidator listening to every mapped class."""
    invalidator = EntityChangeCacheInvalidator(cache).register(Base)
    yield invalidator
    invalidator.unregister(Base)


# =============================================================================
# Entity Tag Tests
# =============================================================================


class TestEntityTags:
    """Tests for tags of mapped entities."""

    def test_mapped_entity_tags(self) -> None:
        """Test class, object, table and row tags."""
        class_tag = get_class_tag(User)
        assert get_entity_tags(User(id=4, name="Ada")) == [class_tag, f"{class_tag}_4", "users", "users_4"]

    def test_composite_key(self) -> None:
        tags = get_entity_tags(Membership(user_id=1, group_id=2))
        assert tags[-1] == "memberships_1_2"


# =============================================================================
# Listener Tests
# =============================================================================


class TestEntityChangeCacheInvalidator:
    """Tests for invalidation on ORM events."""

    def test_insert_invalidates(self, engine, cache, invalidator) -> None:
        """Test that a flushed insert drops entries of the table."""
        seed(cache, "all_users", ["users"])
        seed(cache, "orders", ["orders"])

        with Session(engine) as session:
            session.add(User(id=1, name="Ada"))
            session.commit()

        assert "all_users" not in cache
        assert "orders" in cache

    def test_update_invalidates_object_tag(self, engine, cache, invalidator) -> None:
        with Session(engine) as session:
            user = User(id=1, name="Ada")
            session.add(user)
            session.commit()

            object_tag = f"{get_class_tag(User)}_1"
            seed(cache, "user_1", [object_tag])
            seed(cache, "user_row", ["users_1"])

            user.name = "Grace"
            session.commit()

        assert "user_1" not in cache
        assert "user_row" not in cache

    def test_delete_invalidates_class_tag(self, engine, cache, invalidator) -> None:
        with Session(engine) as session:
            user = User(id=1, name="Ada")
            session.add(user)
            session.commit()

            seed(cache, "user_list", [get_class_tag(User)])
            session.delete(user)
            session.commit()

        assert "user_list" not in cache

    def test_unregister(self, engine, cache) -> None:
        """Test that an unregistered invalidator no longer reacts."""
        invalidator = EntityChangeCacheInvalidator(cache).register(Base)
        invalidator.unregister(Base)
        seed(cache, "all_users", ["users"])

        with Session(engine) as session:
            session.add(User(id=1, name="Ada"))
            session.commit()

        assert "all_users" in cache

    def test_refresh_cache_plain_object(self) -> None:
        cache = RecordingCache()
        EntityChangeCacheInvalidator(cache).refresh_cache(Plain(9))
        class_tag = get_class_tag(Plain)
        assert cache.invalidate_calls == [[class_tag, f"{class_tag}_9"]]

    def test_missing_identity_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that an entity without identity is logged, not raised."""
        cache = RecordingCache()
        with caplog.at_level(logging.ERROR, logger="sqltagcache.listeners"):
            EntityChangeCacheInvalidator(cache).refresh_cache(Plain())
        assert cache.invalidate_calls == []
        assert "Plain" in caplog.text

    def test_store_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a failing store does not raise."""
        logger = logging.getLogger("tests.listeners")
        cache = RecordingCache(fail_on_invalidate=True)
        with caplog.at_level(logging.ERROR, logger="tests.listeners"):
            EntityChangeCacheInvalidator(cache, logger=logger).refresh_cache(Plain(1))
        assert any(r.levelno == logging.ERROR and r.name == "tests.listeners" for r in caplog.records)

    def test_store_failure_does_not_abort_flush(self, engine) -> None:
        invalidator = EntityChangeCacheInvalidator(RecordingCache(fail_on_invalidate=True)).register(Base)
        try:
            with Session(engine) as session:
                session.add(User(id=1, name="Ada"))
                session.commit()
                assert session.get(User, 1).name == "Ada"
        finally:
            invalidator.unregister(Base)
