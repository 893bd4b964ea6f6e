"""Tests for invalidation tag derivation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from sqltagcache.exceptions import EntityIdentityError
from sqltagcache.tags import (
    extract_tags,
    get_class_tag,
    get_entity_identity,
    get_entity_tags,
    row_tag,
    sanitize_identifier,
    write_tags,
)


class Article:
    def __init__(self, id):
        self.id = id


# =============================================================================
# extract_tags Tests
# =============================================================================


class TestExtractTags:
    """Tests for table extraction from SQL text."""

    def test_simple_select(self) -> None:
        """Test that the table of a filtered select is found."""
        assert extract_tags("SELECT * FROM users WHERE id = ?") == ["users"]

    def test_join(self) -> None:
        """Test that joined tables are found after the FROM table."""
        sql = "SELECT * FROM users u JOIN profiles p ON p.user_id = u.id WHERE u.id = ?"
        assert extract_tags(sql) == ["users", "profiles"]

    def test_no_trailing_space_yields_nothing(self) -> None:
        """Test the known limitation: the match needs a following space."""
        assert extract_tags("SELECT * FROM users") == []

    def test_temporary_tables_are_skipped(self) -> None:
        """Test that identifiers starting with # produce no tag."""
        sql = "SELECT * FROM #tmp_users JOIN orders ON 1 = 1 "
        assert extract_tags(sql) == ["orders"]

    def test_quotes_are_stripped(self) -> None:
        """Test that quoting characters are removed from identifiers."""
        assert extract_tags('SELECT * FROM `users` JOIN "orders" ON 1 = 1 ') == ["users", "orders"]

    def test_duplicates_removed_in_first_seen_order(self) -> None:
        """Test that repeated tables appear once."""
        sql = "SELECT * FROM users JOIN orders ON 1 = 1 JOIN users ON 1 = 1 "
        assert extract_tags(sql) == ["users", "orders"]

    def test_empty_identifier_dropped(self) -> None:
        """Test that a double space does not produce an empty tag."""
        assert extract_tags("SELECT * FROM  users WHERE 1 = 1") == []

    @pytest.mark.parametrize(
        "sql,expected",
        [
            ("UPDATE users SET name = ? WHERE id = ?", ["users"]),
            ("INSERT INTO users (id) VALUES (?)", ["users"]),
            ("DELETE FROM users WHERE id = ?", ["users"]),
        ],
    )
    def test_write_statements(self, sql: str, expected: list[str]) -> None:
        """Test the write statement patterns."""
        assert extract_tags(sql) == expected

    def test_case_sensitive_keywords(self) -> None:
        """Test that lowercase keywords are not matched."""
        assert extract_tags("select * from users where id = 1") == []

    def test_alias_is_not_resolved(self) -> None:
        """Test that only the table name, not the alias, becomes a tag."""
        assert extract_tags("SELECT u.id FROM users u WHERE u.id = 1") == ["users"]


# =============================================================================
# Write Tag Tests
# =============================================================================


class TestWriteTags:
    """Tests for tags invalidated by table writes."""

    def test_insert_tags(self) -> None:
        """Test that a write without criteria invalidates only the table."""
        assert write_tags("users") == ["users"]

    def test_criteria_with_id(self) -> None:
        """Test that an id criterion adds the row tag."""
        assert write_tags("users", {"id": 1}) == ["users", "users_1"]

    def test_criteria_without_id(self) -> None:
        """Test that criteria without id only invalidate the table."""
        assert write_tags("users", {"email": "a@example.com"}) == ["users"]

    def test_non_scalar_id_is_ignored(self) -> None:
        """Test that list ids do not produce a row tag."""
        assert write_tags("users", {"id": [1, 2]}) == ["users"]

    @pytest.mark.parametrize(
        "identity,expected",
        [
            ("abc", "users_abc"),
            (Decimal("7"), "users_7"),
            (True, "users_1"),
            (2.5, "users_2.5"),
        ],
    )
    def test_scalar_ids(self, identity: object, expected: str) -> None:
        """Test row tags for the accepted scalar id types."""
        assert write_tags("users", {"id": identity})[1] == expected

    def test_row_tag(self) -> None:
        """Test the row tag format."""
        assert row_tag("`users`", 5) == "users_5"

    def test_sanitize_identifier(self) -> None:
        """Test that control characters are removed."""
        assert sanitize_identifier("us\ters\r\n") == "users"


# =============================================================================
# Entity Tag Tests
# =============================================================================


class TestEntityTags:
    """Tests for tags derived from entities."""

    def test_class_tag(self) -> None:
        """Test that the class tag joins module and qualname with underscores."""
        expected = f"{Article.__module__}.Article".replace(".", "_")
        assert get_class_tag(Article) == expected

    def test_unmapped_entity_tags(self) -> None:
        """Test tags of an object that is not mapped by the ORM."""
        class_tag = get_class_tag(Article)
        assert get_entity_tags(Article(3)) == [class_tag, f"{class_tag}_3"]

    def test_identity_from_id_attribute(self) -> None:
        """Test the id attribute fallback."""
        assert get_entity_identity(Article("x")) == "x"

    def test_missing_identity_raises(self) -> None:
        """Test that an entity without id raises EntityIdentityError."""
        with pytest.raises(EntityIdentityError) as exc_info:
            get_entity_tags(Article(None))
        assert exc_info.value.entity_type == "Article"

    def test_object_without_id_attribute(self) -> None:
        """Test that an object lacking an id attribute raises."""
        with pytest.raises(EntityIdentityError):
            get_entity_identity(object())
