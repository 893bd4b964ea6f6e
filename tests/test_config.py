"""Tests for cache configuration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from sqltagcache.config import DEFAULT_TTL, CacheConfig, load_config
from sqltagcache.exceptions import ConfigError, ConfigValidationError


# =============================================================================
# TTL Resolution Tests
# =============================================================================


class TestResolveTTL:
    """Tests for per-tag TTL resolution."""

    def test_default(self) -> None:
        """Test that the default TTL is one day."""
        assert CacheConfig().resolve_ttl(["users"]) == DEFAULT_TTL == 86400

    def test_override_wins_regardless_of_order(self) -> None:
        """Test that a tag override beats the global default in any position."""
        config = CacheConfig(default_ttl=3600, tag_ttls={"profiles": 60})
        assert config.resolve_ttl(["users", "profiles"]) == 60
        assert config.resolve_ttl(["profiles", "users"]) == 60

    def test_first_override_wins(self) -> None:
        """Test that the first tag with an override decides."""
        config = CacheConfig(tag_ttls={"users": 10, "profiles": 60})
        assert config.resolve_ttl(["profiles", "users"]) == 60

    def test_invalid_override_is_zero(self) -> None:
        """Test that a non-numeric override expires immediately."""
        config = CacheConfig(tag_ttls={"users": "soon"})
        assert config.resolve_ttl(["users"]) == 0

    def test_numeric_string_override(self) -> None:
        config = CacheConfig(tag_ttls={"users": "120"})
        assert config.resolve_ttl(["users"]) == 120

    def test_invalid_global_falls_back(self) -> None:
        """Test that an invalid global default falls back to one day."""
        assert CacheConfig(default_ttl="later").resolve_ttl(["users"]) == DEFAULT_TTL
        assert CacheConfig(default_ttl=-5).global_ttl() == DEFAULT_TTL

    def test_no_tags_uses_global(self) -> None:
        assert CacheConfig(default_ttl=30).resolve_ttl([]) == 30


# =============================================================================
# Environment Tests
# =============================================================================


class TestFromEnv:
    """Tests for loading configuration from environment variables."""

    def test_empty_environment(self) -> None:
        """Test defaults when no variable is set."""
        config = CacheConfig.from_env({})
        assert config.enabled is True
        assert config.global_ttl() == DEFAULT_TTL
        assert config.tag_ttls == {}

    def test_all_variables(self) -> None:
        """Test the switch, the global duration and tag durations."""
        config = CacheConfig.from_env(
            {
                "SQLTAGCACHE_TABLE_SWITCH": "off",
                "SQLTAGCACHE_GLOBAL_TABLE_DURATION": "3600",
                "SQLTAGCACHE_TABLE_DURATION_users": "60",
                "UNRELATED": "1",
            }
        )
        assert config.enabled is False
        assert config.global_ttl() == 3600
        assert config.tag_ttl("users") == 60
        assert config.tag_ttl("orders") is None

    @pytest.mark.parametrize("value", ["true", "YES", "1", "on"])
    def test_switch_true_words(self, value: str) -> None:
        assert CacheConfig.from_env({"SQLTAGCACHE_TABLE_SWITCH": value}).enabled is True

    def test_invalid_switch(self) -> None:
        """Test that an unknown boolean word is rejected."""
        with pytest.raises(ConfigValidationError):
            CacheConfig.from_env({"SQLTAGCACHE_TABLE_SWITCH": "maybe"})

    def test_custom_prefix(self) -> None:
        config = CacheConfig.from_env({"APP_TABLE_SWITCH": "no"}, prefix="APP")
        assert config.enabled is False


# =============================================================================
# Mapping and File Tests
# =============================================================================


class TestFromMapping:
    """Tests for building configuration from mappings."""

    def test_valid(self) -> None:
        config = CacheConfig.from_mapping({"enabled": "yes", "default_ttl": 10, "tag_ttls": {"users": 5}})
        assert config.to_dict() == {"enabled": True, "default_ttl": 10, "tag_ttls": {"users": 5}}

    def test_unknown_key(self) -> None:
        """Test that unknown settings are rejected."""
        with pytest.raises(ConfigValidationError) as exc_info:
            CacheConfig.from_mapping({"ttl": 10})
        assert exc_info.value.errors == ["unknown setting: ttl"]

    def test_tag_ttls_must_be_mapping(self) -> None:
        with pytest.raises(ConfigValidationError):
            CacheConfig.from_mapping({"tag_ttls": ["users"]})


class TestLoadConfig:
    """Tests for configuration files."""

    def test_yaml(self, tmp_path: Path) -> None:
        """Test a YAML file with a sqltagcache section."""
        path = tmp_path / "cache.yaml"
        path.write_text("sqltagcache:\n  enabled: false\n  default_ttl: 600\n  tag_ttls:\n    users: 30\n")
        config = load_config(path)
        assert config.enabled is False
        assert config.resolve_ttl(["users"]) == 30
        assert config.resolve_ttl(["orders"]) == 600

    def test_json(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"default_ttl": 42}))
        assert load_config(path).global_ttl() == 42

    def test_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.toml"
        path.write_text("[sqltagcache]\ndefault_ttl = 7\n\n[sqltagcache.tag_ttls]\nusers = 1\n")
        config = load_config(path)
        assert config.global_ttl() == 7
        assert config.tag_ttl("users") == 1

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.ini"
        path.write_text("[x]")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_malformed_file(self, tmp_path: Path) -> None:
        """Test that parser errors become ConfigError."""
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_root_must_be_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)
