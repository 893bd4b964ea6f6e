"""Tests for the command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from sqltagcache.cli import app
from sqltagcache.keys import build_cache_key

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove configuration variables from the environment."""
    for name in ("SQLTAGCACHE_TABLE_SWITCH", "SQLTAGCACHE_GLOBAL_TABLE_DURATION"):
        monkeypatch.delenv(name, raising=False)


class TestTagsCommand:
    def test_prints_tags(self) -> None:
        result = runner.invoke(app, ["tags", "SELECT * FROM users u JOIN profiles p ON 1 = 1 "])
        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["users", "profiles"]


class TestKeyCommand:
    def test_matches_proxy_key(self) -> None:
        """Test that the printed key is the one the proxy uses."""
        sql = "SELECT * FROM users WHERE id = ?"
        result = runner.invoke(app, ["key", "fetch_one", sql, "--param", "1"])
        assert result.exit_code == 0
        assert result.stdout.strip() == build_cache_key("fetch_one", sql, [[1], []])
        assert result.stdout.strip() != build_cache_key("fetch_one", sql, [["1"], []])

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2.5", 2.5),
            ("true", True),
            ("null", None),
            ('"1"', "1"),
            ("Ada", "Ada"),
            ("[1, 2]", "[1, 2]"),
        ],
    )
    def test_param_values(self, raw: str, expected: object) -> None:
        """Test that parameters are read as JSON scalars, falling back to text."""
        sql = "SELECT * FROM users WHERE name = ?"
        result = runner.invoke(app, ["key", "fetch_one", sql, "-p", raw])
        assert result.exit_code == 0
        assert result.stdout.strip() == build_cache_key("fetch_one", sql, [[expected], []])


class TestTTLCommand:
    def test_default_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SQLTAGCACHE_GLOBAL_TABLE_DURATION", "120")
        result = runner.invoke(app, ["ttl", "SELECT * FROM users WHERE id = 1"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "120"

    def test_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.yaml"
        path.write_text("tag_ttls:\n  users: 15\n")
        result = runner.invoke(app, ["ttl", "SELECT * FROM users WHERE id = 1", "--config", str(path)])
        assert result.exit_code == 0
        assert result.stdout.strip() == "15"


class TestConfigCommand:
    def test_prints_json(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"enabled": False, "default_ttl": 5}))
        result = runner.invoke(app, ["config", "--config", str(path)])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"enabled": False, "default_ttl": 5, "tag_ttls": {}}

    def test_missing_file_exits_with_error(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["config", "--config", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1

    def test_invalid_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SQLTAGCACHE_TABLE_SWITCH", "sometimes")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 1
