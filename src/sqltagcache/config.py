"""Configuration for the caching proxy.

The proxy reads three settings:

- ``enabled``: process-wide kill switch for result caching (default on).
- ``default_ttl``: lifetime of cached entries in seconds (default one day).
- ``tag_ttls``: per-tag lifetime overrides, keyed by tag name.

A ``CacheConfig`` is normally built in code and passed to the proxy. It can
also be loaded from the environment or from a YAML, JSON or TOML file:

    >>> config = CacheConfig.from_env()        # SQLTAGCACHE_* variables
    >>> config = load_config("sqltagcache.yaml")

Environment variables:

    SQLTAGCACHE_TABLE_SWITCH=off                 # disable caching
    SQLTAGCACHE_GLOBAL_TABLE_DURATION=3600       # default TTL
    SQLTAGCACHE_TABLE_DURATION_users=60          # TTL for the "users" tag
"""

from __future__ import annotations

import json
import os
import re
import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from sqltagcache.exceptions import ConfigError, ConfigValidationError

DEFAULT_TTL = 60 * 60 * 24
ENV_PREFIX = "SQLTAGCACHE"

_TRUE_WORDS = ("true", "yes", "1", "on")
_FALSE_WORDS = ("false", "no", "0", "off", "")
_INTEGER_RE = re.compile(r"^\s*\d+\s*$")


def _parse_ttl(value: Any) -> int | None:
    """Parse a TTL value, returning None when it is not a non-negative integer."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and _INTEGER_RE.match(value):
        return int(value)
    return None


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ConfigValidationError([f"{name} must be a boolean, got {value!r}"])


@dataclass
class CacheConfig:
    """Caching proxy configuration.

    Attributes:
        enabled: Global kill switch. When False no read is cached.
        default_ttl: Lifetime in seconds of entries whose tags have no
            override. Values that are not non-negative integers fall back to
            one day.
        tag_ttls: Lifetime overrides keyed by tag. Values that are not
            non-negative integers resolve to 0 (immediate expiry).
    """

    enabled: bool = True
    default_ttl: Any = DEFAULT_TTL
    tag_ttls: dict[str, Any] = field(default_factory=dict)

    def tag_ttl(self, tag: str) -> int | None:
        """Get the TTL override configured for a tag.

        Args:
            tag: Tag name.

        Returns:
            The override in seconds, 0 for an invalid override, or None if
            the tag has no override.
        """
        if tag not in self.tag_ttls:
            return None
        value = self.tag_ttls[tag]
        if value is None:
            return None
        parsed = _parse_ttl(value)
        return 0 if parsed is None else parsed

    def global_ttl(self) -> int:
        """Get the default TTL in seconds."""
        parsed = _parse_ttl(self.default_ttl)
        return DEFAULT_TTL if parsed is None else parsed

    def resolve_ttl(self, tags: Iterable[str]) -> int:
        """Resolve the TTL for an entry carrying ``tags``.

        The first tag (in the given order) with an override wins; without
        any override the default TTL applies.
        """
        for tag in tags:
            if tag is None:
                continue
            duration = self.tag_ttl(tag)
            if duration is not None:
                return duration
        return self.global_ttl()

    def validate(self) -> "CacheConfig":
        """Check the structure of the configuration.

        Raises:
            ConfigValidationError: If a setting has the wrong shape.
        """
        errors: list[str] = []
        if not isinstance(self.enabled, bool):
            errors.append(f"enabled must be a boolean, got {self.enabled!r}")
        if not isinstance(self.tag_ttls, Mapping):
            errors.append("tag_ttls must be a mapping of tag to seconds")
        else:
            for tag in self.tag_ttls:
                if not isinstance(tag, str) or not tag:
                    errors.append(f"tag_ttls keys must be non-empty strings, got {tag!r}")
        if errors:
            raise ConfigValidationError(errors)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "default_ttl": self.global_ttl(),
            "tag_ttls": {tag: self.tag_ttl(tag) for tag in self.tag_ttls},
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CacheConfig":
        """Build a configuration from a plain mapping.

        Accepts the keys ``enabled``, ``default_ttl`` and ``tag_ttls``.
        Unknown keys are rejected.
        """
        unknown = set(data) - {"enabled", "default_ttl", "tag_ttls"}
        if unknown:
            raise ConfigValidationError([f"unknown setting: {name}" for name in sorted(unknown)])

        tag_ttls = data.get("tag_ttls") or {}
        if not isinstance(tag_ttls, Mapping):
            raise ConfigValidationError(["tag_ttls must be a mapping of tag to seconds"])

        config = cls(
            enabled=_parse_bool("enabled", data.get("enabled", True)),
            default_ttl=data.get("default_ttl", DEFAULT_TTL),
            tag_ttls=dict(tag_ttls),
        )
        return config.validate()

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = ENV_PREFIX,
    ) -> "CacheConfig":
        """Build a configuration from environment variables.

        Args:
            environ: Variables to read (defaults to ``os.environ``).
            prefix: Variable name prefix.

        Returns:
            Configuration with unset values at their defaults.
        """
        env = os.environ if environ is None else environ
        switch_key = f"{prefix}_TABLE_SWITCH"
        global_key = f"{prefix}_GLOBAL_TABLE_DURATION"
        tag_prefix = f"{prefix}_TABLE_DURATION_"

        tag_ttls = {
            key[len(tag_prefix):]: value
            for key, value in env.items()
            if key.startswith(tag_prefix) and len(key) > len(tag_prefix)
        }
        config = cls(
            enabled=_parse_bool(switch_key, env[switch_key]) if switch_key in env else True,
            default_ttl=env.get(global_key, DEFAULT_TTL),
            tag_ttls=tag_ttls,
        )
        return config.validate()


def load_config(path: str | Path) -> CacheConfig:
    """Load a configuration file.

    The format is chosen from the extension: ``.yaml``/``.yml``, ``.json``
    or ``.toml``. Settings may sit at the top level or under a
    ``sqltagcache`` section.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    try:
        content = path.read_text(encoding="utf-8")
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif suffix == ".json":
            data = json.loads(content)
        elif suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ConfigError(f"Unsupported configuration format: {suffix}")
    except (OSError, yaml.YAMLError, json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load configuration from {path}: {e}") from e

    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration root must be a mapping: {path}")
    section = data.get("sqltagcache", data)
    if not isinstance(section, Mapping):
        raise ConfigError(f"'sqltagcache' section must be a mapping: {path}")
    return CacheConfig.from_mapping(section)
