"""Command-line interface for sqltagcache.

Inspection helpers for the tags, keys and lifetimes the caching proxy
derives from a query.
"""

import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from sqltagcache.config import CacheConfig, load_config
from sqltagcache.exceptions import ConfigError
from sqltagcache.keys import build_cache_key
from sqltagcache.tags import extract_tags

app = typer.Typer(
    name="sqltagcache",
    help="Inspect the tags, keys and TTLs of the SQL result cache",
    add_completion=False,
)


def _parse_param(value: str) -> Any:
    """Read a parameter as a JSON scalar, keeping anything else as text."""
    try:
        parsed = json.loads(value)
    except ValueError:
        return value
    if isinstance(parsed, (dict, list)):
        return value
    return parsed


def _load(config_file: Optional[Path]) -> CacheConfig:
    """Load the configuration file, or the environment when none is given."""
    try:
        if config_file is not None:
            return load_config(config_file)
        return CacheConfig.from_env()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="tags")
def tags_cmd(
    sql: Annotated[str, typer.Argument(help="SQL query text")],
) -> None:
    """Print the invalidation tags of a query, one per line."""
    for tag in extract_tags(sql):
        typer.echo(tag)


@app.command(name="key")
def key_cmd(
    operation: Annotated[str, typer.Argument(help="Read operation, e.g. fetch_all_associative")],
    sql: Annotated[str, typer.Argument(help="SQL query text")],
    params: Annotated[
        Optional[list[str]],
        typer.Option(
            "--param",
            "-p",
            help="Positional parameter, read as JSON when it parses (1, true, null, \"1\")",
        ),
    ] = None,
) -> None:
    """Print the cache key the proxy uses for a read without type hints."""
    values = [_parse_param(value) for value in params or []]
    typer.echo(build_cache_key(operation, sql, [values, []]))


@app.command(name="ttl")
def ttl_cmd(
    sql: Annotated[str, typer.Argument(help="SQL query text")],
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Configuration file (YAML, JSON or TOML)"),
    ] = None,
) -> None:
    """Print the lifetime in seconds of a cached query result."""
    config = _load(config_file)
    typer.echo(config.resolve_ttl(extract_tags(sql)))


@app.command(name="config")
def config_cmd(
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Configuration file (YAML, JSON or TOML)"),
    ] = None,
) -> None:
    """Print the effective configuration as JSON."""
    config = _load(config_file)
    typer.echo(json.dumps(config.to_dict(), indent=2, sort_keys=True))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
