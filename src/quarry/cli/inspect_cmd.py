"""CLI commands for inspecting configuration, DSNs, queries and resources."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer

from quarry.cli._errors import handle_error, reports_errors
from quarry.config.loader import load_config
from quarry.config.models import QuarryConfig
from quarry.connectors.registry import default_connector_registry
from quarry.resources import ResourceRouter
from quarry.sources.registry import SourceRegistry
from quarry.sql.safety import ALLOWED_KEYWORDS, validate_query
from quarry.tools.registry import ToolRegistry


def startup_table(config: QuarryConfig) -> list[str]:
    """Rows describing each source: id, type, DSN (masked), policy, tools."""
    registry = ToolRegistry(config)
    rows = [
        f"{'Source':<16} {'Type':<10} {'Mode':<10} {'Max rows':>8}  {'DSN'}",
        "-" * 72,
    ]
    for source in config.sources:
        mode = "read-only" if source.readonly is not False else "writable"
        max_rows = str(source.max_rows) if source.max_rows else "-"
        tunnel = f" via ssh {source.ssh.host}" if source.ssh else ""
        rows.append(
            f"{source.id:<16} {source.type or '?':<10} {mode:<10} {max_rows:>8}  "
            f"{source.safe_dsn}{tunnel}"
        )
        names = ", ".join(t.name for t in registry.get_tools_for_source(source.id))
        rows.append(f"{'':<16} tools: {names}")
    return rows


@reports_errors
def sources(
    config: Path = typer.Option(None, "--config", "-c", help="Path to quarry.toml / .yaml"),
    dsn: str = typer.Option(None, "--dsn", help="Single database DSN"),
) -> None:
    """Show configured sources and the tools each exposes."""
    loaded = load_config(config, dsn)
    if loaded.origin:
        typer.echo(f"Configuration: {loaded.origin}")
    for row in startup_table(loaded):
        typer.echo(row)


def sample_dsns() -> None:
    """Print a sample DSN for every supported database."""
    for connector_id, sample in default_connector_registry().get_all_sample_dsns().items():
        typer.echo(f"{connector_id:<10} {sample}")


def check_query(
    sql: str = typer.Argument(..., help="SQL to check"),
    dialect: str = typer.Option("postgres", "--dialect", "-d", help="Database dialect"),
    readonly: bool = typer.Option(True, "--readonly/--no-readonly", help="Apply read-only rules"),
) -> None:
    """Check whether SQL would pass the read-only gate."""
    if dialect not in ALLOWED_KEYWORDS:
        handle_error(f"Unknown dialect '{dialect}'. Valid: {', '.join(ALLOWED_KEYWORDS)}")
    result = validate_query(sql, dialect, readonly=readonly)
    if not result:
        handle_error(result.message or "rejected")
    typer.echo("OK")


async def _read_resource(loaded: QuarryConfig, uri: str, source: str | None) -> dict:
    registry = SourceRegistry()
    targets = [s for s in loaded.sources if source is None or s.id == source]
    await registry.connect_sources(targets)
    try:
        return await ResourceRouter(registry).read(uri, source)
    finally:
        await registry.clear_async()


@reports_errors
def resource(
    uri: str = typer.Argument(..., help="Resource URI, e.g. db://schemas"),
    source: str = typer.Option(None, "--source", "-s", help="Source id"),
    config: Path = typer.Option(None, "--config", "-c", help="Path to quarry.toml / .yaml"),
    dsn: str = typer.Option(None, "--dsn", help="Single database DSN"),
) -> None:
    """Read a db:// resource once and print it as JSON."""
    loaded = load_config(config, dsn)
    payload = asyncio.run(_read_resource(loaded, uri, source))
    typer.echo(json.dumps(payload, indent=2, default=str))
    if "error" in payload:
        raise typer.Exit(1)
