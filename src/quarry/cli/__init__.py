"""Quarry CLI -- typer-based command interface.

Commands:
    quarry serve                 Start the MCP server (stdio, sse or http)
    quarry sources               Show configured sources and their tools
    quarry sample-dsns           Print a sample DSN per database
    quarry check-query <sql>     Check SQL against the read-only gate
    quarry resource <uri>        Read one db:// resource
"""

from __future__ import annotations

from pathlib import Path

import typer

from quarry.cli import inspect_cmd
from quarry.cli._config import get_config
from quarry.cli._errors import handle_error, reports_errors

app = typer.Typer(
    name="quarry",
    help="Serve SQL databases to MCP clients: schemas as resources, queries as tools.",
    no_args_is_help=True,
)

app.command("sources")(inspect_cmd.sources)
app.command("sample-dsns")(inspect_cmd.sample_dsns)
app.command("check-query")(inspect_cmd.check_query)
app.command("resource")(inspect_cmd.resource)

_TRANSPORTS = ("stdio", "sse", "http")


@app.command("serve")
@reports_errors
def serve(
    config: Path = typer.Option(None, "--config", "-c", help="Path to quarry.toml / .yaml"),
    dsn: str = typer.Option(None, "--dsn", help="Single database DSN"),
    transport: str = typer.Option(None, help="Transport: 'stdio', 'sse' or 'http'."),
    host: str = typer.Option(None, help="Bind address for sse/http."),
    port: int = typer.Option(None, help="Port for sse/http."),
    readonly: bool = typer.Option(
        None, "--readonly/--no-readonly", help="Override read-only mode for every source."
    ),
    max_rows: int = typer.Option(None, "--max-rows", min=1, help="Row cap for every source."),
) -> None:
    """Start the quarry MCP server.

    Exposes each configured database as db:// resources plus execute_sql,
    search_objects and any custom tools.
    """
    from quarry.config.loader import load_config
    from quarry.mcp.server import serve as serve_mcp
    from quarry.observability import configure

    defaults = get_config()
    transport = transport or defaults.transport
    if transport not in _TRANSPORTS:
        handle_error(f"Unknown transport '{transport}'. Valid: {', '.join(_TRANSPORTS)}")

    configure()
    loaded = load_config(config, dsn, readonly=readonly, max_rows=max_rows)
    for row in inspect_cmd.startup_table(loaded):
        typer.echo(row, err=True)
    serve_mcp(loaded, transport=transport, host=host or defaults.host, port=port or defaults.port)


def main() -> None:
    """Entry point for the quarry CLI."""
    app()
