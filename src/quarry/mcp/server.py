"""MCP server implementation for quarry.

Tools exposed:

Built-in (registered when enabled on at least one source):
- execute_sql: Run SQL on a source, gated by its read-only policy
- search_objects: Find schemas, tables, columns, indexes and procedures
- generate_code: Convert a SQL query to C# and TypeScript (opt-in per source)

Custom:
- one tool per ``[[tools]]`` entry with a ``statement``

Resources (each also under ``db://sources/{source_id}/...``):
- db://schemas
- db://schemas/{schema}/tables
- db://schemas/{schema}/tables/{table}
- db://schemas/{schema}/tables/{table}/indexes
- db://schemas/{schema}/procedures
- db://schemas/{schema}/procedures/{procedure}

Architecture:
    Each tool has a plain ``_<name>_impl()`` coroutine with the core logic,
    plus a registered wrapper that delegates to it and turns failure
    payloads into MCP error results. Tests call the ``_impl`` functions
    directly; MCP clients hit the wrappers.

    Tool registration depends on configuration, so create_server() builds
    a fresh FastMCP instance per configuration.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Literal

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from quarry.config.models import QuarryConfig
from quarry.observability import get_logger
from quarry.resources import ResourceRouter
from quarry.sources.registry import SourceRegistry
from quarry.tools.custom import run_custom_tool
from quarry.tools.execute_sql import execute_sql
from quarry.tools.generate_code import generate_code
from quarry.tools.models import EXECUTE_SQL, GENERATE_CODE, SEARCH_OBJECTS, CustomToolConfig
from quarry.tools.registry import get_tool_registry, initialize_tool_registry
from quarry.tools.results import TOOL_NOT_ENABLED, failure
from quarry.tools.search_objects import search_objects

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Server-level state: initialized once via create_server() or serve()
# ---------------------------------------------------------------------------

_sources = SourceRegistry()
_router = ResourceRouter(_sources)
_config: QuarryConfig | None = None


def get_source_registry() -> SourceRegistry:
    return _sources


# ---------------------------------------------------------------------------
# Tool implementations (plain coroutines, testable, no decorator wrapping)
# ---------------------------------------------------------------------------


async def _execute_sql_impl(sql: str, source: str | None = None) -> dict:
    """Run SQL on a source."""
    return await execute_sql(_sources, get_tool_registry(), sql, source)


async def _search_objects_impl(
    pattern: str,
    source: str | None = None,
    object_type: str | None = None,
    schema: str | None = None,
    detail_level: str = "names",
    limit: int = 100,
) -> dict:
    """Search database objects by name pattern."""
    return await search_objects(
        _sources,
        get_tool_registry(),
        pattern,
        source=source,
        object_type=object_type,
        schema=schema,
        detail_level=detail_level,
        limit=limit,
    )


async def _generate_code_impl(
    query: str,
    source: str | None = None,
    database_type: str | None = None,
    language: str = "both",
    orm_preference: str = "all",
) -> dict:
    """Convert a SQL query to C# and TypeScript snippets."""
    return generate_code(
        _sources,
        get_tool_registry(),
        query,
        source=source,
        database_type=database_type,
        language=language,
        orm_preference=orm_preference,
    )


async def _custom_tool_impl(name: str, arguments: dict[str, Any]) -> dict:
    """Run the custom tool ``name`` with named arguments."""
    tool = get_tool_registry().get_custom_tool(name)
    if tool is None:
        return failure(f"Tool '{name}' is not configured", TOOL_NOT_ENABLED)
    return await run_custom_tool(_sources, tool, arguments)


async def _read_resource_impl(uri: str, source_id: str | None = None) -> dict:
    """Read a db:// resource."""
    return await _router.read(uri, source_id)


def _unwrap(result: dict) -> dict:
    """Raise failures as ToolError so clients see ``isError: true``."""
    if not result.get("success"):
        raise ToolError(json.dumps(result))
    return result


# ---------------------------------------------------------------------------
# Tool registration
# ---------------------------------------------------------------------------


def _source_hint(source_ids: list[str]) -> str:
    if len(source_ids) == 1:
        return f"Source: '{source_ids[0]}' (the default)."
    return "Sources: " + ", ".join(f"'{s}'" for s in source_ids) + ". Pass one as `source`."


def _register_execute_sql(server: FastMCP, source_ids: list[str]) -> None:
    async def execute_sql_tool(sql: str, source: str | None = None) -> dict:
        return _unwrap(await _execute_sql_impl(sql, source))

    server.tool(
        name=EXECUTE_SQL,
        description=(
            "Execute SQL queries (several statements may be separated by semicolons). "
            "Read-only sources only accept read statements. " + _source_hint(source_ids)
        ),
    )(execute_sql_tool)


def _register_search_objects(server: FastMCP, source_ids: list[str]) -> None:
    async def search_objects_tool(
        pattern: str,
        source: str | None = None,
        object_type: Literal["schema", "table", "column", "index", "procedure"] | None = None,
        schema: str | None = None,
        detail_level: Literal["names", "summary"] = "names",
        limit: int = 100,
    ) -> dict:
        return _unwrap(
            await _search_objects_impl(pattern, source, object_type, schema, detail_level, limit)
        )

    server.tool(
        name=SEARCH_OBJECTS,
        description=(
            "Search schemas, tables, columns, indexes and procedures by name. "
            "Patterns accept * and ? (or SQL % and _) and match case-insensitively. "
            + _source_hint(source_ids)
        ),
    )(search_objects_tool)


def _register_generate_code(server: FastMCP, source_ids: list[str]) -> None:
    async def generate_code_tool(
        query: str,
        source: str | None = None,
        database_type: Literal["postgres", "mysql", "mariadb", "sqlserver", "sqlite"]
        | None = None,
        language: Literal["csharp", "typescript", "both"] = "both",
        orm_preference: Literal["ef-core", "dapper", "prisma", "all"] = "all",
    ) -> dict:
        return _unwrap(
            await _generate_code_impl(query, source, database_type, language, orm_preference)
        )

    server.tool(
        name=GENERATE_CODE,
        description=(
            "Convert a SQL query into equivalent C# (EF Core, Dapper) and TypeScript "
            "(Prisma, plain driver) code. Nothing is executed. database_type defaults "
            "to the source's. " + _source_hint(source_ids)
        ),
    )(generate_code_tool)


_PY_TYPES: dict[str, Any] = {
    "string": str,
    "integer": int,
    "float": float,
    "boolean": bool,
    "array": list,
}


def _custom_tool_signature(tool: CustomToolConfig) -> inspect.Signature:
    params = []
    for p in tool.parameters:
        annotation: Any = _PY_TYPES[p.type]
        if p.allowed_values:
            annotation = Literal[tuple(p.allowed_values)]
        if p.required and p.default is None:
            default: Any = inspect.Parameter.empty
        else:
            default = p.default
            if default is None:
                annotation = annotation | None
        params.append(
            inspect.Parameter(
                p.name, inspect.Parameter.KEYWORD_ONLY, default=default, annotation=annotation
            )
        )
    return inspect.Signature(params, return_annotation=dict)


def _custom_tool_description(tool: CustomToolConfig) -> str:
    lines = [tool.description]
    if tool.parameters:
        lines.append("")
        lines.append("Args:")
        for p in tool.parameters:
            extra = ""
            if p.allowed_values:
                extra = f" One of: {', '.join(str(v) for v in p.allowed_values)}."
            lines.append(f"    {p.name} ({p.type}): {p.description}{extra}")
    return "\n".join(lines)


def _register_custom_tool(server: FastMCP, tool: CustomToolConfig) -> None:
    async def custom_tool(**kwargs: Any) -> dict:
        return _unwrap(await _custom_tool_impl(tool.name, kwargs))

    signature = _custom_tool_signature(tool)
    custom_tool.__name__ = tool.name
    custom_tool.__signature__ = signature  # type: ignore[attr-defined]
    custom_tool.__annotations__ = {
        **{name: p.annotation for name, p in signature.parameters.items()},
        "return": dict,
    }
    server.tool(name=tool.name, description=_custom_tool_description(tool))(custom_tool)


# ---------------------------------------------------------------------------
# Resource registration
# ---------------------------------------------------------------------------


def _register_resources(server: FastMCP) -> None:
    @server.resource("db://schemas", mime_type="application/json")
    async def schemas() -> dict:
        """List schemas of the default source."""
        return await _read_resource_impl("db://schemas")

    @server.resource("db://schemas/{schema}/tables", mime_type="application/json")
    async def tables(schema: str) -> dict:
        """List tables in a schema."""
        return await _read_resource_impl(f"db://schemas/{schema}/tables")

    @server.resource("db://schemas/{schema}/tables/{table}", mime_type="application/json")
    async def table_structure(schema: str, table: str) -> dict:
        """Column structure of a table."""
        return await _read_resource_impl(f"db://schemas/{schema}/tables/{table}")

    @server.resource(
        "db://schemas/{schema}/tables/{table}/indexes", mime_type="application/json"
    )
    async def indexes(schema: str, table: str) -> dict:
        """Indexes of a table."""
        return await _read_resource_impl(f"db://schemas/{schema}/tables/{table}/indexes")

    @server.resource("db://schemas/{schema}/procedures", mime_type="application/json")
    async def procedures(schema: str) -> dict:
        """Stored procedures and functions in a schema."""
        return await _read_resource_impl(f"db://schemas/{schema}/procedures")

    @server.resource(
        "db://schemas/{schema}/procedures/{procedure}", mime_type="application/json"
    )
    async def procedure_detail(schema: str, procedure: str) -> dict:
        """Definition and signature of one stored procedure."""
        return await _read_resource_impl(f"db://schemas/{schema}/procedures/{procedure}")

    # Source-scoped variants

    @server.resource("db://sources/{source_id}/schemas", mime_type="application/json")
    async def source_schemas(source_id: str) -> dict:
        """List schemas of one source."""
        return await _read_resource_impl("db://schemas", source_id)

    @server.resource(
        "db://sources/{source_id}/schemas/{schema}/tables", mime_type="application/json"
    )
    async def source_tables(source_id: str, schema: str) -> dict:
        """List tables in a schema of one source."""
        return await _read_resource_impl(f"db://schemas/{schema}/tables", source_id)

    @server.resource(
        "db://sources/{source_id}/schemas/{schema}/tables/{table}",
        mime_type="application/json",
    )
    async def source_table_structure(source_id: str, schema: str, table: str) -> dict:
        """Column structure of a table in one source."""
        return await _read_resource_impl(f"db://schemas/{schema}/tables/{table}", source_id)

    @server.resource(
        "db://sources/{source_id}/schemas/{schema}/tables/{table}/indexes",
        mime_type="application/json",
    )
    async def source_indexes(source_id: str, schema: str, table: str) -> dict:
        """Indexes of a table in one source."""
        return await _read_resource_impl(
            f"db://schemas/{schema}/tables/{table}/indexes", source_id
        )

    @server.resource(
        "db://sources/{source_id}/schemas/{schema}/procedures", mime_type="application/json"
    )
    async def source_procedures(source_id: str, schema: str) -> dict:
        """Stored procedures in a schema of one source."""
        return await _read_resource_impl(f"db://schemas/{schema}/procedures", source_id)

    @server.resource(
        "db://sources/{source_id}/schemas/{schema}/procedures/{procedure}",
        mime_type="application/json",
    )
    async def source_procedure_detail(source_id: str, schema: str, procedure: str) -> dict:
        """Definition of one stored procedure in one source."""
        return await _read_resource_impl(
            f"db://schemas/{schema}/procedures/{procedure}", source_id
        )


# ---------------------------------------------------------------------------
# Construction and entry point
# ---------------------------------------------------------------------------


def create_server(config: QuarryConfig, sources: SourceRegistry | None = None) -> FastMCP:
    """Build the MCP server for ``config``.

    Initializes the process-wide tool registry and (re)binds the source
    registry. Sources are not connected here; serve() does that. Tests pass
    a pre-populated ``sources``.
    """
    global _sources, _router, _config

    _config = config
    _sources = sources if sources is not None else SourceRegistry()
    _router = ResourceRouter(_sources)
    registry = initialize_tool_registry(config)

    server = FastMCP("quarry")
    enabled = registry.get_enabled_builtin_tool_names()
    if EXECUTE_SQL in enabled:
        _register_execute_sql(server, registry.sources_with_tool(EXECUTE_SQL))
    if SEARCH_OBJECTS in enabled:
        _register_search_objects(server, registry.sources_with_tool(SEARCH_OBJECTS))
    if GENERATE_CODE in enabled:
        _register_generate_code(server, registry.sources_with_tool(GENERATE_CODE))
    for tool in registry.get_custom_tools():
        _register_custom_tool(server, tool)
    _register_resources(server)

    logger.info(
        "mcp.server_created",
        sources=config.source_ids(),
        builtin_tools=enabled,
        custom_tools=[t.name for t in registry.get_custom_tools()],
    )
    return server


async def serve_async(
    config: QuarryConfig,
    transport: str = "stdio",
    host: str | None = None,
    port: int | None = None,
) -> None:
    server = create_server(config)
    await _sources.connect_sources(config.sources)
    kwargs: dict[str, Any] = {}
    if transport != "stdio":
        if host:
            kwargs["host"] = host
        if port:
            kwargs["port"] = port
    try:
        await server.run_async(transport=transport, **kwargs)
    finally:
        await _sources.clear_async()


def serve(
    config: QuarryConfig,
    transport: str = "stdio",
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Connect every source, then start the quarry MCP server.

    Args:
        config: Loaded configuration.
        transport: "stdio" (default), "sse" or "http".
        host: Bind address for network transports.
        port: Port for network transports.
    """
    asyncio.run(serve_async(config, transport, host, port))
