"""The ``execute_sql`` built-in."""

from __future__ import annotations

from typing import Any

from quarry.errors import SourceNotFoundError
from quarry.sources.registry import SourceRegistry
from quarry.tools.models import EXECUTE_SQL
from quarry.tools.registry import ToolRegistry
from quarry.tools.results import (
    INVALID_ARGUMENT,
    TOOL_NOT_ENABLED,
    effective_readonly,
    failure,
    failure_from,
    run_guarded,
)


async def execute_sql(
    sources: SourceRegistry,
    tools: ToolRegistry,
    sql: str,
    source: str | None = None,
) -> dict[str, Any]:
    """Run ``sql`` on a source, subject to its read-only and row-cap policy."""
    try:
        source_id = sources.resolve_source_id(source)
    except SourceNotFoundError as e:
        return failure_from(e)

    tool = tools.get_builtin_tool_config(EXECUTE_SQL, source_id)
    if tool is None:
        return failure(
            f"Tool '{EXECUTE_SQL}' is not enabled for source '{source_id}'",
            TOOL_NOT_ENABLED,
        )
    if not sql or not sql.strip():
        return failure("sql must not be empty", INVALID_ARGUMENT)

    connector = sources.get_connector(source_id)
    return await run_guarded(
        connector,
        sql,
        tool=EXECUTE_SQL,
        readonly=effective_readonly(connector.options.readonly, getattr(tool, "readonly", None)),
        max_rows=getattr(tool, "max_rows", None),
    )
