"""Tool result payloads and the shared guarded-execution path."""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

from quarry.connectors.base import Connector
from quarry.errors import ExecutionError, QuarryError, ValidationRejection
from quarry.observability import QueryExecuted, QueryFailed, QueryRejected, emit, log_context
from quarry.sql.safety import check_query

# Codes raised by handlers themselves; exceptions carry their own ``code``.
TOOL_NOT_ENABLED = "TOOL_NOT_ENABLED"
INVALID_ARGUMENT = "INVALID_ARGUMENT"


def success(data: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "data": data}


def failure(message: str, code: str) -> dict[str, Any]:
    return {"success": False, "error": message, "code": code}


def failure_from(exc: QuarryError) -> dict[str, Any]:
    if isinstance(exc, ExecutionError):
        return failure(exc.diagnostic, exc.code)
    return failure(str(exc), exc.code)


def effective_readonly(source_readonly: bool, tool_readonly: bool | None) -> bool:
    """A tool can make a writable source read-only, never the reverse."""
    return source_readonly or tool_readonly is True


async def run_guarded(
    connector: Connector,
    sql: str,
    *,
    tool: str,
    params: Sequence[Any] | None = None,
    readonly: bool,
    max_rows: int | None = None,
) -> dict[str, Any]:
    """Gate, execute and shape one tool call. Never raises QuarryError."""
    source_id = connector.source_id or ""
    try:
        check_query(sql, connector.dialect, readonly=readonly, source_id=source_id)
    except ValidationRejection as e:
        emit(QueryRejected(source_id=source_id, tool=tool, reason=str(e)))
        return failure_from(e)

    started = time.perf_counter()
    try:
        with log_context(source_id=source_id, tool=tool):
            result = await connector.execute_query(sql, params, max_rows=max_rows)
    except ExecutionError as e:
        emit(QueryFailed(source_id=source_id, tool=tool, error=str(e), stage=e.stage))
        return failure_from(e)

    emit(
        QueryExecuted(
            source_id=source_id,
            tool=tool,
            statement_count=result.metadata.get("statement_count", 1),
            row_count=result.row_count,
            truncated=result.truncated,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
    )
    data = result.to_dict()
    data["source_id"] = source_id
    return success(data)
