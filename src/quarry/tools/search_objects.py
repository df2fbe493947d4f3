"""The ``search_objects`` built-in: find schemas, tables, columns, indexes
and procedures by name.

Patterns accept glob wildcards (``*``, ``?``) or SQL LIKE wildcards
(``%``, ``_``) and match case-insensitively against the whole name. A
pattern without wildcards is an exact (case-insensitive) match.

``detail_level="names"`` returns bare identifiers with their location;
``"summary"`` adds type information (column types, index columns, ...).
Built entirely on connector introspection, so every backend behaves the
same way.
"""

from __future__ import annotations

import re
from typing import Any

from quarry.connectors.base import Connector
from quarry.errors import ExecutionError, SourceNotFoundError
from quarry.sources.registry import SourceRegistry
from quarry.tools.models import SEARCH_OBJECTS
from quarry.tools.registry import ToolRegistry
from quarry.tools.results import (
    INVALID_ARGUMENT,
    TOOL_NOT_ENABLED,
    failure,
    failure_from,
    success,
)

OBJECT_TYPES = ("schema", "table", "column", "index", "procedure")
DETAIL_LEVELS = ("names", "summary")
MAX_LIMIT = 1000


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a glob/LIKE pattern into an anchored, case-insensitive regex."""
    parts = []
    for ch in pattern:
        if ch in "*%":
            parts.append(".*")
        elif ch in "?_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


class _Collector:
    """Accumulates matches up to ``limit``; one extra slot detects truncation."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.items: list[dict[str, Any]] = []

    @property
    def full(self) -> bool:
        return len(self.items) > self.limit

    def add(self, item: dict[str, Any]) -> None:
        if not self.full:
            self.items.append(item)


async def _search(
    connector: Connector,
    regex: re.Pattern[str],
    object_type: str | None,
    schemas: list[str],
    summary: bool,
    found: _Collector,
) -> None:
    def wants(kind: str) -> bool:
        return object_type is None or object_type == kind

    for schema in schemas:
        if found.full:
            return
        if wants("schema") and regex.match(schema):
            found.add({"type": "schema", "name": schema})

        if wants("procedure"):
            for proc in await connector.get_stored_procedures(schema):
                if regex.match(proc):
                    item = {"type": "procedure", "schema": schema, "name": proc}
                    if summary:
                        detail = await connector.get_stored_procedure_detail(proc, schema)
                        item.update(
                            procedure_type=detail.procedure_type,
                            language=detail.language,
                            parameters=detail.parameter_list,
                            return_type=detail.return_type,
                        )
                    found.add(item)

        if not (wants("table") or wants("column") or wants("index")):
            continue

        for table in await connector.get_tables(schema):
            if found.full:
                return
            columns = None
            if wants("table") and regex.match(table):
                item = {"type": "table", "schema": schema, "name": table}
                if summary:
                    columns = await connector.get_table_schema(table, schema)
                    item["column_count"] = len(columns)
                found.add(item)

            if wants("column"):
                if columns is None:
                    columns = await connector.get_table_schema(table, schema)
                for column in columns:
                    if regex.match(column.name):
                        item = {
                            "type": "column",
                            "schema": schema,
                            "table": table,
                            "name": column.name,
                        }
                        if summary:
                            item.update(data_type=column.data_type, nullable=column.nullable)
                        found.add(item)

            if wants("index"):
                for index in await connector.get_table_indexes(table, schema):
                    if regex.match(index.name):
                        item = {
                            "type": "index",
                            "schema": schema,
                            "table": table,
                            "name": index.name,
                        }
                        if summary:
                            item.update(
                                columns=list(index.columns),
                                is_unique=index.is_unique,
                                is_primary=index.is_primary,
                            )
                        found.add(item)


async def search_objects(
    sources: SourceRegistry,
    tools: ToolRegistry,
    pattern: str,
    source: str | None = None,
    object_type: str | None = None,
    schema: str | None = None,
    detail_level: str = "names",
    limit: int = 100,
) -> dict[str, Any]:
    try:
        source_id = sources.resolve_source_id(source)
    except SourceNotFoundError as e:
        return failure_from(e)

    if tools.get_builtin_tool_config(SEARCH_OBJECTS, source_id) is None:
        return failure(
            f"Tool '{SEARCH_OBJECTS}' is not enabled for source '{source_id}'",
            TOOL_NOT_ENABLED,
        )
    if not pattern:
        return failure("pattern must not be empty", INVALID_ARGUMENT)
    if object_type is not None and object_type not in OBJECT_TYPES:
        return failure(
            f"object_type must be one of: {', '.join(OBJECT_TYPES)}", INVALID_ARGUMENT
        )
    if detail_level not in DETAIL_LEVELS:
        return failure(
            f"detail_level must be one of: {', '.join(DETAIL_LEVELS)}", INVALID_ARGUMENT
        )
    if not 0 < limit <= MAX_LIMIT:
        return failure(f"limit must be between 1 and {MAX_LIMIT}", INVALID_ARGUMENT)

    connector = sources.get_connector(source_id)
    found = _Collector(limit)
    try:
        available = await connector.get_schemas()
        if schema is not None:
            if schema not in available:
                return failure(
                    f"Schema '{schema}' does not exist in source '{source_id}'",
                    INVALID_ARGUMENT,
                )
            available = [schema]
        await _search(
            connector,
            compile_pattern(pattern),
            object_type,
            available,
            detail_level == "summary",
            found,
        )
    except ExecutionError as e:
        return failure_from(e)

    return success(
        {
            "source_id": source_id,
            "pattern": pattern,
            "object_type": object_type,
            "schema": schema,
            "detail_level": detail_level,
            "results": found.items[:limit],
            "count": min(len(found.items), limit),
            "truncated": found.full,
        }
    )
