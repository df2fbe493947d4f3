"""Resource router: ``db://`` URIs to introspection payloads.

Templates::

    db://schemas
    db://schemas/{schema}/tables
    db://schemas/{schema}/tables/{table}
    db://schemas/{schema}/tables/{table}/indexes
    db://schemas/{schema}/procedures
    db://schemas/{schema}/procedures/{procedure}

Each is also reachable as ``db://sources/{source_id}/schemas/...``. Without
a source the only configured source is used; with several it is an error.
Handlers never raise for expected failures: they return
``{"error": ..., "code": ...}``.
"""

from __future__ import annotations

import re
import time
from dataclasses import asdict
from typing import Any, Awaitable, Callable
from urllib.parse import unquote

from quarry.connectors.base import Connector
from quarry.errors import ExecutionError, SourceNotFoundError
from quarry.observability import ResourceRead, emit, get_logger, log_context
from quarry.sources.registry import SourceRegistry

logger = get_logger(__name__)

SCHEME = "db://"

SCHEMA_NOT_FOUND = "SCHEMA_NOT_FOUND"
TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
PROCEDURE_NOT_FOUND = "PROCEDURE_NOT_FOUND"
RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

# name -> path template below db:// (and below db://sources/{source_id}/)
TEMPLATES: dict[str, str] = {
    "schemas": "schemas",
    "tables": "schemas/{schema}/tables",
    "table_structure": "schemas/{schema}/tables/{table}",
    "indexes": "schemas/{schema}/tables/{table}/indexes",
    "procedures": "schemas/{schema}/procedures",
    "procedure_detail": "schemas/{schema}/procedures/{procedure}",
}


def _compile(template: str) -> re.Pattern[str]:
    pattern = re.sub(r"\{(\w+)\}", r"(?P<\1>[^/]+)", template)
    return re.compile(f"^{pattern}$")


_PATTERNS = {name: _compile(t) for name, t in TEMPLATES.items()}
_SOURCE_PREFIX = re.compile(r"^sources/(?P<source_id>[^/]+)/(?P<rest>.+)$")

Payload = dict[str, Any]
Handler = Callable[[Connector, dict[str, str]], Awaitable[Payload]]


def _error(message: str, code: str) -> Payload:
    return {"error": message, "code": code}


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _missing_schema(connector: Connector, schema: str) -> Payload | None:
    if schema not in await connector.get_schemas():
        return _error(
            f"Schema '{schema}' does not exist in source '{connector.source_id}'",
            SCHEMA_NOT_FOUND,
        )
    return None


async def _missing_table(connector: Connector, schema: str, table: str) -> Payload | None:
    missing = await _missing_schema(connector, schema)
    if missing:
        return missing
    if not await connector.table_exists(table, schema):
        return _error(f"Table '{table}' does not exist in schema '{schema}'", TABLE_NOT_FOUND)
    return None


async def _schemas(connector: Connector, _vars: dict[str, str]) -> Payload:
    schemas = await connector.get_schemas()
    return {"source_id": connector.source_id, "schemas": schemas, "count": len(schemas)}


async def _tables(connector: Connector, v: dict[str, str]) -> Payload:
    if missing := await _missing_schema(connector, v["schema"]):
        return missing
    tables = await connector.get_tables(v["schema"])
    return {"schema": v["schema"], "tables": tables, "count": len(tables)}


async def _table_structure(connector: Connector, v: dict[str, str]) -> Payload:
    if missing := await _missing_table(connector, v["schema"], v["table"]):
        return missing
    columns = await connector.get_table_schema(v["table"], v["schema"])
    return {
        "schema": v["schema"],
        "table": v["table"],
        "columns": [asdict(c) for c in columns],
    }


async def _indexes(connector: Connector, v: dict[str, str]) -> Payload:
    if missing := await _missing_table(connector, v["schema"], v["table"]):
        return missing
    indexes = await connector.get_table_indexes(v["table"], v["schema"])
    return {
        "schema": v["schema"],
        "table": v["table"],
        "indexes": [
            {**asdict(i), "columns": list(i.columns)} for i in indexes
        ],
    }


async def _procedures(connector: Connector, v: dict[str, str]) -> Payload:
    if missing := await _missing_schema(connector, v["schema"]):
        return missing
    procedures = await connector.get_stored_procedures(v["schema"])
    return {"schema": v["schema"], "procedures": procedures, "count": len(procedures)}


async def _procedure_detail(connector: Connector, v: dict[str, str]) -> Payload:
    if missing := await _missing_schema(connector, v["schema"]):
        return missing
    if v["procedure"] not in await connector.get_stored_procedures(v["schema"]):
        return _error(
            f"Procedure '{v['procedure']}' does not exist in schema '{v['schema']}'",
            PROCEDURE_NOT_FOUND,
        )
    detail = await connector.get_stored_procedure_detail(v["procedure"], v["schema"])
    return {"schema": v["schema"], "procedure": asdict(detail)}


HANDLERS: dict[str, Handler] = {
    "schemas": _schemas,
    "tables": _tables,
    "table_structure": _table_structure,
    "indexes": _indexes,
    "procedures": _procedures,
    "procedure_detail": _procedure_detail,
}


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class ResourceRouter:
    """Dispatch ``db://`` URIs against a SourceRegistry."""

    def __init__(self, sources: SourceRegistry) -> None:
        self.sources = sources

    @staticmethod
    def resolve(uri: str) -> tuple[str, dict[str, str]] | None:
        """``(template name, variables)`` for ``uri``, or None if nothing matches.

        A source-scoped URI yields a ``source_id`` variable.
        """
        if not uri.startswith(SCHEME):
            return None
        path = uri[len(SCHEME) :].strip("/")
        variables: dict[str, str] = {}
        scoped = _SOURCE_PREFIX.match(path)
        if scoped:
            variables["source_id"] = unquote(scoped.group("source_id"))
            path = scoped.group("rest")
        for name, pattern in _PATTERNS.items():
            m = pattern.match(path)
            if m:
                variables.update({k: unquote(v) for k, v in m.groupdict().items()})
                return name, variables
        return None

    async def read(self, uri: str, source_id: str | None = None) -> Payload:
        started = time.perf_counter()
        resolved = self.resolve(uri)
        template = resolved[0] if resolved else None
        with log_context(resource=uri):
            payload = await self._read(uri, resolved, source_id)
        ok = "error" not in payload
        emit(
            ResourceRead(
                uri=uri,
                source_id=(resolved[1].get("source_id") if resolved else None) or source_id,
                template=template,
                ok=ok,
                latency_ms=round((time.perf_counter() - started) * 1000, 2),
            )
        )
        return payload

    async def _read(
        self,
        uri: str,
        resolved: tuple[str, dict[str, str]] | None,
        source_id: str | None,
    ) -> Payload:
        if resolved is None:
            return _error(f"Unknown resource URI: {uri}", RESOURCE_NOT_FOUND)
        name, variables = resolved
        variables = dict(variables)
        try:
            connector = self.sources.get_connector(variables.pop("source_id", None) or source_id)
        except SourceNotFoundError as e:
            return _error(str(e), e.code)
        try:
            return await HANDLERS[name](connector, variables)
        except ExecutionError as e:
            logger.warning("resource.failed", uri=uri, error=str(e))
            return _error(e.diagnostic, e.code)
