"""Typed event dataclasses for quarry observability.

All events are frozen dataclasses. Modules emit these; they don't know
about logs or files. Subscribers handle routing.

Grouped by domain: source lifecycle, query execution, registry, resources.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Source Lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceConnected:
    source_id: str
    connector_id: str
    dsn: str  # obfuscated
    tunneled: bool
    latency_ms: float


@dataclass(frozen=True)
class SourceConnectFailed:
    source_id: str
    connector_id: str | None
    error: str
    stage: str  # "dsn" | "tunnel" | "connect" | "init_script"


@dataclass(frozen=True)
class SourceDisconnected:
    source_id: str
    connector_id: str


# ---------------------------------------------------------------------------
# Query Execution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryExecuted:
    source_id: str
    tool: str
    statement_count: int
    row_count: int
    truncated: bool
    latency_ms: float


@dataclass(frozen=True)
class QueryRejected:
    source_id: str
    tool: str
    reason: str


@dataclass(frozen=True)
class QueryFailed:
    source_id: str
    tool: str
    error: str
    stage: str  # "execute" | "timeout" | "bind"


# ---------------------------------------------------------------------------
# Registry & Resources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolRegistryBuilt:
    source_count: int
    tool_count: int
    defaulted_sources: tuple[str, ...]


@dataclass(frozen=True)
class ResourceRead:
    uri: str
    source_id: str | None
    template: str | None
    ok: bool
    latency_ms: float


ALL_EVENTS = (
    SourceConnected,
    SourceConnectFailed,
    SourceDisconnected,
    QueryExecuted,
    QueryRejected,
    QueryFailed,
    ToolRegistryBuilt,
    ResourceRead,
)
