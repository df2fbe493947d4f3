"""Always-on subscriber: every event becomes one structured log line.

The logger is looked up per event so it follows whichever LogFormatter
setup_logging() installed last.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from quarry.observability.emitter import QuarryEventLinker
from quarry.observability.events import (
    QueryExecuted,
    QueryFailed,
    QueryRejected,
    ResourceRead,
    SourceConnected,
    SourceConnectFailed,
    SourceDisconnected,
    ToolRegistryBuilt,
)
from quarry.observability.logging import get_logger

# event type -> (log method, event name)
LOG_ROUTES: dict[type, tuple[str, str]] = {
    SourceConnected: ("info", "source.connected"),
    SourceConnectFailed: ("error", "source.connect_failed"),
    SourceDisconnected: ("info", "source.disconnected"),
    QueryExecuted: ("info", "query.executed"),
    QueryRejected: ("warning", "query.rejected"),
    QueryFailed: ("error", "query.failed"),
    ToolRegistryBuilt: ("info", "tools.registry_built"),
    ResourceRead: ("debug", "resource.read"),
}


def _log_event(event: Any) -> None:
    method, name = LOG_ROUTES[type(event)]
    getattr(get_logger("quarry.events"), method)(name, **asdict(event))


def register_structlog_subscriber() -> None:
    QuarryEventLinker.on(*LOG_ROUTES)(_log_event)
