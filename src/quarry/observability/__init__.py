"""quarry observability: typed events routed to structured logs.

Public API:
    emit(event)     -- Fire-and-forget event emission (no-op if not configured)
    configure(cfg)  -- Initialize logging, emitter and subscribers (call once)
    reset()         -- Reset for testing

Logging (swappable formatter x destination):
    get_logger(name)             -- Get a structured logger
    log_context(**fields)        -- Bind fields to every record in a block
    register_formatter(n, cls)   -- Register custom LogFormatter
    register_destination(n, cls) -- Register custom LogDestination
"""

from quarry.observability.config import ObservabilityConfig
from quarry.observability.emitter import configure, emit, is_configured, reset
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
from quarry.observability.logging import (
    LogDestination,
    LogFormatter,
    get_logger,
    log_context,
    register_destination,
    register_formatter,
)

__all__ = [
    # Core API
    "emit",
    "configure",
    "is_configured",
    "reset",
    "ObservabilityConfig",
    # Events
    "SourceConnected",
    "SourceConnectFailed",
    "SourceDisconnected",
    "QueryExecuted",
    "QueryRejected",
    "QueryFailed",
    "ToolRegistryBuilt",
    "ResourceRead",
    # Logging
    "LogFormatter",
    "LogDestination",
    "get_logger",
    "log_context",
    "register_formatter",
    "register_destination",
]
