"""Observability configuration, env-var driven.

All settings have safe defaults. Zero config required for structured
logging to stderr.

    Formatter:   QUARRY_LOG_FORMATTER=structlog (default) | stdlib
    Destination: QUARRY_LOG_DESTINATION=stderr (default) | jsonl
    Renderer:    QUARRY_LOG_FORMAT=json (default) | console

Logs never go to stdout: the stdio MCP transport owns it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class ObservabilityConfig:
    """Observability configuration, env-var driven."""

    # --- Logging: formatter × destination ---
    log_formatter: str = field(
        default_factory=lambda: os.environ.get("QUARRY_LOG_FORMATTER", "structlog")
    )  # "structlog" | "stdlib"

    log_destination: str = field(
        default_factory=lambda: os.environ.get("QUARRY_LOG_DESTINATION", "stderr")
    )  # "stderr" | "jsonl"

    log_level: str = field(
        default_factory=lambda: os.environ.get("QUARRY_LOG_LEVEL", "INFO")
    )

    log_format: str = field(
        default_factory=lambda: os.environ.get("QUARRY_LOG_FORMAT", "json")
    )  # "json" | "console"

    # JSONL log file destination
    log_path: str | None = field(
        default_factory=lambda: os.environ.get("QUARRY_LOG_PATH")
    )

    # --- Events ---
    events_path: str | None = field(
        default_factory=lambda: os.environ.get("QUARRY_EVENTS_PATH")
    )
