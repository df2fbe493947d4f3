"""CLI configuration via environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field


def _int_env(var: str, default: int) -> int:
    """Parse an integer from an environment variable with a helpful error on bad input."""
    raw = os.environ.get(var)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as err:
        print(f"Error: {var}={raw!r} is not a valid integer", file=sys.stderr)
        raise SystemExit(1) from err


@dataclass
class CliConfig:
    """Server defaults for the quarry CLI.

    Reads from environment variables with QUARRY_ prefix; command-line
    options win. Source configuration itself is resolved by
    quarry.config.loader (QUARRY_CONFIG, QUARRY_DSN, ./quarry.toml).
    """

    transport: str = field(default_factory=lambda: os.environ.get("QUARRY_TRANSPORT", "stdio"))
    host: str = field(default_factory=lambda: os.environ.get("QUARRY_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _int_env("QUARRY_PORT", 8080))


def get_config() -> CliConfig:
    """Get the current configuration."""
    return CliConfig()
