"""Source and tool configuration."""

from quarry.config.loader import (
    build_dsn_from_source,
    config_from_dsn,
    find_config_path,
    load_config,
    parse_config,
)
from quarry.config.models import QuarryConfig, SourceConfig, SSHConfig

__all__ = [
    "QuarryConfig",
    "SSHConfig",
    "SourceConfig",
    "build_dsn_from_source",
    "config_from_dsn",
    "find_config_path",
    "load_config",
    "parse_config",
]
