"""Configuration types: sources, SSH tunnels, the whole file.

All frozen: built once at startup from validated input. No database
drivers needed here.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from quarry.connectors.base import ExecuteOptions
from quarry.connectors.dsn import obfuscate_dsn
from quarry.tools.models import ToolConfig

SOURCE_TYPES = ("postgres", "mysql", "mariadb", "sqlserver", "sqlite")

DEFAULT_PORTS = {
    "postgres": 5432,
    "mysql": 3306,
    "mariadb": 3306,
    "sqlserver": 1433,
}


@dataclass(frozen=True)
class SSHConfig:
    """Bastion host for a local port-forward. Secrets hidden from repr."""

    host: str
    user: str | None = None
    port: int = 22
    password: str | None = field(default=None, repr=False)
    key_path: str | None = None
    passphrase: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class SourceConfig:
    """One configured database.

    ``dsn`` is always populated after loading: structured fields
    (type/host/port/...) are folded into it. ``readonly`` left unset
    means read-only.
    """

    id: str
    dsn: str
    type: str | None = None
    ssh: SSHConfig | None = None
    readonly: bool | None = None
    max_rows: int | None = None
    connection_timeout: float | None = None
    request_timeout: float | None = None
    init_script: str | None = None

    def execute_options(self) -> ExecuteOptions:
        return ExecuteOptions(
            readonly=self.readonly is not False,
            max_rows=self.max_rows,
            connection_timeout=self.connection_timeout,
            request_timeout=self.request_timeout,
        )

    @property
    def safe_dsn(self) -> str:
        return obfuscate_dsn(self.dsn)

    def __repr__(self) -> str:
        """Redact the DSN password to prevent credential leaks in logs."""
        return (
            f"SourceConfig(id={self.id!r}, dsn={self.safe_dsn!r}, "
            f"readonly={self.readonly!r}, max_rows={self.max_rows!r}, "
            f"ssh={self.ssh!r})"
        )


@dataclass(frozen=True)
class QuarryConfig:
    """Parsed configuration.

    ``tools`` is None when the file has no ``tools`` key at all and an
    empty tuple when the key is present but empty. The tool registry
    treats both the same way.
    """

    sources: tuple[SourceConfig, ...]
    tools: tuple[ToolConfig, ...] | None = None
    origin: str | None = None

    def source_ids(self) -> list[str]:
        return [s.id for s in self.sources]

    def get_source(self, source_id: str) -> SourceConfig | None:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None
