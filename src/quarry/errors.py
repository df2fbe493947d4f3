"""Exception hierarchy for quarry.

Every error raised by connectors, registries and the config loader derives
from QuarryError. Each class also subclasses the closest builtin so callers
that only know ``ValueError`` or ``ConnectionError`` still catch it.

Messages never carry DSN passwords: anything echoing a DSN goes through
``quarry.connectors.dsn.obfuscate_dsn`` first.
"""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for all quarry errors."""

    code = "QUARRY_ERROR"

    def __init__(self, message: str, *, source_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.source_id = source_id


class DSNFormatError(QuarryError, ValueError):
    """A connection string does not match the parser's expected shape."""

    code = "INVALID_DSN"

    def __init__(
        self,
        message: str,
        *,
        dsn: str | None = None,
        expected: str | None = None,
        source_id: str | None = None,
    ) -> None:
        super().__init__(message, source_id=source_id)
        self.dsn = dsn
        self.expected = expected


class ConnectorNotFoundError(QuarryError, LookupError):
    """No registered connector accepts a DSN, or an id is unknown."""

    code = "CONNECTOR_NOT_FOUND"


class SourceNotFoundError(ConnectorNotFoundError):
    """A source id is unknown, or omitted when more than one source exists."""

    code = "SOURCE_NOT_FOUND"

    def __init__(
        self,
        message: str,
        *,
        source_id: str | None = None,
        available: list[str] | None = None,
    ) -> None:
        super().__init__(message, source_id=source_id)
        self.available = available or []


class ConnectionFailedError(QuarryError, ConnectionError):
    """Establishing a session with a backend failed."""

    code = "CONNECTION_ERROR"


class ExecutionError(QuarryError, RuntimeError):
    """A backend rejected a query or introspection call."""

    code = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        source_id: str | None = None,
        query: str | None = None,
        stage: str = "execute",
    ) -> None:
        super().__init__(message, source_id=source_id)
        self.query = query
        self.stage = stage

    @property
    def diagnostic(self) -> str:
        """The message prefixed with the source and the failing stage."""
        where = f"Source '{self.source_id}'" if self.source_id else "Query"
        return f"{where} ({self.stage}): {self.message}"


class ValidationRejection(QuarryError):
    """The safety gate refused a statement for a read-only source."""

    code = "READONLY_VIOLATION"


class RegistryNotInitializedError(QuarryError, RuntimeError):
    """The process-wide tool registry was read before it was built."""

    code = "REGISTRY_NOT_INITIALIZED"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Tool registry not initialized. Call initialize_tool_registry() first."
        )


class ConfigError(QuarryError, ValueError):
    """The configuration file or environment is invalid."""

    code = "CONFIG_ERROR"

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        source_id: str | None = None,
    ) -> None:
        if path:
            message = f"{path}: {message}"
        super().__init__(message, source_id=source_id)
        self.path = path


class ConnectorRegistrationError(QuarryError, ValueError):
    """A connector collides with one already registered."""

    code = "CONNECTOR_REGISTRATION"
