"""Connector contract and the plumbing every backend shares.

A Connector owns exactly one live pool/session at a time and is used
sequentially: connect -> use -> disconnect. Prototypes live in the
ConnectorRegistry; every configured source gets its own ``clone()``.

Backends subclass ``BaseConnector`` and implement the ``_open`` / ``_close``
/ ``_run`` hooks plus the introspection methods (decorated with
``@backend_call`` so driver exceptions surface as ``ExecutionError``).
Drivers are imported lazily inside ``_open``; this module needs none.
"""

from __future__ import annotations

import asyncio
import functools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, ClassVar, Protocol, Sequence, TypeVar, runtime_checkable

from quarry.connectors.dsn import obfuscate_dsn
from quarry.errors import ConnectionFailedError, DSNFormatError, ExecutionError
from quarry.observability.logging import get_logger
from quarry.sql.limiter import apply_max_rows
from quarry.sql.safety import ValidationResult, validate_query
from quarry.sql.scanner import split_statements

logger = get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TableColumn:
    name: str
    data_type: str
    nullable: bool
    default: str | None = None


@dataclass(frozen=True)
class TableIndex:
    name: str
    columns: tuple[str, ...]
    is_unique: bool
    is_primary: bool


@dataclass(frozen=True)
class StoredProcedure:
    name: str
    procedure_type: str  # "procedure" | "function"
    language: str | None = None
    parameter_list: str | None = None
    return_type: str | None = None
    definition: str | None = None


@dataclass
class QueryResult:
    """Rows as dicts, in column order. ``truncated`` means max_rows cut it."""

    rows: list[dict[str, Any]]
    columns: list[str] = field(default_factory=list)
    row_count: int = 0
    truncated: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.columns and self.rows:
            self.columns = list(self.rows[0].keys())
        if not self.row_count:
            self.row_count = len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": self.rows,
            "columns": self.columns,
            "count": self.row_count,
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class ExecuteOptions:
    """Per-source execution policy. Unset ``readonly`` means read-only."""

    readonly: bool = True
    max_rows: int | None = None
    connection_timeout: float | None = None
    request_timeout: float | None = None


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class DSNParser(Protocol):
    def parse(self, dsn: str) -> Any: ...

    def get_sample_dsn(self) -> str: ...

    def is_valid_dsn(self, dsn: str) -> bool: ...


@runtime_checkable
class Connector(Protocol):
    """What the registries and tool handlers rely on."""

    id: str
    name: str
    dialect: str
    dsn_parser: DSNParser
    source_id: str | None
    options: ExecuteOptions

    def clone(self) -> Connector: ...

    async def connect(self, dsn: str, init_script: str | None = None) -> None: ...

    async def disconnect(self) -> None: ...

    async def get_schemas(self) -> list[str]: ...

    async def get_tables(self, schema: str | None = None) -> list[str]: ...

    async def get_table_schema(
        self, table: str, schema: str | None = None
    ) -> list[TableColumn]: ...

    async def table_exists(self, table: str, schema: str | None = None) -> bool: ...

    async def get_table_indexes(
        self, table: str, schema: str | None = None
    ) -> list[TableIndex]: ...

    async def get_stored_procedures(self, schema: str | None = None) -> list[str]: ...

    async def get_stored_procedure_detail(
        self, name: str, schema: str | None = None
    ) -> StoredProcedure: ...

    async def execute_query(
        self,
        query: str,
        params: Sequence[Any] | None = None,
        *,
        max_rows: int | None = None,
    ) -> QueryResult: ...

    def validate_query(self, query: str) -> ValidationResult: ...


# ---------------------------------------------------------------------------
# Shared plumbing
# ---------------------------------------------------------------------------


def backend_call(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Require a connection and map driver exceptions to ExecutionError."""

    @functools.wraps(method)
    async def wrapper(self: BaseConnector, *args: Any, **kwargs: Any) -> T:
        self._require_connected()
        try:
            return await self._bounded(method(self, *args, **kwargs))
        except ExecutionError:
            raise
        except asyncio.TimeoutError as exc:
            raise ExecutionError(
                f"{method.__name__} timed out after {self.options.request_timeout}s",
                source_id=self.source_id,
                stage="timeout",
            ) from exc
        except Exception as exc:
            raise ExecutionError(
                f"{method.__name__} failed: {exc}", source_id=self.source_id, stage="introspect"
            ) from exc

    return wrapper


class BaseConnector(ABC):
    """Common lifecycle, timeouts, row caps and gate delegation."""

    id: ClassVar[str]
    name: ClassVar[str]
    dialect: ClassVar[str]
    default_schema: ClassVar[str | None] = None
    dsn_parser: ClassVar[DSNParser]

    def __init__(self) -> None:
        self.source_id: str | None = None
        self.options = ExecuteOptions()
        self._connected = False

    def __repr__(self) -> str:
        state = "connected" if self._connected else "idle"
        return f"{type(self).__name__}(source_id={self.source_id!r}, {state})"

    def clone(self) -> BaseConnector:
        """Fresh, unconnected instance of the same backend."""
        return type(self)()

    def configure(
        self, source_id: str | None = None, options: ExecuteOptions | None = None, **overrides: Any
    ) -> BaseConnector:
        if source_id is not None:
            self.source_id = source_id
        if options is not None:
            self.options = options
        if overrides:
            self.options = replace(self.options, **overrides)
        return self

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _require_connected(self) -> None:
        if not self._connected:
            raise ExecutionError(
                f"{self.name} connector is not connected. Call connect() first.",
                source_id=self.source_id,
                stage="connection",
            )

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.options.request_timeout)

    # -- lifecycle --------------------------------------------------------

    async def connect(self, dsn: str, init_script: str | None = None) -> None:
        """Parse, open, probe, then run the optional init script.

        Raises DSNFormatError for a malformed DSN and ConnectionFailedError
        for anything that goes wrong afterwards. On failure the connector is
        left unconnected.
        """
        config = self.dsn_parser.parse(dsn)
        if self._connected:
            await self.disconnect()
        started = time.perf_counter()
        stage = "connect"
        try:
            await asyncio.wait_for(self._open(config), self.options.connection_timeout)
            self._connected = True
            if init_script:
                stage = "init_script"
                for statement in split_statements(init_script, self.dialect):
                    await self._bounded(self._run([statement], None))
        except DSNFormatError:
            await self._abandon()
            raise
        except asyncio.TimeoutError as exc:
            await self._abandon()
            raise ConnectionFailedError(
                f"Timed out connecting to {self.name} at {obfuscate_dsn(dsn)} "
                f"after {self.options.connection_timeout}s",
                source_id=self.source_id,
            ) from exc
        except Exception as exc:
            await self._abandon()
            raise ConnectionFailedError(
                f"Failed to connect to {self.name} ({stage}) at {obfuscate_dsn(dsn)}: {exc}",
                source_id=self.source_id,
            ) from exc
        logger.debug(
            "connector.opened",
            connector=self.id,
            source_id=self.source_id,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )

    async def _abandon(self) -> None:
        try:
            await self._close()
        except Exception:
            logger.debug("connector.close_failed", connector=self.id, exc_info=True)
        self._connected = False

    async def disconnect(self) -> None:
        """Close the pool. Safe to call when never connected."""
        if not self._connected:
            return
        try:
            await self._close()
        finally:
            self._connected = False

    # -- execution --------------------------------------------------------

    def validate_query(self, query: str) -> ValidationResult:
        return validate_query(
            query, self.dialect, readonly=self.options.readonly, source_id=self.source_id
        )

    async def execute_query(
        self,
        query: str,
        params: Sequence[Any] | None = None,
        *,
        max_rows: int | None = None,
    ) -> QueryResult:
        """Run one or more statements. Several statements share one transaction.

        ``max_rows`` rewrites SELECTs via LIMIT/TOP and also trims the
        fetched rows, setting ``truncated`` when rows were dropped. A
        ``max_rows`` argument can only lower the configured cap.
        """
        self._require_connected()
        statements = split_statements(query, self.dialect)
        if not statements:
            return QueryResult(rows=[])
        if params and len(statements) > 1:
            raise ExecutionError(
                "Parameters are only supported for a single statement",
                source_id=self.source_id,
                query=query,
            )
        limits = [m for m in (self.options.max_rows, max_rows) if m]
        max_rows = min(limits) if limits else None
        # one extra row so a cut result can be flagged as truncated
        fetch_cap = max_rows + 1 if max_rows else None
        statements = [apply_max_rows(s, fetch_cap, self.dialect) for s in statements]
        try:
            result = await self._bounded(self._run(statements, params))
        except ExecutionError:
            raise
        except asyncio.TimeoutError as exc:
            raise ExecutionError(
                f"Query timed out after {self.options.request_timeout}s",
                source_id=self.source_id,
                query=query,
                stage="timeout",
            ) from exc
        except Exception as exc:
            raise ExecutionError(str(exc), source_id=self.source_id, query=query) from exc
        if max_rows and len(result.rows) > max_rows:
            result.rows = result.rows[:max_rows]
            result.row_count = max_rows
            result.truncated = True
        result.metadata.setdefault("statement_count", len(statements))
        return result

    # -- backend hooks ----------------------------------------------------

    @abstractmethod
    async def _open(self, config: Any) -> None: ...

    @abstractmethod
    async def _close(self) -> None: ...

    @abstractmethod
    async def _run(self, statements: list[str], params: Sequence[Any] | None) -> QueryResult:
        """Execute statements (in one transaction when there are several)."""

    # -- introspection ----------------------------------------------------

    @abstractmethod
    async def get_schemas(self) -> list[str]: ...

    @abstractmethod
    async def get_tables(self, schema: str | None = None) -> list[str]: ...

    @abstractmethod
    async def get_table_schema(
        self, table: str, schema: str | None = None
    ) -> list[TableColumn]: ...

    @abstractmethod
    async def table_exists(self, table: str, schema: str | None = None) -> bool: ...

    @abstractmethod
    async def get_table_indexes(
        self, table: str, schema: str | None = None
    ) -> list[TableIndex]: ...

    @abstractmethod
    async def get_stored_procedures(self, schema: str | None = None) -> list[str]: ...

    @abstractmethod
    async def get_stored_procedure_detail(
        self, name: str, schema: str | None = None
    ) -> StoredProcedure: ...
