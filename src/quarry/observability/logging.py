"""Structured logging for quarry.

Two independent choices, both picked from ObservabilityConfig:

    formatter    how a record becomes text  (QUARRY_LOG_FORMATTER: structlog | stdlib)
    destination  where the text goes         (QUARRY_LOG_DESTINATION: stderr | jsonl)

setup_logging() builds one handler from the pair and installs it on the root
logger, so plain ``logging.getLogger()`` users (drivers, fastmcp, paramiko)
share the same output.

Every record passes through redact_dsns() before rendering: any string field
that looks like a DSN has its password masked. Request-scoped fields
(source_id, tool) come from log_context() and ride along on every record
emitted inside it.

stdout is never a destination: the stdio MCP transport owns it.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from quarry.observability.config import ObservabilityConfig

_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "quarry_log_context", default={}
)


@runtime_checkable
class LogFormatter(Protocol):
    def setup(self, config: ObservabilityConfig) -> logging.Formatter: ...

    def get_logger(self, name: str, **kwargs: Any) -> Any: ...


@runtime_checkable
class LogDestination(Protocol):
    def create_handler(self, formatter: logging.Formatter) -> logging.Handler: ...

    def shutdown(self) -> None: ...


# ---------------------------------------------------------------------------
# Record hygiene and context
# ---------------------------------------------------------------------------


def _mask(value: Any) -> Any:
    if isinstance(value, str) and "://" in value and "@" in value:
        from quarry.connectors.dsn import obfuscate_dsn

        return obfuscate_dsn(value)
    return value


def redact_dsns(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: mask passwords in DSN-shaped values."""
    return {key: _mask(value) for key, value in event_dict.items()}


def merge_log_context(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: add the fields bound by log_context()."""
    for key, value in _context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def merge_record_fields(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: unpack the keyword fields of a _KeywordLogger record."""
    record = event_dict.get("_record")
    for key, value in getattr(record, "quarry_fields", {}).items():
        event_dict.setdefault(key, value)
    return event_dict


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every record logged inside the block.

    Nested blocks add to (and may shadow) the outer fields. Safe across
    asyncio tasks: each task sees the context it was created in.
    """
    token = _context.set({**_context.get(), **fields})
    try:
        yield
    finally:
        _context.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructlogFormatter:
    """structlog pipeline, bridged so stdlib records render the same way."""

    def setup(self, config: ObservabilityConfig) -> logging.Formatter:
        import structlog

        pre_chain: list = [
            merge_record_fields,
            merge_log_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_dsns,
        ]
        if config.log_format == "console":
            renderer: Any = structlog.dev.ConsoleRenderer()
        else:
            renderer = structlog.processors.JSONRenderer()

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                *pre_chain,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )

    def get_logger(self, name: str, **kwargs: Any) -> Any:
        import structlog

        return structlog.get_logger(name, **kwargs)


class StdlibFormatter:
    """Plain logging, JSON lines by default. structlog is not touched."""

    def setup(self, config: ObservabilityConfig) -> logging.Formatter:
        if config.log_format == "console":
            return logging.Formatter(
                "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        return _JsonLineFormatter()

    def get_logger(self, name: str, **kwargs: Any) -> Any:
        return _KeywordLogger(logging.getLogger(name), kwargs)


class _JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        line.update(getattr(record, "quarry_fields", {}))
        if record.exc_info and record.exc_info[1]:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(redact_dsns(None, "", line), default=str)


class _KeywordLogger:
    """A stdlib logger that takes structlog-style keyword fields.

    ``log.info("query.executed", source_id="pg1")`` keeps the fields on
    the record as ``quarry_fields`` for _JsonLineFormatter.
    """

    def __init__(self, logger: logging.Logger, bound: dict[str, Any] | None = None) -> None:
        self._logger = logger
        self._bound = bound or {}

    def bind(self, **fields: Any) -> _KeywordLogger:
        return _KeywordLogger(self._logger, {**self._bound, **fields})

    def _log(self, level: int, event: str, exc_info: Any = None, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if exc_info is True:
            exc_info = sys.exc_info()
        record = self._logger.makeRecord(
            self._logger.name, level, "(quarry)", 0, event, (), exc_info or None
        )
        record.quarry_fields = {**_context.get(), **self._bound, **fields}  # type: ignore[attr-defined]
        self._logger.handle(record)

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, **fields)

    def exception(self, event: str, **fields: Any) -> None:
        fields.setdefault("exc_info", True)
        self._log(logging.ERROR, event, **fields)


# ---------------------------------------------------------------------------
# Destinations
# ---------------------------------------------------------------------------


class StderrDestination:
    def __init__(self, config: ObservabilityConfig | None = None) -> None:
        pass

    def create_handler(self, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        return handler

    def shutdown(self) -> None:
        pass


class JsonlFileDestination:
    """Append records to ``log_path`` (default ./quarry.log.jsonl)."""

    def __init__(self, config: ObservabilityConfig) -> None:
        self._path = Path(config.log_path or "quarry.log.jsonl").expanduser()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._handler: logging.Handler | None = None

    def create_handler(self, formatter: logging.Formatter) -> logging.Handler:
        self._handler = logging.FileHandler(self._path, mode="a", encoding="utf-8")
        self._handler.setFormatter(formatter)
        return self._handler

    def shutdown(self) -> None:
        if self._handler is not None:
            self._handler.close()
            self._handler = None


# ---------------------------------------------------------------------------
# Registries and setup
# ---------------------------------------------------------------------------

# Destination classes are constructed with the ObservabilityConfig.
_FORMATTERS: dict[str, type] = {"structlog": StructlogFormatter, "stdlib": StdlibFormatter}
_DESTINATIONS: dict[str, type] = {"stderr": StderrDestination, "jsonl": JsonlFileDestination}

_active_formatter: LogFormatter | None = None
_active_destination: LogDestination | None = None
_active_handler: logging.Handler | None = None


def register_formatter(name: str, cls: type) -> None:
    """Make ``cls`` selectable as QUARRY_LOG_FORMATTER=name. Call before configure()."""
    _FORMATTERS[name] = cls


def register_destination(name: str, cls: type) -> None:
    """Make ``cls`` selectable as QUARRY_LOG_DESTINATION=name.

    ``cls`` is called with the ObservabilityConfig.
    """
    _DESTINATIONS[name] = cls


def _lookup(registry: dict[str, type], kind: str, name: str, hint: str) -> type:
    try:
        return registry[name]
    except KeyError:
        raise ValueError(
            f"Unknown log {kind}: {name!r}. Available: {sorted(registry)}. "
            f"Register custom ones with {hint}()."
        ) from None


def setup_logging(config: ObservabilityConfig) -> None:
    """Install the configured formatter x destination on the root logger.

    Calling it again replaces quarry's own handler and leaves every other
    root handler in place.
    """
    global _active_formatter, _active_destination, _active_handler

    formatter_cls = _lookup(_FORMATTERS, "formatter", config.log_formatter, "register_formatter")
    destination_cls = _lookup(
        _DESTINATIONS, "destination", config.log_destination, "register_destination"
    )

    formatter = formatter_cls()
    destination = destination_cls(config)
    handler = destination.create_handler(formatter.setup(config))
    handler._quarry_managed = True  # type: ignore[attr-defined]

    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, "_quarry_managed", False)]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    if _active_destination is not None and _active_destination is not destination:
        _active_destination.shutdown()
    _active_formatter = formatter
    _active_destination = destination
    _active_handler = handler


class _DeferredLogger:
    """Resolves to the active formatter's logger on every call.

    Module-level ``logger = get_logger(__name__)`` runs at import time,
    usually before setup_logging(); this keeps such loggers in step with
    whatever formatter is installed later.
    """

    def __init__(self, name: str, bound: dict[str, Any]) -> None:
        self._name = name
        self._bound = bound

    def _resolve(self) -> Any:
        if _active_formatter is not None:
            return _active_formatter.get_logger(self._name, **self._bound)
        return _KeywordLogger(logging.getLogger(self._name), self._bound)

    def bind(self, **fields: Any) -> _DeferredLogger:
        return _DeferredLogger(self._name, {**self._bound, **fields})

    def __getattr__(self, method: str) -> Any:
        return getattr(self._resolve(), method)


def get_logger(name: str = "", **kwargs: Any) -> Any:
    """Logger for ``name`` accepting ``log.info("event.name", key=value)``.

    Safe to call at import time: the returned logger follows whichever
    formatter setup_logging() installs, before or after this call.
    """
    return _DeferredLogger(name, kwargs)


def shutdown_logging() -> None:
    """Detach quarry's handler and close its destination."""
    global _active_formatter, _active_destination, _active_handler

    if _active_handler is not None:
        logging.getLogger().removeHandler(_active_handler)
    if _active_destination is not None:
        _active_destination.shutdown()
    _active_formatter = None
    _active_destination = None
    _active_handler = None
