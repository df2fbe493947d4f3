"""Process-wide event bus for quarry.

Connectors, tools and the resource router call emit() with one of the
dataclasses in quarry.observability.events. Until configure() runs there
is no emitter and emit() drops the event, so library code and tests never
need a guard.

Subscribers live on QuarryEventLinker, a pyventus linker of our own so
that other pyventus users in the same process never see quarry events.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pyventus.events import EventEmitter, EventLinker

if TYPE_CHECKING:
    from quarry.observability.config import ObservabilityConfig


class QuarryEventLinker(EventLinker):
    """Subscriber table for quarry events only."""


_emitter: EventEmitter | None = None


def emit(event: Any) -> None:
    """Hand ``event`` to every subscriber of its type. Dropped when unconfigured."""
    if _emitter is not None:
        _emitter.emit(event)


def _attach_subscribers(cfg: ObservabilityConfig) -> None:
    from quarry.observability.subscribers.structlog_sub import register_structlog_subscriber

    register_structlog_subscriber()
    if cfg.events_path:
        from quarry.observability.subscribers.jsonl import register_jsonl_subscriber

        register_jsonl_subscriber(cfg.events_path)


def configure(config: ObservabilityConfig | None = None) -> EventEmitter:
    """Set up logging, then build the emitter and attach subscribers.

    Only the first call does anything; later calls return the same emitter
    until reset().
    """
    global _emitter

    if _emitter is not None:
        return _emitter

    from pyventus.core.processing.asyncio import AsyncIOProcessingService

    from quarry.observability.config import ObservabilityConfig
    from quarry.observability.logging import setup_logging

    cfg = config or ObservabilityConfig()
    setup_logging(cfg)
    _attach_subscribers(cfg)
    _emitter = EventEmitter(
        event_linker=QuarryEventLinker,
        event_processor=AsyncIOProcessingService(),
    )
    return _emitter


def is_configured() -> bool:
    return _emitter is not None


def reset() -> None:
    """Drop the emitter, every subscriber and the log handler."""
    global _emitter

    from quarry.observability.logging import shutdown_logging

    QuarryEventLinker.remove_all()
    shutdown_logging()
    _emitter = None
