"""SourceRegistry: connected connectors by source_id.

Each configured source gets its own clone of the matching prototype
connector, configured with the source's execution options and connected
eagerly at startup. Owns SSH tunnels for tunneled sources and tears them
down with the connection.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from quarry.config.models import SourceConfig
from quarry.connectors.base import Connector
from quarry.connectors.dsn import obfuscate_dsn
from quarry.connectors.registry import ConnectorRegistry, default_connector_registry
from quarry.errors import ConnectorNotFoundError, DSNFormatError, SourceNotFoundError
from quarry.observability import (
    SourceConnected,
    SourceConnectFailed,
    SourceDisconnected,
    emit,
)
from quarry.ssh import SSHTunnel, open_tunnel

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Registry of connected source connectors."""

    def __init__(self, connectors: ConnectorRegistry | None = None) -> None:
        self.connectors = connectors or default_connector_registry()
        self._connectors: dict[str, Connector] = {}
        self._configs: dict[str, SourceConfig] = {}
        self._tunnels: dict[str, SSHTunnel] = {}

    # -- connecting -------------------------------------------------------

    async def connect_source(self, config: SourceConfig) -> Connector:
        """Clone, configure and connect the connector for one source."""
        if config.id in self._connectors:
            await self.remove_async(config.id)

        try:
            prototype = self.connectors.resolve_connector(config.dsn)
        except ConnectorNotFoundError as e:
            e.source_id = config.id
            emit(SourceConnectFailed(config.id, None, str(e), "dsn"))
            raise

        connector = prototype.clone().configure(config.id, config.execute_options())
        dsn = config.dsn
        tunnel: SSHTunnel | None = None
        started = time.perf_counter()

        if config.ssh is not None:
            if prototype.id == "sqlite":
                logger.warning("SSH settings ignored for SQLite source %s", config.id)
            else:
                try:
                    dsn, tunnel = await open_tunnel(dsn, config.ssh, source_id=config.id)
                except Exception as e:
                    emit(SourceConnectFailed(config.id, prototype.id, str(e), "tunnel"))
                    raise

        try:
            await connector.connect(dsn, init_script=config.init_script)
        except Exception as e:
            if tunnel is not None:
                tunnel.close()
            stage = "dsn" if isinstance(e, DSNFormatError) else "connect"
            emit(SourceConnectFailed(config.id, prototype.id, str(e), stage))
            raise

        self._connectors[config.id] = connector
        self._configs[config.id] = config
        if tunnel is not None:
            self._tunnels[config.id] = tunnel

        emit(
            SourceConnected(
                source_id=config.id,
                connector_id=prototype.id,
                dsn=obfuscate_dsn(config.dsn),
                tunneled=tunnel is not None,
                latency_ms=round((time.perf_counter() - started) * 1000, 2),
            )
        )
        return connector

    async def connect_sources(self, configs: Iterable[SourceConfig]) -> None:
        """Connect every source in order. On the first failure, disconnect all and re-raise."""
        try:
            for config in configs:
                await self.connect_source(config)
        except Exception:
            await self.clear_async()
            raise

    # -- lookup -----------------------------------------------------------

    def resolve_source_id(self, source_id: str | None = None) -> str:
        """The source to use: ``source_id`` itself, or the only one configured.

        Omitting the id is ambiguous when more than one source exists.
        """
        available = self.list_sources()
        if source_id is None:
            if len(available) == 1:
                return available[0]
            if not available:
                raise SourceNotFoundError("No sources are connected", available=available)
            raise SourceNotFoundError(
                "Multiple sources are configured; specify one of: " + ", ".join(available),
                available=available,
            )
        if source_id not in self._connectors:
            raise SourceNotFoundError(
                f"Source '{source_id}' not found. Available sources: {', '.join(available)}",
                source_id=source_id,
                available=available,
            )
        return source_id

    def get_connector(self, source_id: str | None = None) -> Connector:
        return self._connectors[self.resolve_source_id(source_id)]

    def get(self, source_id: str) -> Connector | None:
        return self._connectors.get(source_id)

    def get_config(self, source_id: str) -> SourceConfig | None:
        return self._configs.get(source_id)

    def is_tunneled(self, source_id: str) -> bool:
        return source_id in self._tunnels

    def list_sources(self) -> list[str]:
        return list(self._connectors.keys())

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)

    # -- teardown ---------------------------------------------------------

    async def remove_async(self, source_id: str) -> bool:
        """Disconnect and drop a source. Returns True if it existed."""
        connector = self._connectors.pop(source_id, None)
        self._configs.pop(source_id, None)
        tunnel = self._tunnels.pop(source_id, None)
        if connector is None:
            return False
        try:
            await connector.disconnect()
        except Exception:
            logger.debug("Error disconnecting source %s on remove", source_id, exc_info=True)
        finally:
            if tunnel is not None:
                tunnel.close()
        emit(SourceDisconnected(source_id=source_id, connector_id=connector.id))
        return True

    async def clear_async(self) -> None:
        """Disconnect every source."""
        for source_id in list(self._connectors):
            await self.remove_async(source_id)
        for tunnel in self._tunnels.values():
            tunnel.close()
        self._tunnels.clear()
