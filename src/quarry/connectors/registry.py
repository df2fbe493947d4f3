"""ConnectorRegistry: ordered catalog of prototype connectors, DSN dispatch.

Dispatch is first-match in registration order, so registration refuses any
connector whose DSN shape overlaps one already present: the newcomer's
sample DSN must be rejected by every existing parser, and every existing
sample must be rejected by the newcomer's parser.
"""

from __future__ import annotations

import logging

from quarry.connectors.base import Connector
from quarry.connectors.dsn import obfuscate_dsn
from quarry.errors import ConnectorNotFoundError, ConnectorRegistrationError

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Registry of prototype connectors keyed by id."""

    def __init__(self) -> None:
        self._connectors: dict[str, Connector] = {}

    def register(self, connector: Connector) -> None:
        if connector.id in self._connectors:
            raise ConnectorRegistrationError(
                f"Connector '{connector.id}' is already registered"
            )
        sample = connector.dsn_parser.get_sample_dsn()
        for existing in self._connectors.values():
            if existing.dsn_parser.is_valid_dsn(sample):
                raise ConnectorRegistrationError(
                    f"Connector '{connector.id}' sample DSN {obfuscate_dsn(sample)} "
                    f"is also accepted by '{existing.id}'"
                )
            other = existing.dsn_parser.get_sample_dsn()
            if connector.dsn_parser.is_valid_dsn(other):
                raise ConnectorRegistrationError(
                    f"Connector '{connector.id}' accepts the sample DSN of '{existing.id}'"
                )
        self._connectors[connector.id] = connector
        logger.debug("Registered connector %s", connector.id)

    def get_connector(self, connector_id: str) -> Connector | None:
        return self._connectors.get(connector_id)

    def get_connector_for_dsn(self, dsn: str) -> Connector | None:
        for connector in self._connectors.values():
            if connector.dsn_parser.is_valid_dsn(dsn):
                return connector
        return None

    def resolve_connector(self, dsn: str) -> Connector:
        """Like get_connector_for_dsn, but raises when nothing matches."""
        connector = self.get_connector_for_dsn(dsn)
        if connector is None:
            raise ConnectorNotFoundError(
                f"No connector found for DSN {obfuscate_dsn(dsn)}. "
                f"Available: {', '.join(self.get_available_connectors())}"
            )
        return connector

    def get_available_connectors(self) -> list[str]:
        return list(self._connectors)

    def get_sample_dsn(self, connector_id: str) -> str | None:
        connector = self._connectors.get(connector_id)
        return connector.dsn_parser.get_sample_dsn() if connector else None

    def get_all_sample_dsns(self) -> dict[str, str]:
        return {
            cid: c.dsn_parser.get_sample_dsn() for cid, c in self._connectors.items()
        }

    def __contains__(self, connector_id: object) -> bool:
        return connector_id in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)


def default_connector_registry() -> ConnectorRegistry:
    """Registry with every built-in backend, in dispatch order."""
    from quarry.connectors.mysql import MariaDBConnector, MySQLConnector
    from quarry.connectors.postgres import PostgresConnector
    from quarry.connectors.sqlite import SQLiteConnector
    from quarry.connectors.sqlserver import SQLServerConnector

    registry = ConnectorRegistry()
    for connector in (
        PostgresConnector(),
        MySQLConnector(),
        MariaDBConnector(),
        SQLServerConnector(),
        SQLiteConnector(),
    ):
        registry.register(connector)
    return registry
