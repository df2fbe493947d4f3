"""Database connectors: one async connector per backend behind a shared contract.

Drivers (asyncpg, aiomysql, aioodbc, aiosqlite) are imported lazily when a
connector opens, so importing this package needs none of them.
"""

from quarry.connectors.base import (
    BaseConnector,
    Connector,
    DSNParser,
    ExecuteOptions,
    QueryResult,
    StoredProcedure,
    TableColumn,
    TableIndex,
)
from quarry.connectors.dsn import (
    database_type_from_dsn,
    obfuscate_dsn,
)
from quarry.connectors.mysql import MariaDBConnector, MySQLConnector
from quarry.connectors.postgres import PostgresConnector
from quarry.connectors.registry import ConnectorRegistry, default_connector_registry
from quarry.connectors.sqlite import SQLiteConnector
from quarry.connectors.sqlserver import SQLServerConnector

__all__ = [
    "BaseConnector",
    "Connector",
    "ConnectorRegistry",
    "DSNParser",
    "ExecuteOptions",
    "MariaDBConnector",
    "MySQLConnector",
    "PostgresConnector",
    "QueryResult",
    "SQLServerConnector",
    "SQLiteConnector",
    "StoredProcedure",
    "TableColumn",
    "TableIndex",
    "database_type_from_dsn",
    "default_connector_registry",
    "obfuscate_dsn",
]
