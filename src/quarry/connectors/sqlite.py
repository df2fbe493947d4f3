"""SQLiteConnector: SQLite files (or memory) via aiosqlite.

Accepted DSNs:
    sqlite:///abs/path.db     absolute path
    sqlite://rel/path.db      relative to the working directory
    sqlite:///~/data.db       home-relative
    sqlite::memory:           private in-memory database
    sqlite:///:memory:        same

Schemas are the attached databases (``main`` unless ATTACH was used).
SQLite has no stored procedures.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Sequence

from quarry.connectors.base import (
    BaseConnector,
    QueryResult,
    StoredProcedure,
    TableColumn,
    TableIndex,
    backend_call,
)
from quarry.connectors.dsn import obfuscate_dsn
from quarry.errors import DSNFormatError, ExecutionError

MEMORY = ":memory:"


def _quote_ident(name: str) -> str:
    """Safely quote a SQL identifier, escaping embedded double quotes."""
    return '"' + name.replace('"', '""') + '"'


@dataclass(frozen=True)
class SQLiteConfig:
    database: str

    @property
    def is_memory(self) -> bool:
        return self.database == MEMORY


class SQLiteDSNParser:
    sample = "sqlite:///path/to/database.db"

    def get_sample_dsn(self) -> str:
        return self.sample

    def is_valid_dsn(self, dsn: str) -> bool:
        return isinstance(dsn, str) and (dsn == "sqlite::memory:" or dsn.startswith("sqlite://"))

    def parse(self, dsn: str) -> SQLiteConfig:
        if not self.is_valid_dsn(dsn):
            raise DSNFormatError(
                f"Invalid SQLite DSN format.\nProvided: {obfuscate_dsn(str(dsn))}\n"
                f"Expected: {self.sample}",
                dsn=str(dsn),
                expected=self.sample,
            )
        if dsn == "sqlite::memory:":
            return SQLiteConfig(MEMORY)
        path = dsn[len("sqlite://") :]
        if path in (MEMORY, "/" + MEMORY):
            return SQLiteConfig(MEMORY)
        if path.startswith("/~"):
            path = os.path.expanduser(path[1:])
        if not path or path == "/":
            raise DSNFormatError(
                f"Invalid SQLite DSN format: no database path.\nExpected: {self.sample}",
                dsn=dsn,
                expected=self.sample,
            )
        return SQLiteConfig(path)


class SQLiteConnector(BaseConnector):
    """Async SQLite connector."""

    id = "sqlite"
    name = "SQLite"
    dialect = "sqlite"
    default_schema = "main"
    dsn_parser = SQLiteDSNParser()

    def __init__(self) -> None:
        super().__init__()
        self._conn: Any = None
        self._database: str | None = None

    @property
    def database(self) -> str | None:
        return self._database

    async def _open(self, config: SQLiteConfig) -> None:
        import aiosqlite

        self._conn = await aiosqlite.connect(config.database, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("SELECT 1")
        self._database = config.database

    async def _close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        async with self._conn.execute(sql, tuple(params)) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def _run_one(self, sql: str, params: Sequence[Any] | None) -> QueryResult:
        async with self._conn.execute(sql, tuple(params or ())) as cur:
            if cur.description is None:
                return QueryResult(rows=[], metadata={"affected_rows": cur.rowcount})
            columns = [d[0] for d in cur.description]
            rows = [dict(r) for r in await cur.fetchall()]
            return QueryResult(rows=rows, columns=columns)

    async def _run(self, statements: list[str], params: Sequence[Any] | None) -> QueryResult:
        if len(statements) == 1:
            return await self._run_one(statements[0], params)
        rows: list[dict[str, Any]] = []
        columns: list[str] = []
        await self._conn.execute("BEGIN")
        try:
            for sql in statements:
                result = await self._run_one(sql, None)
                if result.rows:
                    rows.extend(result.rows)
                    columns = columns or result.columns
            await self._conn.execute("COMMIT")
        except BaseException:
            await self._conn.execute("ROLLBACK")
            raise
        return QueryResult(rows=rows, columns=columns)

    def _schema(self, schema: str | None) -> str:
        return _quote_ident(schema or self.default_schema)

    # -- introspection ----------------------------------------------------

    @backend_call
    async def get_schemas(self) -> list[str]:
        rows = await self._fetch("PRAGMA database_list")
        return [r["name"] for r in rows if r["name"] != "temp"]

    @backend_call
    async def get_tables(self, schema: str | None = None) -> list[str]:
        rows = await self._fetch(
            f"SELECT name FROM {self._schema(schema)}.sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [r["name"] for r in rows]

    @backend_call
    async def table_exists(self, table: str, schema: str | None = None) -> bool:
        rows = await self._fetch(
            f"SELECT 1 FROM {self._schema(schema)}.sqlite_master "
            "WHERE type = 'table' AND name = ?",
            (table,),
        )
        return bool(rows)

    async def _table_info(self, table: str, schema: str | None) -> list[dict[str, Any]]:
        return await self._fetch(
            f"PRAGMA {self._schema(schema)}.table_info({_quote_ident(table)})"
        )

    @backend_call
    async def get_table_schema(
        self, table: str, schema: str | None = None
    ) -> list[TableColumn]:
        return [
            TableColumn(
                name=r["name"],
                data_type=r["type"] or "",
                nullable=not r["notnull"] and not r["pk"],
                default=r["dflt_value"],
            )
            for r in await self._table_info(table, schema)
        ]

    @backend_call
    async def get_table_indexes(
        self, table: str, schema: str | None = None
    ) -> list[TableIndex]:
        prefix = self._schema(schema)
        index_rows = await self._fetch(f"PRAGMA {prefix}.index_list({_quote_ident(table)})")
        indexes: list[TableIndex] = []
        for r in index_rows:
            info = await self._fetch(f"PRAGMA {prefix}.index_info({_quote_ident(r['name'])})")
            indexes.append(
                TableIndex(
                    name=r["name"],
                    columns=tuple(i["name"] for i in sorted(info, key=lambda i: i["seqno"])),
                    is_unique=bool(r["unique"]),
                    is_primary=r["origin"] == "pk",
                )
            )
        if not any(ix.is_primary for ix in indexes):
            # INTEGER PRIMARY KEY aliases the rowid and has no index entry
            pk = sorted(
                (c for c in await self._table_info(table, schema) if c["pk"]),
                key=lambda c: c["pk"],
            )
            if pk:
                indexes.insert(
                    0,
                    TableIndex(
                        name="PRIMARY",
                        columns=tuple(c["name"] for c in pk),
                        is_unique=True,
                        is_primary=True,
                    ),
                )
        return sorted(indexes, key=lambda ix: (not ix.is_primary, ix.name))

    @backend_call
    async def get_stored_procedures(self, schema: str | None = None) -> list[str]:
        return []

    @backend_call
    async def get_stored_procedure_detail(
        self, name: str, schema: str | None = None
    ) -> StoredProcedure:
        raise ExecutionError(
            "SQLite does not support stored procedures",
            source_id=self.source_id,
            stage="introspect",
        )
