"""The ``generate_code`` built-in: turn a SQL query into C# and TypeScript.

Generation is template-driven and never touches the database. A simple
single-table SELECT (columns, optional WHERE / ORDER BY / LIMIT) is mapped
onto ORM calls: EF Core LINQ on the C# side, a Prisma ``findMany`` on the
TypeScript side. Anything else falls back to running the raw SQL through
the ORM. Dapper and the plain driver snippets always embed the query as is.

Opt-in: sources only expose it when a ``[[tools]]`` entry names it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from quarry.errors import SourceNotFoundError
from quarry.observability import get_logger
from quarry.sources.registry import SourceRegistry
from quarry.tools.models import GENERATE_CODE
from quarry.tools.registry import ToolRegistry
from quarry.tools.results import (
    INVALID_ARGUMENT,
    TOOL_NOT_ENABLED,
    failure,
    failure_from,
    success,
)

logger = get_logger(__name__)

LANGUAGES = ("csharp", "typescript", "both")
ORM_PREFERENCES = ("ef-core", "dapper", "prisma", "all")
DATABASE_TYPES = ("postgres", "mysql", "mariadb", "sqlserver", "sqlite")

STANDARD_NOTES = (
    "Code is auto-generated and may need refinement for production use.",
    "Always validate generated queries match your data model and business logic.",
    "For complex queries, consider reviewing the generated code with team members.",
)

# database type -> (ADO.NET connection class, NuGet package)
_CSHARP_DRIVERS = {
    "postgres": ("NpgsqlConnection", "Npgsql"),
    "mysql": ("MySqlConnection", "MySqlConnector"),
    "mariadb": ("MySqlConnection", "MySqlConnector"),
    "sqlserver": ("SqlConnection", "Microsoft.Data.SqlClient"),
    "sqlite": ("SqliteConnection", "Microsoft.Data.Sqlite"),
}

# database type -> npm package for the plain driver snippet
_TS_DRIVERS = {
    "postgres": "pg",
    "mysql": "mysql2",
    "mariadb": "mysql2",
    "sqlserver": "mssql",
    "sqlite": "better-sqlite3",
}

_SIMPLE_SELECT = re.compile(
    r"select\s+(?P<columns>.+?)\s+from\s+(?P<table>\w+)"
    r"(?:\s+where\s+(?P<where>.+?))?"
    r"(?:\s+order\s+by\s+(?P<order>.+?))?"
    r"(?:\s+limit\s+(?P<limit>\d+))?",
    re.IGNORECASE,
)
_IDENT = re.compile(r"\w+")
_EQ_STRING = re.compile(r"(\w+)\s*=\s*'([^']*)'")
_EQ_NUMBER = re.compile(r"(\w+)\s*=\s*(-?\d+(?:\.\d+)?)\b")
_EQ_ANY = re.compile(r"(\w+)\s*=\s*('[^']*'|-?\d+(?:\.\d+)?)")
_AND = re.compile(r"\band\b", re.IGNORECASE)
_OR = re.compile(r"\bor\b", re.IGNORECASE)


@dataclass
class CSharpCode:
    explanation: str
    ef_core: str | None = None
    dapper: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"ef_core": self.ef_core, "dapper": self.dapper, "explanation": self.explanation}
        )


@dataclass
class TypeScriptCode:
    explanation: str
    prisma: str | None = None
    raw_client: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"prisma": self.prisma, "raw_client": self.raw_client, "explanation": self.explanation}
        )


@dataclass
class GeneratedCode:
    """Snippets per target language. A language that was not asked for is None."""

    database_type: str
    query_type: str = "sql"
    csharp: CSharpCode | None = None
    typescript: TypeScriptCode | None = None
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "query_type": self.query_type,
                "database_type": self.database_type,
                "csharp": self.csharp.to_dict() if self.csharp else None,
                "typescript": self.typescript.to_dict() if self.typescript else None,
                "notes": list(self.notes),
            }
        )


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class SimpleSelect:
    table: str
    columns: tuple[str, ...]  # empty for SELECT *
    where: str | None = None
    order: tuple[tuple[str, bool], ...] = ()  # (column, descending)
    limit: int | None = None


def parse_simple_select(query: str) -> SimpleSelect | None:
    """Match a single-table SELECT the ORMs can express, or None."""
    text = " ".join(query.split()).rstrip(";").rstrip()
    m = _SIMPLE_SELECT.fullmatch(text)
    if m is None:
        return None

    raw_columns = m.group("columns").strip()
    if raw_columns == "*":
        columns: tuple[str, ...] = ()
    else:
        columns = tuple(c.strip() for c in raw_columns.split(","))
        if not all(_IDENT.fullmatch(c) for c in columns):
            return None

    order: list[tuple[str, bool]] = []
    if m.group("order"):
        for part in m.group("order").split(","):
            words = part.split()
            if not words or not _IDENT.fullmatch(words[0]) or len(words) > 2:
                return None
            direction = words[1].lower() if len(words) == 2 else "asc"
            if direction not in ("asc", "desc"):
                return None
            order.append((words[0], direction == "desc"))

    limit = m.group("limit")
    return SimpleSelect(
        table=m.group("table"),
        columns=columns,
        where=m.group("where"),
        order=tuple(order),
        limit=int(limit) if limit else None,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pascal(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def _indent(text: str, prefix: str) -> str:
    return "\n".join(prefix + line if line else line for line in text.splitlines())


def _csharp_raw_string(query: str, prefix: str) -> str:
    """A C# 11 raw string literal holding ``query``, closing quotes at ``prefix``."""
    return f'{prefix}"""\n{_indent(query.strip(), prefix)}\n{prefix}"""'


def _template_literal(query: str) -> str:
    escaped = query.strip().replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")
    return f"`{escaped}`"


def linq_predicate(where: str) -> str:
    out = _EQ_STRING.sub(r'x.\1 == "\2"', where)
    out = _EQ_NUMBER.sub(r"x.\1 == \2", out)
    out = _AND.sub("&&", out)
    return _OR.sub("||", out)


def prisma_where(where: str) -> str | None:
    """A Prisma ``where`` object for ANDed equality tests, or None."""
    pairs = []
    for clause in _AND.split(where):
        m = _EQ_ANY.fullmatch(clause.strip())
        if m is None:
            return None
        column, value = m.groups()
        if value.startswith("'"):
            value = '"' + value[1:-1].replace('"', '\\"') + '"'
        pairs.append(f"{column}: {value}")
    return "{ " + ", ".join(pairs) + " }"


# ---------------------------------------------------------------------------
# C#
# ---------------------------------------------------------------------------


def csharp_ef_core(query: str, select: SimpleSelect | None) -> str:
    if select is None:
        return (
            "// Complex query: run it as raw SQL or move it into a stored procedure\n"
            "var result = await context.Database.SqlQueryRaw<YourEntity>(\n"
            f"{_csharp_raw_string(query, '    ')}\n"
            ").ToListAsync();"
        )

    lines = [f"var result = await context.{_pascal(select.table)}"]
    if select.where:
        lines.append(f"    .Where(x => {linq_predicate(select.where)})")
    for i, (column, descending) in enumerate(select.order):
        method = ("OrderBy" if i == 0 else "ThenBy") + ("Descending" if descending else "")
        lines.append(f"    .{method}(x => x.{column})")
    if select.limit is not None:
        lines.append(f"    .Take({select.limit})")
    if select.columns:
        members = ", ".join(f"x.{c}" for c in select.columns)
        lines.append(f"    .Select(x => new {{ {members} }})")
    lines.append("    .ToListAsync();")
    return "\n".join(lines)


def csharp_dapper(query: str, database_type: str) -> str:
    connection_class = _CSHARP_DRIVERS[database_type][0]
    return (
        f"using var connection = new {connection_class}(connectionString);\n"
        "var result = await connection.QueryAsync<dynamic>(\n"
        f"{_csharp_raw_string(query, '    ')}\n"
        ");"
    )


# ---------------------------------------------------------------------------
# TypeScript
# ---------------------------------------------------------------------------


def typescript_prisma(query: str, select: SimpleSelect | None) -> str:
    if select is None:
        return f"const result = await prisma.$queryRaw{_template_literal(query)};"

    lines = [f"const result = await prisma.{select.table}.findMany({{"]
    if select.where:
        where = prisma_where(select.where)
        if where is None:
            lines.append(f"  where: {{}}, // translate: {select.where}")
        else:
            lines.append(f"  where: {where},")
    if select.order:
        keys = ", ".join(
            f'{{ {column}: "{"desc" if descending else "asc"}" }}'
            for column, descending in select.order
        )
        lines.append(f"  orderBy: [{keys}],")
    if select.limit is not None:
        lines.append(f"  take: {select.limit},")
    if select.columns:
        lines.append("  select: {")
        lines.extend(f"    {c}: true," for c in select.columns)
        lines.append("  },")
    lines.append("});")
    return "\n".join(lines)


def typescript_raw_client(query: str, database_type: str) -> str:
    sql = _template_literal(query)
    if database_type == "postgres":
        return f"const {{ rows }} = await pool.query({sql}, [/* parameters */]);"
    if database_type in ("mysql", "mariadb"):
        return f"const [rows] = await pool.query({sql}, [/* parameters */]);"
    if database_type == "sqlserver":
        return f"const {{ recordset: rows }} = await pool.request().query({sql});"
    return f"const rows = db.prepare({sql}).all(/* parameters */);"


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def generate(
    query: str,
    database_type: str,
    language: str = "both",
    orm_preference: str = "all",
) -> GeneratedCode:
    """Build the snippets for ``query``. Arguments are assumed valid."""
    select = parse_simple_select(query)
    result = GeneratedCode(database_type=database_type)

    if language in ("csharp", "both"):
        package = _CSHARP_DRIVERS[database_type][1]
        csharp = CSharpCode(
            explanation=(
                f"Generated C# code for {database_type}. Install the {package} NuGet "
                "package, read the connection string from configuration and handle exceptions."
            )
        )
        if orm_preference in ("ef-core", "all"):
            csharp.ef_core = csharp_ef_core(query, select)
        if orm_preference in ("dapper", "all"):
            csharp.dapper = csharp_dapper(query, database_type)
        result.csharp = csharp

    if language in ("typescript", "both"):
        typescript = TypeScriptCode(
            explanation=(
                "Generated TypeScript code. Run 'npx prisma generate' after updating the "
                f"schema; the plain driver snippet uses the {_TS_DRIVERS[database_type]} package."
            )
        )
        if orm_preference in ("prisma", "all"):
            typescript.prisma = typescript_prisma(query, select)
        # Dapper's TypeScript counterpart is the plain driver.
        if orm_preference in ("dapper", "all"):
            typescript.raw_client = typescript_raw_client(query, database_type)
        result.typescript = typescript

    if select is None:
        result.notes.append(
            "The query is not a simple single-table SELECT; ORM snippets run it as raw SQL."
        )
    result.notes.extend(STANDARD_NOTES)
    return result


def generate_code(
    sources: SourceRegistry,
    tools: ToolRegistry,
    query: str,
    source: str | None = None,
    database_type: str | None = None,
    language: str = "both",
    orm_preference: str = "all",
) -> dict[str, Any]:
    """Convert ``query`` to C# / TypeScript. ``database_type`` defaults to the source's."""
    try:
        source_id = sources.resolve_source_id(source)
    except SourceNotFoundError as e:
        return failure_from(e)

    if tools.get_builtin_tool_config(GENERATE_CODE, source_id) is None:
        return failure(
            f"Tool '{GENERATE_CODE}' is not enabled for source '{source_id}'",
            TOOL_NOT_ENABLED,
        )
    if not query or not query.strip():
        return failure("query must not be empty", INVALID_ARGUMENT)
    if language not in LANGUAGES:
        return failure(f"language must be one of: {', '.join(LANGUAGES)}", INVALID_ARGUMENT)
    if orm_preference not in ORM_PREFERENCES:
        return failure(
            f"orm_preference must be one of: {', '.join(ORM_PREFERENCES)}", INVALID_ARGUMENT
        )
    db_type = database_type or sources.get_connector(source_id).id
    if db_type not in DATABASE_TYPES:
        return failure(
            f"database_type must be one of: {', '.join(DATABASE_TYPES)}", INVALID_ARGUMENT
        )

    code = generate(query, db_type, language, orm_preference)
    logger.debug(
        "tools.code_generated",
        source_id=source_id,
        database_type=db_type,
        language=language,
        orm_preference=orm_preference,
    )
    return success(code.to_dict())
