"""Dialect-aware SQL lexing: comment/string stripping and statement splitting.

Not a parser. The scanner only knows enough to tell plain text apart from
comments and quoted blocks, so that keyword checks and ``;`` splitting are
not fooled by ``'DROP TABLE x; --'`` inside a literal.

Quoting recognized per dialect:
    all        -- line comments, /* */ block comments, '...', "..."
    postgres   $$...$$ and $tag$...$tag$ (``$1`` stays a parameter)
    mysql      `...`
    sqlite     `...` and [...]
    sqlserver  [...]
"""

from __future__ import annotations

import re
from typing import Callable

PLAIN = 0
COMMENT = 1
QUOTED = 2

# (kind, end) where end is the index just past the token
Token = tuple[int, int]
Scan = Callable[[str, int], "Token | None"]

_DOLLAR_OPEN = re.compile(r"\$([A-Za-z_]\w*)?\$")


def _line_comment(sql: str, i: int) -> Token | None:
    if not sql.startswith("--", i):
        return None
    end = sql.find("\n", i)
    return COMMENT, len(sql) if end < 0 else end


def _block_comment(sql: str, i: int) -> Token | None:
    if not sql.startswith("/*", i):
        return None
    end = sql.find("*/", i + 2)
    return COMMENT, len(sql) if end < 0 else end + 2


def _delimited(open_ch: str, close_ch: str) -> Scan:
    """Scanner for a quoted block where a doubled closer is an escape."""

    def scan(sql: str, i: int) -> Token | None:
        if sql[i] != open_ch:
            return None
        j = i + 1
        n = len(sql)
        while j < n:
            if sql[j] == close_ch:
                if j + 1 < n and sql[j + 1] == close_ch:
                    j += 2
                    continue
                return QUOTED, j + 1
            j += 1
        return QUOTED, n

    return scan


def _dollar_quoted(sql: str, i: int) -> Token | None:
    if sql[i] != "$":
        return None
    if i + 1 < len(sql) and sql[i + 1].isdigit():
        return None
    m = _DOLLAR_OPEN.match(sql, i)
    if m is None:
        return None
    tag = m.group(0)
    close = sql.find(tag, m.end())
    return QUOTED, len(sql) if close < 0 else close + len(tag)


_single = _delimited("'", "'")
_double = _delimited('"', '"')
_backtick = _delimited("`", "`")
_bracket = _delimited("[", "]")

_ANSI: tuple[Scan, ...] = (_line_comment, _block_comment, _single, _double)

DIALECT_SCANNERS: dict[str, tuple[Scan, ...]] = {
    "postgres": _ANSI + (_dollar_quoted,),
    "mysql": _ANSI + (_backtick,),
    "mariadb": _ANSI + (_backtick,),
    "sqlite": _ANSI + (_backtick, _bracket),
    "sqlserver": _ANSI + (_bracket,),
}


def _scanners(dialect: str | None) -> tuple[Scan, ...]:
    if dialect is None:
        return _ANSI
    return DIALECT_SCANNERS.get(dialect, _ANSI)


def _next_token(sql: str, i: int, scanners: tuple[Scan, ...]) -> Token:
    for scan in scanners:
        token = scan(sql, i)
        if token is not None:
            return token
    return PLAIN, i + 1


def strip_comments_and_strings(sql: str, dialect: str | None = None) -> str:
    """Replace every comment and quoted block with a single space."""
    scanners = _scanners(dialect)
    out: list[str] = []
    i = 0
    while i < len(sql):
        kind, end = _next_token(sql, i, scanners)
        out.append(sql[i] if kind == PLAIN else " ")
        i = end
    return "".join(out)


def mask_comments_and_strings(sql: str, dialect: str | None = None) -> str:
    """Like strip_comments_and_strings, but blanks keep their length.

    Offsets into the result are offsets into ``sql``.
    """
    scanners = _scanners(dialect)
    out: list[str] = []
    i = 0
    while i < len(sql):
        kind, end = _next_token(sql, i, scanners)
        out.append(sql[i] if kind == PLAIN else " " * (end - i))
        i = end
    return "".join(out)


def split_statements(sql: str, dialect: str | None = None) -> list[str]:
    """Split on top-level semicolons. Empty statements are dropped."""
    scanners = _scanners(dialect)
    statements: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(sql):
        if sql[i] == ";":
            stmt = "".join(current).strip()
            if stmt:
                statements.append(stmt)
            current = []
            i += 1
            continue
        _, end = _next_token(sql, i, scanners)
        current.append(sql[i:end])
        i = end
    stmt = "".join(current).strip()
    if stmt:
        statements.append(stmt)
    return statements
