"""Row caps for SELECT statements via native LIMIT / TOP clauses.

Only statements that start with SELECT are rewritten. A literal LIMIT is
lowered to ``min(existing, max_rows)``; a parameterized LIMIT (``$1``,
``?``, ``@p1``) cannot be compared before execution, so the statement is
wrapped in ``SELECT * FROM (...) AS subq LIMIT n``. SQL Server gets ``TOP``.

Clauses are located in a copy of the statement whose comments and quoted
text are blanked out, so ``'limit 5'`` in a string literal or a trailing
``-- comment`` never decides where the cap goes.
"""

from __future__ import annotations

import re

from quarry.sql.scanner import mask_comments_and_strings

_LITERAL_LIMIT = re.compile(r"\blimit\s+(\d+)", re.IGNORECASE)
_PARAM_LIMIT = re.compile(r"\blimit\s+(?:\$\d+|\?|@p\d+)", re.IGNORECASE)
_TOP = re.compile(r"\bselect\s+(?:(?:distinct|all)\s+)?top\s+(\d+)", re.IGNORECASE)
_SELECT = re.compile(r"\bselect\s+(?:(?:distinct|all)\b\s*)?", re.IGNORECASE)


def is_select(sql: str, dialect: str | None = None) -> bool:
    return mask_comments_and_strings(sql, dialect).strip().lower().startswith("select")


def _code_and_semicolon(sql: str, masked: str) -> tuple[str, str]:
    """The statement up to its last code character, and its trailing ``;`` if any.

    Trailing comments are dropped.
    """
    end = len(masked.rstrip())
    semi = ""
    if end and masked[end - 1] == ";":
        semi = ";"
        end = len(masked[: end - 1].rstrip())
    start = len(masked) - len(masked.lstrip())
    return sql[start:end], semi


def _splice(sql: str, m: re.Match[str], replacement: str) -> str:
    return sql[: m.start()] + replacement + sql[m.end() :]


def apply_limit(sql: str, max_rows: int, dialect: str | None = None) -> str:
    masked = mask_comments_and_strings(sql, dialect)
    m = _LITERAL_LIMIT.search(masked)
    if m:
        effective = min(int(m.group(1)), max_rows)
        return _splice(sql, m, f"LIMIT {effective}")
    body, semi = _code_and_semicolon(sql, masked)
    return f"{body} LIMIT {max_rows}{semi}"


def apply_top(sql: str, max_rows: int) -> str:
    masked = mask_comments_and_strings(sql, "sqlserver")
    m = _TOP.search(masked)
    if m:
        effective = min(int(m.group(1)), max_rows)
        return sql[: m.start(1)] + str(effective) + sql[m.end(1) :]
    m = _SELECT.search(masked)
    if m is None:
        return sql
    head = sql[m.start() : m.end()].rstrip()
    return _splice(sql, m, f"{head} TOP {max_rows} ")


def apply_max_rows(sql: str, max_rows: int | None, dialect: str | None = None) -> str:
    """Cap a SELECT at ``max_rows``. Anything else is returned untouched."""
    if not max_rows or not is_select(sql, dialect):
        return sql
    if dialect == "sqlserver":
        return apply_top(sql, max_rows)
    masked = mask_comments_and_strings(sql, dialect)
    if _PARAM_LIMIT.search(masked):
        body, semi = _code_and_semicolon(sql, masked)
        return f"SELECT * FROM ({body}) AS subq LIMIT {max_rows}{semi}"
    return apply_limit(sql, max_rows, dialect)
