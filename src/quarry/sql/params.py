"""Bind-parameter placeholders per dialect.

    postgres            $1, $2, ...
    mysql/mariadb       ?
    sqlite              ?
    sqlserver           @p1, @p2, ...

Placeholders inside comments and quoted text don't count.
"""

from __future__ import annotations

import re

from quarry.sql.scanner import mask_comments_and_strings

_NUMBERED = {
    "postgres": re.compile(r"\$(\d+)"),
    "sqlserver": re.compile(r"@p(\d+)\b", re.IGNORECASE),
}

PLACEHOLDER_STYLE = {
    "postgres": "$1",
    "mysql": "?",
    "mariadb": "?",
    "sqlite": "?",
    "sqlserver": "@p1",
}


def count_placeholders(sql: str, dialect: str) -> int:
    """Number of distinct parameters ``sql`` expects."""
    masked = mask_comments_and_strings(sql, dialect)
    numbered = _NUMBERED.get(dialect)
    if numbered is not None:
        return max((int(m.group(1)) for m in numbered.finditer(masked)), default=0)
    return masked.count("?")
