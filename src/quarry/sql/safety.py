"""Read-only safety gate.

``validate_query`` is a predicate: it never raises. Callers (tool handlers)
turn a negative result into a policy error before anything reaches the
backend. The check is static and conservative:

    1. split into statements with the dialect scanner
    2. strip comments and quoted text from each
    3. reject a mutating leading verb
    4. reject a leading verb outside the dialect allow-list
    5. reject WITH / EXPLAIN / ANALYZE statements hiding a mutation
       (``WITH x AS (DELETE ...) SELECT ...``)

Every statement must pass. Only ``readonly=False`` switches the gate off.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from quarry.errors import ValidationRejection
from quarry.sql.scanner import split_statements, strip_comments_and_strings

ALLOWED_KEYWORDS: dict[str, tuple[str, ...]] = {
    "postgres": ("select", "with", "explain", "analyze", "show"),
    "mysql": ("select", "with", "explain", "analyze", "show", "describe", "desc"),
    "mariadb": ("select", "with", "explain", "analyze", "show", "describe", "desc"),
    "sqlite": ("select", "with", "explain", "analyze", "pragma"),
    "sqlserver": ("select", "with", "explain", "showplan"),
}

MUTATING_KEYWORDS = frozenset(
    {
        "drop",
        "delete",
        "update",
        "insert",
        "alter",
        "truncate",
        "create",
        "grant",
        "revoke",
        "merge",
        "replace",
        "upsert",
        "call",
        "exec",
        "execute",
        "copy",
    }
)

# Scanned anywhere inside WITH/EXPLAIN bodies. REPLACE and friends are
# left out: they are also ordinary scalar functions.
_EMBEDDED_MUTATION = re.compile(
    r"\b(insert|update|delete|merge|drop|alter|truncate|create|grant|revoke)\b"
)
_LEADING_WORD = re.compile(r"[\s(]*([a-z_]+)")
_NESTED_LEADERS = frozenset({"with", "explain", "analyze"})


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    message: str | None = None

    def __bool__(self) -> bool:
        return self.is_valid


def _rejection(source_id: str | None, dialect: str, reason: str) -> ValidationResult:
    allowed = ", ".join(ALLOWED_KEYWORDS.get(dialect, ())) or "none"
    where = f"source '{source_id}'" if source_id else "this source"
    return ValidationResult(
        False,
        f"Read-only mode is enabled for {where}. {reason} "
        f"Only the following SQL operations are allowed: {allowed}",
    )


def validate_query(
    sql: str,
    dialect: str,
    readonly: bool = True,
    source_id: str | None = None,
) -> ValidationResult:
    """Classify ``sql`` for a source of the given dialect."""
    if not readonly:
        return ValidationResult(True)

    allowed = ALLOWED_KEYWORDS.get(dialect, ())
    for statement in split_statements(sql, dialect):
        cleaned = strip_comments_and_strings(statement, dialect).strip().lower()
        if not cleaned:
            continue
        m = _LEADING_WORD.match(cleaned)
        keyword = m.group(1) if m else cleaned.split()[0]
        if keyword in MUTATING_KEYWORDS or keyword not in allowed:
            return _rejection(
                source_id, dialect, f"{keyword.upper()} statements are not permitted."
            )
        if keyword in _NESTED_LEADERS:
            hidden = _EMBEDDED_MUTATION.search(cleaned)
            if hidden:
                return _rejection(
                    source_id,
                    dialect,
                    f"{keyword.upper()} statement contains {hidden.group(1).upper()}.",
                )
    return ValidationResult(True)


def check_query(
    sql: str,
    dialect: str,
    readonly: bool = True,
    source_id: str | None = None,
) -> None:
    """Like validate_query, but raises ValidationRejection on a refusal."""
    result = validate_query(sql, dialect, readonly=readonly, source_id=source_id)
    if not result:
        raise ValidationRejection(result.message or "Query rejected", source_id=source_id)
