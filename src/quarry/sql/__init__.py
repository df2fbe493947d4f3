"""Static SQL helpers: scanning, the read-only gate, row caps."""

from quarry.sql.limiter import apply_max_rows
from quarry.sql.safety import (
    ALLOWED_KEYWORDS,
    MUTATING_KEYWORDS,
    ValidationResult,
    check_query,
    validate_query,
)
from quarry.sql.scanner import split_statements, strip_comments_and_strings

__all__ = [
    "ALLOWED_KEYWORDS",
    "MUTATING_KEYWORDS",
    "ValidationResult",
    "apply_max_rows",
    "check_query",
    "split_statements",
    "strip_comments_and_strings",
    "validate_query",
]
