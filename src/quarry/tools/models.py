"""Tool configuration types.

A tool declaration names a ``source``. Built-ins form a closed set
(``execute_sql``, ``search_objects``, ``generate_code``); anything else is a
custom tool: a parameterized statement exposed as its own MCP tool. Only the
first two are defaults; ``generate_code`` must be declared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

EXECUTE_SQL = "execute_sql"
SEARCH_OBJECTS = "search_objects"
GENERATE_CODE = "generate_code"
BUILTIN_TOOL_NAMES = (EXECUTE_SQL, SEARCH_OBJECTS, GENERATE_CODE)

PARAMETER_TYPES = ("string", "integer", "float", "boolean", "array")


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str
    description: str
    required: bool = True
    default: Any = None
    allowed_values: tuple[Any, ...] | None = None


@dataclass(frozen=True)
class ExecuteSqlToolConfig:
    """``execute_sql`` on one source, optionally tightening its limits."""

    source: str
    readonly: bool | None = None
    max_rows: int | None = None
    name: str = field(default=EXECUTE_SQL, init=False)

    @property
    def is_builtin(self) -> bool:
        return True


@dataclass(frozen=True)
class SearchObjectsToolConfig:
    source: str
    name: str = field(default=SEARCH_OBJECTS, init=False)

    @property
    def is_builtin(self) -> bool:
        return True


@dataclass(frozen=True)
class GenerateCodeToolConfig:
    """``generate_code`` on one source. Never part of the defaults."""

    source: str
    name: str = field(default=GENERATE_CODE, init=False)

    @property
    def is_builtin(self) -> bool:
        return True


@dataclass(frozen=True)
class CustomToolConfig:
    """A named, parameterized statement bound to one source.

    ``options`` is carried through untouched for extensions.
    """

    name: str
    source: str
    description: str
    statement: str
    parameters: tuple[ToolParameter, ...] = ()
    readonly: bool | None = None
    max_rows: int | None = None
    options: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_builtin(self) -> bool:
        return False


ToolConfig = Union[
    ExecuteSqlToolConfig, SearchObjectsToolConfig, GenerateCodeToolConfig, CustomToolConfig
]


def default_tools_for(source_id: str) -> tuple[ToolConfig, ...]:
    """The tools a source gets when configuration names none for it."""
    return (ExecuteSqlToolConfig(source=source_id), SearchObjectsToolConfig(source=source_id))
