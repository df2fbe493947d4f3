"""Custom tools: a configured statement run with caller-supplied parameters.

Arguments are coerced to their declared type, checked against
``allowed_values`` and bound positionally in declaration order, so the
statement's placeholders ($1, ?, @p1 ...) line up with ``parameters``.
"""

from __future__ import annotations

import json
from typing import Any

from quarry.errors import SourceNotFoundError
from quarry.sources.registry import SourceRegistry
from quarry.tools.models import CustomToolConfig, ToolParameter
from quarry.tools.results import (
    INVALID_ARGUMENT,
    effective_readonly,
    failure,
    failure_from,
    run_guarded,
)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


class ArgumentError(ValueError):
    """A tool argument is missing or has the wrong shape."""


def coerce_argument(param: ToolParameter, value: Any) -> Any:
    """Convert ``value`` to ``param.type``. Raises ArgumentError."""
    kind = param.type
    try:
        if kind == "string":
            if isinstance(value, (dict, list, bool)):
                raise ArgumentError(f"expected a string, got {type(value).__name__}")
            return str(value)
        if kind == "integer":
            if isinstance(value, bool):
                raise ArgumentError("expected an integer, got a boolean")
            if isinstance(value, float):
                if not value.is_integer():
                    raise ArgumentError(f"expected an integer, got {value}")
                return int(value)
            return int(value)
        if kind == "float":
            if isinstance(value, bool):
                raise ArgumentError("expected a number, got a boolean")
            return float(value)
        if kind == "boolean":
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ArgumentError(f"expected a boolean, got {value!r}")
        if kind == "array":
            if isinstance(value, str):
                value = json.loads(value)
            if not isinstance(value, (list, tuple)):
                raise ArgumentError(f"expected an array, got {type(value).__name__}")
            return list(value)
    except ArgumentError:
        raise
    except (TypeError, ValueError) as e:
        raise ArgumentError(f"cannot convert {value!r} to {kind}") from e
    raise ArgumentError(f"unsupported parameter type {kind!r}")


def bind_arguments(tool: CustomToolConfig, arguments: dict[str, Any], dialect: str) -> list[Any]:
    """Positional bind values for ``tool`` from named ``arguments``."""
    unknown = set(arguments) - {p.name for p in tool.parameters}
    if unknown:
        raise ArgumentError(f"unknown argument(s): {', '.join(sorted(unknown))}")

    values: list[Any] = []
    for param in tool.parameters:
        value = arguments.get(param.name)
        if value is None:
            if param.required and param.default is None:
                raise ArgumentError(f"missing required argument '{param.name}'")
            value = param.default
        if value is not None:
            try:
                value = coerce_argument(param, value)
            except ArgumentError as e:
                raise ArgumentError(f"argument '{param.name}': {e}") from e
            if param.allowed_values is not None and value not in param.allowed_values:
                allowed = ", ".join(str(v) for v in param.allowed_values)
                raise ArgumentError(
                    f"argument '{param.name}' must be one of: {allowed}"
                )
            # Only asyncpg binds lists natively.
            if param.type == "array" and dialect != "postgres":
                value = json.dumps(value)
        values.append(value)
    return values


async def run_custom_tool(
    sources: SourceRegistry,
    tool: CustomToolConfig,
    arguments: dict[str, Any],
) -> dict[str, Any]:
    try:
        connector = sources.get_connector(tool.source)
    except SourceNotFoundError as e:
        return failure_from(e)

    try:
        params = bind_arguments(tool, arguments, connector.dialect)
    except ArgumentError as e:
        return failure(f"Tool '{tool.name}': {e}", INVALID_ARGUMENT)

    return await run_guarded(
        connector,
        tool.statement,
        tool=tool.name,
        params=params or None,
        readonly=effective_readonly(connector.options.readonly, tool.readonly),
        max_rows=tool.max_rows,
    )
