"""Tool configuration, the per-source tool registry and tool handlers."""

from quarry.tools.models import (
    BUILTIN_TOOL_NAMES,
    EXECUTE_SQL,
    GENERATE_CODE,
    SEARCH_OBJECTS,
    CustomToolConfig,
    ExecuteSqlToolConfig,
    GenerateCodeToolConfig,
    SearchObjectsToolConfig,
    ToolConfig,
    ToolParameter,
)
from quarry.tools.registry import (
    ToolRegistry,
    get_tool_registry,
    initialize_tool_registry,
    is_tool_registry_initialized,
    reset_tool_registry,
)

__all__ = [
    "BUILTIN_TOOL_NAMES",
    "EXECUTE_SQL",
    "GENERATE_CODE",
    "SEARCH_OBJECTS",
    "CustomToolConfig",
    "ExecuteSqlToolConfig",
    "GenerateCodeToolConfig",
    "SearchObjectsToolConfig",
    "ToolConfig",
    "ToolParameter",
    "ToolRegistry",
    "get_tool_registry",
    "initialize_tool_registry",
    "is_tool_registry_initialized",
    "reset_tool_registry",
]
