"""ToolRegistry: which tools each source exposes.

Built once from configuration. Explicit ``[[tools]]`` entries are grouped by
source, sources ordered by their first entry; a source with no entries gets
``execute_sql`` and ``search_objects`` and is listed after them. A ``tools``
array that is present but empty is treated the same as a missing one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from quarry.errors import RegistryNotInitializedError
from quarry.observability import ToolRegistryBuilt, emit, get_logger
from quarry.tools.models import (
    BUILTIN_TOOL_NAMES,
    CustomToolConfig,
    ToolConfig,
    default_tools_for,
)

if TYPE_CHECKING:
    from quarry.config.models import QuarryConfig

logger = get_logger(__name__)


class ToolRegistry:
    """Per-source tool lists. Read-only after construction."""

    def __init__(self, config: QuarryConfig) -> None:
        # Sources with explicit entries come first, in the order their first
        # entry appears; defaulted sources follow in source order.
        grouped: dict[str, list[ToolConfig]] = {}
        for tool in config.tools or ():
            # The loader has already rejected unknown sources.
            grouped.setdefault(tool.source, []).append(tool)

        self._tools: dict[str, tuple[ToolConfig, ...]] = {
            sid: tuple(tools) for sid, tools in grouped.items()
        }
        defaulted = [s.id for s in config.sources if s.id not in self._tools]
        for sid in defaulted:
            self._tools[sid] = default_tools_for(sid)
        self._defaulted = tuple(defaulted)

        emit(
            ToolRegistryBuilt(
                source_count=len(self._tools),
                tool_count=sum(len(t) for t in self._tools.values()),
                defaulted_sources=self._defaulted,
            )
        )

    def get_tools_for_source(self, source_id: str) -> tuple[ToolConfig, ...]:
        return self._tools.get(source_id, ())

    def get_builtin_tool_config(self, name: str, source_id: str) -> ToolConfig | None:
        """The built-in ``name`` as configured on ``source_id``, if enabled there."""
        if name not in BUILTIN_TOOL_NAMES:
            return None
        for tool in self._tools.get(source_id, ()):
            if tool.name == name:
                return tool
        return None

    def get_all_tools(self) -> list[ToolConfig]:
        """Every enabled tool, one per name; the first source in registry order wins."""
        seen: set[str] = set()
        unique: list[ToolConfig] = []
        for tools in self._tools.values():
            for tool in tools:
                if tool.name not in seen:
                    seen.add(tool.name)
                    unique.append(tool)
        return unique

    def get_custom_tools(self) -> list[CustomToolConfig]:
        return [t for t in self.get_all_tools() if isinstance(t, CustomToolConfig)]

    def get_custom_tool(self, name: str) -> CustomToolConfig | None:
        for tool in self.get_custom_tools():
            if tool.name == name:
                return tool
        return None

    def get_enabled_builtin_tool_names(self) -> list[str]:
        return [t.name for t in self.get_all_tools() if t.is_builtin]

    def sources_with_tool(self, name: str) -> list[str]:
        return [
            sid for sid, tools in self._tools.items() if any(t.name == name for t in tools)
        ]

    def source_ids(self) -> list[str]:
        return list(self._tools)

    def defaulted_sources(self) -> tuple[str, ...]:
        return self._defaulted


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_registry: ToolRegistry | None = None


def initialize_tool_registry(config: QuarryConfig) -> ToolRegistry:
    """Build the process-wide registry, replacing any previous one."""
    global _registry
    _registry = ToolRegistry(config)
    logger.info(
        "tools.registry_initialized",
        sources=_registry.source_ids(),
        defaulted=list(_registry.defaulted_sources()),
    )
    return _registry


def get_tool_registry() -> ToolRegistry:
    if _registry is None:
        raise RegistryNotInitializedError()
    return _registry


def is_tool_registry_initialized() -> bool:
    return _registry is not None


def reset_tool_registry() -> None:
    """Reset for testing."""
    global _registry
    _registry = None
