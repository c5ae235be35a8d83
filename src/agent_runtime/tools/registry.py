"""
Tool registry for managing available tools.

Tools belong to a category. ``core`` tools are always offered to the model;
tools in any other category are offered only after the conversation has
activated that category (see the ``activate_tools`` meta-tool).

A registry may be layered on a ``parent``: lookups fall through to the
parent and local registrations shadow it. The agent coordinator uses one
layer per conversation for its own meta-tools.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Iterable

import structlog

from ..llm.base import ToolDefinition
from .base import FunctionPlugin, Plugin, Tool

logger = structlog.get_logger()

CORE_CATEGORY = "core"


@dataclass
class RegisteredTool:
    """A tool definition together with the plugin that serves it."""

    definition: ToolDefinition
    plugin_id: str
    category: str
    plugin: Plugin

    @property
    def name(self) -> str:
        return self.definition.name


class ToolRegistry:
    """Registry for managing tools. Safe to use from several threads."""

    def __init__(self, parent: "ToolRegistry | None" = None):
        self.parent = parent
        self._tools: dict[str, RegisteredTool] = {}
        self._category_descriptions: dict[str, str] = {}
        self._lock = threading.RLock()

    def register_plugin(
        self,
        plugin_id: str,
        plugin: Plugin,
        tools: Iterable[ToolDefinition],
        category: str = CORE_CATEGORY,
        description: str | None = None,
    ) -> None:
        """Register every tool a plugin provides. Last registration of a name wins."""
        names = []
        with self._lock:
            for definition in tools:
                previous = self._tools.get(definition.name)
                if previous is not None and previous.plugin_id != plugin_id:
                    logger.warning(
                        "Tool overwritten by another plugin",
                        tool_name=definition.name,
                        previous_plugin=previous.plugin_id,
                        plugin_id=plugin_id,
                    )
                self._tools[definition.name] = RegisteredTool(definition, plugin_id, category, plugin)
                names.append(definition.name)
            if description and category != CORE_CATEGORY:
                self._category_descriptions[category] = description
        logger.info("Plugin registered", plugin_id=plugin_id, category=category, tools=names)

    def register(self, tool: Tool, category: str = CORE_CATEGORY) -> None:
        """Register a single function tool as its own plugin."""
        self.register_plugin(tool.name, FunctionPlugin([tool]), [tool.to_definition()], category)

    def register_tools(
        self,
        plugin_id: str,
        tools: list[Tool],
        category: str = CORE_CATEGORY,
        description: str | None = None,
    ) -> FunctionPlugin:
        """Register a group of function tools under one plugin id."""
        plugin = FunctionPlugin(tools)
        self.register_plugin(plugin_id, plugin, plugin.definitions, category, description)
        return plugin

    def unregister_plugin(self, plugin_id: str) -> list[str]:
        """Remove every tool owned by ``plugin_id``. Returns the removed names."""
        with self._lock:
            removed = [name for name, entry in self._tools.items() if entry.plugin_id == plugin_id]
            categories = {self._tools[name].category for name in removed}
            for name in removed:
                del self._tools[name]
            in_use = {entry.category for entry in self._tools.values()}
            for category in categories - in_use:
                self._category_descriptions.pop(category, None)
        if removed:
            logger.info("Plugin unregistered", plugin_id=plugin_id, tools=removed)
        return removed

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        with self._lock:
            if name in self._tools:
                del self._tools[name]
                logger.info("Tool unregistered", tool_name=name)

    def get_tool(self, name: str) -> RegisteredTool | None:
        """Get a tool by name, falling back to the parent registry."""
        with self._lock:
            entry = self._tools.get(name)
        if entry is None and self.parent is not None:
            return self.parent.get_tool(name)
        return entry

    def has_tool(self, name: str) -> bool:
        return self.get_tool(name) is not None

    def _snapshot(self) -> dict[str, RegisteredTool]:
        merged = self.parent._snapshot() if self.parent is not None else {}
        with self._lock:
            merged.update(self._tools)
        return merged

    def get_all_tools(self) -> list[RegisteredTool]:
        return list(self._snapshot().values())

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._snapshot().keys())

    def get_tool_definitions(self, active_categories: set[str] | None = None) -> list[ToolDefinition]:
        """Definitions to offer the model.

        Without ``active_categories`` every tool is returned. Otherwise the
        result is the core tools plus those whose category is active.
        """
        entries = self._snapshot().values()
        if active_categories is None:
            return [entry.definition for entry in entries]
        return [
            entry.definition
            for entry in entries
            if entry.category == CORE_CATEGORY or entry.category in active_categories
        ]

    def get_on_demand_categories(self) -> list[str]:
        """Distinct categories other than core, sorted."""
        return sorted({e.category for e in self._snapshot().values() if e.category != CORE_CATEGORY})

    def get_category_description(self, category: str) -> str | None:
        with self._lock:
            description = self._category_descriptions.get(category)
        if description is None and self.parent is not None:
            return self.parent.get_category_description(category)
        return description

    def _all_category_descriptions(self) -> dict[str, str]:
        merged = self.parent._all_category_descriptions() if self.parent is not None else {}
        with self._lock:
            merged.update(self._category_descriptions)
        return merged

    def copy_filtered(self, predicate: Callable[[RegisteredTool], bool]) -> "ToolRegistry":
        """Independent flat copy holding only the tools that satisfy ``predicate``."""
        copy = ToolRegistry()
        kept = {name: entry for name, entry in self._snapshot().items() if predicate(entry)}
        categories = {entry.category for entry in kept.values()}
        copy._tools = kept
        copy._category_descriptions = {
            c: d for c, d in self._all_category_descriptions().items() if c in categories
        }
        return copy

    def clear(self) -> None:
        """Remove all local registrations. The parent is untouched."""
        with self._lock:
            self._tools.clear()
            self._category_descriptions.clear()

    def __len__(self) -> int:
        return len(self._snapshot())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_tool(name)


_registry: ToolRegistry | None = None
_registry_lock = threading.Lock()


def get_tool_registry() -> ToolRegistry:
    """Get or create the global tool registry with the built-in tools."""
    global _registry

    with _registry_lock:
        if _registry is None:
            from .builtin import register_builtin_tools

            _registry = ToolRegistry()
            register_builtin_tools(_registry)
        return _registry


def reset_tool_registry() -> None:
    """Drop the global registry. The next ``get_tool_registry`` builds a new one."""
    global _registry

    with _registry_lock:
        _registry = None
