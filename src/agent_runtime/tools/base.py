"""
Base classes for tools.

A tool is provided by a ``Plugin``. The runtime only ever calls
``Plugin.execute`` with the tool name and the raw JSON arguments the model
produced; loading and unloading are left to whoever owns the plugin.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from ..llm.base import ToolDefinition


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None
    exception: BaseException | None = None


@dataclass
class PluginContext:
    """What a plugin receives when it is loaded."""

    plugin_id: str
    config: dict[str, Any] = field(default_factory=dict)


class Plugin(ABC):
    """A provider of one or more tools."""

    async def on_load(self, context: PluginContext) -> None:
        """Called once before the plugin's tools are used."""

    @abstractmethod
    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        """Run ``tool_name`` with the model's raw JSON ``arguments``."""
        pass

    async def on_unload(self) -> None:
        """Called when the plugin is removed."""


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    items: dict[str, Any] | None = None


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    Group one or more of these in a ``FunctionPlugin`` to register them.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]
    timeout: float | None = None

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.items:
                prop["items"] = param.items
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> ToolDefinition:
        """Convert to a tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
            timeout=self.timeout,
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(**kwargs)


class FunctionPlugin(Plugin):
    """Plugin backed by ``Tool`` handlers taking keyword arguments."""

    def __init__(self, tools: list[Tool]):
        self.tools = {tool.name: tool for tool in tools}

    @property
    def definitions(self) -> list[ToolDefinition]:
        return [tool.to_definition() for tool in self.tools.values()]

    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        tool = self.tools.get(tool_name)
        if tool is None:
            return ToolResult(success=False, error=f"Plugin does not provide tool '{tool_name}'")

        try:
            kwargs = json.loads(arguments) if arguments and arguments.strip() else {}
        except json.JSONDecodeError as e:
            return ToolResult(success=False, error=f"Invalid JSON arguments: {e}", exception=e)
        if not isinstance(kwargs, dict):
            return ToolResult(success=False, error="Arguments must be a JSON object")

        try:
            return await tool.execute(**kwargs)
        except TypeError as e:
            return ToolResult(success=False, error=f"Invalid arguments for {tool_name}: {e}", exception=e)
