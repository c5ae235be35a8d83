"""
Tools module for agent capabilities.
"""

from .base import FunctionPlugin, Plugin, PluginContext, Tool, ToolParameter, ToolResult
from .registry import CORE_CATEGORY, RegisteredTool, ToolRegistry, get_tool_registry, reset_tool_registry
from .executor import ToolExecutionResult, ToolExecutor

__all__ = [
    "FunctionPlugin",
    "Plugin",
    "PluginContext",
    "Tool",
    "ToolParameter",
    "ToolResult",
    "CORE_CATEGORY",
    "RegisteredTool",
    "ToolRegistry",
    "get_tool_registry",
    "reset_tool_registry",
    "ToolExecutionResult",
    "ToolExecutor",
]
