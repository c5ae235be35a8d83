"""
Meta-tools: tools that act on the conversation itself rather than the world.

- ``activate_tools`` makes on-demand tool categories visible to the model
- ``summarize_conversation`` compacts the conversation history on request

Both are bound to one coordinator and registered in that coordinator's own
registry layer, so conversations sharing a registry never see each other's
bindings.
"""

import json
from typing import Any, Awaitable, Callable

import structlog

from ..llm.base import ToolDefinition
from ..tools.base import Plugin, ToolResult
from ..tools.registry import ToolRegistry

logger = structlog.get_logger()

ACTIVATE_TOOLS = "activate_tools"
SUMMARIZE_CONVERSATION = "summarize_conversation"

SummarizeCallback = Callable[[], Awaitable[str]]


class ActivateToolsPlugin(Plugin):
    """Adds categories to a conversation's active set.

    ``active_categories`` is shared with the owning coordinator. ``None``
    means activation is not supported in this context and every call fails.
    """

    def __init__(self, registry: ToolRegistry, active_categories: set[str] | None):
        self.registry = registry
        self.active_categories = active_categories

    def definition(self) -> ToolDefinition:
        categories = self.registry.get_on_demand_categories()
        lines = []
        for category in categories:
            description = self.registry.get_category_description(category)
            lines.append(f"- {category}: {description}" if description else f"- {category}")
        listing = "\n".join(lines) if lines else "- (none)"

        items: dict[str, Any] = {"type": "string"}
        if categories:
            items["enum"] = categories

        return ToolDefinition(
            name=ACTIVATE_TOOLS,
            description=(
                "Activate additional tool categories for this conversation. "
                "Activated tools become available on your next step.\n"
                f"Available categories:\n{listing}"
            ),
            parameters={
                "type": "object",
                "properties": {
                    "categories": {
                        "type": "array",
                        "items": items,
                        "description": "Categories to activate",
                    },
                },
                "required": ["categories"],
            },
        )

    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        if tool_name != ACTIVATE_TOOLS:
            return ToolResult(success=False, error=f"Unknown tool: {tool_name}")
        if self.active_categories is None:
            return ToolResult(success=False, error="Tool activation not available in this context")

        try:
            args = json.loads(arguments) if arguments and arguments.strip() else {}
        except json.JSONDecodeError as e:
            return ToolResult(success=False, error=f"Invalid JSON arguments: {e}", exception=e)

        requested = args.get("categories") if isinstance(args, dict) else None
        if requested is None:
            return ToolResult(success=False, error="Missing required field: categories")
        if isinstance(requested, str):
            requested = [requested]
        if not isinstance(requested, list):
            return ToolResult(success=False, error="Field 'categories' must be an array of strings")

        available = self.registry.get_on_demand_categories()
        valid = []
        unknown = []
        for category in requested:
            if isinstance(category, str) and category in available:
                if category not in valid:
                    valid.append(category)
            else:
                unknown.append(str(category))

        if not valid:
            return ToolResult(
                success=False,
                error=f"No valid categories found. Available: {', '.join(available) or 'none'}",
            )

        self.active_categories.update(valid)
        logger.info("Tool categories activated", categories=valid, active=sorted(self.active_categories))

        lines = [f"Activated {len(valid)} category(s): {', '.join(valid)}"]
        for category in valid:
            names = sorted(
                entry.name for entry in self.registry.get_all_tools() if entry.category == category
            )
            lines.append(f"- {category}: {', '.join(names)}")
        if unknown:
            lines.append(f"Unknown categories (ignored): {', '.join(unknown)}")

        return ToolResult(success=True, output="\n".join(lines), data={"activated": valid})


class SummarizationPlugin(Plugin):
    """Runs the owning coordinator's summarization on request."""

    def __init__(self, on_summarize: SummarizeCallback):
        self.on_summarize = on_summarize

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=SUMMARIZE_CONVERSATION,
            description=(
                "Summarize the earlier part of this conversation to free up context. "
                "Recent messages are kept verbatim."
            ),
            parameters={"type": "object", "properties": {}, "required": []},
        )

    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        if tool_name != SUMMARIZE_CONVERSATION:
            return ToolResult(success=False, error=f"Unknown tool: {tool_name}")
        try:
            output = await self.on_summarize()
        except Exception as e:
            logger.error("Summarization tool failed", error=str(e))
            return ToolResult(success=False, error=f"Summarization failed: {e}", exception=e)
        return ToolResult(success=True, output=output)
