"""
Tool executor: runs a batch of tool calls requested in one assistant turn.

Each call is isolated: a failure, an unknown tool name or a timeout becomes a
failed ``ToolResult`` for that call only. Results always come back in the
order the calls were requested, whether the batch ran sequentially or
concurrently.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ..llm.base import LLMMessage, ToolCall
from .base import ToolResult
from .registry import ToolRegistry

if TYPE_CHECKING:
    from ..agent.store import MessageStore

logger = structlog.get_logger()

DEFAULT_TOOL_TIMEOUT = 120.0
DEFAULT_MAX_OUTPUT_CHARS = 32_768


def truncate_tool_output(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return f"{content[:limit]}\n\n[Output truncated: showing first {limit} of {len(content)} characters]"


@dataclass
class ToolExecutionResult:
    """A tool call paired with its outcome."""

    tool_call: ToolCall
    result: ToolResult
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.result.success

    def to_llm_content(self) -> str:
        """Text sent back to the model for this call."""
        if self.result.success:
            return self.result.output
        return f"Error: {self.result.error or 'Tool execution failed'}"

    def to_message(self, max_chars: int = DEFAULT_MAX_OUTPUT_CHARS) -> LLMMessage:
        """The tool-role message for this call, as kept in history and storage."""
        return LLMMessage(
            role="tool",
            content=truncate_tool_output(self.to_llm_content(), max_chars),
            tool_call_id=self.tool_call.id,
            name=self.tool_call.name,
        )


class ToolExecutor:
    """Executes tool calls against a registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        message_store: "MessageStore | None" = None,
        default_timeout: float = DEFAULT_TOOL_TIMEOUT,
        parallel: bool = False,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ):
        self.registry = registry
        self.message_store = message_store
        self.default_timeout = default_timeout
        self.parallel = parallel
        self.max_output_chars = max_output_chars

    async def execute_batch(
        self,
        tool_calls: list[ToolCall],
        registry: ToolRegistry | None = None,
        conversation_id: str | None = None,
    ) -> list[ToolExecutionResult]:
        """Execute every call; one result per call, in request order."""
        if registry is None:
            registry = self.registry
        if self.parallel and len(tool_calls) > 1:
            results = list(await asyncio.gather(*(self.execute(tc, registry) for tc in tool_calls)))
        else:
            results = [await self.execute(tc, registry) for tc in tool_calls]

        if self.message_store is not None and conversation_id is not None:
            for execution in results:
                await self._store_result(execution, conversation_id)
        return results

    async def execute(self, tool_call: ToolCall, registry: ToolRegistry | None = None) -> ToolExecutionResult:
        """Execute a single call. Never raises except on cancellation."""
        if registry is None:
            registry = self.registry
        started = time.monotonic()

        entry = registry.get_tool(tool_call.name)
        if entry is None:
            available = ", ".join(sorted(registry.list_tools())) or "none"
            result = ToolResult(
                success=False,
                error=f"Tool '{tool_call.name}' not found. Available tools: {available}",
            )
            logger.warning("Tool not found", tool_name=tool_call.name)
            return ToolExecutionResult(tool_call, result)

        timeout = entry.definition.timeout or self.default_timeout
        logger.info("Executing tool", tool_name=tool_call.name, call_id=tool_call.id, plugin_id=entry.plugin_id)
        try:
            result = await asyncio.wait_for(entry.plugin.execute(tool_call.name, tool_call.arguments), timeout)
        except asyncio.TimeoutError as e:
            result = ToolResult(
                success=False,
                error=f"Tool '{tool_call.name}' timed out after {timeout:g}s",
                exception=e,
            )
        except Exception as e:
            logger.error("Tool execution error", tool_name=tool_call.name, error=str(e))
            result = ToolResult(success=False, error=str(e) or type(e).__name__, exception=e)

        if not isinstance(result, ToolResult):
            result = ToolResult(success=False, error=f"Tool '{tool_call.name}' returned no result")

        duration_ms = (time.monotonic() - started) * 1000
        logger.info("Tool executed", tool_name=tool_call.name, success=result.success, duration_ms=round(duration_ms, 1))
        return ToolExecutionResult(tool_call, result, duration_ms)

    async def _store_result(self, execution: ToolExecutionResult, conversation_id: str) -> None:
        try:
            await self.message_store.insert(conversation_id, execution.to_message(self.max_output_chars))
        except Exception as e:
            logger.warning("Failed to store tool result", tool_name=execution.tool_call.name, error=str(e))
