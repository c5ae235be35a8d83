"""
The reason-then-act loop.

One ``run()`` drives a single execution: call the model, run the tools it
asks for, feed the results back, and repeat until the model answers in
plain text or the iteration ceiling is reached.

Each iteration:
1. Merges queued (injected) user messages into the history
2. Summarizes first if the prompt is close to the context window
3. Refreshes the tools visible to the model
4. Sends ``[system prompt + summary] + history`` to the LLM
5. Executes requested tool calls and appends their results in call order

User messages reach the message store as soon as they join the history.
An assistant tool-call message is stored together with its results once
the whole batch has finished, so the store never holds unanswered calls.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

from ..llm.base import BaseLLM, LLMMessage, ToolDefinition, TokenUsage
from ..llm.errors import EMPTY_RESPONSE_ERROR, LLMError, LLMErrorKind
from ..tools.executor import ToolExecutor, truncate_tool_output
from ..tools.registry import ToolRegistry
from .state import AgentResult, AgentState, Completed, Error, ExecutingTools, Thinking
from .summarization import SummarizationController, SummarizationResult, summary_block

logger = structlog.get_logger()

DEFAULT_MAX_ITERATIONS = 25
# Per-result cap applied to the history when recovering from a context overflow
OVERFLOW_TOOL_OUTPUT_CHARS = 4_000
TRUNCATION_NOTE_ALLOWANCE = 100

ToolsProvider = Callable[[], tuple[list[ToolDefinition], bool]]
StateCallback = Callable[[AgentState], None]
MessageCallback = Callable[[LLMMessage], Awaitable[None]]


@dataclass
class ConversationContext:
    """Mutable state of one conversation, owned by its coordinator."""

    history: list[LLMMessage] = field(default_factory=list)
    pending: deque = field(default_factory=deque)
    last_usage: TokenUsage | None = None
    # Assistant and tool messages not yet stored; rolled back on cancel
    uncommitted: list[LLMMessage] = field(default_factory=list)

    def add(self, message: LLMMessage) -> None:
        self.history.append(message)
        if message.role != "user":
            self.uncommitted.append(message)

    def take_uncommitted(self) -> list[LLMMessage]:
        taken = list(self.uncommitted)
        self.uncommitted.clear()
        return taken

    def drain_pending(self) -> list[LLMMessage]:
        drained = []
        while True:
            try:
                drained.append(self.pending.popleft())
            except IndexError:
                return drained

    @property
    def summary(self) -> str | None:
        for message in self.history:
            if message.is_summary:
                return message.text
        return None

    def conversation_messages(self) -> list[LLMMessage]:
        """History as sent to the model: no system or summary messages."""
        return [m for m in self.history if m.role != "system"]

    def rollback_turn(self) -> None:
        """Drop the assistant and tool messages that were never stored."""
        discard = {id(m) for m in self.uncommitted}
        self.history[:] = [m for m in self.history if id(m) not in discard]
        self.uncommitted.clear()


def build_system_prompt(system_prompt: str, summary: str | None) -> str:
    if not summary:
        return system_prompt
    return f"{system_prompt}\n\n{summary_block(summary)}"


def shrink_tool_outputs(history: list[LLMMessage], limit: int) -> int:
    """Cut oversized tool results in place. Returns how many were cut."""
    shrunk = 0
    for message in history:
        if message.role == "tool" and len(message.text) > limit + TRUNCATION_NOTE_ALLOWANCE:
            message.content = truncate_tool_output(message.text, limit)
            shrunk += 1
    return shrunk


class ReActLoop:
    """Runs executions over a ``ConversationContext``."""

    def __init__(
        self,
        llm: BaseLLM,
        executor: ToolExecutor,
        registry: ToolRegistry,
        summarizer: SummarizationController,
        tools_provider: ToolsProvider,
        on_state: StateCallback,
        on_message: MessageCallback,
        conversation_id: str | None = None,
    ):
        self.llm = llm
        self.executor = executor
        self.registry = registry
        self.summarizer = summarizer
        self.tools_provider = tools_provider
        self.on_state = on_state
        self.on_message = on_message
        self.conversation_id = conversation_id

    async def _emit_all(self, messages: list[LLMMessage]) -> None:
        for message in messages:
            await self.on_message(message)

    async def commit(self, conversation: ConversationContext) -> None:
        """Store the assistant and tool messages added since the last commit."""
        messages = conversation.take_uncommitted()
        if messages:
            # Taken messages are no longer rolled back; store all of them
            await asyncio.shield(self._emit_all(messages))

    async def add_user_message(self, conversation: ConversationContext, message: LLMMessage) -> None:
        conversation.add(message)
        await self.on_message(message)

    async def merge_pending(self, conversation: ConversationContext) -> int:
        """Append queued user messages to the history, oldest first."""
        drained = conversation.drain_pending()
        for message in drained:
            await self.add_user_message(conversation, message)
        if drained:
            logger.info("Merged injected messages", count=len(drained))
        return len(drained)

    async def summarize(
        self,
        conversation: ConversationContext,
        model: str,
        force: bool = False,
    ) -> SummarizationResult:
        """Replace the older part of the history with a summary message."""
        new_history, result = await self.summarizer.summarize(conversation.history, model, force=force)
        if result.summarized:
            conversation.history[:] = new_history
            conversation.last_usage = None
            await self.on_message(result.summary_message)
        return result

    async def recover_from_overflow(self, conversation: ConversationContext, model: str) -> None:
        """Shrink the prompt after the provider rejected it as too long.

        Everything before the latest user message is summarized and
        oversized tool results are cut down.
        """
        result = await self.summarize(conversation, model, force=True)
        shrunk = shrink_tool_outputs(conversation.history, OVERFLOW_TOOL_OUTPUT_CHARS)
        conversation.last_usage = None
        if not result.summarized and not shrunk:
            logger.warning("Nothing left to shrink after context overflow", model=model)
        else:
            logger.info(
                "Context reduced after overflow",
                summarized=result.summarized,
                tool_results_shrunk=shrunk,
            )

    async def run(
        self,
        conversation: ConversationContext,
        system_prompt: str,
        model: str,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        temperature: float | None = None,
    ) -> AgentResult:
        """Drive one execution to a final answer or an error.

        ``asyncio.CancelledError`` propagates to the caller.
        """
        overflow_recovered = False
        iteration = 0

        while iteration < max_iterations:
            iteration += 1
            self.on_state(Thinking())

            await self.merge_pending(conversation)

            if self.summarizer.should_summarize(
                conversation.conversation_messages(),
                model,
                build_system_prompt(system_prompt, conversation.summary),
                conversation.last_usage,
            ):
                logger.info("Context approaching limit, summarizing", model=model, iteration=iteration)
                await self.summarize(conversation, model)

            tools, web_search = self.tools_provider()
            messages = [
                LLMMessage(role="system", content=build_system_prompt(system_prompt, conversation.summary)),
                *conversation.conversation_messages(),
            ]

            result = await self.llm.complete(
                messages,
                model=model,
                temperature=temperature,
                tools=tools,
                enable_web_search=web_search,
            )

            if not result.success:
                error = result.error
                if error.is_context_overflow and not overflow_recovered:
                    overflow_recovered = True
                    logger.warning("Context overflow, reducing context and retrying", model=model)
                    await self.recover_from_overflow(conversation, model)
                    # The retry is not a new iteration
                    iteration -= 1
                    continue
                return self._fail(error.message, error)

            response = result.response
            if response.usage is not None:
                conversation.last_usage = response.usage

            if response.tool_calls:
                conversation.add(LLMMessage(
                    role="assistant",
                    content=response.content,
                    tool_calls=response.tool_calls,
                    provider_meta=response.provider_meta,
                ))

                self.on_state(ExecutingTools(tuple(tc.name for tc in response.tool_calls)))
                executions = await self.executor.execute_batch(
                    response.tool_calls,
                    registry=self.registry,
                    conversation_id=self.conversation_id,
                )
                for execution in executions:
                    conversation.add(execution.to_message(self.executor.max_output_chars))
                await self.commit(conversation)
                continue

            if response.finish_reason == "tool_calls":
                return self._fail(
                    "LLM requested tool calls but none were provided",
                    LLMError(LLMErrorKind.PROTOCOL, "Tool calls finish reason without tool calls"),
                )

            text = response.content or ""
            if not text.strip():
                if response.finish_reason == "stop":
                    return self._fail(
                        EMPTY_RESPONSE_ERROR,
                        LLMError(LLMErrorKind.PROTOCOL, EMPTY_RESPONSE_ERROR),
                    )
                return self._fail(f"LLM stopped without a response (finish_reason: {response.finish_reason})")

            if response.finish_reason != "stop":
                logger.warning("Unexpected finish reason, using response text", finish_reason=response.finish_reason)

            conversation.add(LLMMessage(
                role="assistant",
                content=text,
                provider_meta=response.provider_meta,
            ))
            await self.commit(conversation)

            if conversation.pending:
                # Injected messages arrived while thinking; answer them too
                continue

            self.on_state(Completed(text))
            logger.info("Execution completed", iterations=iteration, model=model)
            return AgentResult.ok(text)

        return self._fail(f"Maximum iterations ({max_iterations}) reached without a final response")

    def _fail(self, message: str, cause: BaseException | None = None) -> AgentResult:
        logger.error("Execution failed", error=message)
        self.on_state(Error(message, cause))
        return AgentResult.fail(message, cause)
