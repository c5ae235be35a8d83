"""
Agent coordinator - owns one conversation and runs executions over it.

The coordinator holds the conversation history, the agent state, the set of
activated tool categories and the queue of injected messages. Callers only
see ``await coordinator.execute(text, system_prompt)``; cancellation,
injection and context recovery are handled here and in the ReAct loop.
"""

import asyncio
import threading
import uuid
from collections.abc import Iterable
from typing import Callable

import structlog

from ..config import Settings, get_settings
from ..llm import BaseLLM, LLMMessage, MediaAttachment, TokenUsage, create_llm
from ..tools.builtin import WEB_CATEGORY, WEB_SEARCH_TOOL
from ..tools.executor import ToolExecutor
from ..tools.registry import ToolRegistry, get_tool_registry
from .loop import DEFAULT_MAX_ITERATIONS, ConversationContext, ReActLoop
from .meta_tools import ACTIVATE_TOOLS, SUMMARIZE_CONVERSATION, ActivateToolsPlugin, SummarizationPlugin
from .state import INTERACTIVE, AgentResult, AgentState, Error, ExecutionContext, Idle
from .store import MessageStore
from .summarization import BeforeSummarizeHook, SummarizationConfig, SummarizationController, SummarizationResult

logger = structlog.get_logger()

CANCELLED_ERROR = "Execution cancelled"
ALREADY_RUNNING_ERROR = "An execution is already running for this conversation"

StateListener = Callable[[AgentState], None]
CompletionCallback = Callable[[AgentResult], None]


class AgentCoordinator:
    """Runs the agent for a single conversation.

    At most one ``execute()`` runs at a time; a second concurrent call is
    rejected with a failed result. ``cancel()``, ``reset()`` and
    ``inject_message()`` may be called from any thread.
    """

    def __init__(
        self,
        llm: BaseLLM | None = None,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
        *,
        message_store: MessageStore | None = None,
        conversation_id: str | None = None,
        allowed_tools: Iterable[str] | None = None,
        enable_activation: bool = True,
        max_iterations: int | None = None,
        on_before_summarize: BeforeSummarizeHook | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm or create_llm(settings=self.settings)
        self.conversation_id = conversation_id or uuid.uuid4().hex
        self.message_store = message_store
        self.max_iterations = max_iterations or self.settings.max_iterations or DEFAULT_MAX_ITERATIONS
        self.allowed_tools = set(allowed_tools) if allowed_tools is not None else None
        self.native_web_search = self.settings.native_web_search

        # Per-conversation layer for the meta-tools; shared tools live in the parent
        if tool_registry is None:
            tool_registry = get_tool_registry()
        self.registry = ToolRegistry(parent=tool_registry)
        self.active_categories: set[str] | None = set() if enable_activation else None

        self._conversation = ConversationContext()
        self._state: AgentState = Idle()
        self._state_listeners: list[StateListener] = []
        self._state_lock = threading.Lock()

        self._running = False
        self._task: asyncio.Task | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None
        self._cancel_requested = False
        self._model = self.llm.model

        self.summarizer = SummarizationController(
            self.llm,
            SummarizationConfig(
                threshold=self.settings.summarization_threshold,
                keep_recent_messages=self.settings.keep_recent_messages,
            ),
            on_before_summarize=on_before_summarize,
        )
        # Tool results are stored by the loop together with their call
        self.executor = ToolExecutor(
            self.registry,
            default_timeout=self.settings.tool_timeout,
            parallel=self.settings.parallel_tool_execution,
            max_output_chars=self.settings.max_tool_output_chars,
        )
        self._loop = ReActLoop(
            self.llm,
            self.executor,
            self.registry,
            self.summarizer,
            tools_provider=self._visible_tools,
            on_state=self._set_state,
            on_message=self._emit,
            conversation_id=self.conversation_id,
        )

        self._activate_plugin = ActivateToolsPlugin(self.registry, self.active_categories)
        self._summarize_plugin = SummarizationPlugin(self._summarize_from_tool)
        self._register_meta_tools()

    def _register_meta_tools(self) -> None:
        if self.active_categories is not None:
            self.registry.register_plugin(
                ACTIVATE_TOOLS, self._activate_plugin, [self._activate_plugin.definition()]
            )
        self.registry.register_plugin(
            SUMMARIZE_CONVERSATION, self._summarize_plugin, [self._summarize_plugin.definition()]
        )

    # -- read-only views -------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def history(self) -> list[LLMMessage]:
        """A copy of the conversation history."""
        return list(self._conversation.history)

    @property
    def conversation_size(self) -> int:
        return len(self._conversation.history)

    @property
    def last_usage(self) -> TokenUsage | None:
        return self._conversation.last_usage

    @property
    def is_running(self) -> bool:
        return self._running

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    # -- internals -------------------------------------------------------

    def _set_state(self, state: AgentState) -> None:
        with self._state_lock:
            self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.warning("State listener failed", error=str(e))

    async def _emit(self, message: LLMMessage) -> None:
        if self.message_store is None:
            return
        try:
            await self.message_store.insert(self.conversation_id, message)
        except Exception as e:
            logger.warning("Failed to store message", role=message.role, error=str(e))

    def _visible_tools(self):
        """Tool definitions for the next request and whether native web search is on."""
        definitions = self.registry.get_tool_definitions(self.active_categories)
        on_demand = self.registry.get_on_demand_categories()

        visible = []
        for definition in definitions:
            if definition.name == ACTIVATE_TOOLS:
                if not on_demand:
                    continue
                # Rebuilt so the category list reflects the registry right now
                definition = self._activate_plugin.definition()
            elif self.allowed_tools is not None and definition.name not in self.allowed_tools:
                if definition.name != SUMMARIZE_CONVERSATION:
                    continue
            visible.append(definition)

        web_search = False
        if self.native_web_search:
            web_active = self.active_categories is None or WEB_CATEGORY in self.active_categories
            if web_active and any(d.name == WEB_SEARCH_TOOL for d in visible):
                web_search = True
                visible = [d for d in visible if d.name != WEB_SEARCH_TOOL]

        return visible, web_search

    async def _summarize_from_tool(self) -> str:
        result = await self._loop.summarize(self._conversation, self._model)
        return self._describe_summarization(result)

    @staticmethod
    def _describe_summarization(result: SummarizationResult) -> str:
        if not result.summarized:
            return "Nothing to summarize yet: the conversation is already short."
        return (
            f"Conversation summarized: {result.original_message_count} messages "
            f"condensed to {result.new_message_count}."
        )

    # -- operations ------------------------------------------------------

    async def execute(
        self,
        user_message: str,
        system_prompt: str,
        model: str | None = None,
        *,
        media: list[MediaAttachment] | None = None,
        max_iterations: int | None = None,
        temperature: float | None = None,
        context: ExecutionContext = INTERACTIVE,
    ) -> AgentResult:
        """Run the agent on ``user_message`` until it produces a final answer."""
        if self._running:
            logger.warning("Rejected concurrent execution", conversation_id=self.conversation_id)
            return AgentResult.fail(ALREADY_RUNNING_ERROR)

        self._running = True
        self._cancel_requested = False
        self._event_loop = asyncio.get_running_loop()
        self._model = model or self.llm.model
        conversation = self._conversation

        logger.info(
            "Execution started",
            conversation_id=self.conversation_id,
            model=self._model,
            scheduled=context.is_scheduled,
            job_id=context.job_id,
        )

        try:
            # Messages injected while idle predate this one
            await self._loop.merge_pending(conversation)
            user = LLMMessage(role="user", content=user_message, media=list(media or []))
            await self._loop.add_user_message(conversation, user)

            if self._cancel_requested:
                self._set_state(Idle())
                return AgentResult.fail(CANCELLED_ERROR)

            self._task = asyncio.create_task(self._loop.run(
                conversation,
                context.apply_to_prompt(system_prompt),
                self._model,
                max_iterations=max_iterations or self.max_iterations,
                temperature=temperature,
            ))
            if self._cancel_requested:
                self._task.cancel()
            try:
                return await self._task
            except asyncio.CancelledError:
                if not self._cancel_requested:
                    # The caller itself was cancelled
                    self._task.cancel()
                    conversation.rollback_turn()
                    self._set_state(Idle())
                    raise
                conversation.rollback_turn()
                self._set_state(Idle())
                logger.info("Execution cancelled", conversation_id=self.conversation_id)
                return AgentResult.fail(CANCELLED_ERROR)
            except Exception as e:
                logger.exception("Unexpected error during execution", error=str(e))
                conversation.rollback_turn()
                message = f"Unexpected error: {e}"
                self._set_state(Error(message, e))
                return AgentResult.fail(message, e)
        finally:
            self._task = None
            self._running = False
            self._cancel_requested = False

    def execute_in_background(
        self,
        user_message: str,
        system_prompt: str,
        model: str | None = None,
        on_complete: CompletionCallback | None = None,
        **kwargs,
    ) -> asyncio.Task:
        """Schedule ``execute()`` as a task; ``on_complete`` gets its result."""
        task = asyncio.create_task(self.execute(user_message, system_prompt, model, **kwargs))

        if on_complete is not None:
            def _done(finished: asyncio.Task) -> None:
                if finished.cancelled():
                    result = AgentResult.fail(CANCELLED_ERROR)
                elif finished.exception() is not None:
                    exc = finished.exception()
                    result = AgentResult.fail(f"Unexpected error: {exc}", exc)
                else:
                    result = finished.result()
                try:
                    on_complete(result)
                except Exception as e:
                    logger.warning("Completion callback failed", error=str(e))

            task.add_done_callback(_done)
        return task

    def cancel(self) -> bool:
        """Cancel the running execution. Safe to call from any thread.

        Returns whether there was an execution to cancel. The agent state is
        Idle afterwards either way.
        """
        if not self._running:
            self._set_state(Idle())
            return False

        self._cancel_requested = True
        task, event_loop = self._task, self._event_loop
        if task is not None and event_loop is not None and not task.done():
            event_loop.call_soon_threadsafe(task.cancel)
        logger.info("Cancellation requested", conversation_id=self.conversation_id)
        return True

    def reset(self) -> None:
        """Cancel any execution and forget the whole conversation."""
        self.cancel()
        self._conversation.history.clear()
        self._conversation.pending.clear()
        self._conversation.uncommitted.clear()
        self._conversation.last_usage = None
        if self.active_categories is not None:
            self.active_categories.clear()
        self._set_state(Idle())
        logger.info("Conversation reset", conversation_id=self.conversation_id)

    def inject_message(self, text: str, media: list[MediaAttachment] | None = None) -> None:
        """Queue a user message; it joins the history at the next iteration."""
        self._conversation.pending.append(LLMMessage(role="user", content=text, media=list(media or [])))
        logger.info("Message injected", conversation_id=self.conversation_id, running=self._running)

    def seed_history(self, messages: Iterable[LLMMessage]) -> None:
        """Restore a previously stored conversation. Not allowed while running."""
        if self._running:
            raise RuntimeError("Cannot seed history while an execution is running")
        restored = [m for m in messages if m.role != "system" or m.is_summary]
        summaries = [m for m in restored if m.is_summary]
        # Only the latest summary is meaningful; it always leads the history
        if summaries:
            restored = [summaries[-1]] + [m for m in restored if not m.is_summary]
        self._conversation.history[:] = restored
        self._conversation.last_usage = None
        logger.info("History seeded", conversation_id=self.conversation_id, messages=len(restored))

    async def force_summarize(self, model: str | None = None) -> SummarizationResult:
        """Summarize now regardless of the context threshold."""
        return await self._loop.summarize(self._conversation, model or self._model)

    def close(self) -> None:
        """Cancel any execution and detach this conversation's meta-tools."""
        self.cancel()
        self.registry.unregister_plugin(ACTIVATE_TOOLS)
        self.registry.unregister_plugin(SUMMARIZE_CONVERSATION)
        self._state_listeners.clear()

    def __repr__(self) -> str:
        return (
            f"AgentCoordinator(conversation_id={self.conversation_id!r}, "
            f"state={type(self._state).__name__}, messages={self.conversation_size})"
        )
