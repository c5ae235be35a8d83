"""
Conversation summarization - keeps long conversations inside the model's
context window.

When the estimated prompt size reaches a fraction of the active model's
context window, older messages are folded into a single summary message and
only the most recent messages are kept verbatim.

Key features:
- Never separates a tool call from its results
- One summary message at most; a previous summary is folded into the next
- Key facts (user-stated facts, tool results) are highlighted for the summarizer
- Deterministic fallback summary if the LLM call fails
- Pre-discard hook so callers can flush important context elsewhere first
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog

from ..llm.base import BaseLLM, LLMMessage, TokenUsage
from ..llm.catalog import get_context_window

logger = structlog.get_logger()

# Approximate characters per token (conservative estimate)
CHARS_PER_TOKEN = 4

DEFAULT_SUMMARIZATION_THRESHOLD = 0.8
DEFAULT_KEEP_RECENT = 6
MAX_TRANSCRIPT_MESSAGE_CHARS = 1000

SUMMARY_HEADER = "--- Earlier conversation summary ---"
SUMMARY_FOOTER = "--- End of summary ---"

SUMMARY_PROMPT = (
    "Summarize the following conversation concisely, "
    "preserving key topics, decisions, user preferences, and any pending tasks."
)
SUMMARIZER_SYSTEM_PROMPT = "You are a conversation summarizer. Create concise, fact-preserving summaries."

BeforeSummarizeHook = Callable[[list[LLMMessage]], Awaitable[None] | None]


@dataclass
class SummarizationConfig:
    """Configuration for conversation summarization."""

    threshold: float = DEFAULT_SUMMARIZATION_THRESHOLD
    keep_recent_messages: int = DEFAULT_KEEP_RECENT
    enabled: bool = True


@dataclass
class SummarizationResult:
    """Result of a summarization attempt."""

    summarized: bool
    original_message_count: int
    new_message_count: int
    summary: str = ""
    tokens_saved_estimate: int = 0
    used_fallback: bool = False
    summary_message: LLMMessage | None = None


def _message_chars(message: LLMMessage) -> int:
    chars = len(message.text)
    for tc in message.tool_calls or []:
        chars += len(tc.name) + len(tc.arguments)
    return chars


def estimate_tokens(messages: list[LLMMessage]) -> int:
    """Estimate token count for a list of messages."""
    total_chars = sum(_message_chars(m) for m in messages)
    # Add overhead for role markers and formatting
    overhead = len(messages) * 20
    return (total_chars + overhead) // CHARS_PER_TOKEN


def find_split_index(history: list[LLMMessage], keep_recent: int) -> int:
    """Index where the kept suffix starts.

    The suffix never starts on a tool message, so a call and its results
    always stay together on the same side of the split.
    """
    index = max(0, len(history) - keep_recent)
    while index > 0 and history[index].role == "tool":
        index -= 1
    return index


def find_forced_split_index(history: list[LLMMessage]) -> int:
    """Split point for an overflow: keep only the latest user message onwards.

    Everything before the most recent user request may be folded, so the
    kept suffix always opens with a user message.
    """
    for index in range(len(history) - 1, -1, -1):
        if history[index].role == "user":
            return index
    return 0


def summary_block(summary: str) -> str:
    """The summary as it is appended to the system prompt."""
    return f"{SUMMARY_HEADER}\n{summary}\n{SUMMARY_FOOTER}"


def _extract_key_facts(messages: list[LLMMessage]) -> list[str]:
    """Extract key facts and information from messages for the summary."""
    facts = []

    for msg in messages:
        content = msg.text

        # Tool results often contain important data
        if msg.role == "tool" and content.strip():
            facts.append(f"[Tool result]: {content[:200]}")

        # Look for messages where user states facts
        if msg.role == "user":
            content_lower = content.lower()
            if any(phrase in content_lower for phrase in [
                "my name is", "i work", "i live", "i prefer",
                "remember that", "don't forget", "important:",
            ]):
                facts.append(f"[User stated]: {content[:200]}")

    return facts[:10]


def _format_transcript(messages: list[LLMMessage]) -> str:
    lines = []
    for msg in messages:
        if msg.is_summary:
            label = "Previous summary"
        elif msg.role == "tool":
            label = f"Tool ({msg.name or 'unknown'})"
        else:
            label = msg.role.capitalize()
        text = msg.text[:MAX_TRANSCRIPT_MESSAGE_CHARS]
        if msg.tool_calls:
            calls = ", ".join(tc.name for tc in msg.tool_calls)
            text = f"{text} [called: {calls}]".strip()
        lines.append(f"{label}: {text}")
    return "\n".join(lines)


def build_summary_prompt(messages: list[LLMMessage]) -> str:
    key_facts = _extract_key_facts(messages)
    facts_section = ""
    if key_facts:
        facts_section = "\n\nKey facts to preserve:\n" + "\n".join(f"- {f}" for f in key_facts)
    return f"{SUMMARY_PROMPT}{facts_section}\n\n{_format_transcript(messages)}"


def _fallback_summary(messages: list[LLMMessage]) -> str:
    """Create a basic summary without LLM (fallback for when summarization fails)."""
    parts = ["Earlier in this conversation:"]

    previous = [m for m in messages if m.is_summary]
    if previous:
        parts.append(previous[-1].text)

    key_facts = _extract_key_facts(messages)
    if key_facts:
        parts.append("\nKey information:")
        for fact in key_facts:
            parts.append(f"  - {fact}")

    user_count = sum(1 for m in messages if m.role == "user")
    assistant_count = sum(1 for m in messages if m.role == "assistant")
    tool_count = sum(1 for m in messages if m.role == "tool")

    parts.append(
        f"\n[{user_count} user messages, {assistant_count} assistant responses, "
        f"{tool_count} tool results summarized]"
    )

    # Include first and last user messages for context
    user_messages = [m for m in messages if m.role == "user"]
    if user_messages:
        parts.append(f"\nFirst topic: {user_messages[0].text[:150]}")
        if len(user_messages) > 1:
            parts.append(f"Last topic before this: {user_messages[-1].text[:150]}")

    return "\n".join(parts)


class SummarizationController:
    """Decides when to summarize and performs the prefix replacement."""

    def __init__(
        self,
        llm: BaseLLM,
        config: SummarizationConfig | None = None,
        on_before_summarize: BeforeSummarizeHook | None = None,
    ):
        self.llm = llm
        self.config = config or SummarizationConfig()
        self.on_before_summarize = on_before_summarize

    def threshold_tokens(self, model: str) -> int:
        return int(get_context_window(model) * self.config.threshold)

    def estimate_prompt_tokens(
        self,
        history: list[LLMMessage],
        system_prompt: str = "",
        last_usage: TokenUsage | None = None,
    ) -> int:
        """Last reported usage when known, else a character-based estimate."""
        if last_usage is not None and last_usage.total_tokens:
            return last_usage.total_tokens
        return estimate_tokens(history) + len(system_prompt) // CHARS_PER_TOKEN

    def should_summarize(
        self,
        history: list[LLMMessage],
        model: str,
        system_prompt: str = "",
        last_usage: TokenUsage | None = None,
    ) -> bool:
        if not self.config.enabled:
            return False
        estimated = self.estimate_prompt_tokens(history, system_prompt, last_usage)
        return estimated >= self.threshold_tokens(model)

    async def _run_hook(self, old_messages: list[LLMMessage]) -> None:
        if self.on_before_summarize is None:
            return
        try:
            result: Any = self.on_before_summarize(old_messages)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Pre-summarize hook failed, continuing", error=str(e))

    async def _generate_summary(self, old_messages: list[LLMMessage], model: str) -> tuple[str, bool]:
        result = await self.llm.complete(
            [
                LLMMessage(role="system", content=SUMMARIZER_SYSTEM_PROMPT),
                LLMMessage(role="user", content=build_summary_prompt(old_messages)),
            ],
            model=model,
        )
        summary = (result.response.content or "").strip() if result.success and result.response else ""
        if summary:
            return summary, False

        logger.error(
            "Summarization call failed, using fallback",
            error=result.error.message if result.error else "empty summary",
        )
        return _fallback_summary(old_messages), True

    async def summarize(
        self,
        history: list[LLMMessage],
        model: str,
        force: bool = False,
    ) -> tuple[list[LLMMessage], SummarizationResult]:
        """Fold everything before the recent suffix into one summary message.

        With ``force`` the suffix shrinks to the latest user message onwards,
        which is what context-overflow recovery needs. Returns the new
        history; ``history`` itself is not modified.
        """
        if force:
            split = find_forced_split_index(history)
        else:
            split = find_split_index(history, self.config.keep_recent_messages)
        old_messages = history[:split]
        recent_messages = history[split:]

        if not old_messages or (len(old_messages) == 1 and old_messages[0].is_summary):
            return history, SummarizationResult(
                summarized=False,
                original_message_count=len(history),
                new_message_count=len(history),
            )

        logger.info(
            "Starting conversation summarization",
            message_count=len(history),
            forced=force,
            summarizing=len(old_messages),
            keeping=len(recent_messages),
        )

        summary, used_fallback = await self._generate_summary(old_messages, model)

        await self._run_hook(old_messages)

        summary_message = LLMMessage(role="system", content=summary, is_summary=True)
        new_history = [summary_message] + recent_messages
        tokens_saved = estimate_tokens(history) - estimate_tokens(new_history)

        result = SummarizationResult(
            summarized=True,
            original_message_count=len(history),
            new_message_count=len(new_history),
            summary=summary,
            tokens_saved_estimate=max(0, tokens_saved),
            used_fallback=used_fallback,
            summary_message=summary_message,
        )

        logger.info(
            "Summarization complete",
            original=result.original_message_count,
            summarized_to=result.new_message_count,
            tokens_saved=result.tokens_saved_estimate,
            used_fallback=used_fallback,
        )

        return new_history, result
