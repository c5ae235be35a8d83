"""
Shared fixtures: a scripted LLM and isolated settings.
"""

import asyncio
import copy
from typing import Any

import pytest

from agent_runtime.config import Settings
from agent_runtime.llm.base import BaseLLM, LLMMessage, LLMResponse, ToolCall, ToolDefinition, TokenUsage
from agent_runtime.llm.errors import LLMError
from agent_runtime.tools.registry import ToolRegistry, reset_tool_registry


class ScriptedLLM(BaseLLM):
    """LLM that replays a script of responses and records every request.

    A script entry is an ``LLMResponse``, an ``LLMError`` (raised) or an
    ``asyncio.Event`` (the call blocks until it is set, then takes the next
    entry).
    """

    def __init__(self, script: list[Any] | None = None, model: str = "gpt-4.1"):
        super().__init__(api_key="test-key", model=model)
        self.script = list(script or [])
        self.requests: list[dict[str, Any]] = []
        self.started = asyncio.Event()

    @property
    def provider_name(self) -> str:
        return "scripted"

    def _create_client(self) -> Any:
        return object()

    async def _complete(self, client, messages, model, temperature, max_tokens, tools, enable_web_search):
        self.requests.append({
            "messages": copy.deepcopy(messages),
            "model": model,
            "tools": list(tools or []),
            "enable_web_search": enable_web_search,
        })
        self.started.set()
        if not self.script:
            raise AssertionError("LLM script exhausted")
        entry = self.script.pop(0)
        if isinstance(entry, asyncio.Event):
            await entry.wait()
            entry = self.script.pop(0)
        if isinstance(entry, LLMError):
            raise entry
        return entry


def text_response(text: str, usage: TokenUsage | None = None) -> LLMResponse:
    return LLMResponse(content=text, finish_reason="stop", usage=usage)


def tool_response(*calls: tuple[str, str, str], content: str | None = None) -> LLMResponse:
    """Response requesting tool calls given as ``(id, name, arguments)``."""
    return LLMResponse(
        content=content,
        tool_calls=[ToolCall(id=i, name=n, arguments=a) for i, n, a in calls],
        finish_reason="tool_calls",
    )


@pytest.fixture
def settings():
    """Settings independent of the environment and any .env file."""
    return Settings(_env_file=None, openai_api_key="test-key", tool_timeout=5.0)


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture(autouse=True)
def _reset_global_registry():
    yield
    reset_tool_registry()


@pytest.fixture
def scripted_llm():
    def factory(*script: Any, model: str = "gpt-4.1") -> ScriptedLLM:
        return ScriptedLLM(list(script), model=model)
    return factory


@pytest.fixture
def text():
    return text_response


@pytest.fixture
def tool_calls():
    return tool_response


def system_messages(messages: list[LLMMessage]) -> list[LLMMessage]:
    return [m for m in messages if m.role == "system"]


@pytest.fixture
def systems():
    return system_messages


@pytest.fixture
def definition():
    def factory(name: str) -> ToolDefinition:
        return ToolDefinition(name=name, description=f"{name} tool", parameters={"type": "object", "properties": {}})
    return factory
