"""
Tests for the Anthropic Messages client.
"""

import json

import httpx
import pytest

from agent_runtime.llm import anthropic as claude
from agent_runtime.llm.anthropic import AnthropicLLM
from agent_runtime.llm.base import LLMMessage, MediaAttachment, ProviderMeta, ToolCall, ToolDefinition
from agent_runtime.llm.errors import LLMErrorKind


def test_convert_messages_system_and_grouped_results():
    """Test system extraction and one user message of tool results per turn."""
    messages = [
        LLMMessage(role="system", content="Be brief."),
        LLMMessage(role="user", content="Weather?"),
        LLMMessage(
            role="assistant",
            content="Checking.",
            tool_calls=[
                ToolCall(id="tu_1", name="weather", arguments='{"city": "Paris"}'),
                ToolCall(id="tu_2", name="weather", arguments='{"city": "Rome"}'),
            ],
        ),
        LLMMessage(role="tool", content="Sunny", tool_call_id="tu_1", name="weather"),
        LLMMessage(role="tool", content="Rainy", tool_call_id="tu_2", name="weather"),
        LLMMessage(role="tool", content="??", tool_call_id="tu_9", name="ghost"),
    ]
    system, converted = claude.convert_messages(messages)

    assert system == "Be brief."
    assert converted[0] == {"role": "user", "content": "Weather?"}
    assert converted[1]["content"] == [
        {"type": "text", "text": "Checking."},
        {"type": "tool_use", "id": "tu_1", "name": "weather", "input": {"city": "Paris"}},
        {"type": "tool_use", "id": "tu_2", "name": "weather", "input": {"city": "Rome"}},
    ]
    assert converted[2] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "tu_1", "content": "Sunny"},
            {"type": "tool_result", "tool_use_id": "tu_2", "content": "Rainy"},
            {"type": "text", "text": "[Result of tool 'ghost']\n??"},
        ],
    }
    assert len(converted) == 3


def test_malformed_arguments_become_empty_input():
    """Test unparseable arguments are sent as an empty input object."""
    message = LLMMessage(role="assistant", tool_calls=[ToolCall(id="t", name="x", arguments="{oops")])
    _, converted = claude.convert_messages([message])

    assert converted[0]["content"][0]["input"] == {}


def test_assistant_replays_raw_blocks():
    """Test thinking blocks are replayed from provider metadata."""
    raw = [
        {"type": "thinking", "thinking": "hmm", "signature": "sig=="},
        {"type": "tool_use", "id": "tu_1", "name": "x", "input": {}},
    ]
    message = LLMMessage(
        role="assistant",
        tool_calls=[ToolCall(id="tu_1", name="x")],
        provider_meta=ProviderMeta("anthropic", raw),
    )
    _, converted = claude.convert_messages([message])

    assert converted[0]["content"] == raw


def test_user_media_blocks():
    """Test images and documents become content blocks and audio is skipped."""
    message = LLMMessage(
        role="user",
        content="See",
        media=[
            MediaAttachment(data="aW1n", mime_type="image/jpeg"),
            MediaAttachment(data="cGRm", mime_type="application/pdf"),
            MediaAttachment(data="YXVk", mime_type="audio/wav"),
        ],
    )
    _, converted = claude.convert_messages([message])
    blocks = converted[0]["content"]

    assert blocks[1]["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "aW1n"}
    assert blocks[2]["type"] == "document"
    assert len(blocks) == 3


def test_build_request_defaults_and_web_search():
    """Test max_tokens default and the native web search tool."""
    tool = ToolDefinition(name="x", description="X", parameters={"type": "object"})
    body = claude.build_request(
        [LLMMessage(role="user", content="hi")], "claude-sonnet-4-20250514", 0.2, None, [tool], True
    )

    assert body["max_tokens"] == claude.DEFAULT_MAX_TOKENS
    assert "system" not in body
    assert body["tools"][0] == {"name": "x", "description": "X", "input_schema": {"type": "object"}}
    assert body["tools"][1]["type"] == "web_search_20250305"


def test_parse_response_tool_use():
    """Test tool_use blocks, stop reason mapping and metadata."""
    body = {
        "id": "msg_1",
        "model": "claude-sonnet-4-20250514",
        "stop_reason": "tool_use",
        "content": [
            {"type": "text", "text": "Let me check.", "citations": None},
            {"type": "tool_use", "id": "tu_1", "name": "weather", "input": {"city": "Paris"}},
        ],
        "usage": {"input_tokens": 30, "output_tokens": 10},
    }
    response = claude.parse_response(body)

    assert response.finish_reason == "tool_calls"
    assert response.content == "Let me check."
    assert response.tool_calls[0].name == "weather"
    assert json.loads(response.tool_calls[0].arguments) == {"city": "Paris"}
    assert response.usage.total_tokens == 40
    assert "citations" not in response.provider_meta.payload[0]


def test_parse_response_max_tokens():
    """Test max_tokens maps to length."""
    response = claude.parse_response({"stop_reason": "max_tokens", "content": [{"type": "text", "text": "Par"}]})

    assert response.finish_reason == "length"
    assert response.provider_meta is None


@pytest.mark.asyncio
async def test_client_round_trip():
    """Test the client posts to /v1/messages with the API key header."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("x-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "msg_1", "type": "message", "role": "assistant", "model": "claude-sonnet-4-20250514",
            "stop_reason": "end_turn",
            "content": [{"type": "text", "text": "Bonjour"}],
            "usage": {"input_tokens": 5, "output_tokens": 2},
        })

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        llm = AnthropicLLM(api_key="ak-test", http_client=http_client)
        result = await llm.complete([
            LLMMessage(role="system", content="French only."),
            LLMMessage(role="user", content="Hello"),
        ])

    assert result.success
    assert result.response.content == "Bonjour"
    assert result.response.finish_reason == "stop"
    assert seen["path"] == "/v1/messages"
    assert seen["key"] == "ak-test"
    assert seen["body"]["system"] == "French only."


@pytest.mark.asyncio
async def test_client_prompt_too_long():
    """Test Anthropic's overflow wording is a context overflow."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={
            "type": "error",
            "error": {"type": "invalid_request_error", "message": "prompt is too long: 250000 tokens > 200000 maximum"},
        })

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        llm = AnthropicLLM(api_key="ak-test", http_client=http_client)
        result = await llm.complete([LLMMessage(role="user", content="hi")])

    assert result.error.kind == LLMErrorKind.CONTEXT_OVERFLOW


@pytest.mark.asyncio
async def test_client_rate_limited():
    """Test 429 is a rate-limit error."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"type": "error", "error": {"type": "rate_limit_error", "message": "slow down"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        llm = AnthropicLLM(api_key="ak-test", http_client=http_client)
        result = await llm.complete([LLMMessage(role="user", content="hi")])

    assert result.error.kind == LLMErrorKind.RATE_LIMIT
