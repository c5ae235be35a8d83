"""
Tests for the OpenAI Chat Completions and Responses clients.
"""

import json

import httpx
import pytest

from agent_runtime.llm.base import LLMMessage, MediaAttachment, ProviderMeta, ToolCall, ToolDefinition
from agent_runtime.llm.errors import LLMErrorKind, NO_CHOICES_ERROR, LLMError
from agent_runtime.llm import openai as chat
from agent_runtime.llm import openai_responses as responses
from agent_runtime.llm.openai import OpenAILLM
from agent_runtime.llm.openai_responses import OpenAIResponsesLLM

SEARCH_TOOL = ToolDefinition(
    name="search",
    description="Search things",
    parameters={"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]},
)


def _conversation() -> list[LLMMessage]:
    return [
        LLMMessage(role="system", content="Be brief."),
        LLMMessage(role="user", content="Find cats"),
        LLMMessage(
            role="assistant",
            content=None,
            tool_calls=[ToolCall(id="call_1", name="search", arguments='{"q": "cats"}')],
        ),
        LLMMessage(role="tool", content="3 cats", tool_call_id="call_1", name="search"),
        LLMMessage(role="tool", content="stray", tool_call_id="call_x", name="lost"),
    ]


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# -- chat completions: wire format -------------------------------------------


def test_chat_convert_messages_pairs_results_and_orphans():
    """Test tool results follow their call and orphans become user text."""
    converted = chat.convert_messages(_conversation())

    assert converted[0] == {"role": "system", "content": "Be brief."}
    assert converted[1] == {"role": "user", "content": "Find cats"}
    assert converted[2]["role"] == "assistant"
    assert converted[2]["tool_calls"][0]["function"] == {"name": "search", "arguments": '{"q": "cats"}'}
    assert converted[3] == {"role": "tool", "tool_call_id": "call_1", "content": "3 cats"}
    assert converted[4] == {"role": "user", "content": "[Result of tool 'lost']\nstray"}


def test_chat_leading_orphan_tool_message():
    """Test a tool message with no preceding call is sent as user text."""
    converted = chat.convert_messages([LLMMessage(role="tool", content="late", name="clock")])

    assert converted == [{"role": "user", "content": "[Result of tool 'clock']\nlate"}]


def test_chat_replays_raw_tool_calls_from_meta():
    """Test provider metadata is replayed verbatim for the same provider only."""
    raw = [{"id": "call_1", "type": "function", "function": {"name": "search", "arguments": "{}"}, "extra": 1}]
    message = LLMMessage(
        role="assistant",
        tool_calls=[ToolCall(id="call_1", name="search")],
        provider_meta=ProviderMeta("openai", raw),
    )
    assert chat.convert_messages([message])[0]["tool_calls"] == raw

    message.provider_meta = ProviderMeta("gemini", {"parts": []})
    assert "extra" not in chat.convert_messages([message])[0]["tool_calls"][0]


def test_chat_user_media_parts():
    """Test images, audio and documents become content parts."""
    message = LLMMessage(
        role="user",
        content="Look",
        media=[
            MediaAttachment(data="aW1n", mime_type="image/png"),
            MediaAttachment(data="YXVk", mime_type="audio/mpeg"),
            MediaAttachment(data="cGRm", mime_type="application/pdf", file_name="a.pdf"),
            MediaAttachment(data="dmlk", mime_type="video/mp4"),
        ],
    )
    parts = chat.convert_messages([message])[0]["content"]

    assert parts[0] == {"type": "text", "text": "Look"}
    assert parts[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,aW1n"}}
    assert parts[2]["input_audio"] == {"data": "YXVk", "format": "mp3"}
    assert parts[3]["file"]["filename"] == "a.pdf"
    assert len(parts) == 4


def test_chat_build_request():
    """Test the request body shape."""
    body = chat.build_request([LLMMessage(role="user", content="hi")], "gpt-4.1", 0.3, 100, [SEARCH_TOOL])

    assert body["model"] == "gpt-4.1"
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 100
    assert body["stream"] is False
    assert body["tools"][0] == {
        "type": "function",
        "function": {"name": "search", "description": "Search things", "parameters": SEARCH_TOOL.parameters},
    }


def test_chat_parse_response_tool_calls():
    """Test tool calls, usage and provider metadata are parsed."""
    body = {
        "id": "chatcmpl-1",
        "model": "gpt-4.1",
        "choices": [{
            "finish_reason": "tool_calls",
            "message": {
                "content": None,
                "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "search", "arguments": "{\"q\":1}"}}],
            },
        }],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }
    response = chat.parse_response(body)

    assert response.finish_reason == "tool_calls"
    assert response.tool_calls == [ToolCall(id="c1", name="search", arguments='{"q":1}')]
    assert response.usage.total_tokens == 15
    assert response.provider_meta.provider == "openai"


def test_chat_parse_response_without_choices():
    """Test an empty choices array is a protocol error."""
    with pytest.raises(LLMError) as exc_info:
        chat.parse_response({"choices": []})

    assert exc_info.value.kind == LLMErrorKind.PROTOCOL
    assert exc_info.value.message == NO_CHOICES_ERROR


# -- chat completions: client ----------------------------------------------


@pytest.mark.asyncio
async def test_chat_client_round_trip():
    """Test the client posts the built body and parses the reply."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "x", "model": "gpt-4.1",
            "choices": [{"finish_reason": "stop", "message": {"role": "assistant", "content": "Hello!"}}],
        })

    async with _client(handler) as http_client:
        llm = OpenAILLM(api_key="sk-test", http_client=http_client)
        result = await llm.complete([LLMMessage(role="user", content="hi")], temperature=0.0)

    assert result.success
    assert result.response.content == "Hello!"
    assert seen["path"].endswith("/chat/completions")
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["messages"] == [{"role": "user", "content": "hi"}]
    assert seen["body"]["temperature"] == 0.0


@pytest.mark.asyncio
async def test_chat_client_context_overflow():
    """Test an overflow body is classified for recovery."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {
            "message": "This model's maximum context length is 8192 tokens.",
            "code": "context_length_exceeded",
        }})

    async with _client(handler) as http_client:
        llm = OpenAILLM(api_key="sk-test", http_client=http_client)
        result = await llm.complete([LLMMessage(role="user", content="hi")])

    assert not result.success
    assert result.error.kind == LLMErrorKind.CONTEXT_OVERFLOW


@pytest.mark.asyncio
async def test_chat_client_auth_error():
    """Test a 401 is an auth error and is not retried."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": {"message": "Incorrect API key"}})

    async with _client(handler) as http_client:
        llm = OpenAILLM(api_key="sk-bad", http_client=http_client)
        result = await llm.complete([LLMMessage(role="user", content="hi")])

    assert result.error.kind == LLMErrorKind.AUTH
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_chat_client_network_error():
    """Test connection failures are transport errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as http_client:
        llm = OpenAILLM(api_key="sk-test", http_client=http_client)
        result = await llm.complete([LLMMessage(role="user", content="hi")])

    assert result.error.kind == LLMErrorKind.TRANSPORT


@pytest.mark.asyncio
async def test_client_without_key_is_configuration_error():
    """Test missing credentials fail without a request."""
    llm = OpenAILLM(api_key="")
    result = await llm.complete([LLMMessage(role="user", content="hi")])

    assert result.error.kind == LLMErrorKind.CONFIGURATION


def test_set_api_key_swaps_client():
    """Test reconfiguration drops the cached client but keeps the instance."""
    llm = OpenAILLM(api_key="sk-one")
    first = llm._get_client()

    llm.set_api_key("sk-two")
    second = llm._get_client()

    assert first is not second
    assert second.api_key == "sk-two"

    llm.set_base_url("https://proxy.example.com/v1")
    assert llm._get_client().base_url.host == "proxy.example.com"


# -- responses API ---------------------------------------------------------


def test_responses_build_input():
    """Test system, user, calls, outputs and orphans in the input array."""
    items = responses.build_input(_conversation())

    assert items[0] == {"role": "developer", "content": "Be brief."}
    assert items[1] == {"role": "user", "content": "Find cats"}
    assert items[2] == {"type": "function_call", "call_id": "call_1", "name": "search", "arguments": '{"q": "cats"}'}
    assert items[3] == {"type": "function_call_output", "call_id": "call_1", "output": "3 cats"}
    assert items[4] == {"role": "user", "content": "[Result of tool 'lost']\nstray"}


def test_responses_assistant_text_item():
    """Test assistant text is an output_text message item."""
    items = responses.build_input([LLMMessage(role="assistant", content="Done")])

    assert items == [{
        "type": "message",
        "role": "assistant",
        "content": [{"type": "output_text", "text": "Done"}],
    }]


def test_responses_build_request_with_web_search():
    """Test native web search is listed first among the tools."""
    body = responses.build_request(
        [LLMMessage(role="user", content="news")], "gpt-4.1", 0.2, 500, [SEARCH_TOOL], enable_web_search=True
    )

    assert body["max_output_tokens"] == 500
    assert body["tools"][0] == {"type": "web_search_preview"}
    assert body["tools"][1]["name"] == "search"


def test_responses_parse_citations():
    """Test URL citations become a Sources list."""
    body = {
        "id": "resp_1",
        "status": "completed",
        "output": [
            {"type": "web_search_call", "id": "ws_1", "status": "completed"},
            {"type": "message", "content": [{
                "type": "output_text",
                "text": "It rained.",
                "annotations": [
                    {"type": "url_citation", "url": "https://news.example/a", "title": "News A"},
                    {"type": "url_citation", "url": "https://news.example/a", "title": "News A"},
                ],
            }]},
        ],
        "usage": {"input_tokens": 20, "output_tokens": 4},
    }
    response = responses.parse_response(body)

    assert response.content == "It rained.\n\nSources:\n- [News A](https://news.example/a)\n"
    assert response.finish_reason == "stop"
    assert response.usage.total_tokens == 24


def test_responses_parse_function_calls_and_incomplete():
    """Test function calls and truncated responses."""
    call = {"type": "function_call", "id": "fc_1", "call_id": "call_9", "name": "search", "arguments": "{}"}
    response = responses.parse_response({"output": [call]})

    assert response.tool_calls == [ToolCall(id="call_9", name="search", arguments="{}")]
    assert response.provider_meta.payload == [call]

    truncated = responses.parse_response({
        "status": "incomplete",
        "incomplete_details": {"reason": "max_output_tokens"},
        "output": [{"type": "message", "content": [{"type": "output_text", "text": "Par"}]}],
    })
    assert truncated.finish_reason == "length"


def test_responses_reasoning_replayed_with_calls():
    """Test reasoning items survive the round trip ahead of their function call."""
    reasoning = {"type": "reasoning", "id": "rs_1", "summary": [], "encrypted_content": "opaque"}
    call = {"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "search", "arguments": "{}"}
    response = responses.parse_response({"output": [
        reasoning,
        {"type": "message", "content": [{"type": "output_text", "text": "Searching."}]},
        call,
    ]})

    assert response.provider_meta.payload == [reasoning, call]

    items = responses.build_input([
        LLMMessage(role="user", content="Find cats"),
        LLMMessage(
            role="assistant",
            content=response.content,
            tool_calls=response.tool_calls,
            provider_meta=response.provider_meta,
        ),
        LLMMessage(role="tool", content="3 cats", tool_call_id="call_1", name="search"),
    ])

    assert [item.get("type", item.get("role")) for item in items] == [
        "user", "message", "reasoning", "function_call", "function_call_output",
    ]
    assert items[2] == reasoning


def test_responses_text_answer_has_no_replay_meta():
    """Test reasoning before a plain answer is not kept."""
    response = responses.parse_response({"output": [
        {"type": "reasoning", "id": "rs_2", "summary": []},
        {"type": "message", "content": [{"type": "output_text", "text": "Hi"}]},
    ]})

    assert response.content == "Hi"
    assert response.provider_meta is None


def test_responses_parse_without_output():
    """Test a body without output is a protocol error."""
    with pytest.raises(LLMError) as exc_info:
        responses.parse_response({"id": "x"})

    assert exc_info.value.kind == LLMErrorKind.PROTOCOL


@pytest.mark.asyncio
async def test_responses_client_round_trip():
    """Test the Responses client posts to /responses."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "resp_1", "model": "gpt-4.1", "status": "completed",
            "output": [{"type": "message", "content": [{"type": "output_text", "text": "Hi"}]}],
        })

    async with _client(handler) as http_client:
        llm = OpenAIResponsesLLM(api_key="sk-test", http_client=http_client)
        result = await llm.complete(
            [LLMMessage(role="system", content="sys"), LLMMessage(role="user", content="hello")]
        )

    assert result.success
    assert result.response.content == "Hi"
    assert seen["path"].endswith("/responses")
    assert seen["body"]["input"][0] == {"role": "developer", "content": "sys"}
