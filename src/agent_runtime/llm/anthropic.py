"""
Anthropic Claude LLM provider (Messages API).
"""

import json
from typing import Any

import anthropic
import structlog

from .base import (
    BaseLLM,
    LLMMessage,
    LLMResponse,
    ProviderMeta,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    collect_tool_results,
    orphan_tool_text,
    split_tool_results,
)
from .errors import classify_http_error, protocol_error, transport_error

logger = structlog.get_logger()

PROVIDER = "anthropic"
DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS = {
    "tool_use": "tool_calls",
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
}

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}


def _strip_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_strip_none(v) for v in value]
    return value


def _user_content(msg: LLMMessage) -> str | list[dict[str, Any]]:
    if not msg.media:
        return msg.text

    blocks: list[dict[str, Any]] = []
    if msg.content:
        blocks.append({"type": "text", "text": msg.content})
    for media in msg.media:
        if media.is_image:
            blocks.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media.mime_type, "data": media.data},
            })
        elif media.is_document:
            blocks.append({
                "type": "document",
                "source": {"type": "base64", "media_type": "application/pdf", "data": media.data},
            })
        else:
            logger.warning("Media type not supported by Anthropic, skipping", mime_type=media.mime_type)
    return blocks


def _assistant_content(msg: LLMMessage) -> list[dict[str, Any]]:
    if msg.tool_calls and msg.provider_meta and msg.provider_meta.provider == PROVIDER:
        # Raw blocks keep thinking signatures intact
        return list(msg.provider_meta.payload)

    blocks: list[dict[str, Any]] = []
    if msg.content:
        blocks.append({"type": "text", "text": msg.content})
    for tc in msg.tool_calls or []:
        blocks.append({
            "type": "tool_use",
            "id": tc.id,
            "name": tc.name,
            "input": tc.parsed_arguments(),
        })
    return blocks


def convert_messages(messages: list[LLMMessage]) -> tuple[str | None, list[dict[str, Any]]]:
    """Convert LLMMessages to ``(system, messages)`` for the Messages API.

    Results of one assistant turn are grouped into a single user message of
    ``tool_result`` blocks.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []
    index = 0

    while index < len(messages):
        msg = messages[index]

        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
        elif msg.role == "user":
            converted.append({"role": "user", "content": _user_content(msg)})
        elif msg.role == "assistant":
            content = _assistant_content(msg)
            if content:
                converted.append({"role": "assistant", "content": content})
            if msg.tool_calls:
                run, index = collect_tool_results(messages, index + 1)
                matched, orphans = split_tool_results(msg, run)
                blocks: list[dict[str, Any]] = [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.tool_call_id,
                        "content": result.text,
                    }
                    for result in matched
                ]
                blocks.extend({"type": "text", "text": orphan_tool_text(o)} for o in orphans)
                if blocks:
                    converted.append({"role": "user", "content": blocks})
                continue
        elif msg.role == "tool":
            converted.append({"role": "user", "content": orphan_tool_text(msg)})
        index += 1

    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


def convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    """Convert ToolDefinitions to Anthropic format."""
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters,
        }
        for tool in tools
    ]


def build_request(
    messages: list[LLMMessage],
    model: str,
    temperature: float,
    max_tokens: int | None = None,
    tools: list[ToolDefinition] | None = None,
    enable_web_search: bool = False,
) -> dict[str, Any]:
    """Build the exact Messages API request body."""
    system, converted = convert_messages(messages)
    body: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
        "messages": converted,
        "temperature": temperature,
    }
    if system:
        body["system"] = system
    tool_items = convert_tools(tools) if tools else []
    if enable_web_search:
        tool_items.append(dict(WEB_SEARCH_TOOL))
    if tool_items:
        body["tools"] = tool_items
    return body


def parse_response(body: dict[str, Any]) -> LLMResponse:
    """Parse a Messages API response body."""
    blocks = body.get("content")
    if not isinstance(blocks, list):
        raise protocol_error("Anthropic response has no content")

    text = ""
    tool_calls = []
    for block in blocks:
        if block.get("type") == "text":
            text += block.get("text") or ""
        elif block.get("type") == "tool_use":
            tool_calls.append(ToolCall(
                id=block.get("id", ""),
                name=block.get("name", ""),
                arguments=json.dumps(block.get("input") or {}),
            ))

    stop_reason = body.get("stop_reason")
    finish_reason = _STOP_REASONS.get(stop_reason or "", stop_reason or "stop")

    usage = None
    if body.get("usage"):
        usage = TokenUsage(
            prompt_tokens=body["usage"].get("input_tokens") or 0,
            completion_tokens=body["usage"].get("output_tokens") or 0,
        )

    return LLMResponse(
        content=text or None,
        tool_calls=tool_calls or None,
        finish_reason=finish_reason,
        usage=usage,
        provider_meta=ProviderMeta(PROVIDER, _strip_none(blocks)) if tool_calls else None,
        model=body.get("model", ""),
        id=body.get("id", ""),
    )


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514", **kwargs: Any):
        super().__init__(api_key, model, **kwargs)

    @property
    def provider_name(self) -> str:
        return PROVIDER

    def _create_client(self) -> anthropic.AsyncAnthropic:
        return anthropic.AsyncAnthropic(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
            http_client=self._http_client,
        )

    async def _complete(
        self,
        client: anthropic.AsyncAnthropic,
        messages: list[LLMMessage],
        model: str,
        temperature: float,
        max_tokens: int | None,
        tools: list[ToolDefinition] | None,
        enable_web_search: bool,
    ) -> LLMResponse:
        """Generate a response from Claude."""
        body = build_request(messages, model, temperature, max_tokens, tools, enable_web_search)
        try:
            raw = await client.messages.with_raw_response.create(**body)
            data = raw.http_response.json()
        except anthropic.APITimeoutError as e:
            raise transport_error(e, timed_out=True) from e
        except anthropic.APIConnectionError as e:
            raise transport_error(e) from e
        except anthropic.APIStatusError as e:
            raise classify_http_error(e.status_code, e.response.text, "Anthropic") from e
        except json.JSONDecodeError as e:
            raise protocol_error(f"Malformed Anthropic response: {e}", e) from e
        return parse_response(data)
