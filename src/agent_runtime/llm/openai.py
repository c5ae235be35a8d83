"""
OpenAI Chat Completions provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import Any

import openai
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
from .errors import NO_CHOICES_ERROR, classify_http_error, protocol_error, transport_error

logger = structlog.get_logger()

PROVIDER = "openai"


def audio_format(mime_type: str) -> str:
    """OpenAI audio format name for a MIME type."""
    if "wav" in mime_type:
        return "wav"
    if "mpeg" in mime_type or "mp3" in mime_type:
        return "mp3"
    if "flac" in mime_type:
        return "flac"
    if "opus" in mime_type:
        return "opus"
    if "pcm" in mime_type:
        return "pcm16"
    return "wav"


def _convert_user_content(msg: LLMMessage) -> str | list[dict[str, Any]]:
    """Plain text, or a parts array when the message carries media."""
    if not msg.media:
        return msg.text

    parts: list[dict[str, Any]] = []
    if msg.content:
        parts.append({"type": "text", "text": msg.content})
    for media in msg.media:
        if media.is_image:
            parts.append({"type": "image_url", "image_url": {"url": media.data_url}})
        elif media.is_audio:
            parts.append({
                "type": "input_audio",
                "input_audio": {
                    "data": media.data,
                    "format": audio_format(media.mime_type),
                },
            })
        elif media.is_video:
            logger.warning("Video input not supported by chat completions, skipping", mime_type=media.mime_type)
        else:
            parts.append({
                "type": "file",
                "file": {
                    "filename": media.file_name or "document",
                    "file_data": media.data_url,
                },
            })
    return parts


def _convert_assistant(msg: LLMMessage) -> dict[str, Any]:
    converted: dict[str, Any] = {"role": "assistant", "content": msg.content or None}
    if msg.tool_calls:
        if msg.provider_meta and msg.provider_meta.provider == PROVIDER:
            # Raw tool_calls as the API returned them, including vendor extras
            converted["tool_calls"] = msg.provider_meta.payload
        else:
            converted["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in msg.tool_calls
            ]
    return converted


def convert_messages(messages: list[LLMMessage]) -> list[dict[str, Any]]:
    """Convert LLMMessages to the flat Chat Completions ``messages`` list."""
    converted: list[dict[str, Any]] = []
    index = 0

    while index < len(messages):
        msg = messages[index]

        if msg.role == "assistant":
            converted.append(_convert_assistant(msg))
            if msg.tool_calls:
                run, index = collect_tool_results(messages, index + 1)
                matched, orphans = split_tool_results(msg, run)
                for result in matched:
                    converted.append({
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "content": result.text,
                    })
                for orphan in orphans:
                    converted.append({"role": "user", "content": orphan_tool_text(orphan)})
                continue
        elif msg.role == "tool":
            converted.append({"role": "user", "content": orphan_tool_text(msg)})
        elif msg.role == "user":
            converted.append({"role": "user", "content": _convert_user_content(msg)})
        else:
            converted.append({"role": msg.role, "content": msg.text})
        index += 1

    return converted


def convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    """Convert ToolDefinitions to OpenAI format."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
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
    """Build the exact Chat Completions request body."""
    body: dict[str, Any] = {
        "model": model,
        "messages": convert_messages(messages),
        "temperature": temperature,
        "stream": False,
    }
    if max_tokens is not None:
        body["max_tokens"] = max_tokens
    if tools:
        body["tools"] = convert_tools(tools)
    return body


def parse_response(body: dict[str, Any]) -> LLMResponse:
    """Parse a Chat Completions response body."""
    choices = body.get("choices") or []
    if not choices:
        raise protocol_error(NO_CHOICES_ERROR)

    choice = choices[0]
    message = choice.get("message") or {}
    raw_calls = message.get("tool_calls") or []

    tool_calls = [
        ToolCall(
            id=tc.get("id", ""),
            name=(tc.get("function") or {}).get("name", ""),
            arguments=(tc.get("function") or {}).get("arguments") or "{}",
        )
        for tc in raw_calls
    ]

    usage = None
    if body.get("usage"):
        usage = TokenUsage(
            prompt_tokens=body["usage"].get("prompt_tokens") or 0,
            completion_tokens=body["usage"].get("completion_tokens") or 0,
            total_tokens=body["usage"].get("total_tokens") or 0,
        )

    return LLMResponse(
        content=message.get("content"),
        tool_calls=tool_calls or None,
        finish_reason=choice.get("finish_reason") or "stop",
        usage=usage,
        provider_meta=ProviderMeta(PROVIDER, raw_calls) if raw_calls else None,
        model=body.get("model", ""),
        id=body.get("id", ""),
    )


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider using Chat Completions."""

    def __init__(self, api_key: str, model: str = "gpt-4.1", **kwargs: Any):
        super().__init__(api_key, model, **kwargs)

    @property
    def provider_name(self) -> str:
        return PROVIDER

    def _create_client(self) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
            http_client=self._http_client,
        )

    async def _complete(
        self,
        client: openai.AsyncOpenAI,
        messages: list[LLMMessage],
        model: str,
        temperature: float,
        max_tokens: int | None,
        tools: list[ToolDefinition] | None,
        enable_web_search: bool,
    ) -> LLMResponse:
        """Generate a response from GPT."""
        body = build_request(messages, model, temperature, max_tokens, tools, enable_web_search)
        try:
            raw = await client.chat.completions.with_raw_response.create(**body)
            data = raw.http_response.json()
        except openai.APITimeoutError as e:
            raise transport_error(e, timed_out=True) from e
        except openai.APIConnectionError as e:
            raise transport_error(e) from e
        except openai.APIStatusError as e:
            raise classify_http_error(e.status_code, e.response.text, "OpenAI") from e
        except json.JSONDecodeError as e:
            raise protocol_error(f"Malformed OpenAI response: {e}", e) from e
        return parse_response(data)
