"""
OpenAI provider using the Responses API (``POST /responses``).

Supports the built-in ``web_search_preview`` tool; URL citations returned by
a search are appended to the answer as a "Sources:" list.
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
from .errors import classify_http_error, protocol_error, transport_error
from .openai import audio_format

logger = structlog.get_logger()

PROVIDER = "openai_responses"


def _user_item(msg: LLMMessage) -> dict[str, Any]:
    if not msg.media:
        return {"role": "user", "content": msg.text}

    parts: list[dict[str, Any]] = []
    if msg.content:
        parts.append({"type": "input_text", "text": msg.content})
    for media in msg.media:
        if media.is_image:
            parts.append({"type": "input_image", "image_url": media.data_url})
        elif media.is_audio:
            parts.append({
                "type": "input_audio",
                "input_audio": {"data": media.data, "format": audio_format(media.mime_type)},
            })
        elif media.is_video:
            logger.warning("Video input not supported by the Responses API, skipping", mime_type=media.mime_type)
        else:
            parts.append({
                "type": "input_file",
                "filename": media.file_name or "document.pdf",
                "file_data": media.data_url,
            })
    return {"role": "user", "content": parts}


def _assistant_text_item(text: str) -> dict[str, Any]:
    return {
        "type": "message",
        "role": "assistant",
        "content": [{"type": "output_text", "text": text}],
    }


def _assistant_items(msg: LLMMessage) -> list[dict[str, Any]]:
    items = []
    if msg.content:
        items.append(_assistant_text_item(msg.content))
    if msg.tool_calls:
        if msg.provider_meta and msg.provider_meta.provider == PROVIDER:
            items.extend(msg.provider_meta.payload)
        else:
            items.extend(
                {
                    "type": "function_call",
                    "call_id": tc.id,
                    "name": tc.name,
                    "arguments": tc.arguments,
                }
                for tc in msg.tool_calls
            )
    return items


def build_input(messages: list[LLMMessage]) -> list[dict[str, Any]]:
    """Convert LLMMessages to the Responses API ``input`` array."""
    items: list[dict[str, Any]] = []
    index = 0

    while index < len(messages):
        msg = messages[index]

        if msg.role == "system":
            if msg.content:
                items.append({"role": "developer", "content": msg.content})
        elif msg.role == "user":
            items.append(_user_item(msg))
        elif msg.role == "assistant":
            items.extend(_assistant_items(msg))
            if msg.tool_calls:
                run, index = collect_tool_results(messages, index + 1)
                matched, orphans = split_tool_results(msg, run)
                items.extend(
                    {
                        "type": "function_call_output",
                        "call_id": result.tool_call_id,
                        "output": result.text,
                    }
                    for result in matched
                )
                items.extend({"role": "user", "content": orphan_tool_text(o)} for o in orphans)
                continue
        elif msg.role == "tool":
            items.append({"role": "user", "content": orphan_tool_text(msg)})
        index += 1

    return items


def build_tools(tools: list[ToolDefinition] | None, enable_web_search: bool) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    if enable_web_search:
        converted.append({"type": "web_search_preview"})
    for tool in tools or []:
        converted.append({
            "type": "function",
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        })
    return converted


def build_request(
    messages: list[LLMMessage],
    model: str,
    temperature: float,
    max_tokens: int | None = None,
    tools: list[ToolDefinition] | None = None,
    enable_web_search: bool = False,
) -> dict[str, Any]:
    """Build the exact Responses API request body."""
    body: dict[str, Any] = {
        "model": model,
        "temperature": temperature,
        "stream": False,
        "input": build_input(messages),
    }
    if max_tokens is not None:
        body["max_output_tokens"] = max_tokens
    tool_items = build_tools(tools, enable_web_search)
    if tool_items:
        body["tools"] = tool_items
    return body


def parse_response(body: dict[str, Any]) -> LLMResponse:
    """Parse the ``output`` items of a Responses API body."""
    output = body.get("output")
    if not isinstance(output, list):
        raise protocol_error("Responses API body has no output array")

    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    # Non-message items (reasoning, function calls) replayed verbatim, in order
    replay_items: list[dict[str, Any]] = []
    citations: dict[str, str] = {}

    for item in output:
        item_type = item.get("type")
        if item_type == "message":
            for block in item.get("content") or []:
                if block.get("type") != "output_text":
                    continue
                text_parts.append(block.get("text") or "")
                for annotation in block.get("annotations") or []:
                    if annotation.get("type") == "url_citation" and annotation.get("url"):
                        url = annotation["url"]
                        citations.setdefault(url, annotation.get("title") or url)
        elif item_type == "function_call":
            replay_items.append(item)
            tool_calls.append(ToolCall(
                id=item.get("call_id") or item.get("id", ""),
                name=item.get("name", ""),
                arguments=item.get("arguments") or "{}",
            ))
        elif item_type:
            # Reasoning items must be replayed with the calls they produced
            replay_items.append(item)

    text = "".join(text_parts)
    if citations:
        text += "\n\nSources:\n" + "".join(f"- [{title}]({url})\n" for url, title in citations.items())

    if tool_calls:
        finish_reason = "tool_calls"
    elif body.get("status") == "incomplete":
        reason = (body.get("incomplete_details") or {}).get("reason")
        finish_reason = "length" if reason == "max_output_tokens" else (reason or "incomplete")
    else:
        finish_reason = "stop"

    usage = None
    if body.get("usage"):
        usage = TokenUsage(
            prompt_tokens=body["usage"].get("input_tokens") or 0,
            completion_tokens=body["usage"].get("output_tokens") or 0,
            total_tokens=body["usage"].get("total_tokens") or 0,
        )

    return LLMResponse(
        content=text or None,
        tool_calls=tool_calls or None,
        finish_reason=finish_reason,
        usage=usage,
        provider_meta=ProviderMeta(PROVIDER, replay_items) if tool_calls else None,
        model=body.get("model", ""),
        id=body.get("id", ""),
    )


class OpenAIResponsesLLM(BaseLLM):
    """OpenAI provider speaking the Responses API."""

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
        body = build_request(messages, model, temperature, max_tokens, tools, enable_web_search)
        try:
            raw = await client.responses.with_raw_response.create(**body)
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
