"""
Google Gemini provider over the REST ``streamGenerateContent`` endpoint.

Talks to the API directly with httpx instead of an SDK so the model's raw
``Content`` (including ``thoughtSignature`` fields on thinking models) can be
kept verbatim and replayed on the next request.
"""

import json
import uuid
from typing import Any

import httpx
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
    split_tool_results,
)
from .errors import classify_http_error, protocol_error, transport_error

logger = structlog.get_logger()

PROVIDER = "gemini"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
}


def _user_parts(msg: LLMMessage) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    if msg.content:
        parts.append({"text": msg.content})
    for media in msg.media:
        parts.append({"inlineData": {"mimeType": media.mime_type, "data": media.data}})
    return parts


def _model_content(msg: LLMMessage, provider: str) -> dict[str, Any] | None:
    if msg.tool_calls and msg.provider_meta and msg.provider_meta.provider == provider:
        return msg.provider_meta.payload

    parts: list[dict[str, Any]] = []
    if msg.content:
        parts.append({"text": msg.content})
    for tc in msg.tool_calls or []:
        parts.append({"functionCall": {"name": tc.name, "args": tc.parsed_arguments()}})
    if not parts:
        return None
    return {"role": "model", "parts": parts}


def _function_response(result: LLMMessage, name: str | None = None) -> dict[str, Any]:
    return {
        "functionResponse": {
            "name": result.name or name or "unknown",
            "response": {"result": result.text},
        }
    }


def convert_contents(
    messages: list[LLMMessage], provider: str = PROVIDER
) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
    """Convert LLMMessages to ``(systemInstruction, contents)``.

    Results of one model turn are grouped into a single user content of
    ``functionResponse`` parts. A result with no matching call is still sent
    as a standalone ``functionResponse``.
    """
    system_parts: list[str] = []
    contents: list[dict[str, Any]] = []
    index = 0

    while index < len(messages):
        msg = messages[index]

        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
        elif msg.role == "user":
            parts = _user_parts(msg)
            if parts:
                contents.append({"role": "user", "parts": parts})
        elif msg.role == "assistant":
            model_content = _model_content(msg, provider)
            if model_content:
                contents.append(model_content)
            if msg.tool_calls:
                run, index = collect_tool_results(messages, index + 1)
                matched, orphans = split_tool_results(msg, run)
                names = {tc.id: tc.name for tc in msg.tool_calls}
                parts = [_function_response(r, names.get(r.tool_call_id or "")) for r in matched]
                parts.extend(_function_response(o) for o in orphans)
                if parts:
                    contents.append({"role": "user", "parts": parts})
                continue
        elif msg.role == "tool":
            contents.append({"role": "user", "parts": [_function_response(msg)]})
        index += 1

    system_instruction = None
    if system_parts:
        system_instruction = {"parts": [{"text": "\n\n".join(system_parts)}]}
    return system_instruction, contents


def convert_tools(tools: list[ToolDefinition] | None, enable_web_search: bool) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    if tools:
        converted.append({
            "functionDeclarations": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                }
                for tool in tools
            ]
        })
    if enable_web_search:
        converted.append({"googleSearch": {}})
    return converted


def build_request(
    messages: list[LLMMessage],
    model: str,
    temperature: float,
    max_tokens: int | None = None,
    tools: list[ToolDefinition] | None = None,
    enable_web_search: bool = False,
    provider: str = PROVIDER,
) -> dict[str, Any]:
    """Build the GenerateContent request body. The model goes in the URL."""
    system_instruction, contents = convert_contents(messages, provider)
    generation_config: dict[str, Any] = {"temperature": temperature}
    if max_tokens is not None:
        generation_config["maxOutputTokens"] = max_tokens

    body: dict[str, Any] = {"contents": contents}
    if system_instruction:
        body["systemInstruction"] = system_instruction
    body["generationConfig"] = generation_config
    tool_items = convert_tools(tools, enable_web_search)
    if tool_items:
        body["tools"] = tool_items
    return body


def parse_sse_line(line: str) -> dict[str, Any] | None:
    """Decode one ``data:`` line of a Server-Sent Events stream.

    Returns None for blank lines, comments, other fields and ``[DONE]``.
    Raises ``json.JSONDecodeError`` for malformed payloads.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    return json.loads(payload)


def parse_response(chunks: list[dict[str, Any]], provider: str = PROVIDER) -> LLMResponse:
    """Merge streamed GenerateContentResponse chunks into one LLMResponse."""
    if not chunks:
        raise protocol_error("Empty response stream from Gemini")

    raw_parts: list[dict[str, Any]] = []
    text = ""
    tool_calls: list[ToolCall] = []
    sources: dict[str, str] = {}
    finish_reason = None
    usage = None
    seen_candidate = False
    response_id = ""
    model = ""

    for chunk in chunks:
        response_id = chunk.get("responseId", response_id)
        model = chunk.get("modelVersion", model)
        if chunk.get("usageMetadata"):
            meta = chunk["usageMetadata"]
            usage = TokenUsage(
                prompt_tokens=meta.get("promptTokenCount") or 0,
                completion_tokens=meta.get("candidatesTokenCount") or 0,
                total_tokens=meta.get("totalTokenCount") or 0,
            )

        for candidate in (chunk.get("candidates") or [])[:1]:
            seen_candidate = True
            finish_reason = candidate.get("finishReason", finish_reason)
            for grounding in (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []:
                web = grounding.get("web") or {}
                if web.get("uri"):
                    sources.setdefault(web["uri"], web.get("title") or web["uri"])

            for part in (candidate.get("content") or {}).get("parts") or []:
                raw_parts.append(part)
                if "functionCall" in part:
                    call = part["functionCall"]
                    tool_calls.append(ToolCall(
                        id=call.get("id") or f"gemini-call-{uuid.uuid4().hex[:16]}",
                        name=call.get("name", "unknown"),
                        arguments=json.dumps(call.get("args") or {}),
                    ))
                elif part.get("thought"):
                    continue
                elif "text" in part:
                    text += part["text"]

    if not seen_candidate:
        block_reason = (chunks[-1].get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            return LLMResponse(finish_reason=f"blocked:{block_reason.lower()}", usage=usage)
        raise protocol_error("No candidates in Gemini response")

    if sources:
        text += "\n\nSources:\n" + "".join(f"- [{title}]({uri})\n" for uri, title in sources.items())

    if tool_calls:
        reason = "tool_calls"
    else:
        reason = _FINISH_REASONS.get(finish_reason or "STOP", (finish_reason or "stop").lower())

    meta = None
    if tool_calls:
        meta = ProviderMeta(provider, {"role": "model", "parts": raw_parts})

    return LLMResponse(
        content=text or None,
        tool_calls=tool_calls or None,
        finish_reason=reason,
        usage=usage,
        provider_meta=meta,
        model=model,
        id=response_id,
    )


class GeminiLLM(BaseLLM):
    """Native Google Gemini LLM provider."""

    default_base_url = DEFAULT_BASE_URL

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash", **kwargs: Any):
        super().__init__(api_key, model, **kwargs)

    @property
    def provider_name(self) -> str:
        return PROVIDER

    def _create_client(self) -> httpx.AsyncClient:
        return self._http_client or httpx.AsyncClient(timeout=self.timeout)

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url.rstrip('/')}/models/{model}:streamGenerateContent?alt=sse"

    async def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def _wrap_request(self, body: dict[str, Any], model: str) -> dict[str, Any]:
        return body

    def _unwrap_chunk(self, chunk: dict[str, Any]) -> dict[str, Any] | None:
        return chunk

    async def _complete(
        self,
        client: httpx.AsyncClient,
        messages: list[LLMMessage],
        model: str,
        temperature: float,
        max_tokens: int | None,
        tools: list[ToolDefinition] | None,
        enable_web_search: bool,
    ) -> LLMResponse:
        body = build_request(
            messages, model, temperature, max_tokens, tools, enable_web_search, self.provider_name
        )
        payload = self._wrap_request(body, model)
        headers = await self._headers()
        chunks: list[dict[str, Any]] = []

        try:
            async with client.stream(
                "POST", self._endpoint(model), json=payload, headers=headers, timeout=self.timeout
            ) as response:
                if response.status_code >= 400:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    raise classify_http_error(response.status_code, error_body, "Gemini")

                async for line in response.aiter_lines():
                    try:
                        chunk = parse_sse_line(line)
                    except json.JSONDecodeError as e:
                        logger.warning("Skipping malformed SSE chunk", provider=self.provider_name, error=str(e))
                        continue
                    if chunk is None:
                        continue
                    if "error" in chunk:
                        error = chunk["error"] if isinstance(chunk["error"], dict) else {}
                        raise classify_http_error(int(error.get("code") or 500), json.dumps(chunk), "Gemini")
                    chunk = self._unwrap_chunk(chunk)
                    if chunk is not None:
                        chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise transport_error(e, timed_out=True) from e
        except httpx.TransportError as e:
            raise transport_error(e) from e

        return parse_response(chunks, self.provider_name)
