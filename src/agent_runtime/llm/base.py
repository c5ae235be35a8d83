"""
Base classes for LLM providers.

Every provider client is stateless with respect to conversations: each
``complete()`` call rebuilds the whole wire payload from the message list it
is given, so one client instance can serve many conversations at once.
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx
import structlog

from .errors import LLMError, LLMErrorKind

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 120.0


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]
    timeout: float | None = None


@dataclass
class ToolCall:
    """A tool call made by the LLM.

    ``arguments`` is the raw JSON text exactly as the model produced it.
    It is not validated here; the tool decides what to do with it.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Best-effort decode of the arguments, ``{}`` when malformed."""
        try:
            value = json.loads(self.arguments) if self.arguments else {}
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


@dataclass
class MediaAttachment:
    """Inline binary input (image, audio, video or document) as base64."""

    data: str
    mime_type: str
    file_name: str | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_audio(self) -> bool:
        return self.mime_type.startswith("audio/")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def is_document(self) -> bool:
        return not (self.is_image or self.is_audio or self.is_video)

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass
class ProviderMeta:
    """Opaque provider payload kept verbatim for replay (e.g. reasoning signatures)."""

    provider: str
    payload: Any


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    media: list[MediaAttachment] = field(default_factory=list)
    provider_meta: ProviderMeta | None = None
    is_summary: bool = False

    @property
    def text(self) -> str:
        """Content as a string, empty when there is none."""
        return self.content or ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence. Media is not persisted."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            data["name"] = self.name
        if self.provider_meta is not None:
            data["provider_meta"] = {
                "provider": self.provider_meta.provider,
                "payload": self.provider_meta.payload,
            }
        if self.is_summary:
            data["is_summary"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LLMMessage":
        """Rebuild a message serialized with ``to_dict``."""
        tool_calls = None
        if data.get("tool_calls"):
            tool_calls = [
                ToolCall(id=tc["id"], name=tc["name"], arguments=tc.get("arguments") or "{}")
                for tc in data["tool_calls"]
            ]
        meta = None
        if data.get("provider_meta"):
            meta = ProviderMeta(
                provider=data["provider_meta"]["provider"],
                payload=data["provider_meta"].get("payload"),
            )
        return cls(
            role=data["role"],
            content=data.get("content"),
            tool_calls=tool_calls,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            provider_meta=meta,
            is_summary=bool(data.get("is_summary", False)),
        )


@dataclass
class TokenUsage:
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self) -> None:
        if not self.total_tokens:
            self.total_tokens = self.prompt_tokens + self.completion_tokens


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    finish_reason: str = "stop"
    usage: TokenUsage | None = None
    provider_meta: ProviderMeta | None = None
    model: str = ""
    id: str = ""


@dataclass
class CompletionResult:
    """Outcome of a ``complete()`` call: a response or a classified error."""

    success: bool
    response: LLMResponse | None = None
    error: LLMError | None = None

    @classmethod
    def ok(cls, response: LLMResponse) -> "CompletionResult":
        return cls(success=True, response=response)

    @classmethod
    def fail(cls, error: LLMError) -> "CompletionResult":
        return cls(success=False, error=error)


def collect_tool_results(messages: list[LLMMessage], start: int) -> tuple[list[LLMMessage], int]:
    """Collect the contiguous run of tool messages beginning at ``start``.

    Returns the run and the index of the first message after it.
    """
    run = []
    index = start
    while index < len(messages) and messages[index].role == "tool":
        run.append(messages[index])
        index += 1
    return run, index


def split_tool_results(
    assistant: LLMMessage, run: list[LLMMessage]
) -> tuple[list[LLMMessage], list[LLMMessage]]:
    """Split a tool run into results answering ``assistant``'s calls and orphans."""
    call_ids = {tc.id for tc in assistant.tool_calls or []}
    matched = [m for m in run if m.tool_call_id in call_ids]
    orphans = [m for m in run if m.tool_call_id not in call_ids]
    return matched, orphans


def orphan_tool_text(message: LLMMessage) -> str:
    """Plain-text rendering of a tool result with no matching call."""
    return f"[Result of tool '{message.name or 'unknown'}']\n{message.text}"


class BaseLLM(ABC):
    """Base class for LLM providers.

    The underlying SDK or HTTP client is built lazily and swapped under a lock
    when the API key or base URL changes. Calls already in flight keep the
    client they started with.
    """

    default_base_url: str | None = None

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.2,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url or self.default_base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._http_client = http_client
        self._client: Any = None
        self._lock = threading.Lock()

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    @abstractmethod
    def _create_client(self) -> Any:
        """Build the underlying client for the current key and base URL."""
        pass

    @abstractmethod
    async def _complete(
        self,
        client: Any,
        messages: list[LLMMessage],
        model: str,
        temperature: float,
        max_tokens: int | None,
        tools: list[ToolDefinition] | None,
        enable_web_search: bool,
    ) -> LLMResponse:
        """Send one request and parse the reply. Raises ``LLMError``."""
        pass

    def _get_client(self) -> Any:
        with self._lock:
            if self._client is None:
                self._client = self._create_client()
            return self._client

    def set_api_key(self, api_key: str) -> None:
        """Replace the API key. The next call uses a freshly built client."""
        with self._lock:
            self.api_key = api_key
            self._client = None
        logger.info("LLM API key updated", provider=self.provider_name)

    def set_base_url(self, base_url: str | None) -> None:
        """Replace the base URL. The next call uses a freshly built client."""
        with self._lock:
            self.base_url = base_url or self.default_base_url
            self._client = None
        logger.info("LLM base URL updated", provider=self.provider_name, base_url=self.base_url)

    def has_credentials(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        """Close the client this instance built. Injected HTTP clients are left open."""
        with self._lock:
            client, self._client = self._client, None
        if client is None or client is self._http_client:
            return
        close = getattr(client, "aclose", None) or getattr(client, "close")
        await close()

    async def complete(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: list[ToolDefinition] | None = None,
        enable_web_search: bool = False,
    ) -> CompletionResult:
        """Run one completion over ``messages``.

        Never raises for provider failures; they come back as a failed
        ``CompletionResult`` carrying an ``LLMError``.
        """
        if not self.has_credentials():
            return CompletionResult.fail(LLMError(
                LLMErrorKind.CONFIGURATION,
                f"No API key configured for provider '{self.provider_name}'",
            ))

        model = model or self.model
        try:
            response = await self._complete(
                self._get_client(),
                messages,
                model,
                self.temperature if temperature is None else temperature,
                max_tokens if max_tokens is not None else self.max_tokens,
                tools or None,
                enable_web_search,
            )
        except LLMError as e:
            logger.error(
                "LLM request failed",
                provider=self.provider_name,
                model=model,
                kind=e.kind.value,
                status_code=e.status_code,
                error=e.message,
            )
            return CompletionResult.fail(e)

        logger.debug(
            "LLM response received",
            provider=self.provider_name,
            model=model,
            finish_reason=response.finish_reason,
            tool_calls=len(response.tool_calls or []),
        )
        return CompletionResult.ok(response)
