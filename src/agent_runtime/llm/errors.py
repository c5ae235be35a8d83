"""
Provider error taxonomy.

Every provider failure is mapped onto one ``LLMErrorKind`` so the agent loop
can decide between recovery (context overflow) and giving up (everything
else) without knowing which backend it talks to.
"""

import json
from enum import Enum


class LLMErrorKind(str, Enum):
    TRANSPORT = "transport"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CONTEXT_OVERFLOW = "context_overflow"
    PROTOCOL = "protocol"
    REQUEST = "request"
    CONFIGURATION = "configuration"


NO_CHOICES_ERROR = "No choices in LLM response"
EMPTY_RESPONSE_ERROR = "Empty final response from LLM"

# Phrases providers use when the prompt does not fit the context window.
# Matching is a heuristic: an unrecognised wording is reported as a plain
# request error.
CONTEXT_OVERFLOW_MARKERS = (
    "context_length_exceeded",
    "maximum context length",
    "context length exceeded",
    "too many tokens",
    "prompt is too long",
    "request payload size exceeds",
    "exceeds the maximum",
    "token count exceeds",
    "input is too long",
)


class LLMError(Exception):
    """A classified LLM provider failure."""

    def __init__(
        self,
        kind: LLMErrorKind,
        message: str,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.cause = cause

    @property
    def is_context_overflow(self) -> bool:
        return self.kind == LLMErrorKind.CONTEXT_OVERFLOW

    def __repr__(self) -> str:
        return f"LLMError(kind={self.kind.value!r}, status_code={self.status_code!r}, message={self.message!r})"


def is_context_overflow_message(text: str | None) -> bool:
    """Check an error body for context-window overflow wording."""
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in CONTEXT_OVERFLOW_MARKERS)


def parse_api_error(body: str | None) -> str:
    """Pull a human-readable message out of a provider error body."""
    if not body:
        return "Unknown error"
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body[:500]

    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict):
            message = error.get("message")
            if message:
                return str(message)
        elif isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return body[:500]


def classify_http_error(status_code: int, body: str | None, provider: str = "") -> LLMError:
    """Map an HTTP failure onto the error taxonomy."""
    message = parse_api_error(body)
    prefix = f"{provider} " if provider else ""

    if status_code in (401, 403):
        return LLMError(
            LLMErrorKind.AUTH,
            f"{prefix}authentication failed ({status_code}): {message}. "
            "Please re-authenticate or check your API key.",
            status_code,
        )
    if status_code == 429:
        return LLMError(LLMErrorKind.RATE_LIMIT, f"{prefix}rate limited: {message}", status_code)
    if status_code >= 500:
        return LLMError(LLMErrorKind.SERVER, f"{prefix}server error ({status_code}): {message}", status_code)
    if 400 <= status_code < 500 and (is_context_overflow_message(message) or is_context_overflow_message(body)):
        return LLMError(LLMErrorKind.CONTEXT_OVERFLOW, f"{prefix}context overflow: {message}", status_code)
    return LLMError(LLMErrorKind.REQUEST, f"{prefix}request failed ({status_code}): {message}", status_code)


def transport_error(exc: BaseException, timed_out: bool = False) -> LLMError:
    """Wrap a network-level exception."""
    if timed_out:
        return LLMError(LLMErrorKind.TRANSPORT, "Request timed out", cause=exc)
    return LLMError(LLMErrorKind.TRANSPORT, f"Network error: {exc}", cause=exc)


def protocol_error(message: str, exc: BaseException | None = None) -> LLMError:
    return LLMError(LLMErrorKind.PROTOCOL, message, cause=exc)
