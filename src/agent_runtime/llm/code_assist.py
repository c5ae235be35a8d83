"""
Cloud Code Assist provider.

Same contents/parts wire format as Gemini, wrapped in the Code Assist
request envelope and authenticated with an OAuth bearer token. Token
acquisition and refresh are left to the caller through ``token_provider``.
"""

import json
import random
import time
from typing import Any, Awaitable, Callable

from .errors import LLMError, LLMErrorKind
from .gemini import GeminiLLM

PROVIDER = "code_assist"
ENDPOINT = "https://cloudcode-pa.googleapis.com/v1internal:streamGenerateContent?alt=sse"
MODEL_PREFIX = "ag/"
USER_AGENT = "antigravity"

CLIENT_METADATA = json.dumps(
    {"ideType": "IDE_UNSPECIFIED", "platform": "PLATFORM_UNSPECIFIED", "pluginType": "GEMINI"},
    separators=(",", ":"),
)

TokenProvider = Callable[[], Awaitable[str]]


def api_model_name(model: str) -> str:
    return model[len(MODEL_PREFIX):] if model.startswith(MODEL_PREFIX) else model


def wrap_request(body: dict[str, Any], model: str, project: str) -> dict[str, Any]:
    """Wrap a GenerateContent body in the Code Assist envelope."""
    return {
        "project": project,
        "model": api_model_name(model),
        "request": body,
        "requestType": "agent",
        "userAgent": USER_AGENT,
        "requestId": f"ag-{int(time.time() * 1000)}-{random.randint(0, 999_999)}",
    }


class CodeAssistLLM(GeminiLLM):
    """Gemini-format client for the Cloud Code Assist endpoint."""

    default_base_url = ENDPOINT

    def __init__(
        self,
        api_key: str = "",
        model: str = "ag/gemini-3-flash",
        project: str = "",
        token_provider: TokenProvider | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, model, **kwargs)
        self.project = project
        self.token_provider = token_provider

    @property
    def provider_name(self) -> str:
        return PROVIDER

    def has_credentials(self) -> bool:
        return bool(self.api_key or self.token_provider) and bool(self.project)

    def _endpoint(self, model: str) -> str:
        return self.base_url

    async def _headers(self) -> dict[str, str]:
        token = self.api_key
        if self.token_provider:
            try:
                token = await self.token_provider()
            except Exception as e:
                raise LLMError(
                    LLMErrorKind.AUTH,
                    f"Could not obtain a Code Assist access token: {e}. Please re-authenticate.",
                    cause=e,
                ) from e
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "User-Agent": USER_AGENT,
            "X-Goog-Api-Client": "google-cloud-sdk vscode_cloudshelleditor/0.1",
            "Client-Metadata": CLIENT_METADATA,
        }

    def _wrap_request(self, body: dict[str, Any], model: str) -> dict[str, Any]:
        return wrap_request(body, model, self.project)

    def _unwrap_chunk(self, chunk: dict[str, Any]) -> dict[str, Any] | None:
        return chunk.get("response")
