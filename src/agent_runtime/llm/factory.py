"""
LLM factory for creating provider instances.

Supports: OpenAI (Chat Completions and Responses), Anthropic Claude,
Google Gemini, Cloud Code Assist, OpenRouter.
"""

from typing import Any

from ..config import LLMConfig, Settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .code_assist import CodeAssistLLM, TokenProvider
from .gemini import GeminiLLM
from .openai import OpenAILLM
from .openai_responses import OpenAIResponsesLLM


def create_llm(
    config: LLMConfig | None = None,
    settings: Settings | None = None,
    token_provider: TokenProvider | None = None,
    **client_kwargs: Any,
) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - openai -> OpenAILLM (Chat Completions)
    - openai_responses -> OpenAIResponsesLLM (Responses API)
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - gemini -> GeminiLLM (REST + SSE)
    - code_assist -> CodeAssistLLM (Gemini format, OAuth bearer token)
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    common: dict[str, Any] = {
        "base_url": config.base_url,
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
        "timeout": config.request_timeout,
        **client_kwargs,
    }
    provider = config.provider

    if provider == "openai":
        return OpenAILLM(config.api_key, config.model, **common)
    elif provider == "openai_responses":
        return OpenAIResponsesLLM(config.api_key, config.model, **common)
    elif provider == "anthropic":
        return AnthropicLLM(config.api_key, config.model, **common)
    elif provider == "gemini":
        return GeminiLLM(config.api_key, config.model, **common)
    elif provider == "code_assist":
        return CodeAssistLLM(
            config.api_key,
            config.model,
            project=config.project,
            token_provider=token_provider,
            **common,
        )
    elif provider == "openrouter":
        common["base_url"] = config.base_url or "https://openrouter.ai/api/v1"
        return OpenAILLM(config.api_key, config.model, **common)
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
