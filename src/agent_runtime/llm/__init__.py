"""
LLM module for multi-provider AI model support.

Providers:
- OpenAI GPT (Chat Completions and Responses API, native SDK)
- Anthropic Claude (native SDK)
- Google Gemini (REST streaming)
- Cloud Code Assist (Gemini format behind OAuth)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import (
    BaseLLM,
    CompletionResult,
    LLMMessage,
    LLMResponse,
    MediaAttachment,
    ProviderMeta,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from .errors import LLMError, LLMErrorKind
from .anthropic import AnthropicLLM
from .code_assist import CodeAssistLLM
from .gemini import GeminiLLM
from .openai import OpenAILLM
from .openai_responses import OpenAIResponsesLLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "CompletionResult",
    "LLMMessage",
    "LLMResponse",
    "MediaAttachment",
    "ProviderMeta",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "LLMError",
    "LLMErrorKind",
    "AnthropicLLM",
    "CodeAssistLLM",
    "GeminiLLM",
    "OpenAILLM",
    "OpenAIResponsesLLM",
    "create_llm",
]
