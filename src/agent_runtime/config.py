"""
Configuration management for the agent runtime.

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["openai", "openai_responses", "anthropic", "gemini", "code_assist", "openrouter"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Provider = "openai"
    model: str = "gpt-4.1"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int | None = None
    temperature: float = 0.2
    request_timeout: float = 120.0
    project: str = ""


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Agent-Runtime"
    debug: bool = False
    log_level: str = "INFO"

    # LLM Providers (API Keys)
    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    gemini_api_key: str = Field(default="", description="Google AI API key for Gemini")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    code_assist_token: str = Field(default="", description="OAuth access token for Cloud Code Assist")
    code_assist_project: str = Field(default="", description="Cloud Code Assist project id")

    # Base URL overrides
    openai_base_url: str | None = None
    anthropic_base_url: str | None = None
    gemini_base_url: str | None = None

    # Default model settings
    default_provider: Provider = "openai"
    default_model: str = ""
    max_tokens: int | None = None
    temperature: float = 0.2
    request_timeout: float = Field(default=120.0, description="Per-request LLM timeout in seconds")

    # Agent loop
    max_iterations: int = Field(default=25, description="Max LLM round-trips per execution")
    summarization_threshold: float = Field(
        default=0.8, description="Fraction of the context window that triggers summarization"
    )
    keep_recent_messages: int = Field(default=6, description="Messages kept verbatim by summarization")
    native_web_search: bool = Field(
        default=False, description="Use the provider's built-in search when the web category is active"
    )

    # Tools
    tavily_api_key: str = Field(default="", description="Tavily API key for web search")
    tool_timeout: float = Field(default=120.0, description="Default per-tool timeout in seconds")
    max_tool_output_chars: int = Field(default=32_768, description="Tool output limit sent to the LLM")
    parallel_tool_execution: bool = False

    @field_validator("summarization_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("summarization_threshold must be in (0, 1]")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper() if v else "INFO"

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "openai": self.openai_api_key,
            "openai_responses": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
            "code_assist": self.code_assist_token,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "openai": "gpt-4.1",
            "openai_responses": "gpt-4.1",
            "anthropic": "claude-sonnet-4-20250514",
            "gemini": "gemini-2.5-flash",
            "code_assist": "gemini-2.5-pro",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "openai": self.openai_base_url,
            "openai_responses": self.openai_base_url,
            "anthropic": self.anthropic_base_url,
            "gemini": self.gemini_base_url,
            "code_assist": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        if provider not in api_key_map:
            raise ValueError(f"Unknown LLM provider: {provider}")

        model = model_map[provider]
        if self.default_model and provider == self.default_provider:
            model = self.default_model

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map[provider],
            base_url=base_url_map[provider],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            request_timeout=self.request_timeout,
            project=self.code_assist_project,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
