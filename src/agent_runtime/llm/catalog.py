"""
Known models per provider and their context window sizes.
"""

from dataclasses import dataclass

FALLBACK_CONTEXT_WINDOW = 200_000


@dataclass(frozen=True)
class ModelInfo:
    """Metadata for a specific LLM model."""

    name: str
    context_window: int
    supports_thinking: bool = False


PROVIDER_MODELS: dict[str, list[ModelInfo]] = {
    "openai": [
        ModelInfo("gpt-4.1", 1_000_000),
        ModelInfo("gpt-4.1-mini", 1_000_000),
        ModelInfo("gpt-4.1-nano", 1_000_000),
        ModelInfo("gpt-4o", 128_000),
        ModelInfo("gpt-4o-mini", 128_000),
    ],
    "gemini": [
        ModelInfo("gemini-2.5-pro", 1_000_000),
        ModelInfo("gemini-2.5-flash", 1_000_000),
        ModelInfo("gemini-3-pro-preview", 1_000_000),
        ModelInfo("gemini-3-flash-preview", 1_000_000),
    ],
    "anthropic": [
        ModelInfo("claude-sonnet-4-5", 200_000, supports_thinking=True),
        ModelInfo("claude-opus-4-6", 200_000, supports_thinking=True),
        ModelInfo("claude-haiku-4-5", 200_000),
        ModelInfo("claude-sonnet-4-20250514", 200_000),
    ],
    "code_assist": [
        ModelInfo("ag/claude-opus-4-6-thinking", 200_000, supports_thinking=True),
        ModelInfo("ag/claude-sonnet-4-5", 200_000, supports_thinking=True),
        ModelInfo("ag/claude-sonnet-4-5-thinking", 200_000, supports_thinking=True),
        ModelInfo("ag/gemini-3-flash", 1_000_000),
        ModelInfo("ag/gemini-3-pro-high", 1_000_000),
        ModelInfo("ag/gemini-3-pro-low", 1_000_000),
    ],
}
PROVIDER_MODELS["openai_responses"] = PROVIDER_MODELS["openai"]

_ALL_MODELS = {m.name: m for models in PROVIDER_MODELS.values() for m in models}


def get_model_info(model: str) -> ModelInfo:
    """Look up a model, falling back to a generic 200k-token entry."""
    info = _ALL_MODELS.get(model)
    if info is not None:
        return info
    # OpenRouter style ids ("openai/gpt-4o") and dated snapshots
    bare = model.split("/")[-1]
    for name in sorted(_ALL_MODELS, key=len, reverse=True):
        if bare.startswith(name):
            return _ALL_MODELS[name]
    return ModelInfo(model, FALLBACK_CONTEXT_WINDOW)


def get_context_window(model: str) -> int:
    return get_model_info(model).context_window


def list_models(provider: str) -> list[str]:
    return [m.name for m in PROVIDER_MODELS.get(provider, [])]
