"""Chat model factory.

Every provider is reached through its OpenAI-compatible chat completions
API, so one client class (``ChatOpenAI``) covers all of them:

- anthropic (default): Anthropic's OpenAI-compatible endpoint
- openai: Direct OpenAI API access
- openrouter, together, groq: Hosted OpenAI-compatible gateways
- ollama: Local models, no API key required
- custom: Any OpenAI-compatible API, set LLM_BASE_URL

Environment variables:
- LLM_PROVIDER, LLM_MODEL, LLM_API_KEY, LLM_BASE_URL, LLM_TEMPERATURE
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ai_jup.exceptions import ConfigurationError
from ai_jup.settings import get_settings

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from ai_jup.settings import Settings

PROVIDER_BASE_URLS = {
    "anthropic": "https://api.anthropic.com/v1/",
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "together": "https://api.together.xyz/v1",
    "groq": "https://api.groq.com/openai/v1",
    "ollama": "http://localhost:11434/v1",
}

KEYLESS_PROVIDERS = frozenset({"ollama"})


def resolve_model(model: str, provider: str) -> tuple[str, str]:
    """Split an optional ``provider/`` prefix off a model name.

    Only ``ollama/`` switches provider; other prefixes (``anthropic/...``
    on OpenRouter) are part of the model id and stay as-is.
    """
    if "/" in model:
        prefix, suffix = model.split("/", 1)
        if prefix == "ollama" and suffix:
            return suffix, "ollama"
    return model, provider


def get_llm(
    model: str | None = None,
    *,
    provider: str | None = None,
    temperature: float | None = None,
    settings: Settings | None = None,
    **kwargs: Any,
) -> BaseChatModel:
    """Create a streaming chat model.

    Args:
        model: Model id; defaults to LLM_MODEL.
        provider: Provider name; defaults to LLM_PROVIDER.
        temperature: Override default temperature.
        settings: Settings to read; defaults to the process settings.
        **kwargs: Additional ChatOpenAI arguments.

    Returns:
        Configured chat model.

    Raises:
        ConfigurationError: Unknown provider or missing API key.
    """
    from langchain_openai import ChatOpenAI

    settings = settings or get_settings()
    model_name, provider = resolve_model(
        model or settings.llm_model, provider or settings.llm_provider
    )

    api_key = settings.llm_api_key.get_secret_value()
    if not api_key and provider not in KEYLESS_PROVIDERS:
        raise ConfigurationError(f"LLM_API_KEY is required when using the {provider} provider")

    base_url = settings.llm_base_url or PROVIDER_BASE_URLS.get(provider)
    if base_url is None:
        raise ConfigurationError(
            f"Unknown provider '{provider}'. Set LLM_BASE_URL for custom providers."
        )

    llm_kwargs: dict[str, Any] = {
        "model": model_name,
        "temperature": settings.llm_temperature if temperature is None else temperature,
        "max_tokens": settings.llm_max_tokens,
        "api_key": api_key or provider,
        "base_url": base_url,
        "streaming": True,
        # Retries are owned by LLMStreamAdapter
        "max_retries": 0,
        **kwargs,
    }

    if provider == "openrouter":
        llm_kwargs.setdefault("default_headers", {})
        llm_kwargs["default_headers"]["X-Title"] = "ai-jup"

    return ChatOpenAI(**llm_kwargs)


def list_supported_providers() -> dict[str, str]:
    """Provider names and their default base URLs."""
    return {**PROVIDER_BASE_URLS, "custom": "(set LLM_BASE_URL)"}
