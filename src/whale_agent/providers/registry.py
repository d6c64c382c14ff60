"""
Provider catalog.

``build_catalog`` lists every ``provider:model`` pair that has credentials
configured; ``get_provider`` returns the shared adapter instance for a
provider name.
"""

from __future__ import annotations

import logging
from typing import Optional

import config

from .anthropic_provider import AnthropicProvider
from .base import ProviderSpec, TextProvider
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

_providers: dict[str, TextProvider] = {}


def _configured() -> dict[str, tuple[str, str, str]]:
    """provider → (api_key, fast_model, deep_model) for every provider with a key."""
    table = {
        "anthropic": (config.ANTHROPIC_API_KEY, config.ANTHROPIC_FAST_MODEL, config.ANTHROPIC_DEEP_MODEL),
        "openai": (config.OPENAI_API_KEY, config.OPENAI_FAST_MODEL, config.OPENAI_DEEP_MODEL),
        "gemini": (config.GEMINI_API_KEY, config.GEMINI_FAST_MODEL, config.GEMINI_DEEP_MODEL),
    }
    return {name: entry for name, entry in table.items() if entry[0]}


def build_catalog() -> list[ProviderSpec]:
    """Return every selectable spec, in ``PROVIDER_ORDER`` then fast before deep."""
    configured = _configured()
    order = [p for p in config.PROVIDER_ORDER if p in configured]
    order += [p for p in configured if p not in order]

    catalog: list[ProviderSpec] = []
    for name in order:
        _, fast_model, deep_model = configured[name]
        catalog.append(ProviderSpec(
            provider=name,
            model=fast_model,
            tier="fast",
            timeout=config.FAST_TIMEOUT_SECONDS,
            max_output_tokens=config.FAST_MAX_OUTPUT_TOKENS,
            temperature=config.PROVIDER_TEMPERATURE,
        ))
        catalog.append(ProviderSpec(
            provider=name,
            model=deep_model,
            tier="deep",
            timeout=config.DEEP_TIMEOUT_SECONDS,
            max_output_tokens=config.DEEP_MAX_OUTPUT_TOKENS,
            temperature=config.PROVIDER_TEMPERATURE,
        ))
    if not catalog:
        logger.warning("No analysis provider API keys configured – every job will fail")
    return catalog


def _create(name: str) -> Optional[TextProvider]:
    if name == "anthropic":
        return AnthropicProvider(api_key=config.ANTHROPIC_API_KEY)
    if name == "openai":
        return OpenAIProvider(base_url=config.OPENAI_BASE_URL, api_key=config.OPENAI_API_KEY)
    if name == "gemini":
        return GeminiProvider(base_url=config.GEMINI_BASE_URL, api_key=config.GEMINI_API_KEY)
    return None


def get_provider(name: str) -> Optional[TextProvider]:
    provider = _providers.get(name)
    if provider is None:
        provider = _create(name)
        if provider is not None:
            _providers[name] = provider
    return provider


def get_providers() -> dict[str, TextProvider]:
    """Adapters for every configured provider."""
    return {
        name: provider
        for name in _configured()
        if (provider := get_provider(name)) is not None
    }


async def close_providers() -> None:
    for provider in list(_providers.values()):
        await provider.close()
    _providers.clear()
