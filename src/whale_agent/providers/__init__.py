"""Analysis provider adapters."""

from .anthropic_provider import AnthropicProvider
from .base import ModelParams, ProviderSpec, TextProvider, classify_status
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider
from .registry import build_catalog, close_providers, get_provider, get_providers

__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "ModelParams",
    "OpenAIProvider",
    "ProviderSpec",
    "TextProvider",
    "build_catalog",
    "classify_status",
    "close_providers",
    "get_provider",
    "get_providers",
]
