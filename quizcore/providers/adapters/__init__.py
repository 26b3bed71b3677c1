"""
Vendor family adapters.

ADAPTER_TABLE maps a protocol family to the adapter class that speaks it.
"""

from quizcore.providers.adapters.anthropic import AnthropicAdapter
from quizcore.providers.adapters.base import ProviderAdapter
from quizcore.providers.adapters.gemini import GeminiAdapter
from quizcore.providers.adapters.openai_compat import (
    MistralAdapter,
    OpenAIAdapter,
    OpenAICompatibleAdapter,
)
from quizcore.providers.catalog import ProviderFamily

ADAPTER_TABLE: dict[ProviderFamily, type[ProviderAdapter]] = {
    ProviderFamily.OPENAI: OpenAIAdapter,
    ProviderFamily.ANTHROPIC: AnthropicAdapter,
    ProviderFamily.GEMINI: GeminiAdapter,
    ProviderFamily.MISTRAL: MistralAdapter,
    ProviderFamily.OPENAI_COMPAT: OpenAICompatibleAdapter,
}

__all__ = [
    "ADAPTER_TABLE",
    "AnthropicAdapter",
    "GeminiAdapter",
    "MistralAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
]
