"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Closed table of protocol adapters keyed by provider type.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from ..errors import ConfigurationError
from .anthropic import AnthropicAdapter
from .base import ProtocolAdapter
from .google import GoogleAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter

ADAPTERS: Mapping[str, ProtocolAdapter] = MappingProxyType(
    {
        "openai": OpenAIAdapter(),
        "anthropic": AnthropicAdapter(),
        "google": GoogleAdapter(),
        "ollama": OllamaAdapter(),
        "custom": OpenAIAdapter(provider_type="custom"),
    }
)


def adapter_for(provider_type: str) -> ProtocolAdapter:
    """Resolve the adapter for one provider type."""
    adapter = ADAPTERS.get(provider_type)
    if adapter is None:
        raise ConfigurationError(f"No protocol adapter for provider type '{provider_type}'")
    return adapter
