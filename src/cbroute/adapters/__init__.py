"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: adapters/__init__.py.
"""

from .anthropic import AnthropicAdapter, AnthropicStreamDecoder
from .base import ProtocolAdapter, StreamDecoder
from .framing import JSONValueFramer, LineFramer, SSEEvent, SSEFramer
from .google import GoogleAdapter, GoogleStreamDecoder
from .ollama import OllamaAdapter, OllamaStreamDecoder
from .openai import OpenAIAdapter, OpenAIStreamDecoder
from .registry import ADAPTERS, adapter_for

__all__ = [
    "ADAPTERS",
    "adapter_for",
    "ProtocolAdapter",
    "StreamDecoder",
    "SSEEvent",
    "SSEFramer",
    "LineFramer",
    "JSONValueFramer",
    "OpenAIAdapter",
    "OpenAIStreamDecoder",
    "AnthropicAdapter",
    "AnthropicStreamDecoder",
    "GoogleAdapter",
    "GoogleStreamDecoder",
    "OllamaAdapter",
    "OllamaStreamDecoder",
]
