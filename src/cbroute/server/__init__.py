"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: server/__init__.py.
"""

from .app import create_app, default_caller_resolver, run, sse_frame
from .schemas import ChatCompletionRequest, ChatMessage, CircuitBreakerOptions

__all__ = [
    "create_app",
    "default_caller_resolver",
    "run",
    "sse_frame",
    "ChatCompletionRequest",
    "ChatMessage",
    "CircuitBreakerOptions",
]
