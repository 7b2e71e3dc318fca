"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Inbound request models for the OpenAI-compatible surface.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..types import (
    CallerIdentity,
    Message,
    RoutingConstraints,
    RoutingRequest,
    StrategyName,
)

# Body fields consumed by the router itself; everything else is passed through.
_ROUTER_FIELDS = frozenset(
    {
        "model",
        "messages",
        "stream",
        "max_tokens",
        "temperature",
        "top_p",
        "stop",
        "user",
        "circuit_breaker",
    }
)


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant", "tool"]
    content: str | list[dict[str, Any]] | None = None
    name: str | None = None

    def text(self) -> str:
        """Flatten string or content-part payloads into plain text."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        parts = [
            part.get("text", "")
            for part in self.content
            if isinstance(part, dict) and part.get("type", "text") == "text"
        ]
        return "".join(p for p in parts if isinstance(p, str))

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.text(), name=self.name)


class CircuitBreakerOptions(BaseModel):
    """Routing knobs accepted in the `circuit_breaker` request object."""

    model_config = ConfigDict(extra="ignore")

    routing_strategy: StrategyName | None = None
    max_cost_per_1k_tokens: float | None = Field(default=None, ge=0)
    max_latency_ms: float | None = Field(default=None, gt=0)
    task_type: str | None = None
    fallback_models: list[str] = Field(default_factory=list)
    preferred_providers: list[str] = Field(default_factory=list)

    def to_constraints(self, *, require_function_calling: bool = False) -> RoutingConstraints:
        return RoutingConstraints(
            strategy=self.routing_strategy,
            max_cost_per_1k=self.max_cost_per_1k_tokens,
            max_latency_ms=self.max_latency_ms,
            task_type=self.task_type,
            fallback_models=tuple(self.fallback_models),
            preferred_providers=tuple(self.preferred_providers),
            require_function_calling=require_function_calling,
        )


class ChatCompletionRequest(BaseModel):
    """OpenAI Chat Completions body plus the optional `circuit_breaker` object."""

    model_config = ConfigDict(extra="allow")

    model: str = Field(min_length=1)
    messages: list[ChatMessage] = Field(min_length=1)
    stream: bool = False
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0, le=2)
    top_p: float | None = Field(default=None, ge=0, le=1)
    stop: str | list[str] | None = None
    user: str | None = None
    circuit_breaker: CircuitBreakerOptions | None = None

    def passthrough(self) -> dict[str, Any]:
        extra = dict(self.model_extra or {})
        return {k: v for k, v in extra.items() if k not in _ROUTER_FIELDS}

    def to_routing_request(
        self,
        *,
        caller: CallerIdentity,
        api_keys: Mapping[str, str] | None = None,
    ) -> RoutingRequest:
        extra = self.passthrough()
        wants_tools = bool(extra.get("tools") or extra.get("functions"))
        options = self.circuit_breaker or CircuitBreakerOptions()
        stop: tuple[str, ...] | None = None
        if isinstance(self.stop, str):
            stop = (self.stop,)
        elif self.stop:
            stop = tuple(self.stop)
        return RoutingRequest(
            model=self.model.strip(),
            messages=tuple(m.to_message() for m in self.messages),
            constraints=options.to_constraints(require_function_calling=wants_tools),
            caller=caller,
            stream=self.stream,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            stop=stop,
            api_keys=dict(api_keys or {}),
            extra=extra,
        )
