"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

This module defines the provider-agnostic value types shared by the router.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, TypeAlias


JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

Role = Literal["system", "user", "assistant", "tool"]
ProviderType = Literal["openai", "anthropic", "google", "ollama", "custom"]
StrategyName = Literal[
    "cost_optimized",
    "performance_first",
    "reliability_first",
    "balanced",
    "task_specific",
]

PROVIDER_TYPES: tuple[str, ...] = ("openai", "anthropic", "google", "ollama", "custom")
STRATEGIES: tuple[str, ...] = (
    "cost_optimized",
    "performance_first",
    "reliability_first",
    "balanced",
    "task_specific",
)


def new_request_id(prefix: str = "chatcmpl") -> str:
    """Return a fresh OpenAI-style object id."""
    return f"{prefix}-{uuid.uuid4().hex[:24]}"


def now_s() -> int:
    """Return current Unix epoch time in whole seconds."""
    return int(time.time())


@dataclass(frozen=True, slots=True)
class Message:
    """Normalized chat message payload."""

    role: Role
    content: str
    name: str | None = None

    def to_openai(self) -> JSONObject:
        row: JSONObject = {"role": self.role, "content": self.content}
        if self.name:
            row["name"] = self.name
        return row


@dataclass(frozen=True, slots=True)
class Usage:
    """Token usage counters reported by an upstream provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_openai(self) -> JSONObject:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True, slots=True)
class ModelRate:
    """Rate card row for one model, priced in USD per 1k tokens."""

    input_per_1k: float = 0.0
    output_per_1k: float = 0.0

    @property
    def blended_per_1k(self) -> float:
        """Blended input/output price used to compare model classes."""
        return (self.input_per_1k + self.output_per_1k) / 2.0


@dataclass(frozen=True, slots=True)
class ProviderDescriptor:
    """
    Static description of one upstream provider endpoint.

    Descriptors are immutable after load. The registry swaps whole tables on
    reload and never mutates a descriptor in place.
    """

    provider_id: str
    provider_type: ProviderType
    base_url: str
    rates: Mapping[str, ModelRate] = field(default_factory=dict)
    supports_streaming: bool = True
    supports_function_calling: bool = False
    task_tags: frozenset[str] = frozenset()
    nominal_latency_ms: float | None = None
    api_key: str | None = field(default=None, repr=False)
    api_key_env: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", MappingProxyType(dict(self.rates)))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        object.__setattr__(self, "task_tags", frozenset(self.task_tags))

    @property
    def models(self) -> tuple[str, ...]:
        return tuple(self.rates.keys())

    def supports_model(self, model_id: str) -> bool:
        return model_id in self.rates

    def rate_for(self, model_id: str) -> ModelRate | None:
        return self.rates.get(model_id)


@dataclass(frozen=True, slots=True)
class RoutingConstraints:
    """Caller-selected routing knobs, parsed from the `circuit_breaker` object."""

    strategy: StrategyName | None = None
    max_cost_per_1k: float | None = None
    max_latency_ms: float | None = None
    task_type: str | None = None
    fallback_models: tuple[str, ...] = ()
    preferred_providers: tuple[str, ...] = ()
    require_streaming: bool = False
    require_function_calling: bool = False


@dataclass(frozen=True, slots=True)
class CallerIdentity:
    """Identity resolved by the auth layer before the request is routed."""

    user_id: str = "anonymous"
    project_id: str | None = None

    @property
    def account(self) -> str:
        """Budget account key: project scope wins over user scope."""
        if self.project_id:
            return f"project:{self.project_id}"
        return f"user:{self.user_id}"


@dataclass(frozen=True, slots=True)
class RoutingRequest:
    """Canonical, immutable per-call request value."""

    model: str
    messages: tuple[Message, ...] = ()
    constraints: RoutingConstraints = field(default_factory=RoutingConstraints)
    caller: CallerIdentity = field(default_factory=CallerIdentity)
    stream: bool = False
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop: tuple[str, ...] | None = None
    request_id: str = field(default_factory=new_request_id)
    api_keys: Mapping[str, str] = field(default_factory=dict, repr=False)
    extra: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Candidate:
    """One concrete (provider, model) pair eligible for a request."""

    provider_id: str
    model_id: str

    def __str__(self) -> str:
        return f"{self.provider_id}/{self.model_id}"


@dataclass(frozen=True, slots=True)
class CandidateList:
    """Ordered candidates derived once per request; never mutated afterwards."""

    candidates: tuple[Candidate, ...] = ()
    strategy: str | None = None
    virtual: bool = False

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    def __bool__(self) -> bool:
        return bool(self.candidates)

    def __getitem__(self, index: int) -> Candidate:
        return self.candidates[index]

    @property
    def primary(self) -> Candidate | None:
        return self.candidates[0] if self.candidates else None


@dataclass(frozen=True, slots=True)
class ChunkChoice:
    """One choice delta inside a streamed chunk."""

    index: int = 0
    content: str | None = None
    role: Role | None = None
    finish_reason: str | None = None


@dataclass(frozen=True, slots=True)
class CanonicalChunk:
    """Provider-independent representation of one streamed increment."""

    id: str
    created: int
    model: str
    provider: str
    choices: tuple[ChunkChoice, ...] = ()
    usage: Usage | None = None

    @property
    def text(self) -> str:
        return "".join(choice.content or "" for choice in self.choices)

    @property
    def finish_reason(self) -> str | None:
        for choice in self.choices:
            if choice.finish_reason is not None:
                return choice.finish_reason
        return None

    def to_openai(self) -> JSONObject:
        choices: list[JSONValue] = []
        for choice in self.choices:
            delta: JSONObject = {}
            if choice.role is not None:
                delta["role"] = choice.role
            if choice.content is not None:
                delta["content"] = choice.content
            choices.append(
                {
                    "index": choice.index,
                    "delta": delta,
                    "finish_reason": choice.finish_reason,
                }
            )
        row: JSONObject = {
            "id": self.id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "provider": self.provider,
            "choices": choices,
        }
        if self.usage is not None:
            row["usage"] = self.usage.to_openai()
        return row


@dataclass(frozen=True, slots=True)
class ResponseChoice:
    """One complete choice of a non-streaming response."""

    index: int
    message: Message
    finish_reason: str | None = None


@dataclass(frozen=True, slots=True)
class CanonicalResponse:
    """Provider-independent non-streaming chat response."""

    id: str
    created: int
    model: str
    provider: str
    choices: tuple[ResponseChoice, ...] = ()
    usage: Usage = field(default_factory=Usage)

    @property
    def text(self) -> str:
        return self.choices[0].message.content if self.choices else ""

    def to_openai(self) -> JSONObject:
        return {
            "id": self.id,
            "object": "chat.completion",
            "created": self.created,
            "model": self.model,
            "provider": self.provider,
            "choices": [
                {
                    "index": choice.index,
                    "message": choice.message.to_openai(),
                    "finish_reason": choice.finish_reason,
                }
                for choice in self.choices
            ],
            "usage": self.usage.to_openai(),
        }


@dataclass(frozen=True, slots=True)
class StreamCompleted:
    """Upstream signalled end-of-stream without carrying content."""

    usage: Usage | None = None


@dataclass(frozen=True, slots=True)
class StreamErrorEvent:
    """Terminal stream event emitted after a post-stream failure."""

    message: str
    provider: str | None = None
    code: str = "partial_stream_failure"
    type: Literal["error"] = "error"

    def to_openai(self) -> JSONObject:
        return {
            "error": {
                "message": self.message,
                "type": "upstream_error",
                "code": self.code,
                "param": None,
                "provider": self.provider,
            }
        }


StreamEvent: TypeAlias = CanonicalChunk | StreamErrorEvent


@dataclass(frozen=True, slots=True)
class HealthRecord:
    """Read-only health snapshot for one provider."""

    provider_id: str
    is_healthy: bool = True
    error_rate: float = 0.0
    average_latency_ms: float = 0.0
    last_check_timestamp: float = 0.0
    consecutive_failures: int = 0
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class UpstreamCall:
    """Native HTTP call built by a protocol adapter."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    json_body: Any = None
