"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Adapter contracts shared by every provider protocol.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from ..errors import ProviderProtocolError
from ..types import (
    CanonicalChunk,
    CanonicalResponse,
    ChunkChoice,
    ProviderDescriptor,
    Role,
    RoutingRequest,
    StreamCompleted,
    UpstreamCall,
    Usage,
    now_s,
)

ParsedEvent = CanonicalChunk | StreamCompleted | None


class StreamDecoder(Protocol):
    """Per-stream decoder: frames raw bytes and parses one native event at a time."""

    # Set once the native terminal event was parsed; nothing after it is read.
    finished: bool

    def feed(self, data: bytes) -> list[Any]: ...

    def flush(self) -> list[Any]: ...

    def parse_stream_event(self, raw_event: Any) -> ParsedEvent: ...

    @property
    def usage(self) -> Usage | None: ...


class ProtocolAdapter(Protocol):
    """Translate canonical requests to one native wire protocol and back."""

    provider_type: str

    def build_request(
        self,
        req: RoutingRequest,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        api_key: str | None,
        default_max_tokens: int,
    ) -> UpstreamCall: ...

    def parse_response(
        self,
        body: Any,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        request_id: str,
    ) -> CanonicalResponse: ...

    def stream_decoder(
        self,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        request_id: str,
    ) -> StreamDecoder: ...

    def build_probe(
        self,
        descriptor: ProviderDescriptor,
        *,
        api_key: str | None,
    ) -> UpstreamCall: ...


class BaseStreamDecoder:
    """Holds per-stream identity and the usage observed so far."""

    def __init__(self, *, descriptor: ProviderDescriptor, model_id: str, request_id: str) -> None:
        self.provider_id = descriptor.provider_id
        self.model_id = model_id
        self.request_id = request_id
        self.created = now_s()
        self._usage: Usage | None = None
        self.finished = False

    @property
    def usage(self) -> Usage | None:
        return self._usage

    def _merge_usage(
        self,
        *,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
    ) -> None:
        current = self._usage or Usage()
        self._usage = Usage(
            prompt_tokens=prompt_tokens if prompt_tokens is not None else current.prompt_tokens,
            completion_tokens=completion_tokens
            if completion_tokens is not None
            else current.completion_tokens,
        )

    def _chunk(
        self,
        content: str | None,
        *,
        index: int = 0,
        role: Role | None = None,
        finish_reason: str | None = None,
        usage: Usage | None = None,
    ) -> CanonicalChunk:
        return CanonicalChunk(
            id=self.request_id,
            created=self.created,
            model=self.model_id,
            provider=self.provider_id,
            choices=(
                ChunkChoice(
                    index=index,
                    content=content,
                    role=role,
                    finish_reason=finish_reason,
                ),
            ),
            usage=usage,
        )


def load_json(raw: str | bytes, *, provider_id: str) -> Any:
    """Decode one JSON payload, mapping failures to `ProviderProtocolError`."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProviderProtocolError(
            f"Malformed JSON from provider: {exc}", provider_id=provider_id
        ) from exc


def require_mapping(value: Any, *, what: str, provider_id: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ProviderProtocolError(
            f"Expected {what} to be an object", provider_id=provider_id
        )
    return value


def as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def drop_none(row: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in row.items() if value is not None}
