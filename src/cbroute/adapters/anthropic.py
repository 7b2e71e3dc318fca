"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Anthropic Messages API adapter.

The stream is event-typed. Only `content_block_delta` frames carrying a
`text_delta` produce content; `message_stop` produces the terminal chunk.
"""

from __future__ import annotations

from typing import Any

from ..errors import ProviderProtocolError
from ..types import (
    CanonicalResponse,
    Message,
    ProviderDescriptor,
    ResponseChoice,
    RoutingRequest,
    UpstreamCall,
    Usage,
    now_s,
)
from .base import (
    BaseStreamDecoder,
    ParsedEvent,
    as_int,
    drop_none,
    load_json,
    require_mapping,
)
from .framing import SSEEvent, SSEFramer

ANTHROPIC_VERSION = "2023-06-01"

_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def _api_root(base_url: str) -> str:
    return base_url if base_url.endswith("/v1") else f"{base_url}/v1"


def _headers(descriptor: ProviderDescriptor, api_key: str | None) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "anthropic-version": ANTHROPIC_VERSION,
        **descriptor.headers,
    }
    if api_key:
        headers["x-api-key"] = api_key
    return headers


def map_stop_reason(reason: Any) -> str | None:
    if reason is None:
        return None
    return _STOP_REASONS.get(str(reason), str(reason))


class AnthropicStreamDecoder(BaseStreamDecoder):
    """Decoder for Messages API SSE events."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._framer = SSEFramer()
        self._stop_reason: str | None = None

    def feed(self, data: bytes) -> list[SSEEvent]:
        return self._framer.feed(data)

    def flush(self) -> list[SSEEvent]:
        events = self._framer.flush()
        if not self.finished and not any(e.event == "message_stop" for e in events):
            raise ProviderProtocolError(
                "Stream ended before message_stop", provider_id=self.provider_id
            )
        return events

    def parse_stream_event(self, raw_event: SSEEvent) -> ParsedEvent:
        if not raw_event.data.strip():
            return None
        row = require_mapping(
            load_json(raw_event.data, provider_id=self.provider_id),
            what="stream event",
            provider_id=self.provider_id,
        )
        event_type = raw_event.event or row.get("type")

        if event_type == "ping":
            return None
        if event_type == "error":
            error = row.get("error") if isinstance(row.get("error"), dict) else {}
            raise ProviderProtocolError(
                f"Provider reported error: {error.get('message', 'unknown error')}",
                provider_id=self.provider_id,
            )
        if event_type == "message_start":
            message = row.get("message") if isinstance(row.get("message"), dict) else {}
            usage = message.get("usage") if isinstance(message.get("usage"), dict) else {}
            self._merge_usage(
                prompt_tokens=as_int(usage.get("input_tokens")),
                completion_tokens=as_int(usage.get("output_tokens")),
            )
            return None
        if event_type == "content_block_delta":
            delta = row.get("delta") if isinstance(row.get("delta"), dict) else {}
            if delta.get("type") != "text_delta":
                return None
            text = delta.get("text")
            return self._chunk(text if isinstance(text, str) else "")
        if event_type == "message_delta":
            delta = row.get("delta") if isinstance(row.get("delta"), dict) else {}
            self._stop_reason = map_stop_reason(delta.get("stop_reason"))
            usage = row.get("usage") if isinstance(row.get("usage"), dict) else {}
            self._merge_usage(completion_tokens=as_int(usage.get("output_tokens")))
            return None
        if event_type == "message_stop":
            self.finished = True
            return self._chunk(
                None,
                finish_reason=self._stop_reason or "stop",
                usage=self._usage,
            )
        return None


class AnthropicAdapter:
    """Adapter for Anthropic-shaped `/v1/messages` endpoints."""

    provider_type = "anthropic"

    def build_request(
        self,
        req: RoutingRequest,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        api_key: str | None,
        default_max_tokens: int,
    ) -> UpstreamCall:
        system_parts = [m.content for m in req.messages if m.role == "system"]
        messages = [
            {
                "role": "assistant" if m.role == "assistant" else "user",
                "content": m.content,
            }
            for m in req.messages
            if m.role != "system"
        ]
        body: dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "max_tokens": req.max_tokens or default_max_tokens,
            "stream": req.stream,
        }
        body.update(
            drop_none(
                {
                    "system": "\n\n".join(system_parts) if system_parts else None,
                    "temperature": req.temperature,
                    "top_p": req.top_p,
                    "stop_sequences": list(req.stop) if req.stop else None,
                }
            )
        )
        return UpstreamCall(
            method="POST",
            url=f"{_api_root(descriptor.base_url)}/messages",
            headers=_headers(descriptor, api_key),
            json_body=body,
        )

    def parse_response(
        self,
        body: Any,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        request_id: str,
    ) -> CanonicalResponse:
        provider_id = descriptor.provider_id
        row = require_mapping(body, what="response body", provider_id=provider_id)
        if row.get("type") == "error":
            error = row.get("error") if isinstance(row.get("error"), dict) else {}
            raise ProviderProtocolError(
                f"Provider reported error: {error.get('message', 'unknown error')}",
                provider_id=provider_id,
            )
        blocks = row.get("content")
        if not isinstance(blocks, list):
            raise ProviderProtocolError("Response has no content blocks", provider_id=provider_id)

        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = row.get("usage") if isinstance(row.get("usage"), dict) else {}
        return CanonicalResponse(
            id=request_id,
            created=now_s(),
            model=model_id,
            provider=provider_id,
            choices=(
                ResponseChoice(
                    index=0,
                    message=Message(role="assistant", content=text),
                    finish_reason=map_stop_reason(row.get("stop_reason")),
                ),
            ),
            usage=Usage(
                prompt_tokens=as_int(usage.get("input_tokens")) or 0,
                completion_tokens=as_int(usage.get("output_tokens")) or 0,
            ),
        )

    def stream_decoder(
        self,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        request_id: str,
    ) -> AnthropicStreamDecoder:
        return AnthropicStreamDecoder(
            descriptor=descriptor, model_id=model_id, request_id=request_id
        )

    def build_probe(
        self,
        descriptor: ProviderDescriptor,
        *,
        api_key: str | None,
    ) -> UpstreamCall:
        return UpstreamCall(
            method="GET",
            url=f"{_api_root(descriptor.base_url)}/models",
            headers=_headers(descriptor, api_key),
        )
