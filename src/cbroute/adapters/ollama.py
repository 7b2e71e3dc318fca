"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Ollama `/api/chat` adapter (newline-delimited JSON streaming).
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
from .framing import LineFramer


def _raise_upstream_error(row: dict[str, Any], provider_id: str) -> None:
    if row.get("error"):
        raise ProviderProtocolError(
            f"Provider reported error: {row['error']}", provider_id=provider_id
        )


def _usage_from(row: dict[str, Any]) -> Usage:
    return Usage(
        prompt_tokens=as_int(row.get("prompt_eval_count")) or 0,
        completion_tokens=as_int(row.get("eval_count")) or 0,
    )


class OllamaStreamDecoder(BaseStreamDecoder):
    """Decoder for one JSON object per line."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._framer = LineFramer()

    def feed(self, data: bytes) -> list[str]:
        return self._framer.feed(data)

    def flush(self) -> list[str]:
        return self._framer.flush()

    def parse_stream_event(self, raw_event: str) -> ParsedEvent:
        row = require_mapping(
            load_json(raw_event, provider_id=self.provider_id),
            what="stream line",
            provider_id=self.provider_id,
        )
        _raise_upstream_error(row, self.provider_id)
        message = row.get("message") if isinstance(row.get("message"), dict) else {}
        content = message.get("content")
        text = content if isinstance(content, str) else ""

        if row.get("done"):
            self.finished = True
            self._usage = _usage_from(row)
            return self._chunk(
                text or None,
                finish_reason=row.get("done_reason") or "stop",
                usage=self._usage,
            )
        if not text:
            return None
        return self._chunk(text)


class OllamaAdapter:
    """Adapter for local Ollama servers."""

    provider_type = "ollama"

    def build_request(
        self,
        req: RoutingRequest,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        api_key: str | None,
        default_max_tokens: int,
    ) -> UpstreamCall:
        _ = default_max_tokens
        headers = {"Content-Type": "application/json", **descriptor.headers}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        body: dict[str, Any] = {
            "model": model_id,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "stream": req.stream,
        }
        options = drop_none(
            {
                "temperature": req.temperature,
                "top_p": req.top_p,
                "num_predict": req.max_tokens,
                "stop": list(req.stop) if req.stop else None,
            }
        )
        if options:
            body["options"] = options
        return UpstreamCall(
            method="POST",
            url=f"{descriptor.base_url}/api/chat",
            headers=headers,
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
        _raise_upstream_error(row, provider_id)
        message = row.get("message")
        if not isinstance(message, dict):
            raise ProviderProtocolError("Response has no message", provider_id=provider_id)
        content = message.get("content")
        return CanonicalResponse(
            id=request_id,
            created=now_s(),
            model=model_id,
            provider=provider_id,
            choices=(
                ResponseChoice(
                    index=0,
                    message=Message(
                        role="assistant",
                        content=content if isinstance(content, str) else "",
                    ),
                    finish_reason=row.get("done_reason") or "stop",
                ),
            ),
            usage=_usage_from(row),
        )

    def stream_decoder(
        self,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        request_id: str,
    ) -> OllamaStreamDecoder:
        return OllamaStreamDecoder(
            descriptor=descriptor, model_id=model_id, request_id=request_id
        )

    def build_probe(
        self,
        descriptor: ProviderDescriptor,
        *,
        api_key: str | None,
    ) -> UpstreamCall:
        _ = api_key
        return UpstreamCall(
            method="GET",
            url=f"{descriptor.base_url}/api/tags",
            headers=dict(descriptor.headers),
        )
