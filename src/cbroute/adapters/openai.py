"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

OpenAI Chat Completions adapter. Also serves `custom` OpenAI-compatible endpoints.
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
    StreamCompleted,
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

_DONE = "[DONE]"


def _usage_from(row: Any) -> Usage | None:
    if not isinstance(row, dict):
        return None
    return Usage(
        prompt_tokens=as_int(row.get("prompt_tokens")) or 0,
        completion_tokens=as_int(row.get("completion_tokens")) or 0,
    )


def _raise_upstream_error(row: dict[str, Any], provider_id: str) -> None:
    error = row.get("error")
    if error is None:
        return
    message = error.get("message") if isinstance(error, dict) else str(error)
    raise ProviderProtocolError(
        f"Provider reported error: {message}", provider_id=provider_id
    )


class OpenAIStreamDecoder(BaseStreamDecoder):
    """Near-identity decoder for `chat.completion.chunk` SSE frames."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._framer = SSEFramer()

    def feed(self, data: bytes) -> list[SSEEvent]:
        return self._framer.feed(data)

    def flush(self) -> list[SSEEvent]:
        return self._framer.flush()

    def parse_stream_event(self, raw_event: SSEEvent) -> ParsedEvent:
        data = raw_event.data.strip()
        if not data:
            return None
        if data == _DONE:
            self.finished = True
            return StreamCompleted(usage=self._usage)

        row = require_mapping(
            load_json(data, provider_id=self.provider_id),
            what="stream chunk",
            provider_id=self.provider_id,
        )
        _raise_upstream_error(row, self.provider_id)

        usage = _usage_from(row.get("usage"))
        if usage is not None:
            self._usage = usage

        choices = row.get("choices") or []
        if not choices:
            return None
        choice = require_mapping(choices[0], what="choice", provider_id=self.provider_id)
        delta = choice.get("delta") if isinstance(choice.get("delta"), dict) else {}
        content = delta.get("content")
        finish_reason = choice.get("finish_reason")
        role = delta.get("role")
        if content is None and finish_reason is None and role is None:
            return None
        return self._chunk(
            content if isinstance(content, str) else None,
            index=as_int(choice.get("index")) or 0,
            role=role if role in ("assistant", "user", "system", "tool") else None,
            finish_reason=finish_reason,
            usage=usage,
        )


class OpenAIAdapter:
    """Adapter for OpenAI-shaped `/chat/completions` endpoints."""

    def __init__(self, provider_type: str = "openai") -> None:
        self.provider_type = provider_type

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
            **req.extra,
            "model": model_id,
            "messages": [message.to_openai() for message in req.messages],
            "stream": req.stream,
        }
        body.update(
            drop_none(
                {
                    "max_tokens": req.max_tokens,
                    "temperature": req.temperature,
                    "top_p": req.top_p,
                    "stop": list(req.stop) if req.stop else None,
                }
            )
        )
        if req.stream and self.provider_type == "openai":
            body["stream_options"] = {"include_usage": True}
        return UpstreamCall(
            method="POST",
            url=f"{descriptor.base_url}/chat/completions",
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
        raw_choices = row.get("choices")
        if not isinstance(raw_choices, list) or not raw_choices:
            raise ProviderProtocolError("Response has no choices", provider_id=provider_id)

        choices: list[ResponseChoice] = []
        for position, raw in enumerate(raw_choices):
            choice = require_mapping(raw, what="choice", provider_id=provider_id)
            message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
            content = message.get("content")
            choices.append(
                ResponseChoice(
                    index=as_int(choice.get("index")) or position,
                    message=Message(
                        role="assistant",
                        content=content if isinstance(content, str) else "",
                    ),
                    finish_reason=choice.get("finish_reason"),
                )
            )
        return CanonicalResponse(
            id=request_id,
            created=as_int(row.get("created")) or now_s(),
            model=model_id,
            provider=provider_id,
            choices=tuple(choices),
            usage=_usage_from(row.get("usage")) or Usage(),
        )

    def stream_decoder(
        self,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        request_id: str,
    ) -> OpenAIStreamDecoder:
        return OpenAIStreamDecoder(
            descriptor=descriptor, model_id=model_id, request_id=request_id
        )

    def build_probe(
        self,
        descriptor: ProviderDescriptor,
        *,
        api_key: str | None,
    ) -> UpstreamCall:
        headers = dict(descriptor.headers)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return UpstreamCall(method="GET", url=f"{descriptor.base_url}/models", headers=headers)
