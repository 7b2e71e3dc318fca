"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Google Generative Language (Gemini) adapter.

`streamGenerateContent` answers with a JSON array of response objects rather
than SSE `data:` lines, so the decoder buffers bytes until one complete
top-level object is available.
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
from .framing import JSONValueFramer

_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}


def _headers(descriptor: ProviderDescriptor, api_key: str | None) -> dict[str, str]:
    headers = {"Content-Type": "application/json", **descriptor.headers}
    if api_key:
        headers["x-goog-api-key"] = api_key
    return headers


def map_finish_reason(reason: Any) -> str | None:
    if reason is None:
        return None
    return _FINISH_REASONS.get(str(reason), str(reason).lower())


def _candidate_text(candidate: dict[str, Any]) -> str:
    content = candidate.get("content") if isinstance(candidate.get("content"), dict) else {}
    parts = content.get("parts") if isinstance(content.get("parts"), list) else []
    return "".join(
        part.get("text", "") for part in parts if isinstance(part, dict)
    )


def _usage_from(row: dict[str, Any]) -> Usage | None:
    meta = row.get("usageMetadata")
    if not isinstance(meta, dict):
        return None
    return Usage(
        prompt_tokens=as_int(meta.get("promptTokenCount")) or 0,
        completion_tokens=as_int(meta.get("candidatesTokenCount")) or 0,
    )


def _raise_upstream_error(row: dict[str, Any], provider_id: str) -> None:
    error = row.get("error")
    if isinstance(error, dict):
        raise ProviderProtocolError(
            f"Provider reported error: {error.get('message', 'unknown error')}",
            provider_id=provider_id,
        )


class GoogleStreamDecoder(BaseStreamDecoder):
    """Decoder for array-framed `GenerateContentResponse` objects."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._framer = JSONValueFramer()

    def feed(self, data: bytes) -> list[str]:
        return self._framer.feed(data)

    def flush(self) -> list[str]:
        try:
            return self._framer.flush()
        except ProviderProtocolError as exc:
            exc.provider_id = self.provider_id
            raise

    def parse_stream_event(self, raw_event: str) -> ParsedEvent:
        row = require_mapping(
            load_json(raw_event, provider_id=self.provider_id),
            what="stream object",
            provider_id=self.provider_id,
        )
        _raise_upstream_error(row, self.provider_id)

        usage = _usage_from(row)
        if usage is not None:
            self._usage = usage

        candidates = row.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return None
        candidate = require_mapping(candidates[0], what="candidate", provider_id=self.provider_id)
        text = _candidate_text(candidate)
        finish_reason = map_finish_reason(candidate.get("finishReason"))
        if not text and finish_reason is None:
            return None
        if finish_reason is not None:
            self.finished = True
        return self._chunk(
            text or None,
            index=as_int(candidate.get("index")) or 0,
            finish_reason=finish_reason,
            usage=usage if finish_reason is not None else None,
        )


class GoogleAdapter:
    """Adapter for Gemini `generateContent` endpoints."""

    provider_type = "google"

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
        system_parts = [m.content for m in req.messages if m.role == "system"]
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in req.messages
            if m.role != "system"
        ]
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": drop_none(
                {
                    "temperature": req.temperature,
                    "topP": req.top_p,
                    "maxOutputTokens": req.max_tokens,
                    "stopSequences": list(req.stop) if req.stop else None,
                    "candidateCount": 1,
                }
            ),
        }
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}

        method = "streamGenerateContent" if req.stream else "generateContent"
        return UpstreamCall(
            method="POST",
            url=f"{descriptor.base_url}/models/{model_id}:{method}",
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
        _raise_upstream_error(row, provider_id)
        candidates = row.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise ProviderProtocolError("Response has no candidates", provider_id=provider_id)

        choices = []
        for position, raw in enumerate(candidates):
            candidate = require_mapping(raw, what="candidate", provider_id=provider_id)
            choices.append(
                ResponseChoice(
                    index=as_int(candidate.get("index")) or position,
                    message=Message(role="assistant", content=_candidate_text(candidate)),
                    finish_reason=map_finish_reason(candidate.get("finishReason")),
                )
            )
        return CanonicalResponse(
            id=request_id,
            created=now_s(),
            model=model_id,
            provider=provider_id,
            choices=tuple(choices),
            usage=_usage_from(row) or Usage(),
        )

    def stream_decoder(
        self,
        *,
        descriptor: ProviderDescriptor,
        model_id: str,
        request_id: str,
    ) -> GoogleStreamDecoder:
        return GoogleStreamDecoder(
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
            url=f"{descriptor.base_url}/models",
            headers=_headers(descriptor, api_key),
        )
