from __future__ import annotations

import json

import pytest

from cbroute.adapters import (
    AnthropicAdapter,
    GoogleAdapter,
    OllamaAdapter,
    OpenAIAdapter,
    SSEEvent,
    adapter_for,
)
from cbroute.errors import ConfigurationError, ProviderProtocolError
from cbroute.types import (
    CanonicalChunk,
    Message,
    ModelRate,
    ProviderDescriptor,
    RoutingRequest,
    StreamCompleted,
)


def _descriptor(provider_id: str, provider_type: str, base_url: str, model: str) -> ProviderDescriptor:
    return ProviderDescriptor(
        provider_id=provider_id,
        provider_type=provider_type,  # type: ignore[arg-type]
        base_url=base_url,
        rates={model: ModelRate(input_per_1k=0.001, output_per_1k=0.002)},
    )


def _request(*, stream: bool = False, **kwargs) -> RoutingRequest:
    return RoutingRequest(
        model="m",
        messages=(
            Message(role="system", content="be brief"),
            Message(role="user", content="hello"),
        ),
        stream=stream,
        request_id="req-1",
        **kwargs,
    )


def _sse(*rows: tuple[str | None, object]) -> bytes:
    out = []
    for event, data in rows:
        payload = data if isinstance(data, str) else json.dumps(data)
        prefix = f"event: {event}\n" if event else ""
        out.append(f"{prefix}data: {payload}\n\n")
    return "".join(out).encode("utf-8")


def _decode(decoder, body: bytes, *, piece: int = 7) -> list:
    events = []
    for start in range(0, len(body), piece):
        for raw in decoder.feed(body[start : start + piece]):
            event = decoder.parse_stream_event(raw)
            if event is not None:
                events.append(event)
    for raw in decoder.flush():
        event = decoder.parse_stream_event(raw)
        if event is not None:
            events.append(event)
    return events


def _text(events: list) -> str:
    return "".join(e.text for e in events if isinstance(e, CanonicalChunk))


def test_anthropic_ping_delta_stop_yields_content_then_terminal_chunk():
    descriptor = _descriptor("anthropic", "anthropic", "https://api.anthropic.com", "claude-3-haiku")
    decoder = AnthropicAdapter().stream_decoder(
        descriptor=descriptor, model_id="claude-3-haiku", request_id="req-1"
    )
    body = _sse(
        ("ping", {"type": "ping"}),
        (
            "content_block_delta",
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
        ),
        ("message_stop", {"type": "message_stop"}),
    )

    events = _decode(decoder, body)

    assert len(events) == 2
    assert events[0].text == "Hi"
    assert events[0].finish_reason is None
    assert events[1].choices[0].content is None
    assert events[1].finish_reason == "stop"
    assert events[1].provider == "anthropic"
    assert events[1].model == "claude-3-haiku"


def test_anthropic_stream_matches_unary_text_and_usage():
    descriptor = _descriptor("anthropic", "anthropic", "https://api.anthropic.com", "claude-3-haiku")
    adapter = AnthropicAdapter()
    decoder = adapter.stream_decoder(
        descriptor=descriptor, model_id="claude-3-haiku", request_id="req-1"
    )
    body = _sse(
        ("message_start", {"type": "message_start", "message": {"usage": {"input_tokens": 12, "output_tokens": 1}}}),
        ("content_block_start", {"type": "content_block_start", "index": 0}),
        ("content_block_delta", {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hello, "}}),
        ("content_block_delta", {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "world"}}),
        ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "max_tokens"}, "usage": {"output_tokens": 4}}),
        ("message_stop", {"type": "message_stop"}),
    )

    events = _decode(decoder, body)
    response = adapter.parse_response(
        {
            "type": "message",
            "content": [{"type": "text", "text": "Hello, "}, {"type": "text", "text": "world"}],
            "stop_reason": "max_tokens",
            "usage": {"input_tokens": 12, "output_tokens": 4},
        },
        descriptor=descriptor,
        model_id="claude-3-haiku",
        request_id="req-1",
    )

    assert _text(events) == response.text == "Hello, world"
    assert events[-1].finish_reason == response.choices[0].finish_reason == "length"
    assert decoder.usage == response.usage
    assert response.usage.total_tokens == 16


def test_anthropic_stream_without_message_stop_is_a_protocol_error():
    descriptor = _descriptor("anthropic", "anthropic", "https://api.anthropic.com", "claude-3-haiku")
    decoder = AnthropicAdapter().stream_decoder(
        descriptor=descriptor, model_id="claude-3-haiku", request_id="req-1"
    )
    decoder.feed(
        _sse(("content_block_delta", {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "x"}}))
    )

    with pytest.raises(ProviderProtocolError):
        decoder.flush()


def test_anthropic_build_request_moves_system_prompt_and_defaults_max_tokens():
    descriptor = _descriptor("anthropic", "anthropic", "https://api.anthropic.com", "claude-3-haiku")

    call = AnthropicAdapter().build_request(
        _request(stream=True),
        descriptor=descriptor,
        model_id="claude-3-haiku",
        api_key="sk-ant",
        default_max_tokens=256,
    )

    assert call.url == "https://api.anthropic.com/v1/messages"
    assert call.headers["x-api-key"] == "sk-ant"
    assert call.headers["anthropic-version"]
    assert call.json_body["system"] == "be brief"
    assert call.json_body["messages"] == [{"role": "user", "content": "hello"}]
    assert call.json_body["max_tokens"] == 256
    assert call.json_body["stream"] is True


def test_openai_stream_matches_unary_text_and_done_completes():
    descriptor = _descriptor("openai", "openai", "https://api.openai.com/v1", "gpt-4o-mini")
    adapter = OpenAIAdapter()
    decoder = adapter.stream_decoder(descriptor=descriptor, model_id="gpt-4o-mini", request_id="req-1")
    body = _sse(
        (None, {"choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}}]}),
        (None, {"choices": [{"index": 0, "delta": {"content": "Hel"}}]}),
        (None, {"choices": [{"index": 0, "delta": {"content": "lo"}, "finish_reason": "stop"}]}),
        (None, {"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 2}}),
        (None, "[DONE]"),
    )

    events = _decode(decoder, body)
    response = adapter.parse_response(
        {
            "created": 1700000000,
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hello"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 9, "completion_tokens": 2},
        },
        descriptor=descriptor,
        model_id="gpt-4o-mini",
        request_id="req-1",
    )

    assert isinstance(events[-1], StreamCompleted)
    assert events[-1].usage == response.usage
    assert _text(events) == response.text == "Hello"
    assert events[0].choices[0].role == "assistant"
    assert response.created == 1700000000


def test_openai_error_frame_raises_protocol_error():
    descriptor = _descriptor("openai", "openai", "https://api.openai.com/v1", "gpt-4o-mini")
    decoder = OpenAIAdapter().stream_decoder(descriptor=descriptor, model_id="gpt-4o-mini", request_id="req-1")

    with pytest.raises(ProviderProtocolError):
        decoder.parse_stream_event(SSEEvent(data='{"error": {"message": "overloaded"}}'))


def test_openai_build_request_passes_extra_fields_and_usage_option():
    descriptor = _descriptor("openai", "openai", "https://api.openai.com/v1", "gpt-4o-mini")
    req = _request(stream=True, temperature=0.3, stop=("END",), extra={"tools": [{"type": "function"}]})

    call = OpenAIAdapter().build_request(
        req, descriptor=descriptor, model_id="gpt-4o-mini", api_key="sk-1", default_max_tokens=256
    )

    assert call.url == "https://api.openai.com/v1/chat/completions"
    assert call.headers["Authorization"] == "Bearer sk-1"
    assert call.json_body["model"] == "gpt-4o-mini"
    assert call.json_body["tools"] == [{"type": "function"}]
    assert call.json_body["temperature"] == 0.3
    assert call.json_body["stop"] == ["END"]
    assert call.json_body["stream_options"] == {"include_usage": True}
    assert "max_tokens" not in call.json_body


def test_custom_provider_uses_openai_shape_without_usage_option():
    descriptor = _descriptor("local", "custom", "http://localhost:9000/v1", "tiny")

    call = adapter_for("custom").build_request(
        _request(stream=True), descriptor=descriptor, model_id="tiny", api_key=None, default_max_tokens=256
    )

    assert call.url == "http://localhost:9000/v1/chat/completions"
    assert "Authorization" not in call.headers
    assert "stream_options" not in call.json_body


def test_google_array_stream_matches_unary_text():
    descriptor = _descriptor("google", "google", "https://generativelanguage.googleapis.com/v1beta", "gemini-1.5-flash")
    adapter = GoogleAdapter()
    decoder = adapter.stream_decoder(descriptor=descriptor, model_id="gemini-1.5-flash", request_id="req-1")
    rows = [
        {"candidates": [{"content": {"parts": [{"text": "Bon"}], "role": "model"}}]},
        {
            "candidates": [{"content": {"parts": [{"text": "jour"}]}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2},
        },
    ]
    body = ("[" + ",\r\n".join(json.dumps(row) for row in rows) + "]").encode("utf-8")

    events = _decode(decoder, body, piece=5)
    response = adapter.parse_response(
        {
            "candidates": [{"content": {"parts": [{"text": "Bonjour"}]}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2},
        },
        descriptor=descriptor,
        model_id="gemini-1.5-flash",
        request_id="req-1",
    )

    assert _text(events) == response.text == "Bonjour"
    assert events[-1].finish_reason == response.choices[0].finish_reason == "stop"
    assert decoder.usage == response.usage


def test_google_build_request_selects_stream_method_and_system_instruction():
    descriptor = _descriptor("google", "google", "https://generativelanguage.googleapis.com/v1beta", "gemini-1.5-flash")
    adapter = GoogleAdapter()

    unary = adapter.build_request(
        _request(max_tokens=64), descriptor=descriptor, model_id="gemini-1.5-flash", api_key="g-key", default_max_tokens=256
    )
    streamed = adapter.build_request(
        _request(stream=True), descriptor=descriptor, model_id="gemini-1.5-flash", api_key="g-key", default_max_tokens=256
    )

    assert unary.url.endswith("/models/gemini-1.5-flash:generateContent")
    assert streamed.url.endswith("/models/gemini-1.5-flash:streamGenerateContent")
    assert unary.headers["x-goog-api-key"] == "g-key"
    assert unary.json_body["systemInstruction"] == {"parts": [{"text": "be brief"}]}
    assert unary.json_body["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
    assert unary.json_body["generationConfig"]["maxOutputTokens"] == 64


def test_ollama_ndjson_stream_matches_unary_text():
    descriptor = _descriptor("ollama", "ollama", "http://localhost:11434", "llama3")
    adapter = OllamaAdapter()
    decoder = adapter.stream_decoder(descriptor=descriptor, model_id="llama3", request_id="req-1")
    lines = [
        {"message": {"role": "assistant", "content": "Hey"}, "done": False},
        {"message": {"role": "assistant", "content": " there"}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop", "prompt_eval_count": 7, "eval_count": 2},
    ]
    body = "\n".join(json.dumps(line) for line in lines).encode("utf-8")

    events = _decode(decoder, body)
    response = adapter.parse_response(
        {
            "message": {"role": "assistant", "content": "Hey there"},
            "done": True,
            "done_reason": "stop",
            "prompt_eval_count": 7,
            "eval_count": 2,
        },
        descriptor=descriptor,
        model_id="llama3",
        request_id="req-1",
    )

    assert _text(events) == response.text == "Hey there"
    assert events[-1].finish_reason == "stop"
    assert decoder.usage == response.usage


def test_ollama_build_request_maps_sampling_options():
    descriptor = _descriptor("ollama", "ollama", "http://localhost:11434", "llama3")

    call = OllamaAdapter().build_request(
        _request(max_tokens=32, temperature=0.1),
        descriptor=descriptor,
        model_id="llama3",
        api_key=None,
        default_max_tokens=256,
    )

    assert call.url == "http://localhost:11434/api/chat"
    assert call.json_body["options"] == {"temperature": 0.1, "num_predict": 32}
    assert call.json_body["stream"] is False


def test_unknown_provider_type_has_no_adapter():
    with pytest.raises(ConfigurationError):
        adapter_for("bogus")
