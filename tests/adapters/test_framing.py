from __future__ import annotations

import pytest

from cbroute.adapters import JSONValueFramer, LineFramer, SSEEvent, SSEFramer
from cbroute.errors import ProviderProtocolError


def test_sse_framer_reassembles_events_split_across_feeds():
    framer = SSEFramer()

    assert framer.feed(b"event: message_start\nda") == []
    assert framer.feed(b'ta: {"a": 1}\n') == []
    events = framer.feed(b"\ndata: second\n\n")

    assert events == [
        SSEEvent(data='{"a": 1}', event="message_start"),
        SSEEvent(data="second"),
    ]


def test_sse_framer_skips_comments_and_joins_multiline_data():
    framer = SSEFramer()

    events = framer.feed(b": keep-alive\n\ndata: one\ndata: two\n\n")

    assert events == [SSEEvent(data="one\ntwo")]


def test_sse_framer_accepts_crlf_and_flushes_tail():
    framer = SSEFramer()

    assert framer.feed(b"data: a\r\n\r\ndata: b") == [SSEEvent(data="a")]
    assert framer.flush() == [SSEEvent(data="b")]
    assert framer.flush() == []


def test_sse_framer_keeps_split_utf8_sequences_intact():
    framer = SSEFramer()
    payload = "data: héllo\n\n".encode("utf-8")
    split = payload.index(b"\xc3") + 1

    assert framer.feed(payload[:split]) == []
    assert framer.feed(payload[split:]) == [SSEEvent(data="héllo")]


def test_json_value_framer_cuts_array_wrapped_objects_across_feeds():
    framer = JSONValueFramer()

    assert framer.feed(b'[{"text": "a}b", "n": {"x"') == []
    values = framer.feed(b': [1, 2]}}\r\n,\r\n{"text": "\\"q\\""}')
    values += framer.feed(b"]")

    assert values == ['{"text": "a}b", "n": {"x": [1, 2]}}', '{"text": "\\"q\\""}']
    assert framer.flush() == []


def test_json_value_framer_rejects_garbage_between_values():
    framer = JSONValueFramer()

    with pytest.raises(ProviderProtocolError):
        framer.feed(b'[{"a": 1}, oops')


def test_json_value_framer_flush_rejects_unterminated_value():
    framer = JSONValueFramer()
    framer.feed(b'[{"a": {"b": 1}')

    with pytest.raises(ProviderProtocolError):
        framer.flush()


def test_line_framer_holds_partial_lines_until_newline():
    framer = LineFramer()

    assert framer.feed(b'{"a": 1}\n{"b"') == ['{"a": 1}']
    assert framer.feed(b": 2}\n\n") == ['{"b": 2}']
    assert framer.feed(b'{"c": 3}') == []
    assert framer.flush() == ['{"c": 3}']
