"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Incremental framers that cut raw upstream bytes into native stream events.

Framers only split; they never decode event payloads. Adapters parse each
returned raw event one at a time, so event N can be handed downstream before
event N+1 is decoded.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass

from ..errors import ProviderProtocolError


@dataclass(frozen=True, slots=True)
class SSEEvent:
    """One Server-Sent Events frame."""

    data: str
    event: str | None = None


class SSEFramer:
    """Splits a `text/event-stream` body into `SSEEvent` frames."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[SSEEvent]:
        self._buffer += self._decoder.decode(data)
        self._buffer = self._buffer.replace("\r\n", "\n")
        events: list[SSEEvent] = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            event = self._parse_block(block)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[SSEEvent]:
        self._buffer += self._decoder.decode(b"", final=True)
        block, self._buffer = self._buffer.strip("\r\n"), ""
        if not block:
            return []
        event = self._parse_block(block)
        return [event] if event is not None else []

    @staticmethod
    def _parse_block(block: str) -> SSEEvent | None:
        event_name: str | None = None
        data_lines: list[str] = []
        for line in block.split("\n"):
            line = line.rstrip("\r")
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event_name = value
            elif name == "data":
                data_lines.append(value)
        if not data_lines and event_name is None:
            return None
        return SSEEvent(data="\n".join(data_lines), event=event_name)


class LineFramer:
    """Splits newline-delimited JSON bodies into non-empty lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[str]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return [line.strip() for line in lines if line.strip()]

    def flush(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer.strip(), ""
        return [tail] if tail else []


class JSONValueFramer:
    """
    Cuts a stream of concatenated or array-wrapped JSON objects.

    Bytes are buffered until one complete top-level object is available.
    Array brackets, commas and whitespace between top-level objects are
    skipped. Scanning resumes where the previous feed stopped.
    """

    _SEPARATORS = frozenset(" \t\r\n[],")

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pos = 0
        self._start = -1
        self._depth = 0
        self._in_string = False
        self._escape = False

    def feed(self, data: bytes) -> list[str]:
        self._buffer += self._decoder.decode(data)
        return self._scan()

    def flush(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        values = self._scan()
        if self._depth:
            raise ProviderProtocolError("Stream ended inside an unterminated JSON value")
        return values

    def _scan(self) -> list[str]:
        buffer = self._buffer
        values: list[str] = []
        index = self._pos
        while index < len(buffer):
            ch = buffer[index]
            if self._depth == 0:
                if ch == "{":
                    self._start = index
                    self._depth = 1
                elif ch not in self._SEPARATORS:
                    raise ProviderProtocolError(
                        f"Unexpected {ch!r} between streamed JSON values"
                    )
            elif self._in_string:
                if self._escape:
                    self._escape = False
                elif ch == "\\":
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch in "{[":
                self._depth += 1
            elif ch in "}]":
                self._depth -= 1
                if self._depth == 0:
                    values.append(buffer[self._start : index + 1])
                    self._start = -1
            index += 1

        if self._depth == 0:
            self._buffer = ""
            self._pos = 0
        else:
            self._buffer = buffer[self._start :]
            self._pos = index - self._start
            self._start = 0
        return values
