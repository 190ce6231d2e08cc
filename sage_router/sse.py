"""Reading and writing Server-Sent Event streams."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, MutableMapping, Union

DONE = "[DONE]"

_RETRY = re.compile(r"[+-]?[0-9]+")

StreamSource = Union[str, bytes, bytearray, Iterable[Union[str, bytes]]]


@dataclass(frozen=True)
class Event:
    """A single Server-Sent Event."""

    type: str = ""
    data: str = ""
    id: str = ""
    retry: int = 0

    def is_done(self) -> bool:
        """Whether this is the OpenAI-style end-of-stream sentinel."""
        return self.data == DONE


def parse_field(line: str) -> tuple[str, str]:
    """Split a line into field name and value, dropping one space after the colon."""
    name, sep, value = line.partition(":")
    if not sep:
        return line, ""
    if value.startswith(" "):
        value = value[1:]
    return name, value


def _lines(stream: StreamSource) -> Iterator[str]:
    if isinstance(stream, str):
        stream = io.StringIO(stream)
    elif isinstance(stream, (bytes, bytearray)):
        stream = io.BytesIO(bytes(stream))
    for raw in stream:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else raw
        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
        yield line


def read_events(stream: StreamSource) -> Iterator[Event]:
    """Yield each complete event of an SSE stream, stopping after a [DONE] event.

    The stream may be a string, bytes, a file object or any iterable of lines.
    """
    event_type = ""
    data_lines: list[str] = []
    event_id = ""
    retry = 0

    for line in _lines(stream):
        if not line:
            if data_lines:
                event = Event(type=event_type, data="\n".join(data_lines), id=event_id, retry=retry)
                yield event
                if event.is_done():
                    return
            event_type, data_lines, event_id, retry = "", [], "", 0
            continue

        if line.startswith(":"):
            continue

        name, value = parse_field(line)
        if name == "data":
            data_lines.append(value)
        elif name == "event":
            event_type = value
        elif name == "id":
            event_id = value
        elif name == "retry":
            candidate = value.strip()
            if _RETRY.fullmatch(candidate):
                retry = int(candidate)

    if data_lines:
        yield Event(type=event_type, data="\n".join(data_lines), id=event_id, retry=retry)


def set_headers(headers: MutableMapping[str, str]) -> None:
    """Set the response headers an SSE stream needs."""
    headers["Content-Type"] = "text/event-stream"
    headers["Cache-Control"] = "no-cache"
    headers["Connection"] = "keep-alive"
    headers["X-Accel-Buffering"] = "no"


def _is_binary(out: Any) -> bool:
    if isinstance(out, (io.RawIOBase, io.BufferedIOBase)):
        return True
    mode = getattr(out, "mode", "")
    return isinstance(mode, str) and "b" in mode


def _write(out: Any, payload: Union[str, bytes]) -> None:
    if _is_binary(out):
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
    elif isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    out.write(payload)
    flush = getattr(out, "flush", None)
    if callable(flush):
        flush()


def write_event(out: Any, event: Event) -> None:
    """Write a full event, leaving out empty fields, and flush."""
    parts: list[str] = []
    if event.id:
        parts.append(f"id: {event.id}\n")
    if event.type:
        parts.append(f"event: {event.type}\n")
    if event.retry > 0:
        parts.append(f"retry: {event.retry}\n")
    parts.extend(f"data: {line}\n" for line in event.data.split("\n"))
    parts.append("\n")
    _write(out, "".join(parts))


def write_chunk(out: Any, data: Union[bytes, str]) -> None:
    """Write a single data-only event carrying the given payload, and flush."""
    if isinstance(data, (bytes, bytearray)):
        _write(out, b"data: " + bytes(data) + b"\n\n")
    else:
        _write(out, f"data: {data}\n\n")


def write_done(out: Any) -> None:
    """Write the [DONE] sentinel and flush."""
    _write(out, f"data: {DONE}\n\n")