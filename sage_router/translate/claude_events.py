"""Rendering canonical streaming chunks as Claude server-sent event payloads."""

from __future__ import annotations

import json
from typing import Any, Optional

from sage_router.canonical import Chunk
from sage_router.translate.base import StreamState

ACTIVE_BLOCK_KEY = "activeBlockType"

_STOP_REASONS = {"stop": "end_turn", "length": "max_tokens", "tool_calls": "tool_use"}

_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _dumps(payload: Any) -> bytes:
    text = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    for char, escape in _ESCAPES:
        text = text.replace(char, escape)
    return text.encode("utf-8")


def _active(state: StreamState) -> str:
    value = state.custom.get(ACTIVE_BLOCK_KEY)
    return value if isinstance(value, str) else ""


def _start(index: int, block: dict) -> bytes:
    return _dumps({"type": "content_block_start", "index": index, "content_block": block})


def _delta(index: int, delta: dict) -> bytes:
    return _dumps({"type": "content_block_delta", "index": index, "delta": delta})


def _stop(index: int) -> bytes:
    return _dumps({"type": "content_block_stop", "index": index})


def combine_events(*events: bytes) -> Optional[bytes]:
    """Join event payloads with newlines; None when there are none."""
    if not events:
        return None
    if len(events) == 1:
        return events[0]
    return b"\n".join(events)


def _text_events(text: str, state: StreamState) -> bytes:
    text_delta = {"type": "text_delta", "text": text}
    if state.in_thinking:
        state.in_thinking = False
        stop = _stop(state.block_index)
        state.block_index += 1
        return combine_events(
            stop,
            _start(state.block_index, {"type": "text", "text": ""}),
            _delta(state.block_index, text_delta),
        )
    if _active(state) != "text":
        state.custom[ACTIVE_BLOCK_KEY] = "text"
        return combine_events(
            _start(state.block_index, {"type": "text", "text": ""}),
            _delta(state.block_index, text_delta),
        )
    return _delta(state.block_index, text_delta)


def _finish_events(chunk: Chunk, state: StreamState) -> bytes:
    events: list[bytes] = []
    if _active(state):
        events.append(_stop(state.block_index))
    message_delta: dict[str, Any] = {
        "type": "message_delta",
        "delta": {"stop_reason": _STOP_REASONS.get(chunk.finish_reason, "end_turn")},
    }
    if chunk.usage is not None:
        message_delta["usage"] = {"output_tokens": chunk.usage.completion_tokens}
    events.append(_dumps(message_delta))
    events.append(_dumps({"type": "message_stop"}))
    return combine_events(*events)


def canonical_to_stream_chunk(chunk: Chunk, state: StreamState) -> Optional[bytes]:
    """Render one canonical chunk as one or more newline-joined Claude event payloads."""
    if chunk.role:
        state.message_id = chunk.id
        state.model = chunk.model
        return _dumps(
            {
                "type": "message_start",
                "message": {
                    "id": chunk.id,
                    "type": "message",
                    "role": chunk.role,
                    "model": chunk.model,
                    "content": [],
                    "usage": {"input_tokens": 0, "output_tokens": 0},
                },
            }
        )

    piece = chunk.delta
    if piece is not None:
        if piece.thinking:
            thinking_delta = {"type": "thinking_delta", "thinking": piece.thinking}
            if not state.in_thinking:
                state.in_thinking = True
                return combine_events(
                    _start(state.block_index, {"type": "thinking", "thinking": ""}),
                    _delta(state.block_index, thinking_delta),
                )
            return _delta(state.block_index, thinking_delta)

        if piece.text:
            return _text_events(piece.text, state)

        if piece.tool_call_id:
            events: list[bytes] = []
            if _active(state):
                events.append(_stop(state.block_index))
                state.block_index += 1
            state.custom[ACTIVE_BLOCK_KEY] = "tool_use"
            state.in_tool_call = True
            events.append(
                _start(
                    state.block_index,
                    {"type": "tool_use", "id": piece.tool_call_id, "name": piece.tool_name, "input": {}},
                )
            )
            return combine_events(*events)

        if piece.arguments:
            return _delta(state.block_index, {"type": "input_json_delta", "partial_json": piece.arguments})

    if chunk.finish_reason:
        return _finish_events(chunk, state)

    return None