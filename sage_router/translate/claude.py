"""Claude messages-API translator: request conversion and streaming events."""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from sage_router.canonical import Chunk, Delta, Format, Request, Usage
from sage_router.translate.base import StreamState, TranslateOpts, TranslationError, Translator
from sage_router.translate.claude_events import ACTIVE_BLOCK_KEY, canonical_to_stream_chunk
from sage_router.translate.claude_inbound import claude_to_canonical, detect_claude
from sage_router.translate.claude_outbound import canonical_to_claude

_TYPE_PREFIX = "parse claude event type"

_STOP_REASONS = {"end_turn": "stop", "max_tokens": "length", "tool_use": "tool_calls"}


def _as_text(data: Union[bytes, str]) -> str:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data).decode("utf-8", errors="replace")
    return data


def _load(data: Union[bytes, str]) -> dict:
    try:
        parsed = json.loads(data)
    except (ValueError, TypeError) as exc:
        raise TranslationError(f"{_TYPE_PREFIX}: {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise TranslationError(f"{_TYPE_PREFIX}: payload is not a JSON object")
    return parsed


def _get(data: dict, key: str, kind: type, prefix: str) -> Any:
    """The value of a key checked against a JSON type; None when absent or null."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
        raise TranslationError(f"{prefix}: field {key!r} has the wrong type")
    return value


def _active(state: StreamState) -> str:
    value = state.custom.get(ACTIVE_BLOCK_KEY)
    return value if isinstance(value, str) else ""


class ClaudeTranslator(Translator):
    """Translates between Claude messages-API bodies and the canonical form."""

    def format(self) -> Format:
        return Format.CLAUDE

    def detect_inbound(self, endpoint: str, body: bytes) -> bool:
        return detect_claude(endpoint, body)

    def to_canonical(self, body: bytes, opts: TranslateOpts) -> Request:
        return claude_to_canonical(body, opts)

    def from_canonical(self, req: Request, opts: TranslateOpts) -> bytes:
        return canonical_to_claude(req, opts)

    def stream_chunk_to_canonical(self, data: bytes, state: StreamState) -> list[Chunk]:
        event = _load(data)
        kind = _get(event, "type", str, _TYPE_PREFIX) or ""
        prefix = f"parse claude {kind} event"

        if kind == "message_start":
            return self._message_start(event, state, prefix)
        if kind == "content_block_start":
            return self._block_start(event, state, prefix)
        if kind == "content_block_delta":
            return self._block_delta(event, state, prefix)
        if kind == "content_block_stop":
            state.custom[ACTIVE_BLOCK_KEY] = ""
            state.in_thinking = False
            state.in_tool_call = False
            return []
        if kind == "message_delta":
            self._message_delta(event, state, prefix)
            return []
        if kind == "message_stop":
            return [
                Chunk(
                    id=state.message_id,
                    model=state.model,
                    finish_reason=state.finish_reason,
                    usage=state.usage,
                )
            ]
        if kind == "error":
            raise TranslationError(f"claude stream error: {_as_text(data)}")
        return []

    def canonical_to_stream_chunk(self, chunk: Chunk, state: StreamState) -> Optional[bytes]:
        return canonical_to_stream_chunk(chunk, state)

    @staticmethod
    def _message_start(event: dict, state: StreamState, prefix: str) -> list[Chunk]:
        message = _get(event, "message", dict, prefix) or {}
        state.message_id = _get(message, "id", str, prefix) or ""
        state.model = _get(message, "model", str, prefix) or ""
        _get(message, "role", str, prefix)

        usage = _get(message, "usage", dict, prefix)
        if usage is not None:
            if state.usage is None:
                state.usage = Usage()
            input_tokens = _get(usage, "input_tokens", int, prefix) or 0
            _get(usage, "output_tokens", int, prefix)
            state.usage.input_tokens = input_tokens
            state.usage.prompt_tokens = input_tokens
            state.usage.cache_read_tokens = _get(usage, "cache_read_input_tokens", int, prefix) or 0
            state.usage.cache_creation_tokens = _get(usage, "cache_creation_input_tokens", int, prefix) or 0

        return [Chunk(id=state.message_id, model=state.model, role="assistant")]

    @staticmethod
    def _block_start(event: dict, state: StreamState, prefix: str) -> list[Chunk]:
        state.block_index = _get(event, "index", int, prefix) or 0
        block = _get(event, "content_block", dict, prefix) or {}
        kind = _get(block, "type", str, prefix) or ""
        call_id = _get(block, "id", str, prefix) or ""
        name = _get(block, "name", str, prefix) or ""
        _get(block, "text", str, prefix)

        if kind == "text":
            state.in_thinking = False
            state.in_tool_call = False
            state.custom[ACTIVE_BLOCK_KEY] = "text"
        elif kind == "thinking":
            state.in_thinking = True
            state.in_tool_call = False
            state.custom[ACTIVE_BLOCK_KEY] = "thinking"
        elif kind == "tool_use":
            state.in_thinking = False
            state.in_tool_call = True
            state.custom[ACTIVE_BLOCK_KEY] = "tool_use"
            return [
                Chunk(
                    id=state.message_id,
                    model=state.model,
                    delta=Delta(tool_call_id=call_id, tool_name=name),
                )
            ]
        elif kind == "server_tool_use":
            state.custom[ACTIVE_BLOCK_KEY] = "server_tool"
        return []

    @staticmethod
    def _block_delta(event: dict, state: StreamState, prefix: str) -> list[Chunk]:
        _get(event, "index", int, prefix)
        delta = _get(event, "delta", dict, prefix) or {}
        kind = _get(delta, "type", str, prefix) or ""
        text = _get(delta, "text", str, prefix) or ""
        thinking = _get(delta, "thinking", str, prefix) or ""
        partial = _get(delta, "partial_json", str, prefix) or ""

        if _active(state) == "server_tool":
            return []

        piece: Optional[Delta] = None
        if kind == "text_delta" and text:
            piece = Delta(text=text)
        elif kind == "thinking_delta" and thinking:
            piece = Delta(thinking=thinking)
        elif kind == "input_json_delta" and partial:
            piece = Delta(arguments=partial)
        if piece is None:
            return []
        return [Chunk(id=state.message_id, model=state.model, delta=piece)]

    @staticmethod
    def _message_delta(event: dict, state: StreamState, prefix: str) -> None:
        delta = _get(event, "delta", dict, prefix) or {}
        stop_reason = _get(delta, "stop_reason", str, prefix) or ""
        if stop_reason:
            state.finish_reason = _STOP_REASONS.get(stop_reason, stop_reason)

        usage = _get(event, "usage", dict, prefix)
        if usage is not None:
            if state.usage is None:
                state.usage = Usage()
            output_tokens = _get(usage, "output_tokens", int, prefix) or 0
            state.usage.output_tokens = output_tokens
            state.usage.completion_tokens = output_tokens
            state.usage.total_tokens = state.usage.prompt_tokens + state.usage.completion_tokens