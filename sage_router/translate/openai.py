"""OpenAI chat-completions translator: streaming chunks and response parsing."""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from sage_router.canonical import Chunk, Delta, Format, Request, Usage
from sage_router.translate.base import StreamState, TranslateOpts, TranslationError, Translator
from sage_router.translate.openai_request import canonical_to_openai, openai_to_canonical

_STREAM_PREFIX = "parse openai stream chunk"
_RESPONSE_PREFIX = "parse openai response"

_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _dumps(payload: Any) -> bytes:
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    for char, escape in _ESCAPES:
        text = text.replace(char, escape)
    return text.encode("utf-8")


def _load_object(data: Union[bytes, str], prefix: str) -> dict:
    try:
        parsed = json.loads(data)
    except (ValueError, TypeError) as exc:
        raise TranslationError(f"{prefix}: {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise TranslationError(f"{prefix}: payload is not a JSON object")
    return parsed


def _get(data: dict, key: str, kind: type, prefix: str) -> Any:
    """The value of a key checked against a JSON type; None when absent or null."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
        raise TranslationError(f"{prefix}: field {key!r} has the wrong type")
    return value


def _dicts(data: dict, key: str, prefix: str) -> list[dict]:
    value = _get(data, key, list, prefix) or []
    if not all(isinstance(item, dict) for item in value):
        raise TranslationError(f"{prefix}: field {key!r} has the wrong type")
    return value


def _usage(raw: dict, prefix: str) -> Usage:
    usage = Usage(
        prompt_tokens=_get(raw, "prompt_tokens", int, prefix) or 0,
        completion_tokens=_get(raw, "completion_tokens", int, prefix) or 0,
        total_tokens=_get(raw, "total_tokens", int, prefix) or 0,
    )
    details = _get(raw, "prompt_tokens_details", dict, prefix)
    if details is not None:
        usage.cache_read_tokens = _get(details, "cached_tokens", int, prefix) or 0
    return usage


class OpenAITranslator(Translator):
    """Translates between OpenAI chat-completions bodies and the canonical form."""

    def format(self) -> Format:
        return Format.OPENAI

    def detect_inbound(self, endpoint: str, body: bytes) -> bool:
        return "/v1/chat/completions" in endpoint

    def to_canonical(self, body: bytes, opts: TranslateOpts) -> Request:
        return openai_to_canonical(body, opts)

    def from_canonical(self, req: Request, opts: TranslateOpts) -> bytes:
        return canonical_to_openai(req, opts)

    def stream_chunk_to_canonical(self, data: bytes, state: StreamState) -> list[Chunk]:
        prefix = _STREAM_PREFIX
        raw = _load_object(data, prefix)

        if not state.message_id:
            state.message_id = _get(raw, "id", str, prefix) or ""
            state.model = _get(raw, "model", str, prefix) or ""

        def make(**fields: Any) -> Chunk:
            return Chunk(id=state.message_id, model=state.model, **fields)

        results: list[Chunk] = []
        for choice in _dicts(raw, "choices", prefix):
            delta = _get(choice, "delta", dict, prefix) or {}

            role = _get(delta, "role", str, prefix)
            if role:
                results.append(make(role=role))

            text = _get(delta, "content", str, prefix)
            if text:
                results.append(make(delta=Delta(text=text)))

            reasoning = _get(delta, "reasoning_content", str, prefix)
            if reasoning:
                results.append(make(delta=Delta(thinking=reasoning)))

            for call in _dicts(delta, "tool_calls", prefix):
                function = _get(call, "function", dict, prefix) or {}
                piece = Delta()
                call_id = _get(call, "id", str, prefix)
                if call_id:
                    piece.tool_call_id = call_id
                    piece.tool_name = _get(function, "name", str, prefix) or ""
                arguments = _get(function, "arguments", str, prefix)
                if arguments:
                    piece.arguments = arguments
                results.append(make(delta=piece))

            finish = _get(choice, "finish_reason", str, prefix)
            if finish:
                state.finish_reason = finish
                results.append(make(finish_reason=finish))

        usage_raw = _get(raw, "usage", dict, prefix)
        if usage_raw is not None:
            usage = _usage(usage_raw, prefix)
            state.usage = usage
            results.append(make(usage=usage))

        return results

    def canonical_to_stream_chunk(self, chunk: Chunk, state: StreamState) -> Optional[bytes]:
        delta: dict[str, Any] = {}
        if chunk.role:
            delta["role"] = chunk.role

        piece = chunk.delta
        if piece is not None:
            if piece.text:
                delta["content"] = piece.text
            if piece.thinking:
                delta["reasoning_content"] = piece.thinking
            if piece.tool_call_id or piece.arguments:
                call: dict[str, Any] = {"index": state.block_index}
                function: dict[str, Any] = {}
                if piece.tool_call_id:
                    call["id"] = piece.tool_call_id
                    call["type"] = "function"
                    if piece.tool_name:
                        function["name"] = piece.tool_name
                    state.block_index += 1
                if piece.arguments:
                    function["arguments"] = piece.arguments
                call["function"] = function
                delta["tool_calls"] = [call]

        choice = {"index": 0, "delta": delta, "finish_reason": chunk.finish_reason or None}
        out: dict[str, Any] = {
            "id": chunk.id,
            "object": "chat.completion.chunk",
            "model": chunk.model,
            "choices": [choice],
        }
        if chunk.usage is not None:
            out["usage"] = {
                "prompt_tokens": chunk.usage.prompt_tokens,
                "completion_tokens": chunk.usage.completion_tokens,
                "total_tokens": chunk.usage.total_tokens,
            }
        return _dumps(out)


def parse_response(data: Union[bytes, str]) -> tuple[Optional[Request], Optional[Usage]]:
    """Read the usage of a non-streaming response; the request part is always None."""
    prefix = _RESPONSE_PREFIX
    raw = _load_object(data, prefix)
    _get(raw, "id", str, prefix)
    _get(raw, "model", str, prefix)
    _dicts(raw, "choices", prefix)
    usage_raw = _get(raw, "usage", dict, prefix)
    if usage_raw is None:
        return None, None
    usage = _usage(usage_raw, prefix)
    return None, Usage(
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
    )