"""Gemini translator: request conversion and streaming chunks."""

from __future__ import annotations

from typing import Any, Optional, Union

from sage_router.canonical import Chunk, Delta, Format, Request, Usage
from sage_router.translate.base import StreamState, ToolCallAccumulator, TranslateOpts, Translator
from sage_router.translate.gemini_inbound import (
    _get,
    _json_text,
    _load,
    _objects,
    detect_gemini,
    gemini_role_to_canonical,
    gemini_to_canonical,
)
from sage_router.translate.gemini_outbound import (
    CALL_ID_PREFIX,
    _dumps,
    _function_call_part,
    canonical_role_to_gemini,
    canonical_to_gemini,
)
from sage_router.translate.gemini_response import gemini_finish_reason_to_canonical

_STREAM_PREFIX = "parse gemini stream chunk"
_DEFAULT_MESSAGE_ID = "gemini-msg"
_ROLE_ANNOUNCED = "role_announced"
_ACTIVE_TOOL_CALL = "activeToolCallID"

_WRAPPER_HEAD = b" \t\n\r[,"
_WRAPPER_TAIL = b" \t\n\r],"


def trim_array_wrapper(data: Union[bytes, str]) -> Union[bytes, str]:
    """Strip the array brackets, commas and whitespace Gemini may wrap stream chunks in."""
    if isinstance(data, str):
        trimmed_text = data.lstrip(_WRAPPER_HEAD.decode()).rstrip(_WRAPPER_TAIL.decode())
        return trimmed_text or data
    trimmed = bytes(data).lstrip(_WRAPPER_HEAD).rstrip(_WRAPPER_TAIL)
    return trimmed or data


def _canonical_finish_reason_to_gemini(reason: str) -> str:
    return "MAX_TOKENS" if reason == "length" else "STOP"


class GeminiTranslator(Translator):
    """Translates between Gemini bodies and the canonical form."""

    def format(self) -> Format:
        return Format.GEMINI

    def detect_inbound(self, endpoint: str, body: bytes) -> bool:
        return detect_gemini(endpoint, body)

    def to_canonical(self, body: bytes, opts: TranslateOpts) -> Request:
        return gemini_to_canonical(body, opts)

    def from_canonical(self, req: Request, opts: TranslateOpts) -> bytes:
        return canonical_to_gemini(req, opts)

    def stream_chunk_to_canonical(self, data: bytes, state: StreamState) -> list[Chunk]:
        prefix = _STREAM_PREFIX
        raw = _load(trim_array_wrapper(data), prefix)

        if not state.message_id:
            state.message_id = _DEFAULT_MESSAGE_ID
        if not state.model:
            model = state.custom.get("model")
            if isinstance(model, str):
                state.model = model

        def make(**fields: Any) -> Chunk:
            return Chunk(id=state.message_id, model=state.model, **fields)

        results: list[Chunk] = []
        for candidate in _objects(raw, "candidates", prefix):
            _get(candidate, "index", int, prefix)
            content = _get(candidate, "content", dict, prefix)
            if content is not None:
                if _ROLE_ANNOUNCED not in state.custom:
                    role = _get(content, "role", str, prefix) or "model"
                    results.append(make(role=gemini_role_to_canonical(role)))
                    state.custom[_ROLE_ANNOUNCED] = True
                for part in _objects(content, "parts", prefix):
                    call = _get(part, "functionCall", dict, prefix)
                    _get(part, "functionResponse", dict, prefix)
                    _get(part, "inline_data", dict, prefix)
                    text = _get(part, "text", str, prefix) or ""
                    if call is not None:
                        name = _get(call, "name", str, prefix) or ""
                        args = _get(call, "args", dict, prefix)
                        results.append(
                            make(
                                delta=Delta(
                                    tool_call_id=CALL_ID_PREFIX + name,
                                    tool_name=name,
                                    arguments=_json_text(args),
                                )
                            )
                        )
                    elif text:
                        results.append(make(delta=Delta(text=text)))

            finish = _get(candidate, "finishReason", str, prefix) or ""
            if finish:
                reason = gemini_finish_reason_to_canonical(finish)
                state.finish_reason = reason
                results.append(make(finish_reason=reason))

        meta = _get(raw, "usageMetadata", dict, prefix)
        if meta is not None:
            usage = Usage(
                prompt_tokens=_get(meta, "promptTokenCount", int, prefix) or 0,
                completion_tokens=_get(meta, "candidatesTokenCount", int, prefix) or 0,
                total_tokens=_get(meta, "totalTokenCount", int, prefix) or 0,
            )
            state.usage = usage
            results.append(make(usage=usage))

        return results

    def canonical_to_stream_chunk(self, chunk: Chunk, state: StreamState) -> Optional[bytes]:
        content: Optional[dict] = None
        has_content = False
        finish = ""

        if chunk.role:
            state.message_id = chunk.id
            state.model = chunk.model
            content = _new_content(canonical_role_to_gemini(chunk.role))
            has_content = True

        piece = chunk.delta
        if piece is not None:
            if content is None:
                content = _new_content("model")
            has_content = True

            if piece.text:
                content["parts"].append({"text": piece.text})

            if piece.tool_call_id or piece.arguments:
                if piece.tool_call_id:
                    state.tool_calls[piece.tool_call_id] = ToolCallAccumulator(
                        id=piece.tool_call_id, name=piece.tool_name, arguments=piece.arguments
                    )
                    state.custom[_ACTIVE_TOOL_CALL] = piece.tool_call_id
                else:
                    active = state.custom.get(_ACTIVE_TOOL_CALL)
                    acc = state.tool_calls.get(active) if isinstance(active, str) else None
                    if acc is not None:
                        acc.arguments += piece.arguments
                # Function calls go out whole, once the stream finishes.
                has_content = False
                content = None

            if piece.thinking:
                has_content = False
                content = None

        if chunk.finish_reason:
            finish = _canonical_finish_reason_to_gemini(chunk.finish_reason)
            has_content = True
            if state.tool_calls:
                if content is None:
                    content = _new_content("model")
                for acc in state.tool_calls.values():
                    content["parts"].append(_function_call_part(acc.name, acc.arguments))
                state.tool_calls = {}

        out: dict[str, Any] = {}
        if has_content:
            candidate: dict[str, Any] = {}
            if content is not None:
                candidate["content"] = content
            if finish:
                candidate["finishReason"] = finish
            candidate["index"] = 0
            out["candidates"] = [candidate]

        if chunk.usage is not None:
            meta = {
                "promptTokenCount": chunk.usage.prompt_tokens,
                "candidatesTokenCount": chunk.usage.completion_tokens,
                "totalTokenCount": chunk.usage.total_tokens,
            }
            out["usageMetadata"] = {key: value for key, value in meta.items() if value}

        if not out:
            return None
        return _dumps(out)


def _new_content(role: str) -> dict:
    content: dict[str, Any] = {}
    if role:
        content["role"] = role
    content["parts"] = []
    return content