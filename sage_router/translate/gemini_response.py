"""Parsing of non-streaming Gemini responses."""

from __future__ import annotations

from typing import Optional, Union

from sage_router.canonical import Message, Usage
from sage_router.translate.base import TranslationError
from sage_router.translate.gemini_inbound import _get, _load, _objects, _to_message

_RESPONSE_PREFIX = "parse gemini response"


def gemini_finish_reason_to_canonical(reason: str) -> str:
    """Map a Gemini finish reason; everything but MAX_TOKENS means a normal stop."""
    if reason == "MAX_TOKENS":
        return "length"
    return "stop"


def _decode(data: Union[bytes, str]) -> tuple[list[tuple[Optional[Message], str]], Optional[Usage]]:
    prefix = _RESPONSE_PREFIX
    raw = _load(data, prefix)
    _get(raw, "modelVersion", str, prefix)

    meta = _get(raw, "usageMetadata", dict, prefix)
    usage = None
    if meta is not None:
        usage = Usage(
            prompt_tokens=_get(meta, "promptTokenCount", int, prefix) or 0,
            completion_tokens=_get(meta, "candidatesTokenCount", int, prefix) or 0,
            total_tokens=_get(meta, "totalTokenCount", int, prefix) or 0,
        )

    candidates = []
    for candidate in _objects(raw, "candidates", prefix):
        _get(candidate, "index", int, prefix)
        finish = _get(candidate, "finishReason", str, prefix) or ""
        content = _get(candidate, "content", dict, prefix)
        message = None if content is None else _to_message(content, prefix, with_responses=False)
        candidates.append((message, finish))
    return candidates, usage


def parse_response(data: Union[bytes, str]) -> tuple[Optional[Message], Optional[Usage]]:
    """The first candidate's message and the usage of a non-streaming response."""
    candidates, usage = _decode(data)
    if not candidates:
        return None, usage
    return candidates[0][0], usage


def parse_finish_reason(data: Union[bytes, str]) -> str:
    """The canonical finish reason of the first candidate; empty when there is none."""
    try:
        candidates, _ = _decode(data)
    except TranslationError:
        return ""
    if not candidates:
        return ""
    return gemini_finish_reason_to_canonical(candidates[0][1])