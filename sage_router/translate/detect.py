"""Detection of source and target wire formats."""

from __future__ import annotations

import json
from typing import Optional, Union

from sage_router.canonical import Format

_TARGET_FORMATS = {
    "anthropic": Format.CLAUDE,
    "claude": Format.CLAUDE,
    "claude-code": Format.CLAUDE,
    "gemini": Format.GEMINI,
    "gemini-cli": Format.GEMINI,
    "vertex": Format.GEMINI,
    "kiro": Format.KIRO,
    "cursor": Format.CURSOR,
    "ollama": Format.OLLAMA,
}


def _probe_keys(body: Union[bytes, str]) -> Optional[set[str]]:
    """Lower-cased top-level keys of a JSON object body; None if it is not one."""
    try:
        parsed = json.loads(body)
    except (ValueError, TypeError):
        return None
    if parsed is None:
        return set()
    if not isinstance(parsed, dict):
        return None
    return {key.lower() for key in parsed}


def detect_source_format(endpoint: str, body: Union[bytes, str]) -> Format:
    """Work out the format of an incoming request from its endpoint, then its body shape."""
    if "/v1/messages" in endpoint:
        return Format.CLAUDE
    if "/v1/responses" in endpoint:
        return Format.RESPONSES
    if any(marker in endpoint for marker in ("/v1beta/models", ":generateContent", ":streamGenerateContent")):
        return Format.GEMINI
    if "/api/chat" in endpoint or "/api/generate" in endpoint:
        return Format.OLLAMA

    keys = _probe_keys(body)
    if keys is not None:
        if "system" in keys and "messages" in keys:
            return Format.CLAUDE
        if "contents" in keys:
            return Format.GEMINI
        if "input" in keys:
            return Format.RESPONSES
    return Format.OPENAI


def detect_target_format(provider: str) -> Format:
    """The wire format a provider speaks."""
    return _TARGET_FORMATS.get(provider, Format.OPENAI)