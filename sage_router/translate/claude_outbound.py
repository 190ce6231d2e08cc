"""Rendering canonical requests as Claude messages-API request bodies."""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from sage_router.canonical import (
    TYPE_IMAGE,
    TYPE_TEXT,
    TYPE_THINKING,
    TYPE_TOOL_CALL,
    TYPE_TOOL_RESULT,
    Content,
    Message,
    Request,
    ToolChoice,
)
from sage_router.translate.base import TranslateOpts

DEFAULT_MAX_TOKENS = 8192
THINKING_HEADROOM = 1024
PLACEHOLDER = "..."

_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)

_BLOCK_FIELDS = (
    "type",
    "text",
    "thinking",
    "signature",
    "id",
    "name",
    "input",
    "tool_use_id",
    "content",
    "is_error",
    "source",
    "cache_control",
)

# Fields that are left out only when absent, not when falsy.
_NULLABLE_FIELDS = frozenset({"input", "content"})


def _dumps(payload: Any) -> bytes:
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    for char, escape in _ESCAPES:
        text = text.replace(char, escape)
    return text.encode("utf-8")


def _number(value: float) -> Union[int, float]:
    if value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _normalize(value: Any) -> Any:
    """Sort object keys and write integral numbers without a fraction."""
    if isinstance(value, float):
        return _number(value)
    if isinstance(value, dict):
        return {key: _normalize(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    return value


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _parse_arguments(arguments: str) -> Any:
    """Decode a tool call's JSON argument string; an empty object when it is not valid JSON."""
    try:
        value = json.loads(arguments, parse_int=float, parse_constant=_reject_constant)
    except (ValueError, TypeError):
        return {}
    return _normalize(value)


def _block(**fields: Any) -> dict:
    out: dict[str, Any] = {}
    for key in _BLOCK_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if key in _NULLABLE_FIELDS:
            if value is None:
                continue
        elif value is None or value == "" or value is False:
            continue
        out[key] = value
    return out


def _convert_content(block: Content) -> Optional[dict]:
    if block.type == TYPE_TEXT:
        out = _block(type="text", text=block.text)
    elif block.type == TYPE_THINKING:
        out = _block(type="thinking", thinking=block.text)
    elif block.type == TYPE_IMAGE:
        source = block.image_source
        if source is None:
            return None
        out = _block(
            type="image",
            source={"type": "base64", "media_type": source.media_type, "data": source.data},
        )
    elif block.type == TYPE_TOOL_CALL:
        out = _block(
            type="tool_use",
            id=block.tool_call_id,
            name=block.tool_name,
            input=_parse_arguments(block.arguments),
        )
    elif block.type == TYPE_TOOL_RESULT:
        out = _block(
            type="tool_result",
            tool_use_id=block.tool_call_id,
            content=block.text or None,
            is_error=block.is_error,
        )
    else:
        return None
    if block.cache_control is not None:
        out["cache_control"] = block.cache_control.to_dict()
    return out


def _convert_message(msg: Message) -> dict:
    blocks = [converted for converted in map(_convert_content, msg.content or []) if converted is not None]
    if len(blocks) == 1 and blocks[0]["type"] == "text" and "cache_control" not in blocks[0]:
        content: Any = blocks[0].get("text", "")
    else:
        content = blocks or None
    return {"role": msg.role, "content": content}


def _to_blocks(content: Any) -> list[dict]:
    if isinstance(content, str):
        return [_block(type="text", text=content)]
    if isinstance(content, list):
        return list(content)
    return []


def merge_consecutive_messages(messages: list[dict]) -> list[dict]:
    """Join adjacent messages of the same role into one message of content blocks."""
    if len(messages) <= 1:
        return list(messages)
    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            combined = _to_blocks(merged[-1]["content"]) + _to_blocks(msg["content"])
            merged[-1] = {"role": msg["role"], "content": combined or None}
        else:
            merged.append(dict(msg))
    return merged


def ensure_alternating(messages: list[dict]) -> list[dict]:
    """Insert placeholder turns so roles alternate and the first turn is the user's."""
    if not messages:
        return list(messages)
    result: list[dict] = []
    for msg in messages:
        if result and msg["role"] == result[-1]["role"]:
            opposite = "assistant" if msg["role"] == "user" else "user"
            result.append({"role": opposite, "content": PLACEHOLDER})
        result.append(msg)
    if result[0]["role"] != "user":
        result.insert(0, {"role": "user", "content": PLACEHOLDER})
    return result


def _tool_choice(choice: ToolChoice) -> dict:
    if choice.type == "required":
        return {"type": "any"}
    if choice.type == "tool":
        out = {"type": "tool"}
        if choice.name:
            out["name"] = choice.name
        return out
    return {"type": choice.type}


def _system(req: Request) -> Any:
    if len(req.system) == 1 and req.system[0].cache_control is None:
        return req.system[0].text
    blocks = []
    for block in req.system:
        out: dict[str, Any] = {"type": "text", "text": block.text}
        if block.cache_control is not None:
            out["cache_control"] = block.cache_control.to_dict()
        blocks.append(out)
    return blocks


def canonical_to_claude(req: Request, opts: TranslateOpts) -> bytes:
    """Render a canonical request as a Claude messages-API body."""
    max_tokens = req.max_tokens or DEFAULT_MAX_TOKENS

    thinking: Optional[dict] = None
    if req.thinking is not None:
        thinking = {"type": req.thinking.type}
        budget = req.thinking.budget_tokens
        if budget:
            thinking["budget_tokens"] = budget
        if budget > 0 and max_tokens <= budget:
            max_tokens = budget + THINKING_HEADROOM

    messages = ensure_alternating(merge_consecutive_messages([_convert_message(m) for m in req.messages]))

    out: dict[str, Any] = {"model": req.model}
    if req.system:
        out["system"] = _system(req)
    out["messages"] = messages or None

    if req.tools:
        tools = []
        for tool in req.tools:
            entry: dict[str, Any] = {"name": tool.name}
            if tool.description:
                entry["description"] = tool.description
            entry["input_schema"] = tool.parameters
            if tool.type and tool.type != "function":
                entry["type"] = tool.type
            tools.append(entry)
        out["tools"] = tools

    if req.tool_choice is not None:
        out["tool_choice"] = _tool_choice(req.tool_choice)

    out["max_tokens"] = max_tokens
    if req.stream:
        out["stream"] = True
    if thinking is not None:
        out["thinking"] = thinking
    if req.temperature is not None:
        out["temperature"] = _number(float(req.temperature))
    if req.top_p is not None:
        out["top_p"] = _number(float(req.top_p))
    if req.stop:
        out["stop_sequences"] = list(req.stop)

    return _dumps(out)