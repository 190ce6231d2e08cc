"""Detection and parsing of Claude messages-API request bodies into canonical requests."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Union

from sage_router.canonical import (
    CacheControl,
    Content,
    Message,
    Request,
    SystemBlock,
    ThinkingConfig,
    Tool,
    ToolChoice,
    image_content,
    text_content,
    thinking_content,
    tool_call_content,
    tool_result_content,
)
from sage_router.translate.base import TranslateOpts, TranslationError

_PREFIX = "parse claude request"

_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _normalize(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    return value


def _json_text(value: Any) -> str:
    """Compact JSON with sorted keys and HTML-safe escapes."""
    text = json.dumps(_normalize(value), separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    for char, escape in _ESCAPES:
        text = text.replace(char, escape)
    return text


def _plain(value: Any) -> str:
    """Default textual rendering of an arbitrary decoded JSON value."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, list):
        return "[" + " ".join(_plain(item) for item in value) + "]"
    if isinstance(value, dict):
        return "map[" + " ".join(f"{key}:{_plain(value[key])}" for key in sorted(value)) + "]"
    return str(value)


def _str_or_empty(data: dict, key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def _lenient_cache_control(value: Any) -> Optional[CacheControl]:
    if not isinstance(value, dict):
        return None
    return CacheControl(type=_str_or_empty(value, "type"), ttl=_str_or_empty(value, "ttl"))


@dataclass
class _Block:
    type: str = ""
    text: str = ""
    thinking: str = ""
    id: str = ""
    name: str = ""
    input: Any = None
    tool_use_id: str = ""
    content: Any = None
    is_error: bool = False
    source: Optional[tuple[str, str]] = None
    cache_control: Optional[CacheControl] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "_Block":
        if not isinstance(raw, dict):
            return cls()
        source = raw.get("source")
        is_error = raw.get("is_error")
        return cls(
            type=_str_or_empty(raw, "type"),
            text=_str_or_empty(raw, "text"),
            thinking=_str_or_empty(raw, "thinking"),
            id=_str_or_empty(raw, "id"),
            name=_str_or_empty(raw, "name"),
            input=raw.get("input"),
            tool_use_id=_str_or_empty(raw, "tool_use_id"),
            content=raw.get("content"),
            is_error=is_error if isinstance(is_error, bool) else False,
            source=(
                (_str_or_empty(source, "media_type"), _str_or_empty(source, "data"))
                if isinstance(source, dict)
                else None
            ),
            cache_control=_lenient_cache_control(raw.get("cache_control")),
        )


def _wrong_type(key: str) -> TranslationError:
    return TranslationError(f"{_PREFIX}: field {key!r} has the wrong type")


def _get(data: dict, key: str, kind: type) -> Any:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
        raise _wrong_type(key)
    return value


def _float(data: dict, key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _wrong_type(key)
    return float(value)


def _dicts(data: dict, key: str) -> list[dict]:
    value = _get(data, key, list) or []
    if not all(isinstance(item, dict) for item in value):
        raise _wrong_type(key)
    return value


def _strings(data: dict, key: str) -> list[str]:
    value = _get(data, key, list) or []
    if not all(isinstance(item, str) for item in value):
        raise _wrong_type(key)
    return list(value)


def _load(body: Union[bytes, str]) -> dict:
    try:
        data = json.loads(body)
    except (ValueError, TypeError) as exc:
        raise TranslationError(f"{_PREFIX}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TranslationError(f"{_PREFIX}: body is not a JSON object")
    return data


def detect_claude(endpoint: str, body: Union[bytes, str]) -> bool:
    """Whether a request targets the messages API or carries both system and messages."""
    if "/v1/messages" in endpoint:
        return True
    try:
        parsed = json.loads(body)
    except (ValueError, TypeError):
        return False
    if not isinstance(parsed, dict):
        return False
    keys = {key.lower() for key in parsed}
    return "system" in keys and "messages" in keys


def _parse_system(system: Any) -> list[SystemBlock]:
    if isinstance(system, str):
        return [SystemBlock(text=system)]
    if isinstance(system, list):
        blocks = []
        for item in system:
            if not isinstance(item, dict):
                continue
            block = SystemBlock(text=_str_or_empty(item, "text"))
            control = item.get("cache_control")
            if isinstance(control, dict):
                block.cache_control = CacheControl(type=_str_or_empty(control, "type"))
            blocks.append(block)
        return blocks
    return []


def _parse_content(content: Any) -> list[_Block]:
    if isinstance(content, str):
        return [_Block(type="text", text=content)]
    if isinstance(content, list):
        return [_Block.from_raw(item) for item in content]
    return []


def _tool_result_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            item["text"]
            for item in content
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
        ]
        return "\n".join(texts)
    return _plain(content)


def _convert_block(block: _Block) -> Optional[Content]:
    kind = block.type
    if kind == "text":
        return text_content(block.text)
    if kind in ("thinking", "redacted_thinking"):
        return thinking_content(block.thinking)
    if kind == "image":
        if block.source is None:
            return None
        return image_content(*block.source)
    if kind in ("tool_use", "server_tool_use"):
        return tool_call_content(block.id, block.name, _json_text(block.input))
    if kind == "tool_result":
        return tool_result_content(block.tool_use_id, _tool_result_text(block.content), block.is_error)
    return None


def _map_tool_choice(raw: dict) -> ToolChoice:
    kind = _get(raw, "type", str) or ""
    name = _get(raw, "name", str) or ""
    if kind == "any":
        return ToolChoice(type="required")
    if kind == "tool":
        return ToolChoice(type="tool", name=name)
    return ToolChoice(type=kind)


def claude_to_canonical(body: Union[bytes, str], opts: TranslateOpts) -> Request:
    """Parse a Claude messages-API body into a canonical request."""
    data = _load(body)

    req = Request(
        model=_get(data, "model", str) or "",
        stream=bool(_get(data, "stream", bool)),
        max_tokens=_get(data, "max_tokens", int) or 0,
        temperature=_float(data, "temperature"),
        top_p=_float(data, "top_p"),
        stop=_strings(data, "stop_sequences"),
    )
    req.system = _parse_system(data.get("system"))

    thinking = _get(data, "thinking", dict)
    if thinking is not None:
        req.thinking = ThinkingConfig(
            type=_get(thinking, "type", str) or "",
            budget_tokens=_get(thinking, "budget_tokens", int) or 0,
        )

    for raw in _dicts(data, "messages"):
        msg = Message(role=_get(raw, "role", str) or "", content=[])
        for block in _parse_content(raw.get("content")):
            converted = _convert_block(block)
            if converted is not None:
                msg.content.append(converted)
            if block.cache_control is not None and msg.content:
                msg.content[-1].cache_control = block.cache_control
        if not msg.content:
            msg.content.append(text_content(""))
        req.messages.append(msg)

    for raw in _dicts(data, "tools"):
        req.tools.append(
            Tool(
                type=_get(raw, "type", str) or "",
                name=_get(raw, "name", str) or "",
                description=_get(raw, "description", str) or "",
                parameters=raw.get("input_schema"),
            )
        )

    choice = _get(data, "tool_choice", dict)
    if choice is not None:
        req.tool_choice = _map_tool_choice(choice)

    return req