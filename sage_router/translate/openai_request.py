"""Conversion between OpenAI chat-completions request bodies and canonical requests."""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from sage_router.canonical import (
    ROLE_SYSTEM,
    ROLE_TOOL,
    TYPE_IMAGE,
    TYPE_TEXT,
    TYPE_THINKING,
    TYPE_TOOL_CALL,
    TYPE_TOOL_RESULT,
    Message,
    Request,
    ResponseFormat,
    SystemBlock,
    Tool,
    ToolChoice,
    image_content,
    image_url_content,
    text_content,
    tool_call_content,
    tool_result_content,
)
from sage_router.translate.base import TranslateOpts, TranslationError

_PREFIX = "parse openai request"


def _wrong_type(key: str) -> TranslationError:
    return TranslationError(f"{_PREFIX}: field {key!r} has the wrong type")


def _str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _wrong_type(key)
    return value


def _bool(data: dict, key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise _wrong_type(key)
    return value


def _int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise _wrong_type(key)
    return value


def _float(data: dict, key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _wrong_type(key)
    return float(value)


def _dict(data: dict, key: str) -> Optional[dict]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise _wrong_type(key)
    return value


def _dicts(data: dict, key: str) -> list[dict]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise _wrong_type(key)
    return value


def _parse_body(body: Union[bytes, str]) -> dict:
    try:
        data = json.loads(body)
    except (ValueError, TypeError) as exc:
        raise TranslationError(f"{_PREFIX}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TranslationError(f"{_PREFIX}: body is not a JSON object")
    return data


def _parse_stop(stop: Any) -> list[str]:
    if isinstance(stop, str):
        return [stop]
    if isinstance(stop, list):
        return [item for item in stop if isinstance(item, str)]
    return []


def _extract_text(content: Any) -> str:
    """The string content, or the text of the first text block."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                return block["text"]
    return ""


def _parse_content(content: Any, msg: Message) -> None:
    if isinstance(content, str):
        msg.content.append(text_content(content))
    elif isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                continue
            kind = block.get("type")
            if kind == "text":
                text = block.get("text")
                msg.content.append(text_content(text if isinstance(text, str) else ""))
            elif kind == "image_url":
                image = block.get("image_url")
                if not isinstance(image, dict):
                    continue
                url = image.get("url")
                url = url if isinstance(url, str) else ""
                if url.startswith("data:"):
                    header, sep, payload = url.partition(",")
                    if sep:
                        media_type = header.split(";", 1)[0].removeprefix("data:")
                        msg.content.append(image_content(media_type, payload))
                else:
                    msg.content.append(image_url_content(url))

    if not msg.content:
        msg.content.append(text_content(""))


def _parse_tool_choice(choice: Any) -> Optional[ToolChoice]:
    if isinstance(choice, str):
        return ToolChoice(type=choice)
    if isinstance(choice, dict):
        result = ToolChoice(type="")
        if isinstance(choice.get("type"), str):
            result.type = choice["type"]
        function = choice.get("function")
        if isinstance(function, dict) and isinstance(function.get("name"), str):
            result.type = "tool"
            result.name = function["name"]
        return result
    return None


def openai_to_canonical(body: Union[bytes, str], opts: TranslateOpts) -> Request:
    """Parse an OpenAI chat-completions body into a canonical request."""
    data = _parse_body(body)

    req = Request(
        model=_str(data, "model"),
        stream=_bool(data, "stream"),
        max_tokens=_int(data, "max_tokens"),
        temperature=_float(data, "temperature"),
        top_p=_float(data, "top_p"),
        stop=_parse_stop(data.get("stop")),
    )

    response_format = _dict(data, "response_format")
    if response_format is not None:
        req.response_format = ResponseFormat(
            type=_str(response_format, "type"),
            json_schema=response_format.get("json_schema"),
        )

    for raw in _dicts(data, "messages"):
        role = _str(raw, "role")
        content = raw.get("content")

        if role == ROLE_SYSTEM:
            req.system.append(SystemBlock(text=_extract_text(content)))
            continue

        msg = Message(role=role, content=[])
        if role == ROLE_TOOL:
            msg.content.append(tool_result_content(_str(raw, "tool_call_id"), _extract_text(content), False))
            req.messages.append(msg)
            continue

        _parse_content(content, msg)
        for call in _dicts(raw, "tool_calls"):
            function = _dict(call, "function") or {}
            msg.content.append(
                tool_call_content(_str(call, "id"), _str(function, "name"), _str(function, "arguments"))
            )
        req.messages.append(msg)

    for raw in _dicts(data, "tools"):
        function = _dict(raw, "function") or {}
        req.tools.append(
            Tool(
                type=_str(raw, "type"),
                name=_str(function, "name"),
                description=_str(function, "description"),
                parameters=function.get("parameters"),
            )
        )

    if data.get("tool_choice") is not None:
        req.tool_choice = _parse_tool_choice(data["tool_choice"])

    return req


def _number(value: float) -> Union[int, float]:
    if value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _dumps(payload: dict) -> bytes:
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    for char, escape in (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
                         ("\u2028", "\\u2028"), ("\u2029", "\\u2029")):
        text = text.replace(char, escape)
    return text.encode("utf-8")


def _convert_message(msg: Message, messages: list[dict]) -> None:
    parts: list[dict] = []
    tool_calls: list[dict] = []

    for block in msg.content or []:
        if block.type == TYPE_TEXT:
            parts.append({"type": "text", "text": block.text} if block.text else {"type": "text"})
        elif block.type == TYPE_IMAGE:
            source = block.image_source
            if source is None:
                continue
            url = source.url or f"data:{source.media_type};base64,{source.data}"
            parts.append({"type": "image_url", "image_url": {"url": url}})
        elif block.type == TYPE_TOOL_CALL:
            tool_calls.append(
                {
                    "id": block.tool_call_id,
                    "type": "function",
                    "function": {"name": block.tool_name, "arguments": block.arguments},
                }
            )
        elif block.type == TYPE_TOOL_RESULT:
            result: dict[str, Any] = {"role": ROLE_TOOL, "content": block.text}
            if block.tool_call_id:
                result["tool_call_id"] = block.tool_call_id
            messages.append(result)
        elif block.type == TYPE_THINKING:
            continue

    if msg.role == ROLE_TOOL:
        return

    content: Any = None
    if len(parts) == 1 and parts[0]["type"] == "text":
        content = parts[0].get("text", "")
    elif parts:
        content = parts
    elif tool_calls:
        content = ""

    out: dict[str, Any] = {"role": msg.role, "content": content}
    if tool_calls:
        out["tool_calls"] = tool_calls
    messages.append(out)


def canonical_to_openai(req: Request, opts: TranslateOpts) -> bytes:
    """Render a canonical request as an OpenAI chat-completions body."""
    messages: list[dict] = [{"role": ROLE_SYSTEM, "content": block.text} for block in req.system]
    for msg in req.messages:
        _convert_message(msg, messages)

    out: dict[str, Any] = {"model": req.model, "messages": messages or None}

    if req.tools:
        tools = []
        for tool in req.tools:
            function: dict[str, Any] = {"name": tool.name}
            if tool.description:
                function["description"] = tool.description
            function["parameters"] = tool.parameters
            tools.append({"type": "function", "function": function})
        out["tools"] = tools

    if req.tool_choice is not None:
        if req.tool_choice.type in ("auto", "none", "required"):
            out["tool_choice"] = req.tool_choice.type
        elif req.tool_choice.type == "tool":
            out["tool_choice"] = {"type": "function", "function": {"name": req.tool_choice.name}}

    out["stream"] = req.stream
    if req.max_tokens:
        out["max_tokens"] = req.max_tokens
    if req.temperature is not None:
        out["temperature"] = _number(float(req.temperature))
    if req.top_p is not None:
        out["top_p"] = _number(float(req.top_p))
    if req.stop:
        out["stop"] = req.stop[0] if len(req.stop) == 1 else list(req.stop)
    if req.response_format is not None:
        response_format: dict[str, Any] = {"type": req.response_format.type}
        if req.response_format.json_schema is not None:
            response_format["json_schema"] = req.response_format.json_schema
        out["response_format"] = response_format

    return _dumps(out)