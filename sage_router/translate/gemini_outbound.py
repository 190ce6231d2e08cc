"""Rendering canonical requests as Gemini generateContent request bodies."""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from sage_router.canonical import (
    TYPE_IMAGE,
    TYPE_TEXT,
    TYPE_THINKING,
    TYPE_TOOL_CALL,
    TYPE_TOOL_RESULT,
    Message,
    Request,
    ToolChoice,
)
from sage_router.translate.base import TranslateOpts

CALL_ID_PREFIX = "call_"

_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)

_INVALID = object()


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


def _decode(text: str) -> Any:
    """Decode JSON text, or return the _INVALID marker when it is not valid JSON."""
    try:
        value = json.loads(text, parse_int=float, parse_constant=_reject_constant)
    except (ValueError, TypeError):
        return _INVALID
    return _normalize(value)


def _function_call_part(name: str, arguments: str) -> dict:
    """A functionCall part; arguments that are not a JSON object become no arguments."""
    call: dict[str, Any] = {"name": name}
    args = _decode(arguments)
    if isinstance(args, dict) and args:
        call["args"] = args
    return {"functionCall": call}


def _function_response_part(name: str, text: str) -> dict:
    value = _decode(text)
    if value is _INVALID or (value is not None and not isinstance(value, dict)):
        value = {"result": text}
    return {"functionResponse": {"name": name, "response": value}}


def _text_part(text: str) -> dict:
    return {"text": text} if text else {}


def _content(role: str, parts: list) -> dict:
    out: dict[str, Any] = {}
    if role:
        out["role"] = role
    out["parts"] = parts
    return out


def canonical_role_to_gemini(role: str) -> str:
    """Map a canonical role to a Gemini role; unknown roles pass through."""
    if role == "assistant":
        return "model"
    if role in ("user", "tool", "system"):
        return "user"
    return role


def _convert_message(msg: Message) -> dict:
    role = canonical_role_to_gemini(msg.role)
    parts: list[dict] = []
    for block in msg.content or []:
        if block.type == TYPE_TEXT:
            parts.append(_text_part(block.text))
        elif block.type == TYPE_IMAGE:
            source = block.image_source
            if source is not None and source.data:
                parts.append({"inline_data": {"mime_type": source.media_type, "data": source.data}})
        elif block.type == TYPE_TOOL_CALL:
            parts.append(_function_call_part(block.tool_name, block.arguments))
            role = "model"
        elif block.type == TYPE_TOOL_RESULT:
            role = "user"
            name = block.tool_name or block.tool_call_id.removeprefix(CALL_ID_PREFIX)
            parts.append(_function_response_part(name, block.text))
        elif block.type == TYPE_THINKING:
            continue
    if not parts:
        parts.append({})
    return _content(role, parts)


def _generation_config(req: Request) -> Optional[dict]:
    if not (
        req.temperature is not None
        or req.top_p is not None
        or req.max_tokens > 0
        or req.stop
        or req.response_format is not None
    ):
        return None
    config: dict[str, Any] = {}
    if req.temperature is not None:
        config["temperature"] = _number(float(req.temperature))
    if req.top_p is not None:
        config["topP"] = _number(float(req.top_p))
    if req.max_tokens:
        config["maxOutputTokens"] = req.max_tokens
    if req.stop:
        config["stopSequences"] = list(req.stop)
    if req.response_format is not None and req.response_format.type == "json_object":
        config["responseMimeType"] = "application/json"
    return config


def _tool_config(choice: ToolChoice) -> dict:
    config: dict[str, Any] = {}
    if choice.type == "none":
        config["mode"] = "NONE"
    elif choice.type in ("required", "tool"):
        config["mode"] = "ANY"
        if choice.type == "tool" and choice.name:
            config["allowed_function_names"] = [choice.name]
    else:
        config["mode"] = "AUTO"
    return {"function_calling_config": config}


def canonical_to_gemini(req: Request, opts: TranslateOpts) -> bytes:
    """Render a canonical request as a Gemini request body."""
    contents = [_convert_message(msg) for msg in req.messages or []]
    out: dict[str, Any] = {"contents": contents or None}

    if req.system:
        out["system_instruction"] = _content("", [_text_part(block.text) for block in req.system])

    if req.tools:
        declarations = []
        for tool in req.tools:
            decl: dict[str, Any] = {"name": tool.name}
            if tool.description:
                decl["description"] = tool.description
            if tool.parameters is not None:
                decl["parameters"] = tool.parameters
            declarations.append(decl)
        out["tools"] = [{"function_declarations": declarations}]

    if req.tool_choice is not None:
        out["tool_config"] = _tool_config(req.tool_choice)

    config = _generation_config(req)
    if config is not None:
        out["generationConfig"] = config

    if req.model:
        out["model"] = req.model

    return _dumps(out)