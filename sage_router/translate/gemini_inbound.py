"""Detection and parsing of Gemini generateContent request bodies into canonical requests."""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from sage_router.canonical import (
    Content,
    Message,
    Request,
    ResponseFormat,
    SystemBlock,
    Tool,
    ToolChoice,
    image_content,
    text_content,
    tool_call_content,
    tool_result_content,
)
from sage_router.translate.base import TranslateOpts, TranslationError

_REQUEST_PREFIX = "parse gemini request"
_CALL_ID_PREFIX = "call_"

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
        return {key: _normalize(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    return value


def _json_text(value: Any) -> str:
    """Compact JSON with sorted keys and HTML-safe escapes; null for None."""
    text = json.dumps(_normalize(value), separators=(",", ":"), ensure_ascii=False)
    for char, escape in _ESCAPES:
        text = text.replace(char, escape)
    return text


def _load(body: Union[bytes, str], prefix: str) -> dict:
    try:
        data = json.loads(body)
    except (ValueError, TypeError) as exc:
        raise TranslationError(f"{prefix}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TranslationError(f"{prefix}: body is not a JSON object")
    return data


def _get(data: dict, key: str, kind: type, prefix: str) -> Any:
    """The value of a key checked against a JSON type; None when absent or null."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
        raise TranslationError(f"{prefix}: field {key!r} has the wrong type")
    return value


def _float(data: dict, key: str, prefix: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TranslationError(f"{prefix}: field {key!r} has the wrong type")
    return float(value)


def _objects(data: dict, key: str, prefix: str) -> list[dict]:
    """A list of JSON objects; null entries count as empty objects."""
    items = _get(data, key, list, prefix) or []
    result = []
    for item in items:
        if item is None:
            item = {}
        if not isinstance(item, dict):
            raise TranslationError(f"{prefix}: field {key!r} has the wrong type")
        result.append(item)
    return result


def _strings(data: dict, key: str, prefix: str) -> list[str]:
    items = _get(data, key, list, prefix) or []
    if not all(isinstance(item, str) for item in items):
        raise TranslationError(f"{prefix}: field {key!r} has the wrong type")
    return list(items)


def _part_content(part: dict, prefix: str, *, with_responses: bool = True) -> Content:
    call = _get(part, "functionCall", dict, prefix)
    response = _get(part, "functionResponse", dict, prefix)
    inline = _get(part, "inline_data", dict, prefix)
    text = _get(part, "text", str, prefix) or ""

    if call is not None:
        name = _get(call, "name", str, prefix) or ""
        args = _get(call, "args", dict, prefix)
        return tool_call_content(_CALL_ID_PREFIX + name, name, _json_text(args))
    if with_responses and response is not None:
        name = _get(response, "name", str, prefix) or ""
        result = _get(response, "response", dict, prefix)
        return tool_result_content(_CALL_ID_PREFIX + name, _json_text(result), False)
    if inline is not None:
        return image_content(
            _get(inline, "mime_type", str, prefix) or "",
            _get(inline, "data", str, prefix) or "",
        )
    return text_content(text)


def _to_message(raw: dict, prefix: str, *, with_responses: bool = True) -> Message:
    role = _get(raw, "role", str, prefix) or ""
    content = [_part_content(part, prefix, with_responses=with_responses) for part in _objects(raw, "parts", prefix)]
    if not content:
        content.append(text_content(""))
    return Message(role=gemini_role_to_canonical(role), content=content)


def detect_gemini(endpoint: str, body: Union[bytes, str]) -> bool:
    """Whether a request targets a Gemini endpoint or carries a contents field."""
    if any(marker in endpoint for marker in ("/v1beta/models", ":generateContent", ":streamGenerateContent")):
        return True
    try:
        parsed = json.loads(body)
    except (ValueError, TypeError):
        return False
    if not isinstance(parsed, dict):
        return False
    return any(key.lower() == "contents" for key in parsed)


def gemini_role_to_canonical(role: str) -> str:
    """Map a Gemini role to a canonical one; unknown roles pass through."""
    if role == "model":
        return "assistant"
    if role == "user":
        return "user"
    return role


def _tool_choice(config: dict, prefix: str) -> ToolChoice:
    mode = _get(config, "mode", str, prefix) or ""
    names = _strings(config, "allowed_function_names", prefix)
    if mode == "NONE":
        return ToolChoice(type="none")
    if mode == "ANY":
        if len(names) == 1:
            return ToolChoice(type="tool", name=names[0])
        return ToolChoice(type="required")
    return ToolChoice(type="auto")


def gemini_to_canonical(body: Union[bytes, str], opts: TranslateOpts) -> Request:
    """Parse a Gemini request body into a canonical request."""
    prefix = _REQUEST_PREFIX
    data = _load(body, prefix)

    req = Request(model=_get(data, "model", str, prefix) or "")
    if not req.model and opts.model:
        req.model = opts.model

    config = _get(data, "generationConfig", dict, prefix)
    if config is not None:
        req.temperature = _float(config, "temperature", prefix)
        req.top_p = _float(config, "topP", prefix)
        req.max_tokens = _get(config, "maxOutputTokens", int, prefix) or 0
        req.stop = _strings(config, "stopSequences", prefix)
        if _get(config, "responseMimeType", str, prefix) == "application/json":
            req.response_format = ResponseFormat(type="json_object")

    instruction = _get(data, "system_instruction", dict, prefix)
    if instruction is not None:
        for part in _objects(instruction, "parts", prefix):
            text = _get(part, "text", str, prefix)
            if text:
                req.system.append(SystemBlock(text=text))

    for raw in _objects(data, "contents", prefix):
        req.messages.append(_to_message(raw, prefix))

    for tool_set in _objects(data, "tools", prefix):
        for decl in _objects(tool_set, "function_declarations", prefix):
            req.tools.append(
                Tool(
                    type="function",
                    name=_get(decl, "name", str, prefix) or "",
                    description=_get(decl, "description", str, prefix) or "",
                    parameters=decl.get("parameters"),
                )
            )

    tool_config = _get(data, "tool_config", dict, prefix)
    if tool_config is not None:
        calling = _get(tool_config, "function_calling_config", dict, prefix)
        if calling is not None:
            req.tool_choice = _tool_choice(calling, prefix)

    return req