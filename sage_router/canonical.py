"""Canonical request, message and streaming types shared by every wire format."""

from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Format(str, Enum):
    """An API wire format."""

    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    RESPONSES = "openai-responses"
    KIRO = "kiro"
    CURSOR = "cursor"
    OLLAMA = "ollama"

    def __str__(self) -> str:
        return self.value


ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"

TYPE_TEXT = "text"
TYPE_IMAGE = "image"
TYPE_TOOL_CALL = "tool_call"
TYPE_TOOL_RESULT = "tool_result"
TYPE_THINKING = "thinking"

VALID_ROLES = frozenset({ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL})


class ValidationError(ValueError):
    """Raised when a canonical request is structurally invalid."""


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _mapping(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


@dataclass
class CacheControl:
    """Prompt-caching directive attached to a block."""

    type: str = ""
    ttl: str = ""

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type}
        if self.ttl:
            out["ttl"] = self.ttl
        return out

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["CacheControl"]:
        data = _mapping(data)
        if data is None:
            return None
        return cls(type=data.get("type") or "", ttl=data.get("ttl") or "")


@dataclass
class SystemBlock:
    """A single block of the system prompt."""

    text: str = ""
    cache_control: Optional[CacheControl] = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"text": self.text}
        if self.cache_control is not None:
            out["cache_control"] = self.cache_control.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "SystemBlock":
        return cls(
            text=data.get("text") or "",
            cache_control=CacheControl.from_dict(data.get("cache_control")),
        )


@dataclass
class RequestMeta:
    """Internal routing data that is never sent upstream."""

    request_id: str = ""
    source_format: str = ""
    endpoint: str = ""
    user_agent: str = ""
    received_at: Optional[datetime.datetime] = None


@dataclass
class ImageSource:
    """An image given either inline or by URL."""

    media_type: str = ""
    data: str = ""
    url: str = ""

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        if self.media_type:
            out["media_type"] = self.media_type
        if self.data:
            out["data"] = self.data
        if self.url:
            out["url"] = self.url
        return out

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ImageSource"]:
        data = _mapping(data)
        if data is None:
            return None
        return cls(
            media_type=data.get("media_type") or "",
            data=data.get("data") or "",
            url=data.get("url") or "",
        )


@dataclass
class Content:
    """A polymorphic content block within a message."""

    type: str
    text: str = ""
    image_source: Optional[ImageSource] = None
    tool_call_id: str = ""
    tool_name: str = ""
    arguments: str = ""
    is_error: bool = False
    cache_control: Optional[CacheControl] = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type}
        if self.text:
            out["text"] = self.text
        if self.image_source is not None:
            out["image_source"] = self.image_source.to_dict()
        if self.tool_call_id:
            out["tool_call_id"] = self.tool_call_id
        if self.tool_name:
            out["tool_name"] = self.tool_name
        if self.arguments:
            out["arguments"] = self.arguments
        if self.is_error:
            out["is_error"] = True
        if self.cache_control is not None:
            out["cache_control"] = self.cache_control.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Content":
        return cls(
            type=data.get("type") or "",
            text=data.get("text") or "",
            image_source=ImageSource.from_dict(data.get("image_source")),
            tool_call_id=data.get("tool_call_id") or "",
            tool_name=data.get("tool_name") or "",
            arguments=data.get("arguments") or "",
            is_error=bool(data.get("is_error")),
            cache_control=CacheControl.from_dict(data.get("cache_control")),
        )


@dataclass
class Message:
    """A conversational turn; content is a list of blocks (None only when malformed)."""

    role: str
    content: Optional[list[Content]] = field(default_factory=list)

    def to_dict(self) -> dict:
        content = None if self.content is None else [c.to_dict() for c in self.content]
        return {"role": self.role, "content": content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        raw = data.get("content")
        content = None if raw is None else [Content.from_dict(c) for c in raw]
        return cls(role=data.get("role") or "", content=content)


@dataclass
class Tool:
    """A callable function the model may invoke; parameters is a parsed JSON schema."""

    name: str
    type: str = ""
    description: str = ""
    parameters: Any = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        if self.type:
            out["type"] = self.type
        out["name"] = self.name
        if self.description:
            out["description"] = self.description
        out["parameters"] = self.parameters
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Tool":
        return cls(
            name=data.get("name") or "",
            type=data.get("type") or "",
            description=data.get("description") or "",
            parameters=data.get("parameters"),
        )


@dataclass
class ToolChoice:
    """How the model selects tools."""

    type: str
    name: str = ""

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type}
        if self.name:
            out["name"] = self.name
        return out

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ToolChoice"]:
        data = _mapping(data)
        if data is None:
            return None
        return cls(type=data.get("type") or "", name=data.get("name") or "")


@dataclass
class ThinkingConfig:
    """Extended-thinking settings."""

    type: str = ""
    budget_tokens: int = 0

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        if self.type:
            out["type"] = self.type
        if self.budget_tokens:
            out["budget_tokens"] = self.budget_tokens
        return out

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ThinkingConfig"]:
        data = _mapping(data)
        if data is None:
            return None
        return cls(type=data.get("type") or "", budget_tokens=int(data.get("budget_tokens") or 0))


@dataclass
class ResponseFormat:
    """Constraint on the model's output format."""

    type: str
    json_schema: Any = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type}
        if self.json_schema is not None:
            out["json_schema"] = self.json_schema
        return out

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ResponseFormat"]:
        data = _mapping(data)
        if data is None:
            return None
        return cls(type=data.get("type") or "", json_schema=data.get("json_schema"))


@dataclass
class Request:
    """The canonical intermediate form of every chat/completion request."""

    model: str = ""
    messages: list[Message] = field(default_factory=list)
    system: list[SystemBlock] = field(default_factory=list)
    tools: list[Tool] = field(default_factory=list)
    tool_choice: Optional[ToolChoice] = None
    stream: bool = False
    max_tokens: int = 0
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop: list[str] = field(default_factory=list)
    thinking: Optional[ThinkingConfig] = None
    response_format: Optional[ResponseFormat] = None
    meta: Optional[RequestMeta] = None

    def to_dict(self) -> dict:
        """Return the JSON-ready form; empty optional fields are left out and meta is never included."""
        out: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages] if self.messages else None,
        }
        if self.system:
            out["system"] = [s.to_dict() for s in self.system]
        if self.tools:
            out["tools"] = [t.to_dict() for t in self.tools]
        if self.tool_choice is not None:
            out["tool_choice"] = self.tool_choice.to_dict()
        out["stream"] = self.stream
        if self.max_tokens:
            out["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            out["temperature"] = self.temperature
        if self.top_p is not None:
            out["top_p"] = self.top_p
        if self.stop:
            out["stop"] = list(self.stop)
        if self.thinking is not None:
            out["thinking"] = self.thinking.to_dict()
        if self.response_format is not None:
            out["response_format"] = self.response_format.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Request":
        """Build a request from its JSON form."""
        return cls(
            model=data.get("model") or "",
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            system=[SystemBlock.from_dict(s) for s in data.get("system") or []],
            tools=[Tool.from_dict(t) for t in data.get("tools") or []],
            tool_choice=ToolChoice.from_dict(data.get("tool_choice")),
            stream=bool(data.get("stream")),
            max_tokens=int(data.get("max_tokens") or 0),
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            stop=list(data.get("stop") or []),
            thinking=ThinkingConfig.from_dict(data.get("thinking")),
            response_format=ResponseFormat.from_dict(data.get("response_format")),
        )


@dataclass
class Delta:
    """Incremental content of a streaming chunk."""

    text: str = ""
    thinking: str = ""
    tool_call_id: str = ""
    tool_name: str = ""
    arguments: str = ""

    def to_dict(self) -> dict:
        pairs = (
            ("text", self.text),
            ("thinking", self.thinking),
            ("tool_call_id", self.tool_call_id),
            ("tool_name", self.tool_name),
            ("arguments", self.arguments),
        )
        return {key: value for key, value in pairs if value}


@dataclass
class Usage:
    """Token consumption of a completed request."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }
        optional = (
            ("input_tokens", self.input_tokens),
            ("output_tokens", self.output_tokens),
            ("cache_read_input_tokens", self.cache_read_tokens),
            ("cache_creation_input_tokens", self.cache_creation_tokens),
        )
        out.update((key, value) for key, value in optional if value)
        return out


@dataclass
class Chunk:
    """A single incremental event of a streaming response."""

    id: str = ""
    model: str = ""
    delta: Optional[Delta] = None
    finish_reason: str = ""
    usage: Optional[Usage] = None
    role: str = ""

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"id": self.id}
        if self.model:
            out["model"] = self.model
        if self.delta is not None:
            out["delta"] = self.delta.to_dict()
        if self.finish_reason:
            out["finish_reason"] = self.finish_reason
        if self.usage is not None:
            out["usage"] = self.usage.to_dict()
        if self.role:
            out["role"] = self.role
        return out


def text_content(text: str) -> Content:
    """Create a text block."""
    return Content(type=TYPE_TEXT, text=text)


def thinking_content(text: str) -> Content:
    """Create a thinking block."""
    return Content(type=TYPE_THINKING, text=text)


def image_content(media_type: str, data: str) -> Content:
    """Create an inline image block."""
    return Content(type=TYPE_IMAGE, image_source=ImageSource(media_type=media_type, data=data))


def image_url_content(url: str) -> Content:
    """Create an image block that refers to a URL."""
    return Content(type=TYPE_IMAGE, image_source=ImageSource(url=url))


def tool_call_content(call_id: str, name: str, args: str) -> Content:
    """Create a tool-call block; args is a JSON string."""
    return Content(type=TYPE_TOOL_CALL, tool_call_id=call_id, tool_name=name, arguments=args)


def tool_result_content(call_id: str, text: str, is_error: bool) -> Content:
    """Create a tool-result block."""
    return Content(type=TYPE_TOOL_RESULT, tool_call_id=call_id, text=text, is_error=is_error)


def validate(req: Request) -> None:
    """Check a request for structural correctness, raising ValidationError on the first problem."""
    if not req.model:
        raise ValidationError("model is required")

    messages = req.messages or []
    for i, msg in enumerate(messages):
        if msg.role not in VALID_ROLES:
            raise ValidationError(f"message[{i}]: unknown role {_quote(msg.role)}")
        if msg.content is None:
            raise ValidationError(f"message[{i}]: content must not be nil")
        for j, block in enumerate(msg.content):
            where = f"message[{i}].content[{j}]"
            if block.type in (TYPE_TEXT, TYPE_THINKING):
                continue
            if block.type == TYPE_IMAGE:
                if block.image_source is None:
                    raise ValidationError(f"{where}: image requires image_source")
            elif block.type == TYPE_TOOL_CALL:
                if not block.tool_call_id:
                    raise ValidationError(f"{where}: tool_call requires tool_call_id")
                if not block.tool_name:
                    raise ValidationError(f"{where}: tool_call requires tool_name")
            elif block.type == TYPE_TOOL_RESULT:
                if not block.tool_call_id:
                    raise ValidationError(f"{where}: tool_result requires tool_call_id")
            else:
                raise ValidationError(f"{where}: unknown type {_quote(block.type)}")

    blocks = [block for msg in messages for block in msg.content or []]
    call_ids = dict.fromkeys(b.tool_call_id for b in blocks if b.type == TYPE_TOOL_CALL)
    result_ids = {b.tool_call_id for b in blocks if b.type == TYPE_TOOL_RESULT}
    for call_id in call_ids:
        if call_id not in result_ids:
            raise ValidationError(f"tool_call {_quote(call_id)} has no matching tool_result")