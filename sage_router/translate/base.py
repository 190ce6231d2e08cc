"""Translator interface, streaming state and the translator registry."""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from sage_router.canonical import Chunk, Format, Request, Usage


class TranslationError(Exception):
    """Raised when a body cannot be translated between formats."""


@dataclass
class TranslateOpts:
    """Context carried through a translation."""

    model: str = ""
    provider: str = ""
    stream: bool = False
    credentials: Any = None


@dataclass
class ToolCallAccumulator:
    """Collects incremental tool-call data."""

    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class StreamState:
    """Mutable state carried across the chunks of one stream."""

    message_id: str = ""
    model: str = ""
    block_index: int = 0
    in_thinking: bool = False
    in_tool_call: bool = False
    tool_calls: dict[str, ToolCallAccumulator] = field(default_factory=dict)
    finish_reason: str = ""
    usage: Optional[Usage] = None
    custom: dict[str, Any] = field(default_factory=dict)


class Translator(ABC):
    """Converts between one provider wire format and the canonical form."""

    @abstractmethod
    def format(self) -> Format:
        """The wire format this translator handles."""

    @abstractmethod
    def detect_inbound(self, endpoint: str, body: bytes) -> bool:
        """Whether an incoming request is in this format."""

    @abstractmethod
    def to_canonical(self, body: bytes, opts: TranslateOpts) -> Request:
        """Parse a wire body into a canonical request."""

    @abstractmethod
    def from_canonical(self, req: Request, opts: TranslateOpts) -> bytes:
        """Render a canonical request as a wire body."""

    @abstractmethod
    def stream_chunk_to_canonical(self, data: bytes, state: StreamState) -> list[Chunk]:
        """Turn one upstream stream payload into canonical chunks."""

    @abstractmethod
    def canonical_to_stream_chunk(self, chunk: Chunk, state: StreamState) -> Optional[bytes]:
        """Render one canonical chunk as a stream payload, or None when nothing is emitted."""


def _quote(fmt: Any) -> str:
    return json.dumps(str(fmt), ensure_ascii=False)


class Registry:
    """Thread-safe collection of translators keyed by format."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_format: dict[str, Translator] = {}

    def register(self, translator: Translator) -> None:
        """Add a translator, replacing any earlier one for the same format."""
        with self._lock:
            self._by_format[translator.format()] = translator

    def get(self, fmt: Any) -> Optional[Translator]:
        """Return the translator for a format, or None."""
        with self._lock:
            return self._by_format.get(fmt)

    def detect_format(self, endpoint: str, body: bytes) -> Format:
        """Ask each translator in turn; fall back to the OpenAI format."""
        with self._lock:
            translators = list(self._by_format.values())
        for translator in translators:
            if translator.detect_inbound(endpoint, body):
                return translator.format()
        return Format.OPENAI

    def translate_request(
        self, source: Any, target: Any, body: bytes, opts: TranslateOpts
    ) -> tuple[Request, bytes]:
        """Translate source → canonical → target; the body passes through when the formats match."""
        src = self.get(source)
        if src is None:
            raise TranslationError(f"no translator for source format {_quote(source)}")
        try:
            req = src.to_canonical(body, opts)
        except (TranslationError, ValueError) as exc:
            raise TranslationError(f"source→canonical: {exc}") from exc

        if target == source:
            return req, body

        tgt = self.get(target)
        if tgt is None:
            raise TranslationError(f"no translator for target format {_quote(target)}")
        try:
            target_body = tgt.from_canonical(req, opts)
        except (TranslationError, ValueError) as exc:
            raise TranslationError(f"canonical→target: {exc}") from exc
        return req, target_body