# sage-router

A library that moves chat-completion requests and streaming responses between
the wire formats of different LLM providers. Every format passes through one
canonical representation. A request received in one format can therefore be
sent on in another.

## What it provides

- `sage_router.canonical` holds the canonical types: `Request`, `Message`,
  `Content`, `Tool`, `ToolChoice`, `Chunk`, `Delta`, `Usage` and the `Format`
  enum. It also has helpers such as `text_content()` and
  `tool_call_content()`. `validate()` checks a request's structure and raises
  `ValidationError`. One of its checks is that every tool call has a matching
  tool result.
- `sage_router.translate.base` defines the `Translator` interface, along with
  `StreamState`, `TranslateOpts` and `Registry`. The registry looks up a
  translator by `Format`. It runs source → canonical → target translation with
  `translate_request()` and raises `TranslationError` on failure.
- `sage_router.translate.detect` has two functions:
  - `detect_source_format()` works out a request's format from its endpoint
    and body shape.
  - `detect_target_format()` maps a provider name to its format.
- Translators convert request bodies and streaming chunks in both directions:
  - `OpenAITranslator` in `sage_router.translate.openai`. That module also has
    `parse_response()` for usage in non-streaming responses.
  - `ClaudeTranslator` in `sage_router.translate.claude`.
  - `GeminiTranslator` in `sage_router.translate.gemini`. Non-streaming Gemini
    responses are read by `parse_response()` and `parse_finish_reason()` in
    `sage_router.translate.gemini_response`.
- `sage_router.sse` handles Server-Sent Event streams:
  - `read_events()` parses a stream, which may be a string, bytes, a file or
    an iterable of lines. It yields `Event` objects and stops after a
    `[DONE]` event.
  - `write_event()`, `write_chunk()` and `write_done()` write events to a
    text or binary stream.
  - `set_headers()` fills in the response headers a stream needs.

## Installation

```
pip install .
```

## Example

```python
from sage_router.canonical import Format
from sage_router.translate.base import Registry, TranslateOpts
from sage_router.translate.openai import OpenAITranslator
from sage_router.translate.claude import ClaudeTranslator

registry = Registry()
registry.register(OpenAITranslator())
registry.register(ClaudeTranslator())

body = b'{"model": "gpt-4.1", "messages": [{"role": "user", "content": "Hi"}]}'
request, claude_body = registry.translate_request(
    Format.OPENAI, Format.CLAUDE, body, TranslateOpts(provider="anthropic")
)
```

Reading a stream:

```python
from sage_router.sse import read_events

for event in read_events("data: hello\n\ndata: [DONE]\n\n"):
    print(event.data)
```

## What it does not do

This package is a translation library only. It does not provide:

- an HTTP server or proxy command
- storage for connections, API keys or usage records
- encryption of stored secrets
- translators for the Responses, Kiro, Cursor or Ollama formats

`detect_source_format()` and `detect_target_format()` can name those formats,
but no translator is included for them.

## Running the tests

```
pip install .[test]
pytest
```