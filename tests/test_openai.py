import json

import pytest

from sage_router.canonical import Chunk, Delta, Format, Request, Usage
from sage_router.translate.base import StreamState, TranslateOpts, TranslationError
from sage_router.translate.openai import OpenAITranslator, parse_response

OPTS = TranslateOpts(provider="openai", model="gpt-4.1")


def run_stream(translator, lines):
    state = StreamState()
    chunks = []
    for line in lines:
        line = line.strip()
        if not line or line == "data: [DONE]":
            continue
        if line.startswith("data: "):
            line = line[len("data: "):]
        chunks.extend(translator.stream_chunk_to_canonical(line.encode(), state))
    return [c.to_dict() for c in chunks], state


def sse(payload):
    return "data: " + json.dumps(payload)


def base_chunk(choices, **extra):
    out = {"id": "chatcmpl-1", "object": "chat.completion.chunk", "model": "gpt-4.1", "choices": choices}
    out.update(extra)
    return out


def test_format_is_openai():
    assert OpenAITranslator().format() == Format.OPENAI


@pytest.mark.parametrize(
    "endpoint,expected",
    [("/v1/chat/completions", True), ("/v1/messages", False), ("/v1beta/models/x", False)],
)
def test_detect_inbound(endpoint, expected):
    assert OpenAITranslator().detect_inbound(endpoint, b"{}") is expected


def test_to_canonical_simple_text():
    body = json.dumps({"model": "gpt-4.1", "messages": [{"role": "user", "content": "Hi"}]}).encode()
    req = OpenAITranslator().to_canonical(body, TranslateOpts(provider="openai"))
    assert req.to_dict() == {
        "model": "gpt-4.1",
        "messages": [{"role": "user", "content": [{"type": "text", "text": "Hi"}]}],
        "stream": False,
    }


def test_to_canonical_system_message():
    body = json.dumps(
        {
            "model": "gpt-4.1",
            "messages": [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hi"}],
        }
    ).encode()
    req = OpenAITranslator().to_canonical(body, TranslateOpts(provider="openai"))
    assert [s.text for s in req.system] == ["Be brief."]
    assert [m.role for m in req.messages] == ["user"]


def test_from_canonical_simple():
    req = Request.from_dict(
        {
            "model": "gpt-4.1",
            "system": [{"text": "Be brief."}],
            "messages": [{"role": "user", "content": [{"type": "text", "text": "Hi"}]}],
            "max_tokens": 100,
        }
    )
    out = json.loads(OpenAITranslator().from_canonical(req, OPTS))
    assert out == {
        "model": "gpt-4.1",
        "messages": [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hi"}],
        "stream": False,
        "max_tokens": 100,
    }


def tools_request():
    return Request.from_dict(
        {
            "model": "gpt-4.1",
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": "Weather?"}]},
                {
                    "role": "assistant",
                    "content": [
                        {
                            "type": "tool_call",
                            "tool_call_id": "call_1",
                            "tool_name": "get_weather",
                            "arguments": '{"city":"Paris"}',
                        }
                    ],
                },
                {"role": "tool", "content": [{"type": "tool_result", "tool_call_id": "call_1", "text": "sunny"}]},
            ],
            "tools": [
                {"type": "function", "name": "get_weather", "description": "Weather", "parameters": {"type": "object"}}
            ],
            "tool_choice": {"type": "auto"},
        }
    )


def test_from_canonical_tools():
    out = json.loads(OpenAITranslator().from_canonical(tools_request(), OPTS))
    assert out == {
        "model": "gpt-4.1",
        "messages": [
            {"role": "user", "content": "Weather?"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'},
                    }
                ],
            },
            {"role": "tool", "content": "sunny", "tool_call_id": "call_1"},
        ],
        "tools": [
            {
                "type": "function",
                "function": {"name": "get_weather", "description": "Weather", "parameters": {"type": "object"}},
            }
        ],
        "tool_choice": "auto",
        "stream": False,
    }


def test_from_canonical_deterministic():
    translator = OpenAITranslator()
    req = tools_request()
    first = translator.from_canonical(req, OPTS)
    assert all(translator.from_canonical(req, OPTS) == first for _ in range(99))


def test_stream_text_delta():
    lines = [
        sse(base_chunk([{"index": 0, "delta": {"role": "assistant", "content": ""}, "finish_reason": None}])),
        sse(base_chunk([{"index": 0, "delta": {"content": "Hello"}, "finish_reason": None}])),
        sse(
            base_chunk(
                [{"index": 0, "delta": {}, "finish_reason": "stop"}],
                usage={
                    "prompt_tokens": 5,
                    "completion_tokens": 2,
                    "total_tokens": 7,
                    "prompt_tokens_details": {"cached_tokens": 3},
                },
            )
        ),
        "data: [DONE]",
    ]
    chunks, state = run_stream(OpenAITranslator(), lines)
    assert chunks == [
        {"id": "chatcmpl-1", "model": "gpt-4.1", "role": "assistant"},
        {"id": "chatcmpl-1", "model": "gpt-4.1", "delta": {"text": "Hello"}},
        {"id": "chatcmpl-1", "model": "gpt-4.1", "finish_reason": "stop"},
        {
            "id": "chatcmpl-1",
            "model": "gpt-4.1",
            "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7, "cache_read_input_tokens": 3},
        },
    ]
    assert state.finish_reason == "stop"
    assert state.usage == Usage(prompt_tokens=5, completion_tokens=2, total_tokens=7, cache_read_tokens=3)


def test_stream_tool_calls():
    lines = [
        sse(
            base_chunk(
                [
                    {
                        "index": 0,
                        "delta": {
                            "role": "assistant",
                            "tool_calls": [
                                {
                                    "index": 0,
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {"name": "get_weather", "arguments": ""},
                                }
                            ],
                        },
                        "finish_reason": None,
                    }
                ]
            )
        ),
        sse(
            base_chunk(
                [
                    {
                        "index": 0,
                        "delta": {"tool_calls": [{"index": 0, "function": {"arguments": '{"city":"Paris"}'}}]},
                        "finish_reason": None,
                    }
                ]
            )
        ),
        sse(base_chunk([{"index": 0, "delta": {}, "finish_reason": "tool_calls"}])),
    ]
    chunks, state = run_stream(OpenAITranslator(), lines)
    assert chunks == [
        {"id": "chatcmpl-1", "model": "gpt-4.1", "role": "assistant"},
        {"id": "chatcmpl-1", "model": "gpt-4.1", "delta": {"tool_call_id": "call_1", "tool_name": "get_weather"}},
        {"id": "chatcmpl-1", "model": "gpt-4.1", "delta": {"arguments": '{"city":"Paris"}'}},
        {"id": "chatcmpl-1", "model": "gpt-4.1", "finish_reason": "tool_calls"},
    ]
    assert state.finish_reason == "tool_calls"


def test_stream_reasoning():
    lines = [
        sse(base_chunk([{"index": 0, "delta": {"reasoning_content": "Thinking..."}, "finish_reason": None}])),
        sse(base_chunk([{"index": 0, "delta": {"content": "Answer"}, "finish_reason": None}])),
    ]
    chunks, _ = run_stream(OpenAITranslator(), lines)
    assert chunks == [
        {"id": "chatcmpl-1", "model": "gpt-4.1", "delta": {"thinking": "Thinking..."}},
        {"id": "chatcmpl-1", "model": "gpt-4.1", "delta": {"text": "Answer"}},
    ]


def test_stream_keeps_first_message_id():
    translator = OpenAITranslator()
    state = StreamState()
    translator.stream_chunk_to_canonical(json.dumps(base_chunk([])).encode(), state)
    other = base_chunk([{"index": 0, "delta": {"content": "x"}, "finish_reason": None}], id="other")
    chunks = translator.stream_chunk_to_canonical(json.dumps(other).encode(), state)
    assert chunks[0].id == "chatcmpl-1"


def test_stream_invalid_json_raises():
    with pytest.raises(TranslationError, match="parse openai stream chunk"):
        OpenAITranslator().stream_chunk_to_canonical(b"{not json", StreamState())


def test_canonical_to_stream_chunk_role_bytes():
    out = OpenAITranslator().canonical_to_stream_chunk(Chunk(id="c1", model="m", role="assistant"), StreamState())
    assert out == (
        b'{"id":"c1","object":"chat.completion.chunk","model":"m",'
        b'"choices":[{"index":0,"delta":{"role":"assistant"},"finish_reason":null}]}'
    )


def test_canonical_to_stream_chunk_tool_call_indices():
    translator = OpenAITranslator()
    state = StreamState()
    start = json.loads(
        translator.canonical_to_stream_chunk(
            Chunk(id="c", model="m", delta=Delta(tool_call_id="call_1", tool_name="f")), state
        )
    )
    assert start["choices"][0]["delta"]["tool_calls"] == [
        {"index": 0, "id": "call_1", "type": "function", "function": {"name": "f"}}
    ]
    assert state.block_index == 1
    args = json.loads(
        translator.canonical_to_stream_chunk(Chunk(id="c", model="m", delta=Delta(arguments="{}")), state)
    )
    assert args["choices"][0]["delta"]["tool_calls"] == [{"index": 1, "function": {"arguments": "{}"}}]


def test_canonical_to_stream_chunk_finish_and_usage():
    chunk = Chunk(
        id="c",
        model="m",
        finish_reason="stop",
        usage=Usage(prompt_tokens=1, completion_tokens=2, total_tokens=3, cache_read_tokens=9),
    )
    out = json.loads(OpenAITranslator().canonical_to_stream_chunk(chunk, StreamState()))
    assert out["choices"][0]["finish_reason"] == "stop"
    assert out["choices"][0]["delta"] == {}
    assert out["usage"] == {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}


def test_stream_round_trip():
    translator = OpenAITranslator()
    out_state = StreamState()
    originals = [
        Chunk(id="c", model="m", role="assistant"),
        Chunk(id="c", model="m", delta=Delta(text="Hello <world>")),
        Chunk(id="c", model="m", delta=Delta(thinking="hmm")),
        Chunk(id="c", model="m", finish_reason="stop"),
    ]
    in_state = StreamState()
    back = []
    for chunk in originals:
        payload = translator.canonical_to_stream_chunk(chunk, out_state)
        back.extend(translator.stream_chunk_to_canonical(payload, in_state))
    assert [c.to_dict() for c in back] == [c.to_dict() for c in originals]


def test_parse_response_usage():
    body = json.dumps(
        {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1,
            "model": "gpt-4.1",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }
    )
    req, usage = parse_response(body)
    assert req is None
    assert usage == Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15)


def test_parse_response_without_usage():
    assert parse_response(b'{"id":"x","choices":[]}') == (None, None)


def test_parse_response_invalid():
    with pytest.raises(TranslationError, match="parse openai response"):
        parse_response(b"[1, 2")