import json

from sage_router.canonical import (
    CacheControl,
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
from sage_router.translate.base import TranslateOpts
from sage_router.translate.claude_outbound import (
    canonical_to_claude,
    ensure_alternating,
    merge_consecutive_messages,
)

OPTS = TranslateOpts(provider="anthropic", model="claude-sonnet-4-6")


def _render(req):
    return json.loads(canonical_to_claude(req, OPTS))


def _simple_request():
    return Request(
        model="claude-sonnet-4-6",
        system=[SystemBlock(text="You are helpful.")],
        messages=[Message(role="user", content=[text_content("Hello")])],
        max_tokens=1024,
        temperature=0.7,
    )


def _tools_request():
    return Request(
        model="claude-sonnet-4-6",
        messages=[
            Message(role="user", content=[text_content("What is the weather?")]),
            Message(role="assistant", content=[tool_call_content("call_1", "get_weather", '{"b":1,"a":"x"}')]),
            Message(role="user", content=[tool_result_content("call_1", "sunny", False)]),
        ],
        tools=[Tool(name="get_weather", type="function", description="Weather", parameters={"type": "object"})],
        tool_choice=ToolChoice(type="required"),
    )


def test_simple():
    assert _render(_simple_request()) == {
        "model": "claude-sonnet-4-6",
        "system": "You are helpful.",
        "messages": [{"role": "user", "content": "Hello"}],
        "max_tokens": 1024,
        "temperature": 0.7,
    }


def test_tools():
    assert _render(_tools_request()) == {
        "model": "claude-sonnet-4-6",
        "messages": [
            {"role": "user", "content": "What is the weather?"},
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "call_1", "name": "get_weather", "input": {"a": "x", "b": 1}}],
            },
            {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "sunny"}]},
        ],
        "tools": [{"name": "get_weather", "description": "Weather", "input_schema": {"type": "object"}}],
        "tool_choice": {"type": "any"},
        "max_tokens": 8192,
    }


def test_tool_input_keys_are_sorted_on_the_wire():
    body = canonical_to_claude(_tools_request(), OPTS)
    assert b'"input":{"a":"x","b":1}' in body


def test_deterministic():
    for req in (_simple_request(), _tools_request()):
        first = canonical_to_claude(req, OPTS)
        assert all(canonical_to_claude(req, OPTS) == first for _ in range(100))


def test_exact_bytes_with_default_max_tokens():
    req = Request(model="m", messages=[Message(role="user", content=[text_content("hi")])])
    assert canonical_to_claude(req, OPTS) == b'{"model":"m","messages":[{"role":"user","content":"hi"}],"max_tokens":8192}'


def test_thinking_raises_max_tokens_above_budget():
    req = Request(
        model="m",
        messages=[Message(role="user", content=[text_content("hi")])],
        thinking=ThinkingConfig(type="enabled", budget_tokens=10000),
    )
    out = _render(req)
    assert out["thinking"] == {"type": "enabled", "budget_tokens": 10000}
    assert out["max_tokens"] == 10000 + 1024


def test_invalid_arguments_become_empty_object():
    req = Request(model="m", messages=[
        Message(role="user", content=[text_content("hi")]),
        Message(role="assistant", content=[tool_call_content("c", "f", "not json")]),
    ])
    assert _render(req)["messages"][1]["content"] == [{"type": "tool_use", "id": "c", "name": "f", "input": {}}]


def test_null_arguments_omit_input():
    req = Request(model="m", messages=[
        Message(role="user", content=[text_content("hi")]),
        Message(role="assistant", content=[tool_call_content("c", "f", "null")]),
    ])
    assert _render(req)["messages"][1]["content"] == [{"type": "tool_use", "id": "c", "name": "f"}]


def test_image_and_thinking_blocks():
    req = Request(model="m", messages=[
        Message(role="user", content=[image_content("image/png", "abc")]),
        Message(role="assistant", content=[thinking_content("hmm"), text_content("ok")]),
    ])
    out = _render(req)
    assert out["messages"][0]["content"] == [
        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "abc"}}
    ]
    assert out["messages"][1]["content"] == [
        {"type": "thinking", "thinking": "hmm"},
        {"type": "text", "text": "ok"},
    ]


def test_cache_control_keeps_block_form():
    block = text_content("hi")
    block.cache_control = CacheControl(type="ephemeral")
    req = Request(
        model="m",
        system=[SystemBlock(text="a"), SystemBlock(text="b", cache_control=CacheControl(type="ephemeral"))],
        messages=[Message(role="user", content=[block])],
    )
    out = _render(req)
    assert out["messages"][0]["content"] == [{"type": "text", "text": "hi", "cache_control": {"type": "ephemeral"}}]
    assert out["system"] == [
        {"type": "text", "text": "a"},
        {"type": "text", "text": "b", "cache_control": {"type": "ephemeral"}},
    ]


def test_consecutive_user_messages_are_merged():
    req = Request(model="m", messages=[
        Message(role="user", content=[text_content("a")]),
        Message(role="user", content=[text_content("b")]),
    ])
    assert _render(req)["messages"] == [
        {"role": "user", "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}
    ]


def test_leading_assistant_gets_user_placeholder():
    req = Request(model="m", messages=[Message(role="assistant", content=[text_content("x")])])
    assert _render(req)["messages"] == [
        {"role": "user", "content": "..."},
        {"role": "assistant", "content": "x"},
    ]


def test_tool_type_kept_unless_function_and_tool_choice_name():
    req = Request(
        model="m",
        messages=[Message(role="user", content=[text_content("x")])],
        tools=[Tool(name="web", type="web_search_20250305", parameters=None)],
        tool_choice=ToolChoice(type="tool", name="web"),
        stop=["END"],
        stream=True,
    )
    out = _render(req)
    assert out["tools"] == [{"name": "web", "input_schema": None, "type": "web_search_20250305"}]
    assert out["tool_choice"] == {"type": "tool", "name": "web"}
    assert out["stop_sequences"] == ["END"]
    assert out["stream"] is True


def test_html_characters_are_escaped():
    req = Request(model="m", messages=[Message(role="user", content=[text_content("<b>")])])
    assert b"\\u003cb\\u003e" in canonical_to_claude(req, OPTS)


def test_merge_consecutive_messages_direct():
    messages = [
        {"role": "user", "content": "a"},
        {"role": "user", "content": [{"type": "text", "text": "b"}]},
        {"role": "assistant", "content": "c"},
    ]
    assert merge_consecutive_messages(messages) == [
        {"role": "user", "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]},
        {"role": "assistant", "content": "c"},
    ]
    single = [{"role": "assistant", "content": "x"}]
    assert merge_consecutive_messages(single) == single


def test_ensure_alternating_direct():
    assert ensure_alternating([{"role": "user", "content": "a"}, {"role": "user", "content": "b"}]) == [
        {"role": "user", "content": "a"},
        {"role": "assistant", "content": "..."},
        {"role": "user", "content": "b"},
    ]
    assert ensure_alternating([{"role": "assistant", "content": "x"}]) == [
        {"role": "user", "content": "..."},
        {"role": "assistant", "content": "x"},
    ]
    assert ensure_alternating([]) == []