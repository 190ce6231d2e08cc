import json

from sage_router.canonical import (
    Message,
    Request,
    ResponseFormat,
    SystemBlock,
    Tool,
    ToolChoice,
    image_content,
    image_url_content,
    text_content,
    thinking_content,
    tool_call_content,
    tool_result_content,
)
from sage_router.translate.base import TranslateOpts
from sage_router.translate.gemini_outbound import canonical_role_to_gemini, canonical_to_gemini

OPTS = TranslateOpts(provider="gemini", model="gemini-2.5-flash")


def _render(req):
    return json.loads(canonical_to_gemini(req, OPTS))


def test_role_mapping():
    assert canonical_role_to_gemini("assistant") == "model"
    assert canonical_role_to_gemini("user") == "user"
    assert canonical_role_to_gemini("tool") == "user"
    assert canonical_role_to_gemini("system") == "user"
    assert canonical_role_to_gemini("other") == "other"


def test_simple_exact_bytes():
    req = Request(model="gemini-2.5-flash", messages=[Message(role="user", content=[text_content("Hello")])])
    assert canonical_to_gemini(req, OPTS) == (
        b'{"contents":[{"role":"user","parts":[{"text":"Hello"}]}],"model":"gemini-2.5-flash"}'
    )


def test_system_and_generation_config():
    req = Request(
        model="m",
        messages=[Message(role="user", content=[text_content("Hi")])],
        system=[SystemBlock(text="Be brief")],
        temperature=1.0,
        max_tokens=100,
        stop=["END"],
        response_format=ResponseFormat(type="json_object"),
    )
    out = canonical_to_gemini(req, OPTS)
    data = json.loads(out)
    assert data["system_instruction"] == {"parts": [{"text": "Be brief"}]}
    assert data["generationConfig"] == {
        "temperature": 1,
        "maxOutputTokens": 100,
        "stopSequences": ["END"],
        "responseMimeType": "application/json",
    }
    assert b'"temperature":1,' in out


def test_generation_config_present_for_other_response_format():
    req = Request(model="m", messages=[], response_format=ResponseFormat(type="text"))
    data = _render(req)
    assert data["generationConfig"] == {}
    assert data["contents"] is None


def test_tools_round():
    req = Request(
        model="m",
        messages=[
            Message(role="user", content=[text_content("Weather?")]),
            Message(role="assistant", content=[tool_call_content("call_get_weather", "get_weather", '{"city":"Paris"}')]),
            Message(role="tool", content=[tool_result_content("call_get_weather", '{"temp":20}', False)]),
        ],
        tools=[Tool(type="function", name="get_weather", description="Get weather", parameters={"type": "object"})],
        tool_choice=ToolChoice(type="tool", name="get_weather"),
    )
    assert _render(req) == {
        "contents": [
            {"role": "user", "parts": [{"text": "Weather?"}]},
            {"role": "model", "parts": [{"functionCall": {"name": "get_weather", "args": {"city": "Paris"}}}]},
            {"role": "user", "parts": [{"functionResponse": {"name": "get_weather", "response": {"temp": 20}}}]},
        ],
        "tools": [
            {
                "function_declarations": [
                    {"name": "get_weather", "description": "Get weather", "parameters": {"type": "object"}}
                ]
            }
        ],
        "tool_config": {"function_calling_config": {"mode": "ANY", "allowed_function_names": ["get_weather"]}},
        "model": "m",
    }


def test_invalid_arguments_and_plain_result():
    result = tool_result_content("call_lookup", "plain text", False)
    req = Request(
        model="m",
        messages=[
            Message(role="assistant", content=[tool_call_content("c1", "lookup", "not json")]),
            Message(role="user", content=[result]),
        ],
    )
    data = _render(req)
    assert data["contents"][0]["parts"] == [{"functionCall": {"name": "lookup"}}]
    assert data["contents"][1]["parts"] == [
        {"functionResponse": {"name": "lookup", "response": {"result": "plain text"}}}
    ]


def test_explicit_tool_name_wins():
    result = tool_result_content("xyz", '{"ok":true}', False)
    result.tool_name = "named"
    data = _render(Request(model="m", messages=[Message(role="tool", content=[result])]))
    assert data["contents"][0]["parts"][0]["functionResponse"] == {"name": "named", "response": {"ok": True}}


def test_skipped_blocks_leave_empty_part():
    req = Request(
        model="m",
        messages=[
            Message(role="assistant", content=[thinking_content("hmm")]),
            Message(role="user", content=[image_url_content("http://example.com/a.png")]),
            Message(role="user", content=[image_content("image/png", "abc")]),
        ],
    )
    data = _render(req)
    assert data["contents"][0] == {"role": "model", "parts": [{}]}
    assert data["contents"][1] == {"role": "user", "parts": [{}]}
    assert data["contents"][2]["parts"] == [{"inline_data": {"mime_type": "image/png", "data": "abc"}}]


def test_tool_choice_modes():
    for kind, mode in (("auto", "AUTO"), ("none", "NONE"), ("required", "ANY"), ("weird", "AUTO")):
        data = _render(Request(model="m", tool_choice=ToolChoice(type=kind)))
        assert data["tool_config"] == {"function_calling_config": {"mode": mode}}


def test_deterministic():
    req = Request(
        model="m",
        messages=[Message(role="assistant", content=[tool_call_content("c", "f", '{"b":1,"a":2}')])],
    )
    first = canonical_to_gemini(req, OPTS)
    assert b'"args":{"a":2,"b":1}' in first
    assert all(canonical_to_gemini(req, OPTS) == first for _ in range(100))