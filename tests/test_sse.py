import json

from providers.base import ProviderConfig
from providers.openrouter.degraded import DEGRADED_MESSAGE, iter_degraded_words
from providers.openrouter.request import build_headers, build_request_body
from providers.openrouter.sse import (
    DONE_FRAME,
    SSEParser,
    content_frame,
    extract_delta_content,
    extract_stream_error,
    format_sse,
)


def _parse(lines):
    parser = SSEParser()
    events = [parser.feed_line(line) for line in lines]
    events.append(parser.flush())
    return [event for event in events if event is not None]


def test_parser_dispatches_on_blank_line():
    assert _parse(['data: {"a":1}', "", 'data: {"b":2}', ""]) == ['{"a":1}', '{"b":2}']


def test_parser_skips_comments_and_other_fields():
    lines = [": OPENROUTER PROCESSING", "", "event: message", "id: 7", "data: hi", ""]
    assert _parse(lines) == ["hi"]


def test_parser_joins_multiline_data():
    assert _parse(["data: first", "data: second", ""]) == ["first\nsecond"]


def test_parser_flushes_unterminated_event():
    assert _parse(["data: [DONE]"]) == ["[DONE]"]


def test_parser_strips_carriage_returns():
    assert _parse(["data: x\r", "\r"]) == ["x"]


def test_parser_keeps_value_without_leading_space():
    assert _parse(["data:x", ""]) == ["x"]


def test_extract_delta_content():
    data = json.dumps({"choices": [{"delta": {"content": "Hello"}}]})
    assert extract_delta_content(data) == "Hello"
    assert extract_delta_content(json.dumps({"choices": [{"delta": {}}]})) is None
    assert extract_delta_content(json.dumps({"choices": []})) is None
    assert extract_delta_content("not json") is None
    assert extract_delta_content("[DONE]") is None


def test_extract_stream_error():
    nested = json.dumps({"error": {"message": "Provider overloaded", "code": 502}})
    assert extract_stream_error(nested) == "Provider overloaded"
    assert extract_stream_error(json.dumps({"error": "boom"})) == "boom"
    assert extract_stream_error(json.dumps({"choices": []})) is None
    assert extract_stream_error("garbage") is None


def test_content_frame_uses_delta_shape():
    frame = content_frame("héllo")
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[6:]) == {"choices": [{"delta": {"content": "héllo"}}]}
    assert format_sse("[DONE]") == DONE_FRAME == "data: [DONE]\n\n"


def test_degraded_words_rejoin_to_message():
    words = list(iter_degraded_words())
    assert "".join(words) == DEGRADED_MESSAGE
    assert words[0] == "I'm"
    assert all(word.startswith(" ") for word in words[1:])


def test_degraded_message_is_not_empty():
    assert DEGRADED_MESSAGE.strip()
    assert "116 123" in DEGRADED_MESSAGE


def test_build_request_body_fixed_sampling():
    config = ProviderConfig(api_key="k", temperature=0.7, max_tokens=2000)
    messages = ({"role": "user", "content": "hi"},)
    body = build_request_body("model-a", messages, config)
    assert body == {
        "model": "model-a",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": True,
        "temperature": 0.7,
        "max_tokens": 2000,
    }


def test_build_headers_include_attribution():
    config = ProviderConfig(api_key="secret", http_referer="https://x.test", app_title="X")
    headers = build_headers(config)
    assert headers["Authorization"] == "Bearer secret"
    assert headers["HTTP-Referer"] == "https://x.test"
    assert headers["X-Title"] == "X"
    assert headers["Accept"] == "text/event-stream"

    bare = build_headers(ProviderConfig(api_key="secret"))
    assert "HTTP-Referer" not in bare
    assert "X-Title" not in bare
