"""OpenAI / OpenRouter Chat Completions translator tests."""

import json

import pytest

from backend.app.core.canonical_schemas import CanonicalRequest, Provider, UpstreamCredential
from backend.app.core.errors import UpstreamProtocolError, UpstreamStatusError
from backend.app.core.translators import OpenAITranslator, OpenRouterTranslator, UpstreamTarget
from backend.app.core.translators.openai_out import map_finish_reason
from backend.app.tests.helpers import sse


def _target(provider=Provider.OPENAI, model="gpt-4o"):
    return UpstreamTarget(
        provider=provider,
        model=model,
        credential=UpstreamCredential(base_url="https://openai.test/v1", secret="sk-test"),
    )


def _chunk(delta=None, finish_reason=None, **extra):
    payload = {"choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}]}
    payload.update(extra)
    return payload


def _decode_all(translator, chunks, model="gpt-4o"):
    ctx = translator.new_context(model)
    events = []
    for chunk in chunks:
        events.extend(translator.decode_chunk(chunk, ctx))
    return events, ctx


class TestOpenAIEncode:

    def test_basic_request(self, simple_request_body):
        body = dict(simple_request_body, temperature=0.2, top_p=0.9, stop_sequences=["END"])
        upstream = OpenAITranslator().encode_request(CanonicalRequest.model_validate(body), _target())

        assert upstream.url == "https://openai.test/v1/chat/completions"
        assert upstream.headers["Authorization"] == "Bearer sk-test"
        assert upstream.body["model"] == "gpt-4o"
        assert upstream.body["stream"] is True
        assert upstream.body["stream_options"] == {"include_usage": True}
        assert upstream.body["max_completion_tokens"] == 256
        assert upstream.body["temperature"] == 0.2
        assert upstream.body["top_p"] == 0.9
        assert upstream.body["stop"] == ["END"]
        assert upstream.body["messages"] == [{"role": "user", "content": "Hello!"}]

    def test_top_k_dropped_for_openai(self, simple_request_body):
        body = dict(simple_request_body, top_k=40)
        upstream = OpenAITranslator().encode_request(CanonicalRequest.model_validate(body), _target())
        assert "top_k" not in upstream.body

    def test_stream_forced_even_when_not_requested(self, simple_request_body):
        body = dict(simple_request_body, stream=False)
        upstream = OpenAITranslator().encode_request(CanonicalRequest.model_validate(body), _target())
        assert upstream.body["stream"] is True

    def test_tool_conversation(self, tool_conversation_body):
        upstream = OpenAITranslator().encode_request(
            CanonicalRequest.model_validate(tool_conversation_body), _target()
        )
        messages = upstream.body["messages"]

        assert messages[0] == {"role": "system", "content": "You are a weather bot."}
        assert messages[1] == {"role": "user", "content": "Weather in Moscow, Idaho?"}

        assistant = messages[2]
        assert assistant["role"] == "assistant"
        assert assistant["content"] == "Checking."
        assert assistant["tool_calls"][0]["id"] == "toolu_01"
        assert assistant["tool_calls"][0]["function"]["name"] == "get_weather"
        assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"city": "Moscow"}

        # Tool result must directly follow the assistant turn, text after it
        assert messages[3] == {"role": "tool", "tool_call_id": "toolu_01", "content": "12C, rain"}
        assert messages[4] == {"role": "user", "content": "Thanks"}

        tool = upstream.body["tools"][0]
        assert tool["type"] == "function"
        assert tool["function"]["name"] == "get_weather"
        assert tool["function"]["parameters"]["required"] == ["city"]
        assert upstream.body["tool_choice"] == "auto"

    def test_error_tool_result_prefixed(self):
        req = CanonicalRequest.model_validate(
            {
                "messages": [
                    {
                        "role": "user",
                        "content": [
                            {"type": "tool_result", "tool_use_id": "t1", "content": "nope", "is_error": True}
                        ],
                    }
                ]
            }
        )
        messages = OpenAITranslator().encode_request(req, _target()).body["messages"]
        assert messages == [{"role": "tool", "tool_call_id": "t1", "content": "Error: nope"}]

    def test_image_becomes_data_url(self, image_block):
        req = CanonicalRequest.model_validate(
            {"messages": [{"role": "user", "content": [{"type": "text", "text": "what?"}, image_block]}]}
        )
        content = OpenAITranslator().encode_request(req, _target()).body["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "what?"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw0KGgo="

    @pytest.mark.parametrize(
        "choice, expected",
        [
            ({"type": "auto"}, "auto"),
            ({"type": "any"}, "required"),
            ({"type": "none"}, "none"),
            ({"type": "tool", "name": "get_weather"}, {"type": "function", "function": {"name": "get_weather"}}),
        ],
    )
    def test_tool_choice_mapping(self, tool_conversation_body, choice, expected):
        body = dict(tool_conversation_body, tool_choice=choice)
        upstream = OpenAITranslator().encode_request(CanonicalRequest.model_validate(body), _target())
        assert upstream.body["tool_choice"] == expected

    def test_disable_parallel_tool_use(self, tool_conversation_body):
        body = dict(tool_conversation_body, tool_choice={"type": "auto", "disable_parallel_tool_use": True})
        upstream = OpenAITranslator().encode_request(CanonicalRequest.model_validate(body), _target())
        assert upstream.body["parallel_tool_calls"] is False


class TestOpenRouterEncode:

    def test_attribution_headers_and_sampling(self, simple_request_body):
        body = dict(simple_request_body, top_k=20)
        translator = OpenRouterTranslator(referer="https://example.edu", title="switchyard")
        upstream = translator.encode_request(
            CanonicalRequest.model_validate(body),
            _target(Provider.OPENROUTER, "meta-llama/llama-3.1-70b"),
        )
        assert upstream.headers["HTTP-Referer"] == "https://example.edu"
        assert upstream.headers["X-Title"] == "switchyard"
        assert upstream.body["max_tokens"] == 256
        assert "max_completion_tokens" not in upstream.body
        assert upstream.body["top_k"] == 20
        assert upstream.body["model"] == "meta-llama/llama-3.1-70b"

    def test_no_referer_header_when_unset(self, simple_request_body):
        upstream = OpenRouterTranslator().encode_request(
            CanonicalRequest.model_validate(simple_request_body), _target(Provider.OPENROUTER)
        )
        assert "HTTP-Referer" not in upstream.headers


class TestOpenAIDecode:

    def test_text_stream(self):
        events, ctx = _decode_all(
            OpenAITranslator(),
            sse(
                _chunk({"role": "assistant", "content": ""}),
                _chunk({"content": "Hel"}),
                _chunk({"content": "lo"}),
                _chunk(finish_reason="stop"),
                {"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 2}},
                "[DONE]",
            ),
        )
        types = [e.type for e in events]
        assert types == [
            "message_start",
            "content_block_start",
            "content_block_delta",
            "content_block_delta",
            "content_block_stop",
            "message_delta",
            "message_stop",
        ]
        assert events[0].message["model"] == "gpt-4o"
        assert [e.delta["text"] for e in events if e.type == "content_block_delta"] == ["Hel", "lo"]
        assert events[-2].delta["stop_reason"] == "end_turn"
        assert events[-2].usage == {"output_tokens": 2, "input_tokens": 9}
        assert ctx.finished

    def test_tool_call_fragments(self):
        events, ctx = _decode_all(
            OpenAITranslator(),
            sse(
                _chunk({"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "get_weather", "arguments": ""}}]}),
                _chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"city":'}}]}),
                _chunk({"tool_calls": [{"index": 0, "function": {"arguments": ' "Moscow"}'}}]}),
                _chunk(finish_reason="tool_calls"),
                "[DONE]",
            ),
        )
        start = next(e for e in events if e.type == "content_block_start")
        assert start.content_block == {"type": "tool_use", "id": "call_1", "name": "get_weather", "input": {}}

        fragments = [e.delta["partial_json"] for e in events if e.type == "content_block_delta"]
        assert json.loads("".join(fragments)) == {"city": "Moscow"}
        assert events[-2].delta["stop_reason"] == "tool_use"

    def test_text_then_tool_uses_separate_blocks(self):
        events, _ = _decode_all(
            OpenAITranslator(),
            sse(
                _chunk({"content": "Let me check."}),
                _chunk({"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "f", "arguments": "{}"}}]}),
                _chunk(finish_reason="tool_calls"),
                "[DONE]",
            ),
        )
        starts = [e for e in events if e.type == "content_block_start"]
        stops = [e for e in events if e.type == "content_block_stop"]
        assert [s.index for s in starts] == [0, 1]
        assert [s.index for s in stops] == [0, 1]
        assert starts[1].content_block["type"] == "tool_use"

    def test_split_frames(self):
        raw = b"".join(sse(_chunk({"content": "Hi"}), "[DONE]"))
        chunks = [raw[i:i + 5] for i in range(0, len(raw), 5)]
        events, ctx = _decode_all(OpenAITranslator(), chunks)
        assert [e.delta["text"] for e in events if e.type == "content_block_delta"] == ["Hi"]
        assert ctx.finished

    def test_frames_after_done_ignored(self):
        events, _ = _decode_all(OpenAITranslator(), sse("[DONE]", _chunk({"content": "late"})))
        assert [e.type for e in events] == ["message_start", "message_delta", "message_stop"]

    def test_in_stream_error(self):
        with pytest.raises(UpstreamStatusError) as exc_info:
            _decode_all(
                OpenAITranslator(),
                sse({"error": {"message": "Rate limit reached", "code": 429}}),
            )
        assert exc_info.value.status_code == 429
        assert exc_info.value.error_type == "rate_limit_error"

    def test_in_stream_error_without_numeric_code(self):
        with pytest.raises(UpstreamStatusError) as exc_info:
            _decode_all(OpenRouterTranslator(), sse({"error": {"message": "bad", "code": "server_error"}}))
        assert exc_info.value.status_code == 502

    def test_malformed_chunk(self):
        with pytest.raises(UpstreamProtocolError):
            _decode_all(OpenAITranslator(), [b"data: {oops\n\n"])

    @pytest.mark.parametrize(
        "payload",
        [
            {"choices": ["x"]},
            {"choices": "x"},
            {"choices": [{"delta": "x"}]},
            {"choices": [{"delta": {"content": ["x"]}}]},
            {"choices": [{"delta": {"tool_calls": ["x"]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": "f"}]}}]},
            {"choices": [], "usage": 12},
        ],
    )
    def test_unexpected_shape(self, payload):
        with pytest.raises(UpstreamProtocolError, match="from openai"):
            _decode_all(OpenAITranslator(), sse(payload))

    def test_no_done_leaves_context_open(self):
        _, ctx = _decode_all(OpenAITranslator(), sse(_chunk({"content": "Hi"})))
        assert not ctx.finished
        assert ctx.open_block == 0


@pytest.mark.parametrize(
    "reason, expected",
    [
        ("stop", "end_turn"),
        ("length", "max_tokens"),
        ("tool_calls", "tool_use"),
        ("function_call", "tool_use"),
        ("content_filter", "refusal"),
        ("something_new", "end_turn"),
    ],
)
def test_map_finish_reason(reason, expected):
    assert map_finish_reason(reason) == expected
