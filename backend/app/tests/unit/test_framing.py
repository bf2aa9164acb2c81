"""Incremental SSE / NDJSON framing tests."""

import json

import pytest

from backend.app.core.canonical_schemas import MessageStopEvent, Provider, parse_stream_event
from backend.app.core.errors import GatewayError
from backend.app.core.translators import (
    GeminiTranslator,
    OllamaTranslator,
    OpenAITranslator,
    PassthroughTranslator,
)
from backend.app.core.translators.framing import NDJSONDecoder, SSEFrameDecoder, parse_sse_text
from backend.app.tests.helpers import ndjson, sse

_TOOL_ARGS = '{"city": "Moscow, ID", "note": "line1\\nline2 \\"q\\""}'

_TRANSLATED_STREAMS = [
    (
        OpenAITranslator(),
        sse(
            {"choices": [{"index": 0, "delta": {"role": "assistant", "content": "a\nb \"q\" "}}]},
            {"choices": [{"index": 0, "delta": {"content": "café ✓"}}]},
            {"choices": [{"index": 0, "delta": {"tool_calls": [
                {"index": 0, "id": "call_1", "type": "function",
                 "function": {"name": "get_weather", "arguments": _TOOL_ARGS[:12]}},
            ]}}]},
            {"choices": [{"index": 0, "delta": {"tool_calls": [
                {"index": 0, "function": {"arguments": _TOOL_ARGS[12:]}},
            ]}}]},
            {"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}],
             "usage": {"prompt_tokens": 11, "completion_tokens": 7}},
            "[DONE]",
        ),
    ),
    (
        OpenAITranslator(),
        sse(
            {"choices": [{"index": 0, "delta": {"content": "partial"}}]},
            {"error": {"message": "rate limited", "code": "rate_limit_exceeded"}},
        ),
    ),
    (
        GeminiTranslator(),
        sse(
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "tab\there\n"}]}}]},
            {"candidates": [{"content": {"role": "model", "parts": [
                {"functionCall": {"name": "get_weather", "args": json.loads(_TOOL_ARGS)}},
            ]}, "finishReason": "STOP"}],
             "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 4}},
        ),
    ),
    (
        OllamaTranslator(),
        ndjson(
            {"model": "llama3.2", "message": {"role": "assistant", "content": "{not json}"}, "done": False},
            {"model": "llama3.2", "message": {"role": "assistant", "content": "", "tool_calls": [
                {"function": {"name": "get_weather", "arguments": json.loads(_TOOL_ARGS)}},
            ]}, "done": False},
            {"model": "llama3.2", "message": {"role": "assistant", "content": ""},
             "done": True, "done_reason": "stop", "prompt_eval_count": 10, "eval_count": 5},
        ),
    ),
    (
        PassthroughTranslator(Provider.GLM),
        sse(
            {"type": "message_start", "message": {
                "id": "msg_1", "type": "message", "role": "assistant", "model": "glm-4.7",
                "content": [], "stop_reason": None, "usage": {"input_tokens": 3, "output_tokens": 0}}},
            {"type": "ping"},
            {"type": "content_block_start", "index": 0,
             "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {}}},
            {"type": "content_block_delta", "index": 0,
             "delta": {"type": "input_json_delta", "partial_json": _TOOL_ARGS}},
            {"type": "content_block_stop", "index": 0},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use", "stop_sequence": None},
             "usage": {"output_tokens": 6}},
            {"type": "message_stop"},
            event_names=True,
        ),
    ),
]

_STREAM_IDS = ["openai", "openai-error", "gemini", "ollama", "passthrough"]


def _translate(translator, chunks):
    """Decode a whole upstream body the way the relay does, error terminus included."""
    ctx = translator.new_context("test-model", "msg_test")
    events = []
    try:
        for chunk in chunks:
            events.extend(translator.decode_chunk(chunk, ctx))
        if not ctx.finished:
            ctx.eof = True
            events.extend(translator.decode_chunk(b"", ctx))
            events.extend(ctx.finish())
    except GatewayError as e:
        events.extend(ctx.fail(e))
    return events


def _feed_all(decoder, chunks, final=True):
    frames = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))
    if final:
        frames.extend(decoder.feed(b"", final=True))
    return frames


class TestSSEFrameDecoder:

    def test_single_frame(self):
        frames = SSEFrameDecoder().feed(b"event: ping\ndata: {\"type\": \"ping\"}\n\n")
        assert len(frames) == 1
        assert frames[0].event == "ping"
        assert frames[0].json() == {"type": "ping"}

    def test_frame_split_across_chunks(self):
        raw = b'data: {"text": "hello world"}\n\n'
        chunks = [raw[i:i + 3] for i in range(0, len(raw), 3)]
        frames = _feed_all(SSEFrameDecoder(), chunks, final=False)
        assert [f.json() for f in frames] == [{"text": "hello world"}]

    def test_several_frames_in_one_chunk(self):
        frames = SSEFrameDecoder().feed(b"data: 1\n\ndata: 2\n\ndata: 3\n\n")
        assert [f.data for f in frames] == ["1", "2", "3"]

    def test_crlf_and_cr_line_endings(self):
        frames = SSEFrameDecoder().feed(b"data: a\r\n\r\ndata: b\r\rdata: c\n\n")
        assert [f.data for f in frames] == ["a", "b", "c"]

    def test_crlf_split_between_chunks(self):
        frames = _feed_all(SSEFrameDecoder(), [b"data: a\r", b"\n\r", b"\n"], final=False)
        assert [f.data for f in frames] == ["a"]

    def test_comments_are_ignored(self):
        frames = SSEFrameDecoder().feed(b": OPENROUTER PROCESSING\n\ndata: x\n\n")
        assert [f.data for f in frames] == ["x"]

    def test_multiline_data(self):
        frames = SSEFrameDecoder().feed(b"data: line1\ndata: line2\n\n")
        assert frames[0].data == "line1\nline2"

    def test_no_space_after_colon(self):
        frames = SSEFrameDecoder().feed(b"event:message_stop\ndata:{}\n\n")
        assert frames[0].event == "message_stop"
        assert frames[0].data == "{}"

    def test_multibyte_character_split(self):
        raw = 'data: {"text": "café ☃"}\n\n'.encode("utf-8")
        split = raw.index(b"\xc3") + 1
        frames = _feed_all(SSEFrameDecoder(), [raw[:split], raw[split:]], final=False)
        assert frames[0].json()["text"] == "café ☃"

    def test_final_flushes_unterminated_frame(self):
        decoder = SSEFrameDecoder()
        assert decoder.feed(b'data: {"done": true}') == []
        frames = decoder.feed(b"", final=True)
        assert [f.json() for f in frames] == [{"done": True}]

    def test_final_with_nothing_pending(self):
        decoder = SSEFrameDecoder()
        decoder.feed(b"data: x\n\n")
        assert decoder.feed(b"", final=True) == []

    def test_event_name_resets_between_frames(self):
        frames = SSEFrameDecoder().feed(b"event: a\ndata: 1\n\ndata: 2\n\n")
        assert frames[0].event == "a"
        assert frames[1].event is None


class TestNDJSONDecoder:

    def test_lines_split_across_chunks(self):
        decoder = NDJSONDecoder()
        lines = decoder.feed(b'{"a": 1}\n{"b"')
        lines += decoder.feed(b': 2}\n')
        assert [json.loads(l) for l in lines] == [{"a": 1}, {"b": 2}]

    def test_blank_lines_skipped(self):
        assert NDJSONDecoder().feed(b'\n\n{"a": 1}\n\n') == ['{"a": 1}']

    def test_final_flushes_tail(self):
        decoder = NDJSONDecoder()
        assert decoder.feed(b'{"done": true}') == []
        assert decoder.feed(b"", final=True) == ['{"done": true}']


class TestCanonicalEventSerialization:
    """Translator output survives SSE serialization and parsing unchanged."""

    @pytest.mark.parametrize("translator,chunks", _TRANSLATED_STREAMS, ids=_STREAM_IDS)
    def test_translated_stream_round_trips(self, translator, chunks):
        events = _translate(translator, chunks)
        assert events[-1].type in ("message_stop", "error")

        frames = parse_sse_text("".join(e.to_sse() for e in events))

        assert len(frames) == len(events)
        for frame, event in zip(frames, events):
            payload = event.model_dump(mode="json")
            assert frame.event == payload["type"]
            assert frame.json() == payload
            assert parse_stream_event(frame.json()) == event

    def test_frame_shape(self):
        text = MessageStopEvent().to_sse()
        assert text == 'event: message_stop\ndata: {"type": "message_stop"}\n\n'
