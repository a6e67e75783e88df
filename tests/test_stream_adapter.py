"""Tests for the Responses -> Messages stream adapter."""

import json

import pytest

from codex_bridge.core.sse import SSEEvent
from codex_bridge.messages.stream_adapter import (
    ResponsesToMessagesStreamAdapter,
    adapt_responses_stream,
    collect_message,
)

from conftest import aiter_chunks, backend_text_stream, parse_front_frames, sse_frame

FULL_SEQUENCE = [
    "message_start",
    "content_block_start",
    "content_block_delta",
    "content_block_delta",
    "content_block_stop",
    "message_delta",
    "message_stop",
    "message_end",
    None,
]


async def _run(chunks, **kwargs) -> bytes:
    output = b""
    async for frame in adapt_responses_stream(aiter_chunks(chunks), **kwargs):
        output += frame
    return output


def _events(raw: bytes) -> list:
    return [frame["event"] for frame in parse_front_frames(raw)]


class TestFullStream:
    @pytest.mark.asyncio
    async def test_emits_complete_event_sequence(self):
        raw = await _run([backend_text_stream(["Hel", "lo"])])
        frames = parse_front_frames(raw)

        assert _events(raw) == FULL_SEQUENCE
        assert frames[-1]["data"] == "[DONE]"
        assert frames[0]["data"]["message"]["id"] == "resp_1"
        assert frames[0]["data"]["message"]["model"] == "gpt-5-codex"
        assert [f["data"]["delta"]["text"] for f in frames if f["event"] == "content_block_delta"] == [
            "Hel",
            "lo",
        ]
        assert frames[5]["data"]["usage"] == {"input_tokens": 3, "output_tokens": 2}
        assert frames[5]["data"]["delta"]["stop_reason"] == "end_turn"
        assert frames[7]["data"]["message"]["content"] == [{"type": "text", "text": "Hello"}]

    @pytest.mark.asyncio
    async def test_split_boundaries_do_not_change_output(self):
        body = backend_text_stream(["alpha", " beta", " gamma"])
        whole = await _run([body], message_id="msg_fixed")
        per_byte = await _run([body[i:i + 1] for i in range(len(body))], message_id="msg_fixed")
        uneven = await _run([body[:7], body[7:50], body[50:]], message_id="msg_fixed")

        assert whole == per_byte == uneven

    @pytest.mark.asyncio
    async def test_raw_utf8_split_mid_character(self):
        def frame(event, data):
            return sse_frame(event, json.dumps(data, ensure_ascii=False))

        body = b"".join(
            [
                frame("response.created", {"type": "response.created", "response": {"id": "resp_1"}}),
                frame("response.output_text.delta", {"type": "response.output_text.delta", "delta": "héllo ✓"}),
                frame("response.completed", {"type": "response.completed", "response": {"id": "resp_1"}}),
            ]
        )
        assert "✓".encode("utf-8") in body

        whole = await _run([body], message_id="msg_fixed")
        per_byte = await _run([body[i:i + 1] for i in range(len(body))], message_id="msg_fixed")
        frames = parse_front_frames(per_byte)

        assert per_byte == whole
        assert b"\xef\xbf\xbd" not in per_byte
        assert [f["data"]["delta"]["text"] for f in frames if f["event"] == "content_block_delta"] == ["héllo ✓"]
        assert frames[-2]["data"]["message"]["content"] == [{"type": "text", "text": "héllo ✓"}]

    @pytest.mark.asyncio
    async def test_trailing_frame_without_terminator_is_processed(self):
        body = backend_text_stream(["Hi"]).rstrip(b"\n")
        raw = await _run([body])
        frames = parse_front_frames(raw)

        message_delta = next(f for f in frames if f["event"] == "message_delta")
        assert message_delta["data"]["usage"] == {"input_tokens": 3, "output_tokens": 2}
        assert _events(raw).count("message_stop") == 1


class TestTruncatedStream:
    @pytest.mark.asyncio
    async def test_missing_completion_is_synthesized(self):
        raw = await _run([backend_text_stream(["partial"], completed=False)])
        frames = parse_front_frames(raw)

        assert _events(raw) == [
            "message_start",
            "content_block_start",
            "content_block_delta",
            "content_block_stop",
            "message_delta",
            "message_stop",
            "message_end",
            None,
        ]
        assert frames[4]["data"]["delta"]["stop_reason"] == "end_turn"
        assert frames[4]["data"]["usage"] == {}
        assert frames[6]["data"]["message"]["content"][0]["text"] == "partial"

    @pytest.mark.asyncio
    async def test_open_block_is_closed_once(self):
        chunks = [
            sse_frame("response.created", {"response": {"id": "resp_2"}}),
            sse_frame("response.output_text.delta", {"delta": "x"}),
        ]
        raw = await _run(chunks)
        assert _events(raw).count("content_block_stop") == 1
        assert _events(raw)[-2:] == ["message_end", None]

    @pytest.mark.asyncio
    async def test_empty_stream_still_produces_message(self):
        raw = await _run([], message_id="msg_empty", model="gpt-5")
        frames = parse_front_frames(raw)

        assert _events(raw) == ["message_start", "message_delta", "message_stop", "message_end", None]
        assert frames[0]["data"]["message"]["id"] == "msg_empty"
        assert frames[0]["data"]["message"]["model"] == "gpt-5"


class TestEventHandling:
    def test_ping_becomes_keep_alive(self):
        adapter = ResponsesToMessagesStreamAdapter()
        frames = adapter.handle_event(SSEEvent(data="{}", event="ping"))
        assert frames == [b": keep-alive\n\n"]

    def test_malformed_and_unknown_frames_are_dropped(self):
        adapter = ResponsesToMessagesStreamAdapter()
        assert adapter.handle_event(SSEEvent(data="{broken", event="response.output_text.delta")) == []
        assert adapter.handle_event(SSEEvent(data='{"a": 1}', event="response.reasoning.delta")) == []
        assert adapter.handle_event(SSEEvent(data="[DONE]")) == []
        assert adapter.handle_event(SSEEvent(data=None, comments=["hi"])) == []
        assert adapter.state.started is False

    def test_event_name_falls_back_to_payload_type(self):
        adapter = ResponsesToMessagesStreamAdapter()
        frames = adapter.handle_event(SSEEvent(data='{"type": "response.output_text.delta", "delta": "x"}'))
        raw = parse_front_frames(b"".join(frames))
        assert [f["event"] for f in raw] == ["message_start", "content_block_start", "content_block_delta"]

    def test_delta_while_idle_opens_message_and_block(self):
        adapter = ResponsesToMessagesStreamAdapter()
        adapter.handle_event(SSEEvent(data='{"delta": "a"}', event="response.output_text.delta"))
        adapter.handle_event(SSEEvent(data='{"delta": "b"}', event="response.output_text.delta"))

        assert adapter.state.started is True
        assert adapter.state.block_opened is True
        assert adapter.state.text == "ab"

    def test_second_created_is_ignored(self):
        adapter = ResponsesToMessagesStreamAdapter()
        adapter.handle_event(SSEEvent(data='{"response": {"id": "resp_a"}}', event="response.created"))
        assert adapter.handle_event(SSEEvent(data='{"response": {"id": "resp_b"}}', event="response.created")) == []
        assert adapter.state.message_id == "resp_a"

    @pytest.mark.asyncio
    async def test_double_completion_emits_single_stop(self):
        completed = sse_frame("response.completed", {"response": {"usage": {"output_tokens": 1}}})
        raw = await _run([sse_frame("response.output_text.delta", {"delta": "x"}), completed, completed])

        events = _events(raw)
        assert events.count("message_delta") == 1
        assert events.count("message_stop") == 1
        assert events.count("message_end") == 1

    @pytest.mark.asyncio
    async def test_top_level_usage_and_stop_reason(self):
        completed = sse_frame(
            "response.completed",
            {"usage": {"output_tokens": 9}, "stop_reason": "max_tokens"},
        )
        frames = parse_front_frames(await _run([completed]))
        delta = next(f for f in frames if f["event"] == "message_delta")

        assert delta["data"]["usage"] == {"output_tokens": 9}
        assert delta["data"]["delta"]["stop_reason"] == "max_tokens"

    def test_finalize_runs_once(self):
        adapter = ResponsesToMessagesStreamAdapter()
        assert adapter.finalize()
        assert adapter.finalize() == []


class TestStreamLifecycle:
    @pytest.mark.asyncio
    async def test_early_close_skips_finalization(self):
        adapter = ResponsesToMessagesStreamAdapter()
        stream = adapter.adapt_stream(aiter_chunks([backend_text_stream(["a", "b"])]))

        first = await stream.__anext__()
        await stream.aclose()

        assert b"message_start" in first
        assert adapter._finalized is False

    @pytest.mark.asyncio
    async def test_collect_message_returns_single_message(self):
        message = await collect_message(aiter_chunks([backend_text_stream(["Hello", " world"])]))

        assert message == {
            "id": "resp_1",
            "type": "message",
            "role": "assistant",
            "model": "gpt-5-codex",
            "content": [{"type": "text", "text": "Hello world"}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": 3, "output_tokens": 2},
        }

    @pytest.mark.asyncio
    async def test_accepts_text_chunks(self):
        body = backend_text_stream(["text"]).decode("utf-8")
        raw = await _run([body])
        assert _events(raw) == [
            "message_start",
            "content_block_start",
            "content_block_delta",
            "content_block_stop",
            "message_delta",
            "message_stop",
            "message_end",
            None,
        ]
