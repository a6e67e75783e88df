"""Tests for SSE framing helpers."""

import pytest

from codex_bridge.core.sse import (
    KEEP_ALIVE_FRAME,
    SSEDecoder,
    SSEEvent,
    format_done,
    format_sse_event,
)


def _decode_all(text):
    decoder = SSEDecoder()
    return decoder.feed(text) + decoder.flush()


class TestSSEDecoder:
    def test_reassembles_frames_split_across_chunks(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"event: response.output_text.delta\nda") == []
        assert decoder.feed(b'ta: {"delta": "Hi"}\n') == []
        events = decoder.feed(b"\nevent: ping\ndata: {}\n\n")

        assert [e.event for e in events] == ["response.output_text.delta", "ping"]
        assert events[0].json() == {"delta": "Hi"}

    def test_normalizes_crlf(self):
        events = SSEDecoder().feed(b"event: a\r\ndata: 1\r\n\r\n")
        assert len(events) == 1
        assert events[0].event == "a"
        assert events[0].data == "1"

    def test_flush_returns_trailing_partial_frame(self):
        decoder = SSEDecoder()
        assert decoder.feed('event: response.completed\ndata: {"ok": true}') == []
        events = decoder.flush()
        assert len(events) == 1
        assert events[0].event == "response.completed"
        assert events[0].json() == {"ok": True}
        assert decoder.flush() == []

    def test_multibyte_character_split_across_chunks(self):
        raw = 'data: {"delta": "héllo ✓"}\n\n'.encode("utf-8")
        decoder = SSEDecoder()
        events = []
        for i in range(len(raw)):
            events.extend(decoder.feed(raw[i:i + 1]))

        assert len(events) == 1
        assert events[0].json() == {"delta": "héllo ✓"}

    def test_flush_reports_truncated_character(self):
        decoder = SSEDecoder()
        assert decoder.feed("data: ok ✓".encode("utf-8")[:-1]) == []
        assert decoder.flush()[0].data == "ok \ufffd"

    def test_multiline_data_is_joined(self):
        events = _decode_all("data: line one\ndata: line two\n\n")
        assert events[0].data == "line one\nline two"

    def test_comments_are_collected(self):
        events = _decode_all(": keep-alive\n\n")
        assert events[0].data is None
        assert events[0].comments == ["keep-alive"]

    def test_done_sentinel(self):
        events = _decode_all("data: [DONE]\n\n")
        assert events[0].is_done

    def test_json_raises_for_malformed_payload(self):
        with pytest.raises(ValueError):
            SSEEvent(data="{not json").json()


class TestFormatting:
    def test_format_sse_event_encodes_json(self):
        frame = format_sse_event("message_stop", {"type": "message_stop"})
        assert frame == b'event: message_stop\ndata: {"type": "message_stop"}\n\n'

    def test_format_done(self):
        assert format_done() == b"data: [DONE]\n\n"

    def test_keep_alive_is_comment(self):
        assert KEEP_ALIVE_FRAME.startswith(b":")
        assert _decode_all(KEEP_ALIVE_FRAME.decode())[0].data is None
