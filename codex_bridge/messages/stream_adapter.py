"""Stream adapter for converting codex Responses SSE to Messages SSE.

Responses events (input):
    event: response.created
    data: {"type":"response.created","response":{"id":"resp_1","model":"gpt-5-codex"}}

    event: response.output_text.delta
    data: {"type":"response.output_text.delta","delta":"Hello"}

    event: response.output_text.done
    data: {"type":"response.output_text.done","text":"Hello"}

    event: response.completed
    data: {"type":"response.completed","response":{"usage":{...}}}

Messages events (output):
    event: message_start
    event: content_block_start
    event: content_block_delta
    event: content_block_stop
    event: message_delta
    event: message_stop
    event: message_end     (accumulated message, always last before [DONE])
    data: [DONE]

``ping`` becomes the SSE comment ``: keep-alive``.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Union

import httpx

from ..core.sse import KEEP_ALIVE_FRAME, SSEDecoder, SSEEvent, format_done, format_sse_event

logger = logging.getLogger("codex-bridge")

DEFAULT_STOP_REASON = "end_turn"
DEFAULT_MODEL = "gpt-5-codex"

EVENT_CREATED = "response.created"
EVENT_TEXT_DELTA = "response.output_text.delta"
EVENT_TEXT_DONE = "response.output_text.done"
EVENT_COMPLETED = "response.completed"
EVENT_PING = "ping"


@dataclass
class StreamState:
    """Per-stream adapter state; owned by exactly one stream."""

    message_id: str
    model: str
    started: bool = False
    block_opened: bool = False
    block_stopped: bool = False
    completed: bool = False
    text: str = ""
    usage: dict[str, Any] = field(default_factory=dict)
    stop_reason: Optional[str] = None


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


class ResponsesToMessagesStreamAdapter:
    """Converts a codex Responses SSE stream into Messages SSE events.

    Frames are yielded as soon as the backend data allows. When the backend
    stream closes, ``finalize`` synthesizes whatever terminal events the
    backend left out so the consumer always sees a complete message.
    """

    def __init__(self, message_id: Optional[str] = None, model: Optional[str] = None):
        self.state = StreamState(
            message_id=message_id or new_message_id(),
            model=model or DEFAULT_MODEL,
        )
        self._finalized = False

    async def adapt_stream(
        self,
        source: AsyncIterator[Union[bytes, str]],
    ) -> AsyncIterator[bytes]:
        """Transform backend SSE chunks into Messages SSE frames.

        Closing this generator early (caller disconnect) stops emission and
        skips finalization.
        """
        decoder = SSEDecoder()
        try:
            async for chunk in source:
                for event in decoder.feed(chunk):
                    for frame in self.handle_event(event):
                        yield frame
        except httpx.HTTPError as exc:
            logger.warning("Backend stream ended abnormally: %s: %s", exc.__class__.__name__, exc)

        for event in decoder.flush():
            for frame in self.handle_event(event):
                yield frame

        for frame in self.finalize():
            yield frame

    def handle_event(self, event: SSEEvent) -> list[bytes]:
        """Apply one backend frame to the state and return the frames it produces."""
        if event.event == EVENT_PING:
            return [KEEP_ALIVE_FRAME]
        if event.data is None or event.is_done:
            return []

        try:
            payload = event.json()
        except ValueError:
            logger.debug("StreamAdapter: dropping malformed frame: %s", event.data[:100])
            return []
        if not isinstance(payload, dict):
            return []

        name = event.event or payload.get("type")
        if name == EVENT_PING:
            return [KEEP_ALIVE_FRAME]
        if name == EVENT_CREATED:
            return self._on_created(payload)
        if name == EVENT_TEXT_DELTA:
            return self._on_text_delta(payload)
        if name == EVENT_TEXT_DONE:
            return self._on_text_done()
        if name == EVENT_COMPLETED:
            return self._on_completed(payload)
        return []

    def finalize(self) -> list[bytes]:
        """Synthesize the terminal sequence; runs once per stream."""
        if self._finalized:
            return []
        self._finalized = True

        state = self.state
        frames: list[bytes] = []
        if not state.started:
            frames.append(self._emit_message_start())
        if state.block_opened and not state.block_stopped:
            frames.append(self._emit_content_block_stop())
        if not state.completed:
            stop_reason = state.stop_reason or DEFAULT_STOP_REASON
            frames.append(self._emit_message_delta(state.usage, stop_reason))
            frames.append(self._emit_message_stop(stop_reason))
            state.completed = True
        frames.append(self._emit_message_end())
        frames.append(format_done())
        return frames

    def build_final_message(self) -> dict[str, Any]:
        """Build the complete Messages object (for non-streaming callers)."""
        state = self.state
        return {
            "id": state.message_id,
            "type": "message",
            "role": "assistant",
            "model": state.model,
            "content": [{"type": "text", "text": state.text}],
            "stop_reason": state.stop_reason or DEFAULT_STOP_REASON,
            "stop_sequence": None,
            "usage": dict(state.usage),
        }

    # -- event handlers -----------------------------------------------------

    def _on_created(self, payload: dict[str, Any]) -> list[bytes]:
        if self.state.started:
            return []
        self._update_identity(payload)
        return [self._emit_message_start()]

    def _on_text_delta(self, payload: dict[str, Any]) -> list[bytes]:
        delta = _delta_text(payload)
        if not delta:
            return []
        state = self.state
        frames: list[bytes] = []
        if not state.started:
            frames.append(self._emit_message_start())
        if not state.block_opened:
            state.block_opened = True
            frames.append(self._emit_content_block_start())
        state.text += delta
        frames.append(self._emit_content_block_delta(delta))
        return frames

    def _on_text_done(self) -> list[bytes]:
        state = self.state
        if state.block_opened and not state.block_stopped:
            return [self._emit_content_block_stop()]
        return []

    def _on_completed(self, payload: dict[str, Any]) -> list[bytes]:
        state = self.state
        if state.completed:
            return []

        frames: list[bytes] = []
        if not state.started:
            self._update_identity(payload)
            frames.append(self._emit_message_start())
        if state.block_opened and not state.block_stopped:
            frames.append(self._emit_content_block_stop())

        state.usage = _completion_usage(payload)
        state.stop_reason = _completion_stop_reason(payload)
        frames.append(self._emit_message_delta(state.usage, state.stop_reason))
        frames.append(self._emit_message_stop(state.stop_reason))
        state.completed = True
        return frames

    def _update_identity(self, payload: dict[str, Any]) -> None:
        response = payload.get("response")
        sources = [payload, response] if isinstance(response, dict) else [payload]
        for source in sources:
            if isinstance(source.get("id"), str) and source["id"]:
                self.state.message_id = source["id"]
                break
        for source in sources:
            if isinstance(source.get("model"), str) and source["model"]:
                self.state.model = source["model"]
                break

    # -- frame builders -----------------------------------------------------

    def _emit_message_start(self) -> bytes:
        self.state.started = True
        message = {
            "id": self.state.message_id,
            "type": "message",
            "role": "assistant",
            "model": self.state.model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": 0, "output_tokens": 0},
        }
        return format_sse_event("message_start", {"type": "message_start", "message": message})

    def _emit_content_block_start(self) -> bytes:
        event_data = {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "text", "text": ""},
        }
        return format_sse_event("content_block_start", event_data)

    def _emit_content_block_delta(self, text: str) -> bytes:
        event_data = {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": text},
        }
        return format_sse_event("content_block_delta", event_data)

    def _emit_content_block_stop(self) -> bytes:
        self.state.block_stopped = True
        return format_sse_event("content_block_stop", {"type": "content_block_stop", "index": 0})

    def _emit_message_delta(self, usage: dict[str, Any], stop_reason: str) -> bytes:
        event_data = {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": usage,
        }
        return format_sse_event("message_delta", event_data)

    def _emit_message_stop(self, stop_reason: str) -> bytes:
        event_data = {"type": "message_stop", "stop_reason": stop_reason, "stop_sequence": None}
        return format_sse_event("message_stop", event_data)

    def _emit_message_end(self) -> bytes:
        state = self.state
        event_data = {
            "type": "message_end",
            "message": {
                "id": state.message_id,
                "role": "assistant",
                "model": state.model,
                "content": [{"type": "text", "text": state.text}],
            },
        }
        return format_sse_event("message_end", event_data)


def _delta_text(payload: dict[str, Any]) -> Optional[str]:
    delta = payload.get("delta")
    if isinstance(delta, str):
        return delta
    if isinstance(payload.get("text"), str):
        return payload["text"]
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"]
    return None


def _completion_usage(payload: dict[str, Any]) -> dict[str, Any]:
    response = payload.get("response")
    if isinstance(response, dict) and isinstance(response.get("usage"), dict):
        return response["usage"]
    if isinstance(payload.get("usage"), dict):
        return payload["usage"]
    return {}


def _completion_stop_reason(payload: dict[str, Any]) -> str:
    if isinstance(payload.get("stop_reason"), str):
        return payload["stop_reason"]
    response = payload.get("response")
    if isinstance(response, dict) and isinstance(response.get("stop_reason"), str):
        return response["stop_reason"]
    return DEFAULT_STOP_REASON


async def adapt_responses_stream(
    source: AsyncIterator[Union[bytes, str]],
    message_id: Optional[str] = None,
    model: Optional[str] = None,
) -> AsyncIterator[bytes]:
    """Convenience wrapper around ``ResponsesToMessagesStreamAdapter``."""
    adapter = ResponsesToMessagesStreamAdapter(message_id, model)
    async for frame in adapter.adapt_stream(source):
        yield frame


async def collect_message(
    source: AsyncIterator[Union[bytes, str]],
    message_id: Optional[str] = None,
    model: Optional[str] = None,
) -> dict[str, Any]:
    """Drain a backend stream and return the single resulting Messages object."""
    adapter = ResponsesToMessagesStreamAdapter(message_id, model)
    async for _ in adapter.adapt_stream(source):
        pass
    return adapter.build_final_message()
