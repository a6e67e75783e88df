"""SSE (Server-Sent Events) framing utilities.

Frames look like::

    event: response.output_text.delta
    data: {"delta": "Hello"}

and are terminated by a blank line. Multi-line payloads repeat ``data:`` and
are joined with a newline on decode. Lines starting with ``:`` are comments.
"""

import codecs
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

DONE_SENTINEL = "[DONE]"
KEEP_ALIVE_FRAME = b": keep-alive\n\n"


@dataclass
class SSEEvent:
    """One decoded SSE frame."""

    data: Optional[str]
    event: Optional[str] = None
    comments: list[str] = field(default_factory=list)

    @property
    def is_done(self) -> bool:
        return self.data is not None and self.data.strip() == DONE_SENTINEL

    def json(self) -> Any:
        """Parse the data payload, raising ``ValueError`` when it is not JSON."""
        if self.data is None:
            raise ValueError("event has no data")
        return json.loads(self.data)

    def encode(self) -> bytes:
        lines: list[str] = [f":{comment}" for comment in self.comments]
        if self.event is not None:
            lines.append(f"event: {self.event}")
        if self.data is not None:
            for item in self.data.split("\n"):
                lines.append(f"data: {item}")
        return ("\n".join(lines) + "\n\n").encode("utf-8")


class SSEDecoder:
    """Incremental decoder that reassembles frames split across reads."""

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: Union[bytes, str]) -> list[SSEEvent]:
        if not chunk:
            return []
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        self._buffer += text.replace("\r\n", "\n").replace("\r", "\n")
        events: list[SSEEvent] = []

        while True:
            sep_index = self._buffer.find("\n\n")
            if sep_index == -1:
                break
            raw_event = self._buffer[:sep_index]
            self._buffer = self._buffer[sep_index + 2:]
            if not raw_event.strip():
                continue
            events.append(parse_event(raw_event))

        return events

    def flush(self) -> list[SSEEvent]:
        """Return the trailing partial frame (if any) as a best-effort event."""
        leftover = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not leftover.strip():
            return []
        return [parse_event(leftover.strip("\n"))]


def parse_event(raw: str) -> SSEEvent:
    data_lines: list[str] = []
    comments: list[str] = []
    event_name: Optional[str] = None
    for line in raw.split("\n"):
        if not line:
            continue
        if line.startswith(":"):
            comments.append(line[1:].strip())
            continue
        key, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        key = key.strip()
        if key == "event":
            event_name = value.strip() or None
        elif key == "data":
            data_lines.append(value)
    data = "\n".join(data_lines) if data_lines else None
    return SSEEvent(data=data, event=event_name, comments=comments)


def format_sse_event(event_type: Optional[str], data: Any) -> bytes:
    """Format one SSE frame; ``data`` that is not a string is JSON encoded."""
    if isinstance(data, str):
        payload = data
    else:
        payload = json.dumps(data, ensure_ascii=False)
    return SSEEvent(data=payload, event=event_type).encode()


def format_done() -> bytes:
    return SSEEvent(data=DONE_SENTINEL).encode()
