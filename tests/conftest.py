"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import httpx
import pytest

# Make the package importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from codex_bridge.auth.token_store import TokenSet, now_ms
from codex_bridge.config_loader import ProxyConfig

BACKEND_BASE_URL = "https://backend.test/backend-api"
PROXY_SECRET = "test-proxy-secret"


# =============================================================================
# Config and credential fixtures
# =============================================================================


def build_proxy_config(tmp_path: Path, **overrides: Any) -> ProxyConfig:
    """Build a ProxyConfig whose files all live under ``tmp_path``."""
    values: dict[str, Any] = {
        "base_url": BACKEND_BASE_URL,
        "cache_dir": tmp_path / "cache",
        "auth_path": tmp_path / "auth" / "codex.json",
        "bridge_prompt_cache_path": tmp_path / "cache" / "bridge.txt",
        "auth_token": PROXY_SECRET,
    }
    values.update(overrides)
    return ProxyConfig(**values)


@pytest.fixture
def proxy_config(tmp_path: Path) -> ProxyConfig:
    return build_proxy_config(tmp_path)


def make_token(
    *,
    expires_in_ms: int = 3_600_000,
    access_token: str = "access-token-value",
    refresh_token: str = "refresh-token-value",
    account_id: Optional[str] = "acct_123",
) -> TokenSet:
    return TokenSet(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=now_ms() + expires_in_ms,
        account_id=account_id,
    )


class StaticAuth:
    """Stand-in for AuthManager that always returns one token."""

    def __init__(self, token: Optional[TokenSet] = None, session_id: str = "session-1") -> None:
        self.token = token or make_token()
        self.session_id = session_id
        self.calls = 0

    async def get_token(self) -> TokenSet:
        self.calls += 1
        return self.token

    def create_session_id(self) -> str:
        return self.session_id


@pytest.fixture
def static_auth() -> StaticAuth:
    return StaticAuth()


# =============================================================================
# SSE helpers
# =============================================================================


def sse_frame(event: Optional[str], data: Any) -> bytes:
    """Encode one backend SSE frame."""
    payload = data if isinstance(data, str) else json.dumps(data)
    lines = []
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {payload}")
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def backend_text_stream(
    texts: Iterable[str],
    *,
    response_id: str = "resp_1",
    model: str = "gpt-5-codex",
    usage: Optional[dict[str, Any]] = None,
    completed: bool = True,
) -> bytes:
    """Build a complete backend event stream body for the given text deltas."""
    texts = list(texts)
    frames = [
        sse_frame(
            "response.created",
            {"type": "response.created", "response": {"id": response_id, "model": model}},
        )
    ]
    for text in texts:
        frames.append(
            sse_frame("response.output_text.delta", {"type": "response.output_text.delta", "delta": text})
        )
    frames.append(
        sse_frame("response.output_text.done", {"type": "response.output_text.done", "text": "".join(texts)})
    )
    if completed:
        frames.append(
            sse_frame(
                "response.completed",
                {
                    "type": "response.completed",
                    "response": {"id": response_id, "usage": usage or {"input_tokens": 3, "output_tokens": 2}},
                },
            )
        )
    return b"".join(frames)


async def aiter_chunks(chunks: Iterable[Any]):
    """Helper to create async iterator from list of chunks."""
    for chunk in chunks:
        yield chunk


def parse_front_frames(raw: bytes) -> list[dict[str, Any]]:
    """Split front SSE output into ``{"event", "data", "comment"}`` dicts."""
    frames: list[dict[str, Any]] = []
    for block in raw.decode("utf-8").split("\n\n"):
        if not block.strip():
            continue
        frame: dict[str, Any] = {"event": None, "data": None, "comment": None}
        for line in block.split("\n"):
            if line.startswith(":"):
                frame["comment"] = line[1:].strip()
            elif line.startswith("event: "):
                frame["event"] = line[len("event: "):]
            elif line.startswith("data: "):
                value = line[len("data: "):]
                frame["data"] = value if value == "[DONE]" else json.loads(value)
        frames.append(frame)
    return frames


# =============================================================================
# Backend transport helpers
# =============================================================================


class RecordingBackend:
    """httpx MockTransport handler that records requests and replays responses."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder or (
            lambda request: httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=backend_text_stream(["Hello", " world"]),
            )
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def recording_backend() -> RecordingBackend:
    return RecordingBackend()
