"""End-to-end tests for the HTTP surface using FastAPI's TestClient."""

import httpx
import pytest
from fastapi.testclient import TestClient

from codex_bridge.core.pipeline import DispatchPipeline
from codex_bridge.main import create_app
from codex_bridge.messages.bridge_prompt import BRIDGE_PROMPT_MARKER

from conftest import PROXY_SECRET, RecordingBackend, StaticAuth, build_proxy_config, parse_front_frames

AUTH_HEADERS = {"x-api-key": PROXY_SECRET}
MESSAGE_BODY = {"model": "gpt-5", "messages": [{"role": "user", "content": "hi"}], "stream": True}


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def make_client(tmp_path, backend):
    def _make(responder=None, **config_overrides):
        target = RecordingBackend(responder) if responder else backend
        config = build_proxy_config(tmp_path, **config_overrides)
        pipeline = DispatchPipeline(config, StaticAuth(), transport=target.transport())
        return TestClient(create_app(config, pipeline=pipeline)), target

    return _make


class TestCallerAuth:
    def test_missing_key_is_rejected(self, make_client):
        client, backend = make_client()
        resp = client.post("/v1/messages", json=MESSAGE_BODY)

        assert resp.status_code == 401
        assert resp.json() == {
            "type": "error",
            "error": {"type": "authentication_error", "message": "Missing API key", "status": 401},
        }
        assert backend.requests == []

    def test_wrong_key_is_rejected(self, make_client):
        client, _ = make_client()
        resp = client.post("/v1/messages", json=MESSAGE_BODY, headers={"x-api-key": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid API key"

    def test_bearer_token_is_accepted(self, make_client):
        client, _ = make_client()
        resp = client.post("/v1/messages", json=MESSAGE_BODY, headers={"Authorization": f"Bearer {PROXY_SECRET}"})
        assert resp.status_code == 200

    def test_unconfigured_secret_is_a_configuration_error(self, make_client):
        client, _ = make_client(auth_token="")
        resp = client.post("/v1/messages", json=MESSAGE_BODY, headers=AUTH_HEADERS)

        assert resp.status_code == 500
        assert resp.json()["error"]["type"] == "configuration_error"


class TestValidation:
    def test_invalid_json(self, make_client):
        client, _ = make_client()
        resp = client.post(
            "/v1/messages",
            content=b"{not json",
            headers={**AUTH_HEADERS, "content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["type"] == "invalid_request_error"

    def test_messages_must_be_a_list(self, make_client):
        client, backend = make_client()
        resp = client.post("/v1/messages", json={"messages": "hi"}, headers=AUTH_HEADERS)

        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "`messages` must be an array"
        assert backend.requests == []

    def test_prompt_must_be_a_string(self, make_client):
        client, _ = make_client()
        resp = client.post("/v1/complete", json={"prompt": ["x"]}, headers=AUTH_HEADERS)
        assert resp.status_code == 400


class TestMessagesEndpoint:
    def test_streams_messages_events(self, make_client):
        client, backend = make_client()
        with client:
            resp = client.post("/v1/messages", json=MESSAGE_BODY, headers=AUTH_HEADERS)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.content.startswith(b": keep-alive\n\n")

        frames = parse_front_frames(resp.content)
        events = [frame["event"] for frame in frames if frame["comment"] is None]
        assert events[0] == "message_start"
        assert events[-2:] == ["message_end", None]
        assert frames[-1]["data"] == "[DONE]"
        text = "".join(
            frame["data"]["delta"]["text"] for frame in frames if frame["event"] == "content_block_delta"
        )
        assert text == "Hello world"
        assert "x-api-key" not in backend.requests[0].headers

    def test_non_stream_returns_single_message(self, make_client):
        client, _ = make_client()
        resp = client.post("/v1/messages", json={**MESSAGE_BODY, "stream": False}, headers=AUTH_HEADERS)

        assert resp.status_code == 200
        message = resp.json()
        assert message["type"] == "message"
        assert message["role"] == "assistant"
        assert message["content"] == [{"type": "text", "text": "Hello world"}]
        assert message["usage"] == {"input_tokens": 3, "output_tokens": 2}

    def test_non_stream_json_backend_reply(self, make_client):
        client, _ = make_client(
            lambda request: httpx.Response(
                200,
                json={"id": "resp_7", "status": "completed", "output_text": "plain answer"},
            )
        )
        resp = client.post("/v1/messages", json={**MESSAGE_BODY, "stream": False}, headers=AUTH_HEADERS)

        assert resp.json()["id"] == "resp_7"
        assert resp.json()["content"] == [{"type": "text", "text": "plain answer"}]
        assert resp.json()["stop_reason"] == "end_turn"

    def test_upstream_failure_uses_error_envelope(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(403, json={"error": {"message": "forbidden"}}))
        resp = client.post("/v1/messages", json=MESSAGE_BODY, headers=AUTH_HEADERS)

        assert resp.status_code == 403
        assert resp.json() == {
            "type": "error",
            "error": {"type": "authorization_error", "message": "forbidden", "status": 403},
        }

    def test_bridge_query_forces_injection(self, make_client):
        client, backend = make_client()
        client.post("/v1/messages?bridge=1", json=MESSAGE_BODY, headers=AUTH_HEADERS)

        first = backend.last_json["input"][0]
        assert first["role"] == "developer"
        assert BRIDGE_PROMPT_MARKER in first["content"][0]["text"]

    def test_request_logging_writes_masked_record(self, make_client, tmp_path):
        client, _ = make_client(request_logging=True)
        client.post("/v1/messages", json=MESSAGE_BODY, headers=AUTH_HEADERS)

        logs = list((tmp_path / "cache" / "request-logs").glob("*-messages-*.json"))
        assert len(logs) == 1
        assert PROXY_SECRET not in logs[0].read_text()


class TestCompleteEndpoint:
    def test_non_stream_completion(self, make_client):
        client, backend = make_client()
        resp = client.post(
            "/v1/complete",
            json={"model": "gpt-5", "prompt": "Say hi", "max_tokens_to_sample": 5, "stream": False},
            headers=AUTH_HEADERS,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["type"] == "completion"
        assert body["completion"] == "Hello world"
        assert body["original_prompt"] == "Say hi"
        assert backend.last_json["max_output_tokens"] == 5

    def test_stream_completion(self, make_client):
        client, _ = make_client()
        resp = client.post("/v1/complete", json={"prompt": "Say hi", "stream": True}, headers=AUTH_HEADERS)

        frames = parse_front_frames(resp.content)
        assert frames[0]["comment"] == "keep-alive"
        assert frames[-1]["data"] == "[DONE]"


class TestHealth:
    def test_health_needs_no_key(self, make_client):
        client, _ = make_client(prompt_injection_strategy="auto")
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "prompt_injection_strategy": "auto",
            "allowed_models": ["gpt-5-codex", "gpt-5"],
        }

    def test_lifespan_caches_bridge_prompt(self, make_client, tmp_path):
        client, _ = make_client()
        with client:
            client.get("/health")
        cached = tmp_path / "cache" / "bridge.txt"
        assert cached.exists()
        assert BRIDGE_PROMPT_MARKER in cached.read_text()
