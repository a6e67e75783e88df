"""Messages API compatible endpoint backed by the codex responses backend."""

import json
import logging
import time
import uuid
from typing import Any, AsyncIterator, Mapping, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.requests import ClientDisconnect

from ...auth.app_key import AppKeyValidator
from ...config_loader import ProxyConfig
from ...core.backend import BackendResponse, parse_bridge_flag
from ...core.exceptions import InvalidRequestError
from ...core.pipeline import DispatchPipeline
from ...core.sse import KEEP_ALIVE_FRAME
from ...logging import log_proxy_request
from ...messages import (
    ResponsesToMessagesStreamAdapter,
    build_backend_request,
    collect_message,
    responses_payload_to_message,
)

logger = logging.getLogger("codex-bridge")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def caller_forward_headers(request: Request) -> dict[str, str]:
    """Inbound headers minus the caller's proxy credential."""
    return {key: value for key, value in request.headers.items() if key.lower() != "x-api-key"}


def determine_stream_preference(payload: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
    """Body ``stream`` wins; otherwise stream when the caller accepts SSE."""
    stream = payload.get("stream")
    if isinstance(stream, bool):
        return stream
    return "text/event-stream" in headers.get("accept", "")


async def read_json_payload(request: Request) -> dict[str, Any]:
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError as exc:
        raise InvalidRequestError(f"Invalid JSON payload: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return payload


async def prepare_request(request: Request, kind: str) -> tuple[ProxyConfig, DispatchPipeline, dict[str, Any]]:
    """Authenticate the caller, parse the body and record it when enabled."""
    config: ProxyConfig = request.app.state.config
    pipeline: DispatchPipeline = request.app.state.pipeline
    AppKeyValidator(config.auth_token).validate_request(request)

    payload = await read_json_payload(request)
    if config.request_logging:
        await log_proxy_request(
            config.cache_dir,
            kind,
            dict(request.headers),
            payload,
            dict(request.query_params),
        )
    return config, pipeline, payload


def stream_response(
    response: BackendResponse,
    model: str,
    message_id: Optional[str] = None,
) -> StreamingResponse:
    """Wrap a backend event stream as a Messages SSE response."""
    adapter = ResponsesToMessagesStreamAdapter(message_id, model)
    source = response.stream

    async def adapted_stream() -> AsyncIterator[bytes]:
        try:
            yield KEEP_ALIVE_FRAME
            if source is None:
                return
            async for frame in adapter.adapt_stream(source):
                yield frame
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    headers = dict(STREAM_HEADERS)
    for key, value in response.headers.items():
        if key.lower() not in {name.lower() for name in headers}:
            headers[key] = value
    return StreamingResponse(
        adapted_stream(),
        status_code=response.status,
        headers=headers,
        media_type="text/event-stream",
    )


async def buffered_message(response: BackendResponse, model: str) -> dict[str, Any]:
    """Produce one Messages object from either backend response form."""
    if response.stream is not None:
        return await collect_message(response.stream, model=model)
    return responses_payload_to_message(response.body, model)


async def messages_endpoint(request: Request) -> Response:
    """POST /v1/messages - Messages API compatible endpoint."""
    req_id = uuid.uuid4().hex[:8]
    start_time = time.perf_counter()
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"[{req_id}] Messages API request from {client_host}")

    try:
        config, pipeline, payload = await prepare_request(request, "messages")
    except ClientDisconnect:
        logger.warning(f"[{req_id}] ClientDisconnect while reading the request body")
        return Response(status_code=499)

    if not isinstance(payload.get("messages"), list):
        raise InvalidRequestError("`messages` must be an array")

    stream = determine_stream_preference(payload, request.headers)
    backend_request = build_backend_request(
        payload,
        config,
        headers=caller_forward_headers(request),
        stream=stream,
        bridge_override=parse_bridge_flag(request.query_params.get("bridge")),
    )
    model = backend_request.body["model"]
    response = await pipeline.handle(backend_request)

    elapsed = time.perf_counter() - start_time
    if stream:
        logger.info(f"[{req_id}] Starting streaming response for {model}, setup took {elapsed:.3f}s")
        return stream_response(response, model)

    message = await buffered_message(response, model)
    logger.info(
        f"[{req_id}] Completed non-streaming response for {model}, "
        f"status={response.status}, took {time.perf_counter() - start_time:.3f}s"
    )
    return JSONResponse(message, status_code=response.status)
