"""Legacy prompt-completion endpoint."""

import logging
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from ...core.backend import parse_bridge_flag
from ...core.exceptions import InvalidRequestError
from ...messages import build_backend_request, message_to_completion, prompt_to_messages_payload
from .messages import (
    buffered_message,
    caller_forward_headers,
    determine_stream_preference,
    prepare_request,
    stream_response,
)

logger = logging.getLogger("codex-bridge")


async def complete_endpoint(request: Request) -> Response:
    """POST /v1/complete - prompt in, completion out (streams Messages events)."""
    req_id = uuid.uuid4().hex[:8]
    logger.info(f"[{req_id}] Complete API request")

    try:
        config, pipeline, payload = await prepare_request(request, "complete")
    except ClientDisconnect:
        logger.warning(f"[{req_id}] ClientDisconnect while reading the request body")
        return Response(status_code=499)

    if not isinstance(payload.get("prompt"), str):
        raise InvalidRequestError("`prompt` must be a string")

    messages_payload = prompt_to_messages_payload(payload)
    stream = determine_stream_preference(messages_payload, request.headers)
    backend_request = build_backend_request(
        messages_payload,
        config,
        headers=caller_forward_headers(request),
        stream=stream,
        bridge_override=parse_bridge_flag(request.query_params.get("bridge")),
    )
    model = backend_request.body["model"]
    response = await pipeline.handle(backend_request)

    if stream:
        return stream_response(response, model)

    message = await buffered_message(response, model)
    return JSONResponse(message_to_completion(message, messages_payload), status_code=response.status)
