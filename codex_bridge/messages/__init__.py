"""Messages <-> codex Responses translation helpers."""

from .bridge_prompt import BRIDGE_PROMPT, BRIDGE_PROMPT_MARKER, ensure_bridge_prompt_cached
from .stream_adapter import (
    ResponsesToMessagesStreamAdapter,
    StreamState,
    adapt_responses_stream,
    collect_message,
)
from .translator import (
    TransformResult,
    build_backend_request,
    message_to_completion,
    normalize_model_id,
    prompt_to_messages_payload,
    responses_payload_to_message,
    should_inject_prompt,
    transform_request,
)

__all__ = [
    "BRIDGE_PROMPT",
    "BRIDGE_PROMPT_MARKER",
    "ensure_bridge_prompt_cached",
    "ResponsesToMessagesStreamAdapter",
    "StreamState",
    "adapt_responses_stream",
    "collect_message",
    "TransformResult",
    "build_backend_request",
    "message_to_completion",
    "normalize_model_id",
    "prompt_to_messages_payload",
    "responses_payload_to_message",
    "should_inject_prompt",
    "transform_request",
]
