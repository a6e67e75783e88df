"""Messages <-> Responses translation.

Two layers live here:

* the front request builder (``build_backend_request``) which maps a
  messages-protocol payload onto a draft backend body, and
* the request transformer (``transform_request``) which turns that draft into
  the exact body the codex responses endpoint accepts.

Key mappings:
- ``system`` -> ``instructions``
- content blocks -> newline-joined text (tool blocks rendered as markers)
- ``tools`` -> flat function tools
- ``max_tokens`` -> ``max_output_tokens``
- ``messages`` -> ``input`` items with ``input_text`` parts

The reverse direction for buffered replies is ``responses_payload_to_message``.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..config_loader import ProxyConfig
from ..core.backend import BackendRequest
from .bridge_prompt import BRIDGE_PROMPT, bridge_message

logger = logging.getLogger("codex-bridge")

STATELESS_PREFIX = "rs_"
CANONICAL_MODEL = "gpt-5-codex"
MODEL_FAMILY_TOKEN = "codex"
MODEL_ALIASES = {
    "gpt-5": CANONICAL_MODEL,
    "gpt-5-codex": CANONICAL_MODEL,
}

# Front payload fields the builder maps explicitly; everything else passes through.
_CONSUMED_FIELDS = {
    "messages",
    "system",
    "tools",
    "tool_choice",
    "metadata",
    "max_tokens",
    "stop_sequences",
    "temperature",
    "top_p",
    "top_k",
    "stream",
    "model",
}

_STATUS_STOP_REASONS = {
    "completed": "end_turn",
    "incomplete": "max_tokens",
}


@dataclass(frozen=True)
class TransformResult:
    body: dict[str, Any]
    injected_bridge_prompt: bool


# ---------------------------------------------------------------------------
# Request transformer
# ---------------------------------------------------------------------------


def strip_stateless_artifacts(payload: Any) -> Any:
    """Remove every ``rs_``-prefixed key, recursing through dicts and lists."""
    if isinstance(payload, dict):
        for key in list(payload):
            if isinstance(key, str) and key.startswith(STATELESS_PREFIX):
                del payload[key]
                continue
            strip_stateless_artifacts(payload[key])
    elif isinstance(payload, list):
        for item in payload:
            strip_stateless_artifacts(item)
    return payload


def normalize_model_id(model: Any) -> str:
    """Map a requested model onto an identifier the backend serves."""
    raw = model.strip().lower() if isinstance(model, str) else ""
    if not raw:
        return CANONICAL_MODEL
    if raw in MODEL_ALIASES:
        return MODEL_ALIASES[raw]
    if MODEL_FAMILY_TOKEN in raw:
        return model
    return CANONICAL_MODEL


def merge_model_defaults(config: ProxyConfig, body: dict[str, Any]) -> None:
    """Fill reasoning/text/include controls the caller did not set."""
    defaults = config.defaults_for(body.get("model"))

    reasoning = body.get("reasoning")
    reasoning = dict(reasoning) if isinstance(reasoning, Mapping) else {}
    if reasoning.get("effort") is None:
        reasoning["effort"] = defaults.reasoning_effort
    if reasoning.get("summary") is None:
        reasoning["summary"] = defaults.reasoning_summary
    if reasoning.get("include") is None:
        reasoning["include"] = list(defaults.include)
    body["reasoning"] = reasoning

    text = body.get("text")
    text = dict(text) if isinstance(text, Mapping) else {}
    if text.get("verbosity") is None:
        text["verbosity"] = defaults.text_verbosity
    body["text"] = text

    if not isinstance(body.get("include"), list):
        body["include"] = list(defaults.include)


def has_tools(body: Mapping[str, Any]) -> bool:
    tools = body.get("tools")
    if isinstance(tools, (list, Mapping)):
        return len(tools) > 0
    return False


def should_inject_prompt(config: ProxyConfig, body: Mapping[str, Any]) -> bool:
    strategy = config.prompt_injection_strategy
    if strategy == "disabled":
        return False
    if strategy == "force":
        return True
    return has_tools(body)


def _inject_bridge_prompt(body: dict[str, Any], prompt: str) -> None:
    message = bridge_message(prompt)
    messages = body.get("messages")
    if not isinstance(messages, list):
        messages = []
    cleaned = [item for item in messages if item != message]
    body["messages"] = [message, *cleaned]


def _normalize_message_content(content: Any) -> list[dict[str, str]]:
    if isinstance(content, list):
        parts = []
        for block in content:
            if not isinstance(block, Mapping):
                continue
            if block.get("type") in ("text", "input_text") and isinstance(block.get("text"), str):
                parts.append({"type": "input_text", "text": block["text"]})
        if parts:
            return parts
    if isinstance(content, str):
        return [{"type": "input_text", "text": content}]
    return [{"type": "input_text", "text": ""}]


def convert_messages_to_input(messages: Any) -> list[dict[str, Any]]:
    """Convert chat messages into responses ``input`` message items."""
    if not isinstance(messages, list):
        return []
    items: list[dict[str, Any]] = []
    for message in messages:
        if not isinstance(message, Mapping):
            continue
        role = message.get("role")
        items.append(
            {
                "type": "message",
                "role": role if isinstance(role, str) else "user",
                "content": _normalize_message_content(message.get("content")),
            }
        )
    return items


def transform_request(
    config: ProxyConfig,
    body: Mapping[str, Any],
    inject_prompt: Optional[bool] = None,
    bridge_prompt: Optional[str] = None,
) -> TransformResult:
    """Produce the backend body for ``body`` without mutating it.

    Args:
        config: Resolved proxy configuration.
        body: Draft request (``messages`` list plus backend fields).
        inject_prompt: Per-call override of the injection strategy.
        bridge_prompt: Replacement text for the bridge developer message.

    Returns:
        The backend body and whether the bridge message was injected.
    """
    result = copy.deepcopy(dict(body))
    strip_stateless_artifacts(result)
    result["model"] = normalize_model_id(result.get("model"))
    merge_model_defaults(config, result)

    injected = False
    if inject_prompt if inject_prompt is not None else should_inject_prompt(config, result):
        _inject_bridge_prompt(result, bridge_prompt or BRIDGE_PROMPT)
        injected = True

    result["input"] = convert_messages_to_input(result.pop("messages", None))
    result["store"] = False
    result["stream"] = True
    result.setdefault("max_output_tokens", None)
    result.setdefault("max_completion_tokens", None)

    return TransformResult(body=result, injected_bridge_prompt=injected)


# ---------------------------------------------------------------------------
# Front request builder
# ---------------------------------------------------------------------------


def resolve_allowed_model(model: Any, allowed_models: list[str]) -> str:
    """Pick the allow-listed spelling for ``model``, or the first allowed model."""
    allowed = {name.lower(): name for name in allowed_models}
    if isinstance(model, str) and model.strip():
        normalized = model.strip().lower()
        alias_target = MODEL_ALIASES.get(normalized)
        if alias_target and normalized != alias_target:
            return allowed.get(alias_target.lower(), alias_target)
        direct = allowed.get(normalized)
        if direct:
            return direct
    return allowed_models[0] if allowed_models else CANONICAL_MODEL


def content_block_kind(block: Any) -> str:
    """Classify a front content block: text, tool_use, tool_result or other."""
    if not isinstance(block, Mapping):
        return "other"
    block_type = block.get("type")
    if block_type == "text" and isinstance(block.get("text"), str):
        return "text"
    if block_type in ("tool_use", "tool_result"):
        return block_type
    return "other"


def _render_tool_use(block: Mapping[str, Any]) -> str:
    tool_input = block.get("input")
    rendered = json.dumps(tool_input, ensure_ascii=False) if tool_input else "{}"
    return f"[tool:{block.get('name', '')}]{rendered}"


def _render_tool_result(block: Mapping[str, Any]) -> str:
    content = block.get("content")
    if isinstance(content, list):
        text = "\n".join(
            item["text"] for item in content if content_block_kind(item) == "text"
        )
    elif isinstance(content, str):
        text = content
    elif content is None:
        text = ""
    else:
        text = json.dumps(content, ensure_ascii=False)
    return f"[tool_result:{block.get('tool_use_id', '')}] {text}"


def _flatten_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    segments: list[str] = []
    for block in content:
        kind = content_block_kind(block)
        if kind == "text":
            segments.append(block["text"])
        elif kind == "tool_use":
            segments.append(_render_tool_use(block))
        elif kind == "tool_result":
            segments.append(_render_tool_result(block))
        elif isinstance(block, Mapping) and isinstance(block.get("text"), str):
            segments.append(block["text"])
    return "\n".join(segments)


def _convert_message(message: Any) -> Optional[dict[str, Any]]:
    if not isinstance(message, Mapping):
        return None
    return {
        "role": message.get("role", "user"),
        "content": _flatten_content(message.get("content")),
    }


def _convert_system(system: Any) -> Optional[str]:
    if isinstance(system, str):
        return system or None
    if isinstance(system, list):
        parts = []
        for item in system:
            if isinstance(item, str):
                parts.append(item)
            elif content_block_kind(item) == "text":
                parts.append(item["text"])
        return "\n".join(parts) or None
    return None


def _convert_tool(tool: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "name": tool.get("name", ""),
        "description": tool.get("description") or "",
        "parameters": tool.get("input_schema") or {"type": "object", "properties": {}},
    }


def _convert_tool_choice(tool_choice: Any) -> Any:
    if isinstance(tool_choice, str):
        return "required" if tool_choice == "any" else tool_choice
    if isinstance(tool_choice, Mapping):
        choice_type = tool_choice.get("type")
        if choice_type == "tool":
            return {"type": "function", "name": tool_choice.get("name", "")}
        if choice_type == "any":
            return "required"
        if choice_type in ("auto", "none"):
            return choice_type
    return tool_choice


def build_backend_request(
    payload: Mapping[str, Any],
    config: ProxyConfig,
    headers: Optional[Mapping[str, Any]] = None,
    stream: bool = False,
    bridge_override: Optional[bool] = None,
) -> BackendRequest:
    """Turn a validated front ``payload`` into a draft backend request."""
    body: dict[str, Any] = {
        "model": resolve_allowed_model(payload.get("model"), config.allowed_models),
        "messages": [
            converted
            for converted in (_convert_message(item) for item in payload.get("messages") or [])
            if converted is not None
        ],
        "stream": stream,
    }

    instructions = _convert_system(payload.get("system"))
    if instructions:
        body["instructions"] = instructions
    for key in ("temperature", "top_p", "top_k"):
        if payload.get(key) is not None:
            body[key] = payload[key]
    if payload.get("max_tokens") is not None:
        body["max_output_tokens"] = payload["max_tokens"]
    if payload.get("stop_sequences"):
        body["stop_sequences"] = payload["stop_sequences"]
    tools = payload.get("tools")
    if isinstance(tools, list) and tools:
        body["tools"] = [_convert_tool(tool) for tool in tools if isinstance(tool, Mapping)]
    if payload.get("tool_choice") is not None:
        body["tool_choice"] = _convert_tool_choice(payload["tool_choice"])

    for key, value in payload.items():
        if key in body or key in _CONSUMED_FIELDS:
            continue
        body[key] = value

    forward: dict[str, str] = {}
    for key, value in (headers or {}).items():
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if isinstance(value, str):
            forward[key] = value
    metadata = payload.get("metadata")
    if isinstance(metadata, Mapping) and isinstance(metadata.get("user_id"), str):
        forward["user_id"] = metadata["user_id"]

    return BackendRequest(
        body=body,
        headers=forward,
        stream=stream,
        bridge_override=bridge_override,
    )


def prompt_to_messages_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize a ``/v1/complete`` payload into the messages shape."""
    messages_payload: dict[str, Any] = {
        "model": payload.get("model"),
        "messages": [{"role": "user", "content": payload.get("prompt", "")}],
    }
    for key in (
        "max_tokens",
        "stop_sequences",
        "temperature",
        "top_p",
        "top_k",
        "stream",
        "metadata",
    ):
        if key in payload:
            messages_payload[key] = payload[key]
    # Legacy completion callers send max_tokens_to_sample.
    if "max_tokens" not in messages_payload and "max_tokens_to_sample" in payload:
        messages_payload["max_tokens"] = payload["max_tokens_to_sample"]
    return messages_payload


# ---------------------------------------------------------------------------
# Buffered response conversion
# ---------------------------------------------------------------------------


def _extract_usage(body: Mapping[str, Any]) -> dict[str, Any]:
    response = body.get("response")
    if isinstance(response, Mapping) and isinstance(response.get("usage"), Mapping):
        return dict(response["usage"])
    if isinstance(body.get("usage"), Mapping):
        return dict(body["usage"])
    return {}


def _extract_stop_reason(body: Mapping[str, Any]) -> Optional[str]:
    if isinstance(body.get("stop_reason"), str):
        return body["stop_reason"]
    status = body.get("status")
    if isinstance(status, str):
        return _STATUS_STOP_REASONS.get(status, status)
    return None


def _collect_output_blocks(item: Mapping[str, Any], blocks: list[dict[str, Any]]) -> None:
    content = item.get("content", item.get("output"))
    if isinstance(content, str):
        blocks.append({"type": "text", "text": content})
        return

    # Responses API emits function calls as top-level output items.
    if item.get("type") == "function_call":
        blocks.append(_tool_use_block(item, len(blocks)))
        return
    if not isinstance(content, list):
        return

    for part in content:
        if not isinstance(part, Mapping):
            continue
        part_type = part.get("type")
        if part_type in ("output_text", "text"):
            text = part.get("text", part.get("output_text"))
            if isinstance(text, str):
                blocks.append({"type": "text", "text": text})
        elif part_type in ("tool_call", "tool_use", "function_call"):
            blocks.append(_tool_use_block(part, len(blocks)))
        elif part_type == "tool_result":
            text = part.get("text", part.get("output_text"))
            blocks.append(
                {
                    "type": "tool_result",
                    "tool_use_id": part.get("id") if isinstance(part.get("id"), str) else f"tool_{len(blocks)}",
                    "content": text if isinstance(text, str) else "",
                }
            )


def _tool_use_block(part: Mapping[str, Any], position: int) -> dict[str, Any]:
    tool_id = part.get("call_id") or part.get("id")
    arguments = part.get("arguments", part.get("input"))
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments else {}
        except json.JSONDecodeError:
            arguments = {"raw": arguments}
    return {
        "type": "tool_use",
        "id": tool_id if isinstance(tool_id, str) else f"tool_{position}",
        "name": part.get("name") if isinstance(part.get("name"), str) else "tool",
        "input": arguments if arguments is not None else {},
    }


def _text_fallback(body: Mapping[str, Any]) -> Optional[str]:
    if isinstance(body.get("output_text"), str):
        return body["output_text"]
    content = body.get("content")
    if isinstance(content, list):
        texts = []
        for item in content:
            if isinstance(item, str):
                texts.append(item)
            elif isinstance(item, Mapping) and isinstance(item.get("text"), str):
                texts.append(item["text"])
        return "\n".join(text for text in texts if text)
    if isinstance(body.get("message"), str):
        return body["message"]
    return None


def responses_payload_to_message(body: Any, fallback_model: str) -> dict[str, Any]:
    """Convert one buffered backend payload into a front message."""
    if not isinstance(body, Mapping):
        body = {"message": body} if isinstance(body, str) else {}
    # A completion event payload wraps the response object.
    source = body["response"] if isinstance(body.get("response"), Mapping) else body

    blocks: list[dict[str, Any]] = []
    output = source.get("output", source.get("responses"))
    if isinstance(output, list):
        for item in output:
            if isinstance(item, Mapping):
                _collect_output_blocks(item, blocks)
    if not blocks:
        text = _text_fallback(source)
        if text:
            blocks.append({"type": "text", "text": text})

    message_id = source.get("id")
    model = source.get("model")
    return {
        "id": message_id if isinstance(message_id, str) else f"msg_{int(time.time() * 1000)}",
        "type": "message",
        "role": "assistant",
        "model": model if isinstance(model, str) else fallback_model,
        "content": blocks or [{"type": "text", "text": ""}],
        "stop_reason": _extract_stop_reason(body) or _extract_stop_reason(source),
        "stop_sequence": source.get("stop_sequence") if isinstance(source.get("stop_sequence"), str) else None,
        "usage": _extract_usage(body) or _extract_usage(source),
    }


def message_to_completion(message: Mapping[str, Any], original: Mapping[str, Any]) -> dict[str, Any]:
    """Reshape a front message into the ``/v1/complete`` response."""
    completion = ""
    for block in message.get("content") or []:
        if content_block_kind(block) == "text":
            completion = block["text"]
            break
    messages = original.get("messages") or [{}]
    return {
        "id": message.get("id"),
        "type": "completion",
        "model": message.get("model"),
        "completion": completion,
        "stop_reason": message.get("stop_reason") or "end_turn",
        "stop": message.get("stop_sequence"),
        "usage": message.get("usage") or {},
        "original_prompt": messages[0].get("content", "") if isinstance(messages[0], Mapping) else "",
    }
