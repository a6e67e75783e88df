"""Backend URL and header utilities."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger("codex-bridge")

BACKEND_RESPONSES_PATH = "/codex/responses"
BRIDGE_OVERRIDE_HEADER = "x-codex-bridge-override"

# Transport/hop-by-hop headers and our own credential headers. Everything else
# the caller sends is forwarded untouched.
DISALLOWED_FORWARD_HEADERS = {
    "accept-encoding",
    "authorization",
    "connection",
    "content-length",
    "content-type",
    "host",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

# Headers the backend must receive exactly as we compute them.
SESSION_HEADER = "x-openai-session-id"
ACCOUNT_HEADER = "x-openai-account-id"
ORIGIN_HEADER = "x-openai-origin"
CLIENT_TYPE_HEADER = "x-openai-client-type"

PROTECTED_BACKEND_HEADERS = {
    "authorization",
    "content-type",
    SESSION_HEADER,
    ACCOUNT_HEADER,
}

CLIENT_ORIGIN = "claude-code-codex"
CLIENT_TYPE = "claude-code-extension"

_RESPONSES_SUFFIX_RE = re.compile(r"/responses/?$")


@dataclass
class BackendRequest:
    """A draft backend call produced from one front request."""

    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    stream: bool = False
    url: Optional[str] = None
    bridge_override: Optional[bool] = None


@dataclass
class BackendResponse:
    """Backend result: either a decoded ``body`` or an unbuffered ``stream``."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    stream: Optional[AsyncIterator[bytes]] = None

    @property
    def is_stream(self) -> bool:
        return self.stream is not None


def rewrite_url(base_url: str, original_url: Optional[str] = None) -> str:
    """Point a request at the backend's codex responses endpoint.

    A caller-supplied URL keeps its path (only the trailing ``responses``
    segment is rewritten) but takes the scheme and host of ``base_url``.
    Without a usable URL the path is built from ``base_url``.
    """
    base = urlsplit(base_url)
    if original_url:
        target = urlsplit(original_url)
        if target.scheme and target.netloc and _RESPONSES_SUFFIX_RE.search(target.path):
            path = target.path.rstrip("/")
            if not path.endswith(BACKEND_RESPONSES_PATH):
                path = _RESPONSES_SUFFIX_RE.sub(BACKEND_RESPONSES_PATH, path)
            return urlunsplit((base.scheme, base.netloc, path, target.query, ""))

    path = base.path.rstrip("/") + BACKEND_RESPONSES_PATH
    return urlunsplit((base.scheme, base.netloc, path, "", ""))


def filter_forward_headers(incoming: Mapping[str, Any]) -> dict[str, str]:
    """Drop hop-by-hop and credential headers a caller must not forward."""
    headers: dict[str, str] = {}
    for key, value in incoming.items():
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if not isinstance(value, str):
            continue
        if key.lower() in DISALLOWED_FORWARD_HEADERS:
            continue
        headers[key] = value
    return headers


def pop_bridge_override(headers: dict[str, str]) -> Optional[bool]:
    """Remove the bridge override header and return its boolean value."""
    for key in list(headers):
        if key.lower() != BRIDGE_OVERRIDE_HEADER:
            continue
        raw_value = headers.pop(key)
        return parse_bridge_flag(raw_value)
    return None


def parse_bridge_flag(value: Optional[str]) -> Optional[bool]:
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in {"1", "true"}:
        return True
    if normalized in {"0", "false"}:
        return False
    return None


def build_backend_headers(
    forwarded: Mapping[str, str],
    access_token: str,
    session_id: str,
    *,
    account_id: Optional[str] = None,
    stream: bool = True,
) -> dict[str, str]:
    """Build the outbound headers for one backend call."""
    headers: dict[str, str] = {
        "Accept": "text/event-stream" if stream else "application/json",
        "OpenAI-Beta": "responses=experimental",
        ORIGIN_HEADER: CLIENT_ORIGIN,
        CLIENT_TYPE_HEADER: CLIENT_TYPE,
    }
    normalized_keys = {key.lower(): key for key in headers}
    for key, value in forwarded.items():
        key_lower = key.lower()
        if key_lower in PROTECTED_BACKEND_HEADERS:
            continue
        existing = normalized_keys.get(key_lower)
        if existing is not None:
            headers.pop(existing)
        headers[key] = value
        normalized_keys[key_lower] = key

    headers["Content-Type"] = "application/json"
    headers[SESSION_HEADER] = session_id
    headers["Authorization"] = f"Bearer {access_token}"
    if account_id:
        headers[ACCOUNT_HEADER] = account_id
    return headers


def filter_response_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Drop backend response headers the front response recomputes."""
    filtered: dict[str, str] = {}
    for key, value in headers.items():
        key_lower = key.lower()
        if key_lower in DISALLOWED_FORWARD_HEADERS or key_lower in {
            "content-encoding",
            "set-cookie",
        }:
            continue
        filtered[key] = value
    return filtered


def is_event_stream(content_type: Optional[str]) -> bool:
    return "text/event-stream" in (content_type or "").lower()


def safe_headers_for_log(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy headers with credentials masked."""
    from ..logging import mask_token

    masked: dict[str, str] = {}
    for key, value in headers.items():
        key_lower = key.lower()
        if key_lower == "authorization" and value.lower().startswith("bearer "):
            masked[key] = f"Bearer {mask_token(value[7:])}"
        elif key_lower in {"authorization", "x-api-key", "proxy-authorization"}:
            masked[key] = mask_token(value) or ""
        else:
            masked[key] = value
    return masked


def format_httpx_error(exc: Any, url: Optional[str] = None) -> str:
    """Produce a detailed, user-facing description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)

    request = None
    try:
        request = exc.request
    except (AttributeError, RuntimeError):
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    elif url:
        parts.append(f"url={url}")
    return "; ".join(parts)
