"""Dispatch pipeline: one front request in, one backend call out."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from ..auth.manager import AuthManager
from ..config_loader import ProxyConfig
from ..messages.translator import transform_request
from .backend import (
    BackendRequest,
    BackendResponse,
    build_backend_headers,
    filter_forward_headers,
    filter_response_headers,
    format_httpx_error,
    is_event_stream,
    pop_bridge_override,
    rewrite_url,
    safe_headers_for_log,
)
from .exceptions import UpstreamError

logger = logging.getLogger("codex-bridge")


class DispatchPipeline:
    """Sends transformed requests to the codex backend.

    Each ``handle`` call is independent: it acquires a credential, transforms
    the body and performs exactly one backend call.
    """

    def __init__(
        self,
        config: ProxyConfig,
        auth: AuthManager,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        bridge_prompt: Optional[str] = None,
    ) -> None:
        self.config = config
        self.auth = auth
        self.transport = transport
        self.bridge_prompt = bridge_prompt

    async def handle(self, request: BackendRequest) -> BackendResponse:
        session_id = self.auth.create_session_id()
        token = await self.auth.get_token()

        url = rewrite_url(self.config.base_url, request.url)
        forwarded = filter_forward_headers(request.headers)
        header_override = pop_bridge_override(forwarded)
        bridge_override = header_override if header_override is not None else request.bridge_override

        result = transform_request(
            self.config,
            request.body,
            inject_prompt=bridge_override,
            bridge_prompt=self.bridge_prompt,
        )
        headers = build_backend_headers(
            forwarded,
            token.access_token,
            session_id,
            account_id=token.account_id or self.config.account_id,
        )
        body = json.dumps(result.body, ensure_ascii=False).encode("utf-8")

        logger.info(
            "Dispatching session %s to %s (model=%s, bridge=%s)",
            session_id,
            url,
            result.body.get("model"),
            result.injected_bridge_prompt,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Backend request headers: %s", safe_headers_for_log(headers))

        return await self._send(url, headers, body, caller_stream=request.stream)

    async def _send(
        self,
        url: str,
        headers: dict[str, str],
        body: bytes,
        caller_stream: bool,
    ) -> BackendResponse:
        # The backend call itself is never timed out.
        client = httpx.AsyncClient(timeout=httpx.Timeout(None), transport=self.transport)
        try:
            backend_request = client.build_request("POST", url, headers=headers, content=body)
            resp = await client.send(backend_request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            logger.error("Backend request to %s failed: %s", url, format_httpx_error(exc, url))
            raise UpstreamError(f"Backend request failed: {format_httpx_error(exc, url)}") from exc

        stream_closed = False

        async def close_stream() -> None:
            nonlocal stream_closed
            if stream_closed:
                return
            stream_closed = True
            await resp.aclose()
            await client.aclose()

        response_headers = filter_response_headers(resp.headers)

        if resp.status_code >= 400:
            try:
                data = await resp.aread()
            finally:
                await close_stream()
            payload = _decode_body(data)
            message = _upstream_error_message(payload, resp.status_code)
            logger.warning("Backend %s returned status %s: %s", url, resp.status_code, message)
            raise UpstreamError(message, status_code=resp.status_code, body=payload)

        if is_event_stream(resp.headers.get("content-type")) or caller_stream:

            async def iterator() -> AsyncIterator[bytes]:
                try:
                    async for chunk in resp.aiter_bytes():
                        if chunk:
                            yield chunk
                finally:
                    await close_stream()

            return BackendResponse(
                status=resp.status_code,
                headers=response_headers,
                stream=iterator(),
            )

        try:
            data = await resp.aread()
        finally:
            await close_stream()
        return BackendResponse(
            status=resp.status_code,
            headers=response_headers,
            body=_decode_body(data),
        )


def _decode_body(data: bytes) -> Any:
    text = data.decode("utf-8", errors="replace")
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _upstream_error_message(payload: Any, status: int) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        for key in ("detail", "message"):
            if isinstance(payload.get(key), str):
                return payload[key]
    if isinstance(payload, str) and payload.strip():
        return payload.strip()[:500]
    return f"Backend returned status {status}"
