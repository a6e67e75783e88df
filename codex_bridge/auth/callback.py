"""Browser launch and the one-shot local OAuth callback listener.

The listener only runs during an interactive grant: it binds the redirect
port, serves ``/auth/callback`` once, validates the returned state and hands
the authorization code back to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional
from urllib.parse import parse_qs, urlparse

from ..core.exceptions import AuthenticationError, StateMismatchError

logger = logging.getLogger("codex-bridge")

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PORT = 1455
CALLBACK_PATH = "/auth/callback"
CALLBACK_TIMEOUT = 300.0

SUCCESS_PAGE = (
    "<html><body><h1>Authentication complete</h1>"
    "<p>You can close this window.</p></body></html>"
)


class _CallbackServer(HTTPServer):
    expected_state: str
    auth_code: Optional[str] = None
    returned_state: Optional[str] = None
    done: threading.Event


class _OAuthCallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def log_message(self, format, *args):  # noqa: A002
        logger.debug("oauth callback: " + format, *args)

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != CALLBACK_PATH:
            self._reply(404, "Not Found")
            return

        qs = parse_qs(parsed.query)
        code = qs.get("code", [None])[0]
        state = qs.get("state", [None])[0]
        if not code or not state:
            self._reply(400, "Missing code/state")
            return
        if state != self.server.expected_state:
            self._reply(400, "State mismatch")
            return

        self.server.auth_code = code
        self.server.returned_state = state
        self._reply(200, SUCCESS_PAGE, content_type="text/html; charset=utf-8")
        self.server.done.set()

    def _reply(self, status: int, body: str, content_type: str = "text/plain; charset=utf-8") -> None:
        encoded = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)


def _serve_until_callback(
    expected_state: str,
    host: str,
    port: int,
    timeout: float,
) -> tuple[str, str]:
    try:
        server = _CallbackServer((host, port), _OAuthCallbackHandler)
    except OSError as exc:
        raise AuthenticationError(
            f"Cannot listen for the OAuth callback on {host}:{port}: {exc}"
        ) from exc
    server.expected_state = expected_state
    server.done = threading.Event()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        if not server.done.wait(timeout):
            raise AuthenticationError("OAuth callback timed out")
    finally:
        server.shutdown()
        server.server_close()

    if server.auth_code is None or server.returned_state is None:
        raise AuthenticationError("OAuth callback did not return an authorization code")
    return server.auth_code, server.returned_state


async def wait_for_oauth_callback(
    expected_state: str,
    *,
    host: str = CALLBACK_HOST,
    port: int = CALLBACK_PORT,
    timeout: float = CALLBACK_TIMEOUT,
) -> tuple[str, str]:
    """Wait for the authorization server to redirect back; returns (code, state)."""
    code, state = await asyncio.to_thread(_serve_until_callback, expected_state, host, port, timeout)
    if state != expected_state:
        raise StateMismatchError("OAuth callback state mismatch")
    return code, state


async def open_browser(url: str) -> None:
    """Open ``url`` in the user's browser, printing it as a fallback."""
    opened = await asyncio.to_thread(webbrowser.open, url)
    if not opened:
        logger.warning("Could not open a browser automatically")
    # Printed as well so headless sessions can still complete the flow.
    print(f"Open this URL to authorize the bridge:\n{url}", flush=True)


def callback_port(redirect_uri: str) -> int:
    """Port the redirect URI points at (default 1455)."""
    return urlparse(redirect_uri).port or CALLBACK_PORT
