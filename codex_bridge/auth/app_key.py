"""Inbound caller authentication against the configured shared secret."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Request

from ..core.exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger("codex-bridge")

DEFAULT_HEADER_NAME = "x-api-key"


def extract_caller_secret(request: Request) -> Optional[str]:
    """Return the secret from ``Authorization: Bearer`` or ``x-api-key``."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    api_key = request.headers.get(DEFAULT_HEADER_NAME)
    if api_key:
        return api_key.strip()
    return None


class AppKeyValidator:
    """Compares caller secrets to ``auth_token`` in constant time."""

    def __init__(self, expected_secret: str) -> None:
        self.expected_secret = expected_secret

    def validate_request(self, request: Request) -> None:
        if not self.expected_secret:
            logger.error("Rejecting request: no inbound auth token is configured")
            raise ConfigurationError("Proxy auth token is not configured (set ANTHROPIC_AUTH_TOKEN)")

        provided = extract_caller_secret(request)
        if not provided:
            logger.warning("Request rejected: missing API key")
            raise AuthenticationError("Missing API key")

        if not hmac.compare_digest(provided.encode("utf-8"), self.expected_secret.encode("utf-8")):
            logger.warning("Request rejected: invalid API key")
            raise AuthenticationError("Invalid API key")

