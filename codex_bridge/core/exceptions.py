"""Core exceptions for the bridge.

Every error that reaches a caller is rendered through ``ProxyError.to_payload``
into the front protocol's error envelope::

    {"type": "error", "error": {"type": ..., "message": ..., "status": ...}}
"""

from typing import Any, Optional


class ProxyError(Exception):
    """Base exception for bridge errors."""

    status_code = 500
    error_type = "api_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type

    def to_payload(self) -> dict[str, Any]:
        return build_error_payload(self.error_type, self.message, self.status_code)


class AuthenticationError(ProxyError):
    """Raised when a caller or the backend rejects a credential."""

    status_code = 401
    error_type = "authentication_error"


class StateMismatchError(AuthenticationError):
    """Raised when the OAuth callback returns a state we did not issue."""


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    status_code = 400
    error_type = "invalid_request_error"


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""

    status_code = 500
    error_type = "configuration_error"


class UpstreamError(ProxyError):
    """Raised when the backend answers with a failure or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        status = status_code if status_code else 500
        super().__init__(message, status_code=status, error_type=_upstream_error_type(status))
        self.upstream_status = status_code
        self.body = body


class TokenRefreshError(ProxyError):
    """Raised by the token endpoint client; recovered locally, never surfaced."""


def _upstream_error_type(status: int) -> str:
    if status == 401:
        return "authentication_error"
    if status == 403:
        return "authorization_error"
    return "api_error"


def build_error_payload(error_type: str, message: str, status: int) -> dict[str, Any]:
    """Build the uniform error envelope."""
    return {
        "type": "error",
        "error": {
            "type": error_type,
            "message": message,
            "status": status,
        },
    }
