"""Core bridge components."""

from .backend import BackendRequest, BackendResponse, rewrite_url
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    InvalidRequestError,
    ProxyError,
    StateMismatchError,
    TokenRefreshError,
    UpstreamError,
)

__all__ = [
    "AuthenticationError",
    "BackendRequest",
    "BackendResponse",
    "ConfigurationError",
    "InvalidRequestError",
    "ProxyError",
    "StateMismatchError",
    "TokenRefreshError",
    "UpstreamError",
    "rewrite_url",
]
