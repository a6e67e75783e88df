"""Logging module for the bridge."""

from .recorder import RequestLogRecorder, log_proxy_request
from .setup import logger, mask_token, setup_logging

__all__ = [
    "logger",
    "mask_token",
    "setup_logging",
    "RequestLogRecorder",
    "log_proxy_request",
]
