"""API module for the bridge."""

from .routes import complete_endpoint, health_endpoint, messages_endpoint

__all__ = [
    "complete_endpoint",
    "health_endpoint",
    "messages_endpoint",
]
