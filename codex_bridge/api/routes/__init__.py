"""API routes for the bridge."""

from .complete import complete_endpoint
from .health import health_endpoint
from .messages import messages_endpoint

__all__ = [
    "complete_endpoint",
    "health_endpoint",
    "messages_endpoint",
]
