"""codex-bridge - Messages API gateway for the codex responses backend

Accepts Messages-style requests (``/v1/messages``, ``/v1/complete``),
rewrites them for the codex responses endpoint, manages the backend OAuth
credential and converts the backend's event stream back into Messages
events.

Example:
    >>> from codex_bridge.main import create_app
    >>> import uvicorn
    >>> uvicorn.run(create_app(), host="127.0.0.1", port=4000)
"""

from .config_loader import ProxyConfig, load_config
from .logging import logger, setup_logging
from .main import create_app

__all__ = [
    "ProxyConfig",
    "create_app",
    "load_config",
    "logger",
    "setup_logging",
]
