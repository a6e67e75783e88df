"""Logging configuration for the bridge."""

import logging
import sys
from typing import Optional

LOGGER_NAME = "codex-bridge"


def setup_logging(debug: bool = False) -> logging.Logger:
    """Set up logging with proper handlers and formatters."""
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.propagate = True

    return logger


def mask_token(value: Optional[str]) -> Optional[str]:
    """Mask a secret for logging, keeping four characters at each end."""
    if not value:
        return value
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


# Global logger instance
logger = logging.getLogger(LOGGER_NAME)
