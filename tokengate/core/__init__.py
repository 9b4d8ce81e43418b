"""Core utilities for the rate limiter."""

from tokengate.core.config import Settings, settings
from tokengate.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
