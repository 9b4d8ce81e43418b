"""Middleware package for HTTP integration."""

from tokengate.middleware.rate_limit import (
    PRESETS,
    RateLimitMiddleware,
    default_identifier,
    preset,
)

__all__ = [
    "PRESETS",
    "RateLimitMiddleware",
    "default_identifier",
    "preset",
]
