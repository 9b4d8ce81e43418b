"""Rate limiting data models.

This module contains dataclasses returned by the stores.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    retry_after_millis: int
    reset_time_millis: int
    error: Optional[str] = None

    @property
    def retry_after_seconds(self) -> int:
        """Retry-After value in whole seconds, rounded up."""
        return math.ceil(self.retry_after_millis / 1000)

    def to_headers(self) -> Dict[str, str]:
        """Standard rate limit response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_time_millis / 1000)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "retry_after_millis": self.retry_after_millis,
            "reset_time_millis": self.reset_time_millis,
            "error": self.error,
        }


@dataclass
class StoreStats:
    """Snapshot of the clients a store currently tracks."""
    total_clients: int = 0
    identifiers: List[str] = field(default_factory=list)
