"""Token bucket rate limiting with in-memory and Redis stores."""

from tokengate.algorithms import BucketConfig, BucketDecision, BucketState, TokenBucket, evaluate
from tokengate.exceptions import ConfigurationError, RateLimitError, StoreUnavailableError
from tokengate.factory import create_store, default_config
from tokengate.storage import (
    MemoryStore,
    RateLimitResult,
    RateLimitStore,
    RedisStore,
    StoreStats,
)

__version__ = "0.1.0"

__all__ = [
    "BucketConfig",
    "BucketDecision",
    "BucketState",
    "ConfigurationError",
    "MemoryStore",
    "RateLimitError",
    "RateLimitResult",
    "RateLimitStore",
    "RedisStore",
    "StoreStats",
    "StoreUnavailableError",
    "TokenBucket",
    "create_store",
    "default_config",
    "evaluate",
]
