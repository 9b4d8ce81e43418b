"""Bucket stores.

This package provides the atomic check-and-consume entrypoint backed
either by process memory or by Redis.
"""

from tokengate.storage.base import RateLimitStore, validate_identifier
from tokengate.storage.memory_store import MemoryStore
from tokengate.storage.models import RateLimitResult, StoreStats
from tokengate.storage.redis_lua import CHECK_AND_CONSUME_SCRIPT
from tokengate.storage.redis_store import RedisStore

__all__ = [
    "CHECK_AND_CONSUME_SCRIPT",
    "MemoryStore",
    "RateLimitResult",
    "RateLimitStore",
    "RedisStore",
    "StoreStats",
    "validate_identifier",
]
