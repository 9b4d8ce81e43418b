"""Store selection from settings."""

from typing import Any, Optional

from tokengate.algorithms.token_bucket import BucketConfig
from tokengate.core.config import settings
from tokengate.core.logging import get_logger
from tokengate.storage.base import RateLimitStore
from tokengate.storage.memory_store import MemoryStore
from tokengate.storage.redis_store import RedisStore

logger = get_logger(__name__)


def default_config(tokens_requested: int = 1) -> BucketConfig:
    """Build the default rule from the rate limiting settings."""
    return BucketConfig.from_requests_per_minute(
        settings.rate_limit_requests_per_minute,
        capacity=settings.rate_limit_capacity,
        tokens_requested=tokens_requested,
    )


def create_store(use_redis: Optional[bool] = None, **overrides: Any) -> RateLimitStore:
    """Create the configured store.

    Args:
        use_redis: Force Redis usage (None = auto-detect from settings)
        **overrides: Keyword arguments passed to the store constructor,
            taking precedence over settings

    Returns:
        RedisStore when Redis is enabled, MemoryStore otherwise
    """
    should_use_redis = use_redis if use_redis is not None else settings.redis_enabled

    if should_use_redis:
        options = {
            "redis_url": settings.redis_url,
            "key_prefix": settings.redis_key_prefix,
            "ttl_seconds": settings.redis_ttl_seconds,
            "fail_open": not settings.rate_limit_fail_closed,
        }
        options.update(overrides)
        logger.info("Using Redis rate limit store")
        return RedisStore(**options)

    options = {
        "cleanup_interval_seconds": settings.cleanup_interval_seconds,
        "inactive_threshold_seconds": settings.inactive_threshold_seconds,
    }
    options.update(overrides)
    logger.debug("Using in-memory rate limit store")
    return MemoryStore(**options)
