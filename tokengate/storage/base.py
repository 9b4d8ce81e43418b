"""Store contract shared by the in-memory and Redis backends."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from tokengate.algorithms.token_bucket import (
    BucketConfig,
    BucketDecision,
    BucketState,
    time_until_next_token,
)
from tokengate.core.logging import get_log_context
from tokengate.exceptions import ConfigurationError
from tokengate.storage.models import RateLimitResult, StoreStats


def validate_identifier(identifier: object) -> str:
    """Reject missing or non-string client identifiers.

    Raises:
        ConfigurationError: If identifier is empty or not a string
    """
    if not isinstance(identifier, str) or not identifier:
        raise ConfigurationError("identifier", identifier, "must be a non-empty string")
    return identifier


def validate_config(config: object) -> BucketConfig:
    if not isinstance(config, BucketConfig):
        raise ConfigurationError("config", config, "must be a BucketConfig")
    return config


def result_from_decision(
    decision: BucketDecision, config: BucketConfig, now: float
) -> RateLimitResult:
    """Convert an algorithm decision into the caller-facing result.

    The reset time is when the retry becomes possible for denied calls
    and when the next whole token accrues for admitted ones.
    """
    now_ms = int(now * 1000)
    if decision.allowed:
        reset_in = time_until_next_token(decision.state.tokens, config)
    else:
        reset_in = decision.retry_after_millis
    return RateLimitResult(
        allowed=decision.allowed,
        limit=config.limit,
        remaining=decision.remaining,
        retry_after_millis=decision.retry_after_millis,
        reset_time_millis=now_ms + reset_in,
    )


def log_decision(
    logger: logging.Logger, store: str, identifier: str, decision: BucketDecision
) -> None:
    """Log clock anomalies and denials for a single evaluation."""
    context = get_log_context(identifier=identifier, store=store)
    if decision.clock_skew > 0:
        logger.warning(
            f"Clock moved backwards by {decision.clock_skew:.6f}s for {identifier}; "
            "treating elapsed time as zero",
            extra=context,
        )
    if not decision.allowed:
        if decision.exceeds_capacity:
            logger.warning(
                f"Request for {decision.tokens_requested} tokens exceeds bucket "
                f"capacity {decision.capacity} for {identifier}",
                extra=context,
            )
        else:
            logger.debug(
                f"Rate limit exceeded for {identifier}",
                extra=get_log_context(
                    identifier=identifier,
                    store=store,
                    retry_after_ms=decision.retry_after_millis,
                ),
            )


class RateLimitStore(ABC):
    """Abstract base class for bucket stores.

    A store exclusively owns the identifier -> bucket state mapping and
    exposes ``check_limit`` as the only way to mutate it.
    """

    name: str = "store"

    @abstractmethod
    async def check_limit(self, identifier: str, config: BucketConfig) -> RateLimitResult:
        """Atomically refill and consume tokens for an identifier.

        Args:
            identifier: Client identifier (IP, API key hash, ...)
            config: Rule to apply, including tokens_requested

        Returns:
            RateLimitResult with allowed status and metadata

        Raises:
            ConfigurationError: If identifier or config is invalid
        """
        pass

    @abstractmethod
    async def reset(self, identifier: str) -> None:
        """Forget one identifier. Unknown identifiers are a no-op."""
        pass

    @abstractmethod
    async def reset_all(self) -> int:
        """Forget every identifier and return how many were removed."""
        pass

    @abstractmethod
    async def stats(self) -> StoreStats:
        """Report the identifiers currently tracked."""
        pass

    @abstractmethod
    async def get_bucket_state(self, identifier: str) -> Optional[BucketState]:
        """Return the stored state for an identifier, or None if absent."""
        pass

    async def cleanup(self) -> int:
        """Evict idle buckets and return how many were removed."""
        return 0

    async def close(self) -> None:
        """Release background tasks and connections."""
        pass
