"""Token bucket rate accounting.

This module holds the pure token bucket arithmetic shared by every
store. ``evaluate`` receives a bucket state and returns a new one; it
never keeps a reference to the caller's record and performs no I/O, so
the stores decide how the read-evaluate-write sequence is made atomic.
"""

import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from tokengate.exceptions import ConfigurationError


def require_positive(field: str, value: object) -> float:
    """Validate a strictly positive finite number.

    Raises:
        ConfigurationError: If value is not a number or is <= 0
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(field, value, "must be a number")
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(field, value, "must be a positive finite number")
    return float(value)


# Elapsed time is measured at microsecond resolution. Epoch timestamps carry
# about 0.2us of float noise, which would otherwise leak into refills.
ELAPSED_RESOLUTION = 1_000_000


def elapsed_seconds(now: float, last_refill: float) -> float:
    """Seconds between two timestamps, rounded to the nearest microsecond."""
    return math.floor((now - last_refill) * ELAPSED_RESOLUTION + 0.5) / ELAPSED_RESOLUTION


def validate_tokens_requested(value: object) -> int:
    """Validate the weight of a single check.

    Raises:
        ConfigurationError: If value is not a positive integer
    """
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError("tokens_requested", value, "must be a positive integer")
    return value


@dataclass(frozen=True)
class BucketConfig:
    """Immutable rate limit rule shared by every client it applies to.

    Attributes:
        capacity: Maximum burst size
        refill_rate: Tokens added per second
        tokens_requested: Tokens consumed by one check (weighted operations)
    """
    capacity: float
    refill_rate: float
    tokens_requested: int = 1

    def __post_init__(self) -> None:
        require_positive("capacity", self.capacity)
        require_positive("refill_rate", self.refill_rate)
        validate_tokens_requested(self.tokens_requested)

    @classmethod
    def from_requests_per_minute(
        cls,
        requests_per_minute: float,
        capacity: Optional[float] = None,
        tokens_requested: int = 1,
    ) -> "BucketConfig":
        """Build a rule from a requests-per-minute ceiling.

        Args:
            requests_per_minute: Sustained rate, converted to tokens/second
            capacity: Burst size (defaults to requests_per_minute)
            tokens_requested: Tokens consumed per check
        """
        rpm = require_positive("requests_per_minute", requests_per_minute)
        return cls(
            capacity=rpm if capacity is None else capacity,
            refill_rate=rpm / 60,
            tokens_requested=tokens_requested,
        )

    @property
    def limit(self) -> int:
        """Capacity as reported to clients."""
        return int(self.capacity)


@dataclass(frozen=True)
class BucketState:
    """Per-client bucket state.

    Attributes:
        tokens: Available credits, 0 <= tokens <= capacity
        last_refill: Epoch seconds of the last observation
    """
    tokens: float
    last_refill: float

    @classmethod
    def full(cls, config: BucketConfig, now: float) -> "BucketState":
        """State of a client that has never been seen before."""
        return cls(tokens=float(config.capacity), last_refill=now)

    def to_dict(self) -> dict:
        return {"tokens": self.tokens, "last_refill": self.last_refill}


@dataclass(frozen=True)
class BucketDecision:
    """Outcome of one evaluation.

    Attributes:
        state: Bucket state to store back
        allowed: Whether the requested tokens were consumed
        remaining: Floor of the tokens left after the evaluation
        retry_after_millis: Minimum wait before the deficit refills (0 when allowed)
        clock_skew: Seconds the clock moved backwards since the last refill
        tokens_requested: Tokens the evaluation asked for
        capacity: Capacity of the rule that was applied
    """
    state: BucketState
    allowed: bool
    remaining: int
    retry_after_millis: int
    clock_skew: float = 0.0
    tokens_requested: int = 1
    capacity: float = 0.0

    @property
    def exceeds_capacity(self) -> bool:
        """True when the request can never be admitted by this rule."""
        return self.tokens_requested > self.capacity


def retry_after_millis(tokens: float, tokens_requested: int, refill_rate: float) -> int:
    """Milliseconds until ``tokens`` refills up to ``tokens_requested``."""
    deficit = tokens_requested - tokens
    if deficit <= 0:
        return 0
    return math.ceil((deficit / refill_rate) * 1000)


def time_until_next_token(tokens: float, config: BucketConfig) -> int:
    """Milliseconds until the next whole token accrues (0 when full)."""
    if tokens >= config.capacity:
        return 0
    fraction = tokens - math.floor(tokens)
    return math.ceil(((1 - fraction) / config.refill_rate) * 1000)


def evaluate(
    state: BucketState,
    config: BucketConfig,
    now: float,
    tokens_requested: Optional[int] = None,
) -> BucketDecision:
    """Refill the bucket up to ``now`` and try to consume tokens.

    The refill step always runs, whether or not the request is admitted.
    A clock that moved backwards counts as zero elapsed time.

    Args:
        state: Current bucket state
        config: Rule to apply
        now: Current time in epoch seconds
        tokens_requested: Tokens to consume (defaults to config.tokens_requested)

    Returns:
        BucketDecision with the new state and admission metadata

    Raises:
        ConfigurationError: If tokens_requested is not a positive integer
    """
    if tokens_requested is None:
        tokens_requested = config.tokens_requested
    validate_tokens_requested(tokens_requested)

    elapsed = elapsed_seconds(now, state.last_refill)
    clock_skew = 0.0
    if elapsed < 0:
        clock_skew = -elapsed
        elapsed = 0.0

    tokens = min(float(config.capacity), state.tokens + elapsed * config.refill_rate)

    allowed = tokens >= tokens_requested
    if allowed:
        tokens -= tokens_requested
        retry_after = 0
    else:
        retry_after = retry_after_millis(tokens, tokens_requested, config.refill_rate)

    return BucketDecision(
        state=BucketState(tokens=tokens, last_refill=now),
        allowed=allowed,
        remaining=max(0, math.floor(tokens)),
        retry_after_millis=retry_after,
        clock_skew=clock_skew,
        tokens_requested=tokens_requested,
        capacity=config.capacity,
    )


class TokenBucket:
    """Single-owner token bucket for throttling in-process work.

    Wraps ``evaluate`` around one private state. Not shared between
    clients and not thread safe; the stores are the shared entrypoint.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = BucketConfig(capacity=capacity, refill_rate=refill_rate)
        self._clock = clock
        self._state = BucketState.full(self.config, clock())

    def consume(self, tokens: int = 1) -> bool:
        """Consume tokens if available."""
        decision = evaluate(self._state, self.config, self._clock(), tokens)
        self._state = decision.state
        return decision.allowed

    def _refilled(self) -> BucketState:
        now = self._clock()
        elapsed = max(0.0, elapsed_seconds(now, self._state.last_refill))
        tokens = min(float(self.config.capacity), self._state.tokens + elapsed * self.config.refill_rate)
        self._state = replace(self._state, tokens=tokens, last_refill=now)
        return self._state

    def retry_after(self, tokens: int = 1) -> int:
        """Milliseconds until ``tokens`` could be consumed."""
        validate_tokens_requested(tokens)
        state = self._refilled()
        return retry_after_millis(state.tokens, tokens, self.config.refill_rate)

    def snapshot(self) -> dict:
        """Refilled view of the bucket for reporting."""
        state = self._refilled()
        return {
            "tokens": math.floor(state.tokens),
            "capacity": self.config.capacity,
            "refill_rate": self.config.refill_rate,
            "time_until_refill": time_until_next_token(state.tokens, self.config),
        }
