"""Rate accounting algorithms."""

from tokengate.algorithms.token_bucket import (
    BucketConfig,
    BucketDecision,
    BucketState,
    TokenBucket,
    elapsed_seconds,
    evaluate,
    retry_after_millis,
    time_until_next_token,
    validate_tokens_requested,
)

__all__ = [
    "BucketConfig",
    "BucketDecision",
    "BucketState",
    "TokenBucket",
    "elapsed_seconds",
    "evaluate",
    "retry_after_millis",
    "time_until_next_token",
    "validate_tokens_requested",
]
