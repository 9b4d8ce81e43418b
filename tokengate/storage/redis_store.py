"""Redis-backed bucket store for multi-instance deployments.

Every check runs ``CHECK_AND_CONSUME_SCRIPT`` through EVAL, so the
refill and consume arithmetic happens inside Redis as one atomic unit
and processes sharing a Redis instance never over-admit. Idle buckets
are reclaimed by the key TTL the script refreshes on every call.
"""

import re
import time
from typing import Any, Callable, List, Optional

import redis
import redis.asyncio as aioredis

from tokengate.algorithms.token_bucket import BucketConfig, BucketDecision, BucketState
from tokengate.core.config import settings
from tokengate.core.logging import get_log_context, get_logger
from tokengate.exceptions import ConfigurationError, StoreUnavailableError
from tokengate.storage.base import (
    RateLimitStore,
    log_decision,
    result_from_decision,
    validate_config,
    validate_identifier,
)
from tokengate.storage.models import RateLimitResult, StoreStats
from tokengate.storage.redis_lua import CHECK_AND_CONSUME_SCRIPT

logger = get_logger(__name__)

_GLOB_CHARS = re.compile(r"([*?\[\]\\])")


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def validate_ttl(ttl_seconds: object) -> int:
    """EXPIRE takes whole seconds and deletes the key outright at 0."""
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds < 1:
        raise ConfigurationError("ttl_seconds", ttl_seconds, "must be a positive integer")
    return ttl_seconds


class RedisStore(RateLimitStore):
    """Distributed token bucket store using Redis.

    Redis key format:
    - {key_prefix}{identifier} - Hash with ``tokens`` and ``last_refill`` fields

    Failure policy: ``check_limit`` never raises on transport errors.
    With ``fail_open`` (the default) it admits the request with a full
    remaining count; otherwise it denies it. Either way the failure is
    logged and reported in ``RateLimitResult.error``.
    """

    name = "redis"

    DEFAULT_KEY_PREFIX = "ratelimit:"
    DEFAULT_TTL_SECONDS = 3600
    FAIL_CLOSED_RETRY_AFTER_MS = 1000
    SCAN_BATCH_SIZE = 500

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize Redis store.

        Args:
            redis_client: Optional redis.asyncio client instance
            redis_url: Redis connection URL (defaults to settings.redis_url)
            key_prefix: Namespace prepended to every identifier
            ttl_seconds: Inactivity window after which a bucket expires
            fail_open: Admit requests when Redis is unavailable
            clock: Source of epoch seconds passed to the script
        """
        self._redis = redis_client
        self._owns_client = redis_client is None
        self._redis_url = redis_url or settings.redis_url
        self.key_prefix = key_prefix
        self.ttl_seconds = validate_ttl(ttl_seconds)
        self.fail_open = fail_open
        self._clock = clock
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
            self._owns_client = True
        return self._redis

    def _make_key(self, identifier: str) -> str:
        return f"{self.key_prefix}{identifier}"

    async def connect(self) -> None:
        """Connect to Redis and verify the connection with PING.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        if self._connected:
            return
        try:
            await self._get_redis().ping()
        except (redis.RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}", extra=get_log_context(store=self.name))
            raise StoreUnavailableError("connect", e) from e
        self._connected = True
        logger.info("Connected to Redis", extra=get_log_context(store=self.name))

    async def disconnect(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._redis is None:
            self._connected = False
            return
        if self._owns_client:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(
                    f"Error closing Redis connection: {e}",
                    extra=get_log_context(store=self.name),
                )
            self._redis = None
        self._connected = False

    async def close(self) -> None:
        await self.disconnect()

    async def check_limit(self, identifier: str, config: BucketConfig) -> RateLimitResult:
        """Check if request is allowed using the atomic Lua script."""
        validate_identifier(identifier)
        validate_config(config)
        now = self._clock()
        key = self._make_key(identifier)
        log_context = get_log_context(identifier=identifier, store=self.name, key=key)

        try:
            await self.connect()
            reply = await self._redis.eval(
                CHECK_AND_CONSUME_SCRIPT,
                1,  # Number of keys
                key,  # KEYS[1]
                repr(float(config.capacity)),  # ARGV[1]
                repr(float(config.refill_rate)),  # ARGV[2]
                config.tokens_requested,  # ARGV[3]
                repr(now),  # ARGV[4]
                self.ttl_seconds,  # ARGV[5]
            )
            decision = self._parse_reply(reply, config, now)
        except StoreUnavailableError:
            return self._handle_store_failure("connection_error", identifier, config, now)
        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}", extra=log_context)
            return self._handle_store_failure("connection_error", identifier, config, now)
        except redis.TimeoutError as e:
            logger.warning(f"Redis timeout: {e}", extra=log_context)
            return self._handle_store_failure("timeout", identifier, config, now)
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}", extra=log_context)
            return self._handle_store_failure("redis_error", identifier, config, now)
        except Exception as e:
            logger.exception(f"Unexpected rate limit error: {e}", extra=log_context)
            return self._handle_store_failure("unexpected", identifier, config, now)

        log_decision(logger, self.name, identifier, decision)
        return result_from_decision(decision, config, now)

    def _parse_reply(self, reply: List[Any], config: BucketConfig, now: float) -> BucketDecision:
        """Turn the script reply into a decision.

        Reply layout: [allowed, floor(tokens), retry_after_ms, tokens, clock_skew].
        """
        tokens = float(_decode(reply[3]))
        return BucketDecision(
            state=BucketState(tokens=tokens, last_refill=now),
            allowed=int(reply[0]) == 1,
            remaining=max(0, int(reply[1])),
            retry_after_millis=int(reply[2]),
            clock_skew=float(_decode(reply[4])),
            tokens_requested=config.tokens_requested,
            capacity=config.capacity,
        )

    def _handle_store_failure(
        self, error_type: str, identifier: str, config: BucketConfig, now: float
    ) -> RateLimitResult:
        """Handle Redis failure with the configured fail-open/fail-closed policy.

        Args:
            error_type: Type of error for logging purposes

        Returns:
            RateLimitResult carrying error_type in its error field
        """
        now_ms = int(now * 1000)
        context = get_log_context(identifier=identifier, store=self.name, error_type=error_type)

        if not self.fail_open:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. "
                "Request denied.",
                extra=context,
            )
            return RateLimitResult(
                allowed=False,
                limit=config.limit,
                remaining=0,
                retry_after_millis=self.FAIL_CLOSED_RETRY_AFTER_MS,
                reset_time_millis=now_ms + self.FAIL_CLOSED_RETRY_AFTER_MS,
                error=error_type,
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        return RateLimitResult(
            allowed=True,
            limit=config.limit,
            remaining=config.limit,
            retry_after_millis=0,
            reset_time_millis=now_ms,
            error=error_type,
        )

    async def _scan_keys(self) -> List[str]:
        pattern = _GLOB_CHARS.sub(r"\\\1", self.key_prefix) + "*"
        keys = []
        async for key in self._redis.scan_iter(match=pattern, count=self.SCAN_BATCH_SIZE):
            keys.append(_decode(key))
        return keys

    async def reset(self, identifier: str) -> None:
        """Reset rate limit for a specific client."""
        validate_identifier(identifier)
        try:
            await self.connect()
            await self._redis.delete(self._make_key(identifier))
        except redis.RedisError as e:
            raise StoreUnavailableError("reset", e) from e

    async def reset_all(self) -> int:
        """Delete every bucket under this store's prefix."""
        try:
            await self.connect()
            keys = await self._scan_keys()
            for start in range(0, len(keys), self.SCAN_BATCH_SIZE):
                await self._redis.delete(*keys[start:start + self.SCAN_BATCH_SIZE])
        except redis.RedisError as e:
            raise StoreUnavailableError("reset_all", e) from e
        logger.info(
            f"Reset {len(keys)} buckets under prefix {self.key_prefix!r}",
            extra=get_log_context(store=self.name),
        )
        return len(keys)

    async def stats(self) -> StoreStats:
        try:
            await self.connect()
            keys = await self._scan_keys()
        except redis.RedisError as e:
            raise StoreUnavailableError("stats", e) from e
        identifiers = [key[len(self.key_prefix):] for key in keys]
        return StoreStats(total_clients=len(identifiers), identifiers=identifiers)

    async def get_bucket_state(self, identifier: str) -> Optional[BucketState]:
        """Get the stored bucket for a client, for debugging."""
        validate_identifier(identifier)
        try:
            await self.connect()
            raw = await self._redis.hgetall(self._make_key(identifier))
        except redis.RedisError as e:
            raise StoreUnavailableError("get_bucket_state", e) from e
        bucket = {_decode(k): _decode(v) for k, v in (raw or {}).items()}
        if "tokens" not in bucket or "last_refill" not in bucket:
            return None
        return BucketState(
            tokens=float(bucket["tokens"]),
            last_refill=float(bucket["last_refill"]),
        )
