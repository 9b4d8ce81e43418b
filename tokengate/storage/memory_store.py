"""In-memory bucket store for single-process deployments."""

import asyncio
import time
from typing import Callable, Dict, Optional

from tokengate.algorithms.token_bucket import (
    BucketConfig,
    BucketState,
    evaluate,
    require_positive,
)
from tokengate.core.logging import get_log_context, get_logger
from tokengate.storage.base import (
    RateLimitStore,
    log_decision,
    result_from_decision,
    validate_config,
    validate_identifier,
)
from tokengate.storage.models import RateLimitResult, StoreStats

logger = get_logger(__name__)


class MemoryStore(RateLimitStore):
    """In-memory token bucket store.

    Suitable for single-instance deployments. Every read-evaluate-write
    runs under one asyncio lock with no await inside the critical
    section, so checks for the same identifier are serialized and the
    lock is never held across I/O.

    Idle buckets are evicted by ``cleanup``, which a background task runs
    on a fixed interval. With ``auto_cleanup`` the task starts on the
    first ``check_limit`` inside the running event loop; otherwise call
    ``start_cleanup``. Eviction takes the same lock as ``check_limit``.
    """

    name = "memory"

    DEFAULT_CLEANUP_INTERVAL_SECONDS = 10 * 60
    DEFAULT_INACTIVE_THRESHOLD_SECONDS = 60 * 60

    def __init__(
        self,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        inactive_threshold_seconds: float = DEFAULT_INACTIVE_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.time,
        auto_cleanup: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            cleanup_interval_seconds: Seconds between eviction sweeps
            inactive_threshold_seconds: Idle time after which a bucket is evicted
            clock: Source of epoch seconds
            auto_cleanup: Start the sweep on the first check

        Raises:
            ConfigurationError: If an interval is not a positive number
        """
        self._buckets: Dict[str, BucketState] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._cleanup_interval = require_positive("cleanup_interval_seconds", cleanup_interval_seconds)
        self._inactive_threshold = require_positive(
            "inactive_threshold_seconds", inactive_threshold_seconds
        )
        self._auto_cleanup = auto_cleanup
        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    async def check_limit(self, identifier: str, config: BucketConfig) -> RateLimitResult:
        """Check if request is allowed and consume tokens if it is."""
        validate_identifier(identifier)
        validate_config(config)
        if self._auto_cleanup and not self._cleanup_running():
            self._start_cleanup_task()
        async with self._lock:
            now = self._clock()
            state = self._buckets.get(identifier)
            if state is None:
                state = BucketState.full(config, now)
            decision = evaluate(state, config, now)
            self._buckets[identifier] = decision.state
        log_decision(logger, self.name, identifier, decision)
        return result_from_decision(decision, config, now)

    async def reset(self, identifier: str) -> None:
        validate_identifier(identifier)
        async with self._lock:
            self._buckets.pop(identifier, None)

    async def reset_all(self) -> int:
        async with self._lock:
            count = len(self._buckets)
            self._buckets.clear()
        return count

    async def stats(self) -> StoreStats:
        identifiers = list(self._buckets)
        return StoreStats(total_clients=len(identifiers), identifiers=identifiers)

    async def get_bucket_state(self, identifier: str) -> Optional[BucketState]:
        validate_identifier(identifier)
        return self._buckets.get(identifier)

    async def cleanup(self) -> int:
        """Remove buckets idle for longer than the inactivity threshold."""
        async with self._lock:
            now = self._clock()
            expired = [
                identifier for identifier, state in self._buckets.items()
                if now - state.last_refill > self._inactive_threshold
            ]
            for identifier in expired:
                del self._buckets[identifier]
            active = len(self._buckets)
        context = get_log_context(store=self.name)
        if expired:
            logger.info(f"Evicted {len(expired)} idle buckets, {active} active clients", extra=context)
        else:
            logger.debug(f"Cleanup: {active} active clients", extra=context)
        return len(expired)

    def _cleanup_running(self) -> bool:
        """Whether a sweep task is alive on the current event loop.

        A task left behind by a loop that has since closed does not count.
        """
        task = self._cleanup_task
        return (
            task is not None
            and not task.done()
            and task.get_loop() is asyncio.get_running_loop()
        )

    def _start_cleanup_task(self) -> None:
        self._shutdown_event = asyncio.Event()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(self._shutdown_event))
        logger.info("Started bucket cleanup task", extra=get_log_context(store=self.name))

    async def start_cleanup(self) -> None:
        """Start the periodic eviction task."""
        if self._cleanup_running():
            return
        self._start_cleanup_task()

    async def stop_cleanup(self) -> None:
        """Stop the periodic eviction task."""
        task = self._cleanup_task
        if task is None:
            return
        self._cleanup_task = None
        if task.get_loop() is not asyncio.get_running_loop():
            # Its loop is gone; nothing left to wait for
            return
        self._shutdown_event.set()
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped bucket cleanup task", extra=get_log_context(store=self.name))

    async def _cleanup_loop(self, shutdown_event: asyncio.Event) -> None:
        """Background loop for periodic eviction."""
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    shutdown_event.wait(),
                    timeout=self._cleanup_interval,
                )
            except asyncio.TimeoutError:
                pass
            if shutdown_event.is_set():
                break
            try:
                await self.cleanup()
            except Exception as e:
                logger.error(
                    f"Error during bucket cleanup: {e}",
                    extra=get_log_context(store=self.name),
                )

    async def close(self) -> None:
        await self.stop_cleanup()
