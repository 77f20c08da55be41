"""Per-client sliding window rate limiting.

Every client (see AuthGate) owns an ordered list of admitted request
timestamps. A check prunes entries that left the trailing window and admits
the request only while fewer than max_requests remain. A background sweeper
drops buckets that became empty so memory stays bounded by active clients.
"""

import asyncio
import time
import uuid
from typing import Callable, Dict, Optional

from codegate.app.core.config import settings
from codegate.app.core.logging import get_logger

# Re-export models
from codegate.app.middleware.rate_limit.models import RateDecision, RateEntry

# Re-export backends
from codegate.app.middleware.rate_limit.backends import (
    InMemoryRateLimitStore,
    RateLimitStore,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateDecision",
    "RateEntry",
    # Backends
    "RateLimitStore",
    "InMemoryRateLimitStore",
    # Main class
    "RateLimiter",
]


def _now_ms() -> float:
    return time.time() * 1000


class RateLimiter:
    """Sliding window rate limiter over a RateLimitStore.

    Usage:
        limiter = RateLimiter(window_ms=60_000, max_requests=10)
        await limiter.start()          # periodic sweep

        decision = await limiter.check(client_id)
        if decision.allowed:
            ...
            await limiter.record_success(client_id, decision.token)

        await limiter.stop()
    """

    def __init__(
        self,
        window_ms: Optional[int] = None,
        max_requests: Optional[int] = None,
        skip_successful_requests: Optional[bool] = None,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = _now_ms,
    ):
        """Initialize rate limiter.

        Args:
            window_ms: Width of the trailing window in milliseconds
            max_requests: Maximum admitted requests per client inside the window
            skip_successful_requests: Withdraw successful requests from the count
            store: Bucket storage (defaults to an in-memory store)
            clock: Returns the current time in epoch milliseconds
        """
        self.window_ms = window_ms if window_ms is not None else settings.rate_limit_window_ms
        self.max_requests = (
            max_requests if max_requests is not None else settings.rate_limit_max_requests
        )
        self.skip_successful_requests = (
            skip_successful_requests
            if skip_successful_requests is not None
            else settings.rate_limit_skip_successful
        )
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def _prune(self, entries: list[RateEntry], now: float) -> list[RateEntry]:
        window_start = now - self.window_ms
        return [e for e in entries if e.timestamp_ms > window_start]

    async def check(self, client_id: str) -> RateDecision:
        """Admit or deny one request for client_id, recording it if admitted."""
        async with self._store.lock(client_id):
            now = self._clock()
            entries = self._prune(await self._store.get(client_id), now)

            if len(entries) >= self.max_requests:
                earliest = min(e.timestamp_ms for e in entries)
                await self._store.set(client_id, entries)
                return RateDecision(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_ms=int(max(0, earliest + self.window_ms - now)),
                )

            token = uuid.uuid4().hex
            entries.append(RateEntry(timestamp_ms=now, token=token))
            await self._store.set(client_id, entries)

            earliest = min(e.timestamp_ms for e in entries)
            return RateDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - len(entries),
                reset_ms=int(max(0, earliest + self.window_ms - now)),
                token=token,
            )

    async def record_success(self, client_id: str, token: Optional[str]) -> bool:
        """Withdraw a successful request from the count, if so configured.

        Only the entry carrying this request's token is removed.

        Returns:
            True if an entry was removed
        """
        if not self.skip_successful_requests or not token:
            return False

        async with self._store.lock(client_id):
            entries = await self._store.get(client_id)
            kept = [e for e in entries if e.token != token]
            if len(kept) == len(entries):
                return False
            if kept:
                await self._store.set(client_id, kept)
            else:
                await self._store.delete(client_id)
            return True

    async def sweep(self) -> int:
        """Prune every bucket and delete the empty ones.

        Returns:
            Number of buckets removed
        """
        removed = 0
        for client_id in await self._store.keys():
            async with self._store.lock(client_id):
                entries = self._prune(await self._store.get(client_id), self._clock())
                if entries:
                    await self._store.set(client_id, entries)
                else:
                    await self._store.delete(client_id)
                    removed += 1

        if isinstance(self._store, InMemoryRateLimitStore):
            self._store.prune_locks()

        if removed:
            logger.debug(f"Rate limiter sweep removed {removed} idle clients")
        return removed

    async def stats(self) -> Dict[str, int]:
        """Active clients and requests currently counted, for monitoring."""
        keys = await self._store.keys()
        total = 0
        for key in keys:
            total += len(await self._store.get(key))
        return {"active_clients": len(keys), "total_requests": total}

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        """Start the background sweep task (interval = window width)."""
        if self._task is not None:
            logger.debug("Rate limit sweeper already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_sweeps())
        logger.info(f"Started rate limit sweeper (interval: {self.window_ms}ms)")

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Rate limit sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped rate limit sweeper")

    async def _run_sweeps(self) -> None:
        """Background task that sweeps once per window."""
        interval = self.window_ms / 1000
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                # Interval elapsed without a stop request
                pass
            else:
                break

            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error during rate limit sweep: {e}")
