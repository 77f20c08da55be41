"""Storage backends for sliding window state.

The limiter only talks to the RateLimitStore interface, so the window can
be held in process memory (the default) or pre-seeded in tests.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from codegate.app.middleware.rate_limit.models import RateEntry


class RateLimitStore(ABC):
    """Abstract per-client timestamp store."""

    @abstractmethod
    def lock(self, key: str) -> "AsyncIterator[None]":
        """Async context manager guarding read-modify-write of one bucket."""

    @abstractmethod
    async def get(self, key: str) -> List[RateEntry]:
        """Return the entries recorded for key, oldest first."""

    @abstractmethod
    async def set(self, key: str, entries: List[RateEntry]) -> None:
        """Replace the entries recorded for key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Drop the bucket for key."""

    @abstractmethod
    async def keys(self) -> List[str]:
        """Snapshot of the keys currently holding a bucket."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store. State is lost on restart.

    Each bucket has its own asyncio.Lock, so clients never wait on each
    other.
    """

    def __init__(self, initial: Dict[str, List[RateEntry]] | None = None):
        self._buckets: Dict[str, List[RateEntry]] = {
            key: list(entries) for key, entries in (initial or {}).items()
        }
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        async with lock:
            yield

    async def get(self, key: str) -> List[RateEntry]:
        return list(self._buckets.get(key, ()))

    async def set(self, key: str, entries: List[RateEntry]) -> None:
        self._buckets[key] = list(entries)

    async def delete(self, key: str) -> None:
        self._buckets.pop(key, None)
        lock = self._locks.get(key)
        # A held lock is still in use by the caller; it is reclaimed on the
        # next sweep once released.
        if lock is not None and not lock.locked():
            del self._locks[key]

    async def keys(self) -> List[str]:
        return list(self._buckets)

    def prune_locks(self) -> None:
        """Forget locks whose bucket is gone and which nobody holds."""
        for key in [k for k, lock in self._locks.items()
                    if k not in self._buckets and not lock.locked()]:
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._buckets)
