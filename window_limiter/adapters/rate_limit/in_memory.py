"""In-memory counter store with TTL expiry.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state; the increment and the TTL
  arming happen under the same lock acquisition.
- Expired counters are dropped lazily on the next bump and eagerly by a
  background sweeper started from ``start()``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from window_limiter.adapters.rate_limit.base import AbstractCounterStore, validate_bump_args

logger = logging.getLogger(__name__)


@dataclass
class _Counter:
    count: int
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping expiring counters in a dict.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits. Use the Redis store for shared limits.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        sweep_interval_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            sweep_interval_seconds: Interval between background expiry sweeps.
            clock: Monotonic time source returning seconds.

        Raises:
            ValueError: If sweep_interval_seconds is not positive.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._counters: dict[str, _Counter] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def _bump_locked(self, key: str, ttl_seconds: int, now: float) -> int:
        counter = self._counters.get(key)
        if counter is None or counter.expires_at <= now:
            # Fresh window: create with count 1 and arm the TTL exactly once.
            self._counters[key] = _Counter(count=1, expires_at=now + ttl_seconds)
            return 1

        counter.count += 1
        return counter.count

    async def bump(self, key: str, ttl_seconds: int) -> int:
        validate_bump_args(key, ttl_seconds)

        with self._lock:
            return self._bump_locked(key, ttl_seconds, self._clock())

    def ttl(self, key: str) -> float | None:
        """Return seconds until ``key`` expires, or None if it is absent/expired."""

        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                return None
            remaining = counter.expires_at - self._clock()
            return remaining if remaining > 0 else None

    def sweep_expired(self) -> int:
        """Remove expired counters.

        Returns:
            Number of counters removed.
        """

        with self._lock:
            now = self._clock()
            expired_keys = [k for k, c in self._counters.items() if c.expires_at <= now]
            for key in expired_keys:
                del self._counters[key]

        if expired_keys:
            logger.debug(
                "store.memory.swept",
                extra={"removed": len(expired_keys), "remaining_keys": len(self)},
            )
        return len(expired_keys)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep_expired()

    async def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())
            logger.info(
                "store.memory.sweeper_started",
                extra={"interval_s": self._sweep_interval},
            )

    async def close(self) -> None:
        if self._sweeper is None:
            return

        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
