"""Counter store interface.

The decision engine depends on this abstraction (not a concrete backend) so
the shared store can be Redis in production and an in-process map in tests or
single-instance deployments.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


def validate_bump_args(key: str, ttl_seconds: int) -> None:
    """Validate arguments shared by every ``bump`` implementation.

    Raises:
        ValueError: If key is empty or ttl_seconds is below one second.
    """
    if not key:
        raise ValueError("key must be a non-empty string")
    if ttl_seconds < 1:
        raise ValueError("ttl_seconds must be >= 1")


class AbstractCounterStore(ABC):
    """Interface for shared, expiring counters."""

    backend_name: str = "abstract"

    @abstractmethod
    async def bump(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment the counter at ``key``.

        The first increment of a fresh window also arms the key's TTL, within
        the same indivisible step as the increment. Concurrent callers, in any
        number of processes, observe distinct counts.

        Args:
            key: Namespaced counter key.
            ttl_seconds: Window length applied when the counter is created.

        Returns:
            The post-increment count (1 for the first request of a window).

        Raises:
            ValueError: If key is empty or ttl_seconds < 1.
            StoreUnavailableError: If the store cannot complete the bump.
        """
        raise NotImplementedError

    async def start(self) -> None:
        """Acquire background resources (no-op by default)."""

    async def close(self) -> None:
        """Release connections and background tasks (no-op by default)."""
