"""Redis-backed counter store.

The increment and the TTL arming run inside a single Lua script, so Redis
executes them as one indivisible step. Two instances racing on the first
request of a window can never both believe they created the key, and a key
can never be left without an expiry.
"""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from window_limiter.adapters.rate_limit.base import AbstractCounterStore, validate_bump_args
from window_limiter.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


# KEYS[1]: counter key, ARGV[1]: TTL in seconds
BUMP_SCRIPT = """
local current = redis.call("INCR", KEYS[1])
if current == 1 then
    redis.call("EXPIRE", KEYS[1], ARGV[1])
end
return current
"""


def parse_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` address.

    Examples:
        >>> parse_address("localhost:6379")
        ('localhost', 6379)
        >>> parse_address("[::1]:6380")
        ('::1', 6380)
        >>> parse_address("redis")
        ('redis', 6379)

    Raises:
        ValueError: On an empty or unbracketed IPv6 host, or an invalid port.
    """
    host, sep, port = address.strip().rpartition(":")
    if not sep:
        host, port = port, "6379"
    bracketed = host.startswith("[") and host.endswith("]")
    if bracketed:
        host = host[1:-1]
    if not host or (":" in host and not bracketed):
        raise ValueError(f"invalid redis address: {address!r}")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ValueError(f"invalid redis port in address: {address!r}") from exc
    if not 0 < port_number < 65536:
        raise ValueError(f"invalid redis port in address: {address!r}")
    return host, port_number


class RedisCounterStore(AbstractCounterStore):
    """Shared counter store using a Lua script for atomic bump.

    Usage:
        store = RedisCounterStore.from_address("localhost:6379")
        count = await store.bump("/rl/ip/1.2.3.4", 60)
    """

    backend_name = "redis"

    def __init__(self, client: Redis, *, owns_client: bool = False) -> None:
        """Initialize the store around an existing client.

        Args:
            client: ``redis.asyncio.Redis`` client (shared, not reconfigured here).
            owns_client: Close the client's connection pool on ``close()``.
        """
        self._client = client
        self._owns_client = owns_client
        self._bump_script = client.register_script(BUMP_SCRIPT)

    @classmethod
    def from_address(
        cls,
        address: str,
        *,
        password: str | None = None,
        db: int = 0,
        socket_timeout_seconds: float | None = None,
    ) -> "RedisCounterStore":
        """Build a store with its own client from connection parameters."""

        host, port = parse_address(address)
        client = Redis(
            host=host,
            port=port,
            password=password or None,
            db=db,
            socket_timeout=socket_timeout_seconds,
            socket_connect_timeout=socket_timeout_seconds,
        )
        return cls(client, owns_client=True)

    async def bump(self, key: str, ttl_seconds: int) -> int:
        validate_bump_args(key, ttl_seconds)

        try:
            result: Any = await self._bump_script(keys=[key], args=[ttl_seconds])
        except (RedisError, OSError) as exc:
            logger.error(
                "store.redis.error",
                extra={
                    "operation": "bump",
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="rate_limit_store_unavailable",
                message="Counter store could not complete the bump",
                details={"backend": self.backend_name, "operation": "bump"},
            ) from exc

        # bool is an int subclass; a Lua script can never legitimately return one here
        if not isinstance(result, int) or isinstance(result, bool) or result < 1:
            logger.error(
                "store.redis.unexpected_response",
                extra={"operation": "bump", "result_type": type(result).__name__},
            )
            raise StoreUnavailableError(
                code="store_unexpected_response",
                message="Counter store returned an unexpected response",
                details={
                    "backend": self.backend_name,
                    "operation": "bump",
                    "result_type": type(result).__name__,
                },
            )

        return result

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
