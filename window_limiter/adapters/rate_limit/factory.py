"""Factory for creating counter store instances."""

from window_limiter.adapters.rate_limit.base import AbstractCounterStore
from window_limiter.adapters.rate_limit.in_memory import InMemoryCounterStore
from window_limiter.adapters.rate_limit.redis_store import RedisCounterStore
from window_limiter.core.config import Settings, settings as default_settings
from window_limiter.core.errors import ValidationAppError


def create_counter_store(settings: Settings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by APP_STORE_BACKEND.

    Args:
        settings: Settings to read; defaults to the global settings.

    Returns:
        AbstractCounterStore: Configured, not yet started, store.

    Raises:
        ValidationAppError: If the backend is unknown or its parameters are invalid.
    """
    cfg = settings or default_settings
    backend = cfg.app.store_backend.lower()

    if backend == "redis":
        try:
            return RedisCounterStore.from_address(
                cfg.redis.address,
                password=cfg.redis.password,
                db=cfg.redis.db,
                socket_timeout_seconds=cfg.redis.socket_timeout_seconds,
            )
        except ValueError as exc:
            raise ValidationAppError(
                code="store_invalid_config",
                message=str(exc),
                details={"backend": backend, "hint": "Set REDIS_ADDRESS as host:port"},
            ) from exc

    if backend == "memory":
        return InMemoryCounterStore(
            sweep_interval_seconds=cfg.app.memory_sweep_interval_seconds,
        )

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: redis, memory",
    )
