"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It points settings at the testing environment and the in-memory store so no
test needs a running Redis.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("APP_STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from window_limiter.adapters.rate_limit.base import AbstractCounterStore, validate_bump_args
from window_limiter.core.config import AppSettings, RateLimitSettings, Settings


class FakeCounterStore(AbstractCounterStore):
    """Deterministic counter store recording every bump.

    Counters never expire on their own; call ``expire(key)`` to simulate the
    TTL elapsing.
    """

    backend_name = "fake"

    def __init__(self, error: Exception | None = None) -> None:
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.calls: list[tuple[str, int]] = []
        self.error = error
        self.started = False
        self.closed = False

    async def bump(self, key: str, ttl_seconds: int) -> int:
        validate_bump_args(key, ttl_seconds)
        self.calls.append((key, ttl_seconds))
        if self.error is not None:
            raise self.error
        self.counts[key] = self.counts.get(key, 0) + 1
        if self.counts[key] == 1:
            self.ttls[key] = ttl_seconds
        return self.counts[key]

    def expire(self, key: str) -> None:
        self.counts.pop(key, None)
        self.ttls.pop(key, None)

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store() -> FakeCounterStore:
    return FakeCounterStore()


@pytest.fixture
def store_factory():
    """Build fake stores with a preset error."""
    return FakeCounterStore


@pytest.fixture
def make_settings():
    """Build isolated Settings with rate limit / app overrides."""

    def _make(app: dict | None = None, **rate_limit) -> Settings:
        app_overrides = {"store_backend": "memory", **(app or {})}
        return Settings(
            rate_limit=RateLimitSettings(**rate_limit),
            app=AppSettings(**app_overrides),
        )

    return _make
