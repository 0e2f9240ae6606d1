"""Unit tests for the rate decision engine."""

import asyncio
from unittest.mock import Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from window_limiter.adapters.rate_limit.base import AbstractCounterStore
from window_limiter.adapters.rate_limit.in_memory import InMemoryCounterStore
from window_limiter.core.errors import StoreUnavailableError
from window_limiter.services.rate_decision import (
    Decision,
    Identity,
    IdentityKind,
    RateDecisionEngine,
    RateLimitPolicy,
    resolve_identity,
)


def _engine(store, *, token=(3, 60), ip=(2, 60)) -> RateDecisionEngine:
    return RateDecisionEngine(
        store,
        token_policy=RateLimitPolicy(max_requests=token[0], window_seconds=token[1]),
        ip_policy=RateLimitPolicy(max_requests=ip[0], window_seconds=ip[1]),
    )


class SlowStore(AbstractCounterStore):
    """Store whose bump never finishes in time."""

    async def bump(self, key: str, ttl_seconds: int) -> int:
        await asyncio.sleep(10)
        return 1


class TestRateLimitPolicy:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_requests": 0, "window_seconds": 60},
            {"max_requests": 1, "window_seconds": 0},
        ],
    )
    def test_invalid_values_raise(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RateLimitPolicy(**kwargs)

    def test_policy_is_immutable(self) -> None:
        policy = RateLimitPolicy(max_requests=1, window_seconds=1)
        with pytest.raises(AttributeError):
            policy.max_requests = 5  # type: ignore[misc]


class TestResolveIdentity:
    def test_token_wins_over_ip(self) -> None:
        assert resolve_identity("token123", "1.2.3.4") == Identity.token("token123")

    def test_ip_used_without_token(self) -> None:
        assert resolve_identity(None, "1.2.3.4") == Identity.ip("1.2.3.4")

    def test_blank_token_falls_back_to_ip(self) -> None:
        identity = resolve_identity("   ", " 1.2.3.4 ")
        assert identity is not None
        assert identity.kind is IdentityKind.IP
        assert identity.value == "1.2.3.4"

    @pytest.mark.parametrize("token, ip", [(None, None), ("", ""), ("  ", "\t")])
    def test_no_identity(self, token, ip) -> None:
        assert resolve_identity(token, ip) is None


class TestEngineConstruction:
    def test_identical_prefixes_rejected(self, fake_store) -> None:
        policy = RateLimitPolicy(max_requests=1, window_seconds=1)
        with pytest.raises(ValueError):
            RateDecisionEngine(
                fake_store,
                token_policy=policy,
                ip_policy=policy,
                token_key_prefix="/rl/",
                ip_key_prefix="/rl/",
            )

    def test_empty_prefix_rejected(self, fake_store) -> None:
        policy = RateLimitPolicy(max_requests=1, window_seconds=1)
        with pytest.raises(ValueError):
            RateDecisionEngine(fake_store, token_policy=policy, ip_policy=policy, ip_key_prefix="")

    def test_keys_are_namespaced(self, fake_store) -> None:
        engine = _engine(fake_store)
        assert engine.key_for(Identity.token("abc")) == "/rl/token/abc"
        assert engine.key_for(Identity.ip("abc")) == "/rl/ip/abc"


class TestEvaluate:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_requests", [1, 2, 5])
    async def test_allows_exactly_max_then_rejects_by_token(self, fake_store, max_requests) -> None:
        engine = _engine(fake_store, token=(max_requests, 60))

        for _ in range(max_requests):
            assert (await engine.evaluate("token123", None)).decision is Decision.ALLOW

        result = await engine.evaluate("token123", None)
        assert result.decision is Decision.REJECT
        assert result.count == max_requests + 1
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_ip_scenario_allow_allow_reject(self, fake_store) -> None:
        engine = _engine(fake_store, ip=(2, 60))

        decisions = [(await engine.evaluate(None, "1.2.3.4")).decision for _ in range(3)]

        assert decisions == [Decision.ALLOW, Decision.ALLOW, Decision.REJECT]
        assert fake_store.calls == [("/rl/ip/1.2.3.4", 60)] * 3

    @pytest.mark.asyncio
    async def test_token_takes_priority_when_both_present(self, fake_store) -> None:
        engine = _engine(fake_store, token=(1, 60), ip=(2, 60))

        first = await engine.evaluate("token123", "1.2.3.4")
        second = await engine.evaluate("token123", "1.2.3.4")

        assert first.decision is Decision.ALLOW
        assert first.identity == Identity.token("token123")
        assert second.decision is Decision.REJECT
        assert "/rl/ip/1.2.3.4" not in fake_store.counts

    @pytest.mark.asyncio
    async def test_exhausted_ip_does_not_affect_token_requests(self, fake_store) -> None:
        engine = _engine(fake_store, token=(2, 60), ip=(1, 60))

        assert (await engine.evaluate(None, "1.2.3.4")).decision is Decision.ALLOW
        assert (await engine.evaluate(None, "1.2.3.4")).decision is Decision.REJECT

        assert (await engine.evaluate("token123", "1.2.3.4")).decision is Decision.ALLOW
        assert (await engine.evaluate("token123", "1.2.3.4")).decision is Decision.ALLOW
        assert fake_store.counts["/rl/ip/1.2.3.4"] == 2

    @pytest.mark.asyncio
    async def test_token_and_ip_counters_are_disjoint(self, fake_store) -> None:
        engine = _engine(fake_store, token=(1, 60), ip=(1, 60))

        assert (await engine.evaluate("shared", None)).decision is Decision.ALLOW
        assert (await engine.evaluate("shared", None)).decision is Decision.REJECT

        # Same literal as an IP lives in another namespace
        assert (await engine.evaluate(None, "shared")).decision is Decision.ALLOW
        assert fake_store.counts == {"/rl/token/shared": 2, "/rl/ip/shared": 1}

    @pytest.mark.asyncio
    async def test_malformed_request_makes_no_store_call(self, fake_store) -> None:
        engine = _engine(fake_store)

        for token, ip in [(None, None), ("", ""), ("  ", "  ")]:
            result = await engine.evaluate(token, ip)
            assert result.decision is Decision.MALFORMED_REQUEST
            assert result.identity is None

        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_store_error_is_store_failure_without_retry(self, store_factory) -> None:
        error = StoreUnavailableError(code="rate_limit_store_unavailable", message="down")
        store = store_factory(error=error)
        engine = _engine(store)

        result = await engine.evaluate("token123", None)

        assert result.decision is Decision.STORE_FAILURE
        assert result.error is error
        assert result.count is None
        assert result.remaining is None
        assert len(store.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_store_exception_is_store_failure(self, store_factory) -> None:
        store = store_factory(error=RedisConnectionError("connection refused"))
        engine = _engine(store)

        result = await engine.evaluate(None, "1.2.3.4")

        assert result.decision is Decision.STORE_FAILURE
        assert isinstance(result.error, RedisConnectionError)
        assert not result.allowed

    @pytest.mark.asyncio
    async def test_deadline_exceeded_is_store_failure(self) -> None:
        engine = _engine(SlowStore())

        result = await engine.evaluate("token123", None, timeout=0.01)

        assert result.decision is Decision.STORE_FAILURE
        assert isinstance(result.error, StoreUnavailableError)
        assert result.error.code == "rate_limit_store_timeout"

    @pytest.mark.asyncio
    async def test_store_timeout_error_without_deadline_is_not_relabelled(self, store_factory) -> None:
        error = TimeoutError("socket read timed out")
        engine = _engine(store_factory(error=error))

        result = await engine.evaluate("token123", None)

        assert result.decision is Decision.STORE_FAILURE
        assert result.error is error

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        engine = _engine(SlowStore())

        task = asyncio.create_task(engine.evaluate("token123", None, timeout=5))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_window_ttl_comes_from_selected_policy(self, fake_store) -> None:
        engine = _engine(fake_store, token=(3, 7), ip=(2, 11))

        await engine.evaluate("token123", None)
        await engine.evaluate(None, "1.2.3.4")

        assert fake_store.ttls == {"/rl/token/token123": 7, "/rl/ip/1.2.3.4": 11}

    @pytest.mark.asyncio
    async def test_allows_again_after_window_expiry(self, fake_store) -> None:
        engine = _engine(fake_store, ip=(1, 60))

        assert (await engine.evaluate(None, "1.2.3.4")).decision is Decision.ALLOW
        assert (await engine.evaluate(None, "1.2.3.4")).decision is Decision.REJECT

        fake_store.expire("/rl/ip/1.2.3.4")

        result = await engine.evaluate(None, "1.2.3.4")
        assert result.decision is Decision.ALLOW
        assert result.count == 1


class TestEngineWithInMemoryStore:
    @pytest.mark.asyncio
    async def test_counter_resets_to_one_after_ttl(self) -> None:
        clock = Mock(return_value=1000.0)
        engine = _engine(InMemoryCounterStore(clock=clock), token=(2, 10))

        assert (await engine.evaluate("t", None)).count == 1
        assert (await engine.evaluate("t", None)).count == 2
        assert (await engine.evaluate("t", None)).decision is Decision.REJECT

        clock.return_value = 1010.0
        result = await engine.evaluate("t", None)
        assert result.decision is Decision.ALLOW
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_concurrent_evaluations_observe_distinct_counts(self) -> None:
        engine = _engine(InMemoryCounterStore(), token=(10, 60))

        results = await asyncio.gather(*(engine.evaluate("token123", None) for _ in range(50)))

        counts = sorted(r.count for r in results)
        assert counts == list(range(1, 51))
        assert sum(r.allowed for r in results) == 10
