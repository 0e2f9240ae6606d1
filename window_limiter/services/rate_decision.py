"""Rate decision engine: identity selection and fixed-window decisions.

This service is the core of the limiter. For each request it:
- Resolves exactly one identity (API token first, then forwarded IP)
- Bumps that identity's counter in the shared store, once
- Converts the returned count into allow/reject

When a request carries both a token and an IP, only the token counter is
touched; the IP counter is left alone.

The engine is stateless. All shared mutable state lives in the counter store,
whose atomic bump provides the ordering guarantees under concurrency. Store
errors are reported as ``Decision.STORE_FAILURE`` and never retried here;
whether that blocks or admits traffic is the HTTP layer's call.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from window_limiter.adapters.rate_limit.base import AbstractCounterStore
from window_limiter.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_KEY_PREFIX = "/rl/token/"
DEFAULT_IP_KEY_PREFIX = "/rl/ip/"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Fixed-window limit: at most ``max_requests`` per ``window_seconds``."""

    max_requests: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")


class IdentityKind(str, Enum):
    TOKEN = "token"
    IP = "ip"


@dataclass(frozen=True)
class Identity:
    """Caller classification used as the variable part of a counter key."""

    kind: IdentityKind
    value: str

    @classmethod
    def token(cls, value: str) -> "Identity":
        return cls(IdentityKind.TOKEN, value)

    @classmethod
    def ip(cls, value: str) -> "Identity":
        return cls(IdentityKind.IP, value)


class Decision(str, Enum):
    ALLOW = "allow"
    REJECT = "reject"
    MALFORMED_REQUEST = "malformed_request"
    STORE_FAILURE = "store_failure"


@dataclass(frozen=True)
class RateDecision:
    """Outcome of one evaluation.

    Attributes:
        decision: The routing outcome.
        identity: Selected identity (None for malformed requests).
        policy: Policy applied to the identity (None for malformed requests).
        key: Counter key that was bumped.
        count: Post-increment count (None when no count was obtained).
        error: Store error behind a STORE_FAILURE.
    """

    decision: Decision
    identity: Identity | None = None
    policy: RateLimitPolicy | None = None
    key: str | None = None
    count: int | None = None
    error: BaseException | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW

    @property
    def remaining(self) -> int | None:
        """Requests left in the current window, or None if nothing was counted."""
        if self.count is None or self.policy is None:
            return None
        return max(0, self.policy.max_requests - self.count)


def _clean(value: str | None) -> str:
    return value.strip() if value else ""


def resolve_identity(token: str | None, ip: str | None) -> Identity | None:
    """Select the identity to count for a request.

    Args:
        token: Extracted API token, possibly empty or None.
        ip: Extracted caller IP, possibly empty or None.

    Returns:
        Token identity if a token is present, else IP identity if an IP is
        present, else None.

    Examples:
        >>> resolve_identity("token123", "1.2.3.4").kind.value
        'token'
        >>> resolve_identity("  ", "1.2.3.4").value
        '1.2.3.4'
        >>> resolve_identity(None, "") is None
        True
    """
    token = _clean(token)
    if token:
        return Identity.token(token)

    ip = _clean(ip)
    if ip:
        return Identity.ip(ip)

    return None


class RateDecisionEngine:
    """Turns request identities into fixed-window allow/reject decisions.

    The store is injected and owned by the caller; the engine never starts,
    closes or reconfigures it.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        token_policy: RateLimitPolicy,
        ip_policy: RateLimitPolicy,
        token_key_prefix: str = DEFAULT_TOKEN_KEY_PREFIX,
        ip_key_prefix: str = DEFAULT_IP_KEY_PREFIX,
    ) -> None:
        if not token_key_prefix or not ip_key_prefix:
            raise ValueError("key prefixes must be non-empty")
        if token_key_prefix == ip_key_prefix:
            raise ValueError("token and ip key prefixes must differ")

        self._store = store
        self._token_policy = token_policy
        self._ip_policy = ip_policy
        self._token_key_prefix = token_key_prefix
        self._ip_key_prefix = ip_key_prefix

    @property
    def token_policy(self) -> RateLimitPolicy:
        return self._token_policy

    @property
    def ip_policy(self) -> RateLimitPolicy:
        return self._ip_policy

    def policy_for(self, identity: Identity) -> RateLimitPolicy:
        if identity.kind is IdentityKind.TOKEN:
            return self._token_policy
        return self._ip_policy

    def key_for(self, identity: Identity) -> str:
        """Build the namespaced counter key for an identity."""
        if identity.kind is IdentityKind.TOKEN:
            return self._token_key_prefix + identity.value
        return self._ip_key_prefix + identity.value

    async def _bump(self, key: str, ttl_seconds: int, timeout: float | None) -> int:
        if timeout is None:
            return await self._store.bump(key, ttl_seconds)
        return await asyncio.wait_for(self._store.bump(key, ttl_seconds), timeout=timeout)

    async def evaluate(
        self,
        token: str | None,
        ip: str | None,
        *,
        timeout: float | None = None,
    ) -> RateDecision:
        """Decide whether a request may proceed.

        Args:
            token: Extracted API token (takes precedence when non-empty).
            ip: Extracted caller IP.
            timeout: Optional deadline in seconds for the store call.

        Returns:
            RateDecision with exactly one of ALLOW, REJECT, MALFORMED_REQUEST
            or STORE_FAILURE. MALFORMED_REQUEST never touches the store.
        """
        identity = resolve_identity(token, ip)
        if identity is None:
            return RateDecision(decision=Decision.MALFORMED_REQUEST)

        policy = self.policy_for(identity)
        key = self.key_for(identity)

        try:
            count = await self._bump(key, policy.window_seconds, timeout)
        except Exception as exc:
            # Any store error is terminal for this request; never retried.
            error: BaseException = exc
            if timeout is not None and isinstance(exc, asyncio.TimeoutError):
                error = StoreUnavailableError(
                    code="rate_limit_store_timeout",
                    message="Counter store did not answer before the deadline",
                    details={"operation": "bump", "timeout_seconds": timeout},
                )
            elif not isinstance(exc, StoreUnavailableError):
                logger.error(
                    "rate_decision.store_error",
                    extra={
                        "key_type": identity.kind.value,
                        "error_type": type(exc).__name__,
                    },
                )
            return RateDecision(
                decision=Decision.STORE_FAILURE,
                identity=identity,
                policy=policy,
                key=key,
                error=error,
            )

        decision = Decision.REJECT if count > policy.max_requests else Decision.ALLOW
        return RateDecision(
            decision=decision,
            identity=identity,
            policy=policy,
            key=key,
            count=count,
        )
