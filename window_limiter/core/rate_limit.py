"""Rate limiting middleware for FastAPI apps.

This module is the HTTP boundary of the limiter: it extracts the caller's
identity from request headers, asks the decision engine, and turns the
decision into either a pass-through or an error response.

Decision → response mapping:
- ALLOW → request continues (with X-RateLimit-* headers when enabled)
- REJECT → 429 Too Many Requests
- MALFORMED_REQUEST → 400 Bad Request (no token and no forwarded IP)
- STORE_FAILURE → 500 Internal Server Error

Store failures are fail-closed: while the counter store is unavailable,
requests are refused with 500 instead of being admitted uncounted.
"""

from __future__ import annotations

import hashlib
import logging

from fastapi import Request, Response

from window_limiter.core.config import Settings
from window_limiter.core.exception_handlers import build_error_response
from window_limiter.services.rate_decision import (
    Decision,
    RateDecision,
    RateDecisionEngine,
)

logger = logging.getLogger(__name__)

REJECTED_MESSAGE = (
    "you have reached the maximum number of requests or actions allowed "
    "within a certain time frame"
)
MALFORMED_MESSAGE = "No valid token or IP found"
STORE_FAILURE_MESSAGE = "error on rate limit store"


def extract_forwarded_ip(header_value: str | None) -> str:
    """Return the originating client IP from a forwarding header.

    Only the left-most element of the comma-separated proxy chain is used.

    Examples:
        >>> extract_forwarded_ip("1.2.3.4, 10.0.0.1, 10.0.0.2")
        '1.2.3.4'
        >>> extract_forwarded_ip(" , 10.0.0.1")
        ''
        >>> extract_forwarded_ip(None)
        ''
    """
    if not header_value:
        return ""
    return header_value.split(",", 1)[0].strip()


def extract_token(request: Request, header_name: str) -> str:
    """Return the trimmed API token header value (empty if absent)."""
    return (request.headers.get(header_name) or "").strip()


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing secrets."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimitMiddleware:
    """Fixed-window rate limiting as an ``http`` middleware.

    Usage:
        engine = RateDecisionEngine(store, token_policy=..., ip_policy=...)
        app.middleware("http")(RateLimitMiddleware(engine, settings))
    """

    def __init__(self, engine: RateDecisionEngine, settings: Settings) -> None:
        self.engine = engine
        self.settings = settings
        self._exempt_paths = settings.app.exempt_paths()

    def _extract_ip(self, request: Request) -> str:
        forwarded = request.headers.get(self.settings.rate_limit.rate_limit_forwarded_header)
        ip = extract_forwarded_ip(forwarded)
        if not ip and self.settings.app.trust_client_address and request.client:
            ip = request.client.host
        return ip

    def _rate_limit_headers(self, result: RateDecision) -> dict[str, str]:
        if not self.settings.app.rate_limit_include_headers or result.policy is None:
            return {}

        headers = {
            "X-RateLimit-Limit": str(result.policy.max_requests),
            "X-RateLimit-Remaining": str(result.remaining or 0),
        }
        if result.decision is Decision.REJECT:
            # Upper bound: the window may have started before this request.
            headers["Retry-After"] = str(result.policy.window_seconds)
        return headers

    def _log_decision(self, request: Request, result: RateDecision) -> None:
        extra: dict[str, object] = {
            "path": request.url.path,
            "method": request.method,
        }
        if result.identity is not None and result.key is not None:
            extra["key_type"] = result.identity.kind.value
            extra["key_hash"] = _hash_limiter_key(result.key)
        if result.policy is not None:
            extra["limit"] = result.policy.max_requests
            extra["window_s"] = result.policy.window_seconds
        if result.count is not None:
            extra["count"] = result.count

        if result.decision is Decision.ALLOW:
            logger.info("rate_limit.allowed", extra=extra)
        elif result.decision is Decision.REJECT:
            logger.warning("rate_limit.rejected", extra=extra)
        elif result.decision is Decision.MALFORMED_REQUEST:
            logger.warning("rate_limit.malformed", extra=extra)
        else:
            error = result.error
            extra["error_type"] = type(error).__name__ if error else None
            extra["error_code"] = getattr(error, "code", None)
            logger.error("rate_limit.store_failure", extra=extra)

    async def __call__(self, request: Request, call_next) -> Response:
        if not self.settings.app.rate_limit_enabled or request.url.path in self._exempt_paths:
            return await call_next(request)

        token = extract_token(request, self.settings.rate_limit.rate_limit_token_header)
        ip = self._extract_ip(request)

        result = await self.engine.evaluate(
            token,
            ip,
            timeout=self.settings.app.store_timeout_seconds,
        )
        self._log_decision(request, result)
        headers = self._rate_limit_headers(result)

        if result.decision is Decision.ALLOW:
            response: Response = await call_next(request)
            for name, value in headers.items():
                response.headers.setdefault(name, value)
            return response

        if result.decision is Decision.REJECT:
            return build_error_response(
                429,
                "rate_limit_exceeded",
                REJECTED_MESSAGE,
                details={
                    "limit": result.policy.max_requests,
                    "window_seconds": result.policy.window_seconds,
                },
                headers=headers,
            )

        if result.decision is Decision.MALFORMED_REQUEST:
            return build_error_response(400, "identity_not_found", MALFORMED_MESSAGE)

        return build_error_response(500, "rate_limit_store_error", STORE_FAILURE_MESSAGE)
