from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (counter store, decision engine, middleware,
handlers, routers) so tests can build isolated apps with their own store.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from window_limiter import __version__
from window_limiter.adapters.rate_limit.base import AbstractCounterStore
from window_limiter.adapters.rate_limit.factory import create_counter_store
from window_limiter.api.routes import health_router, ping_router
from window_limiter.core.config import Settings, settings as default_settings
from window_limiter.core.exception_handlers import setup_exception_handlers
from window_limiter.core.logging import configure_logging
from window_limiter.core.middleware import request_id_middleware
from window_limiter.core.openapi import apply_openapi_customizations
from window_limiter.core.rate_limit import RateLimitMiddleware
from window_limiter.services.rate_decision import RateDecisionEngine

logger = logging.getLogger(__name__)


def build_engine(store: AbstractCounterStore, settings: Settings) -> RateDecisionEngine:
    """Build the decision engine from rate limit settings."""
    rl = settings.rate_limit
    return RateDecisionEngine(
        store,
        token_policy=rl.token_policy(),
        ip_policy=rl.ip_policy(),
        token_key_prefix=rl.token_key_prefix,
        ip_key_prefix=rl.ip_key_prefix,
    )


def create_app(
    settings: Settings | None = None,
    *,
    store: AbstractCounterStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Settings to use; defaults to the global settings.
        store: Counter store to use; built from settings when omitted. The
            app lifespan starts and closes it either way.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    counter_store = store if store is not None else create_counter_store(cfg)
    engine = build_engine(counter_store, cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await counter_store.start()
        logger.info(
            "app.startup",
            extra={
                "store_backend": counter_store.backend_name,
                "token_limit": engine.token_policy.max_requests,
                "token_window_s": engine.token_policy.window_seconds,
                "ip_limit": engine.ip_policy.max_requests,
                "ip_window_s": engine.ip_policy.window_seconds,
            },
        )
        try:
            yield
        finally:
            await counter_store.close()
            logger.info("app.shutdown", extra={"store_backend": counter_store.backend_name})

    app = FastAPI(
        title="Window Limiter",
        description=(
            "Fixed-window rate limiting per API token (header `api_key`) or "
            "originating IP (first `X-Forwarded-For` hop), backed by a shared "
            "counter store."
        ),
        version=__version__,
        debug=cfg.app.debug,
        lifespan=lifespan,
    )
    app.state.counter_store = counter_store
    app.state.rate_decision_engine = engine

    # Middleware: the last registered runs first, so request ids wrap rate limiting
    app.middleware("http")(RateLimitMiddleware(engine, cfg))
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(ping_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(
        app,
        token_header=cfg.rate_limit.rate_limit_token_header,
        exempt_paths=cfg.app.exempt_paths(),
    )

    return app
