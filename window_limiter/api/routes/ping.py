from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Ping"])


@router.get("/ping")
async def ping() -> dict:
    """Rate-limited liveness endpoint.

    Every call counts against the caller's window, so it doubles as a way to
    inspect the X-RateLimit-* headers a client receives.
    """

    return {"message": "pong"}
