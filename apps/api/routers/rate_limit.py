"""Fixed-window request quotas for credit-spending and admin endpoints.

Counters live in Redis so every API worker shares them. When Redis is
unreachable each process falls back to its own in-memory window.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict

from fastapi import HTTPException, Request
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from services.session_token import InvalidSessionToken, read_session_token

logger = logging.getLogger(__name__)


@dataclass
class WindowState:
    hits: int
    resets_at: float


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    retry_after: int


_fallback_windows: Dict[str, WindowState] = {}
_fallback_lock = asyncio.Lock()


def reset_fallback_windows() -> None:
    _fallback_windows.clear()


def quota_subject(request: Request) -> str:
    """Authenticated callers are limited per account, anonymous ones per IP."""
    scheme, _, credentials = (request.headers.get("authorization") or "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        try:
            return f"account:{read_session_token(credentials.strip()).account_id}"
        except InvalidSessionToken:
            pass

    forwarded_for = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded_for:
        return f"ip:{forwarded_for}"
    if request.client is not None and request.client.host:
        return f"ip:{request.client.host}"
    return "anonymous"


async def _redis_window(key: str, limit: int, window_seconds: int) -> QuotaDecision:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.incr(key)
            pipe.ttl(key)
            _, hits, ttl = await pipe.execute()
    finally:
        await client.aclose()
    return QuotaDecision(allowed=int(hits) <= limit, retry_after=max(int(ttl), 1))


async def _fallback_window(key: str, limit: int, window_seconds: int) -> QuotaDecision:
    now = time.monotonic()
    async with _fallback_lock:
        state = _fallback_windows.get(key)
        if state is None or now >= state.resets_at:
            state = WindowState(hits=0, resets_at=now + window_seconds)
            _fallback_windows[key] = state
        state.hits += 1
        return QuotaDecision(
            allowed=state.hits <= limit,
            retry_after=max(math.ceil(state.resets_at - now), 1),
        )


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], Awaitable[None]]:
    """Build a dependency allowing ``limit`` calls per subject every ``window_seconds``."""

    async def _enforce(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"ledger:rate:{prefix}:{quota_subject(request)}"
        try:
            decision = await _redis_window(key, limit, window_seconds)
        except (RedisError, OSError) as exc:
            logger.debug("Redis quota check failed for %s, using in-process window: %s", prefix, exc)
            decision = await _fallback_window(key, limit, window_seconds)

        if not decision.allowed:
            raise HTTPException(
                status_code=429,
                detail=f"Too many {prefix} requests. Try again in {decision.retry_after} seconds.",
                headers={"Retry-After": str(decision.retry_after)},
            )

    return _enforce
