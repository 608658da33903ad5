from __future__ import annotations
import logging
import time
from typing import Literal, Optional, Protocol

from fastapi import Request

from ..config import Settings
from ..domain.errors import RateLimited
from ..observability.metrics import RL_FALLBACK, RL_REJECTED

logger = logging.getLogger(__name__)

FailureMode = Literal["local", "open", "closed"]


class RateLimitStore(Protocol):
    async def incr(self, key: str, window_ms: int) -> int:
        """Increment ``key`` and return the new count; the first hit in a
        window starts a ``window_ms`` expiry."""
        ...


# ---- shared store (fixed window) ----
class RedisRateLimitStore:
    def __init__(self, redis) -> None:
        self._redis = redis

    async def incr(self, key: str, window_ms: int) -> int:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.pttl(key)
            count, ttl = await pipe.execute()
        # -1: key has no expiry, either a fresh bucket or a PEXPIRE that never landed
        if int(ttl) < 0:
            await self._redis.pexpire(key, window_ms)
        return int(count)


# ---- process-local store ----
class LocalRateLimitStore:
    def __init__(self, clock=time.monotonic) -> None:
        self._buckets: dict[str, tuple[int, float]] = {}  # key -> (count, reset_at)
        self._clock = clock

    async def incr(self, key: str, window_ms: int) -> int:
        now = self._clock()
        count, reset_at = self._buckets.get(key, (0, 0.0))
        if now >= reset_at:
            count, reset_at = 0, now + window_ms / 1000
        count += 1
        self._buckets[key] = (count, reset_at)
        self._sweep(now)
        return count

    def _sweep(self, now: float) -> None:
        # keep the map from growing without bound under many distinct clients
        if len(self._buckets) < 10_000:
            return
        for k in [k for k, (_, r) in self._buckets.items() if r <= now]:
            del self._buckets[k]


class RateLimiter:
    """Per-action, per-client throttling.

    When the primary store fails, ``failure_mode`` decides what happens:
    ``local`` counts in-process with ``fallback`` (limits become per
    instance), ``open`` allows, ``closed`` rejects. Every fallback is logged
    and counted so a degraded shared store is visible.
    """

    def __init__(
        self,
        primary: RateLimitStore,
        *,
        fallback: Optional[RateLimitStore] = None,
        failure_mode: FailureMode = "local",
    ) -> None:
        self._primary = primary
        self._fallback = fallback or LocalRateLimitStore()
        self._failure_mode = failure_mode

    async def allow(self, action_key: str, client_id: str, window_ms: int, max_requests: int) -> bool:
        key = f"ratelimit:{action_key}:{client_id}"
        try:
            count = await self._primary.incr(key, window_ms)
        except Exception as e:
            RL_FALLBACK.labels(mode=self._failure_mode).inc()
            logger.warning(
                "rate_limit_store_failed",
                extra={"action": action_key, "mode": self._failure_mode, "error": str(e)},
            )
            if self._failure_mode == "open":
                return True
            if self._failure_mode == "closed":
                return False
            count = await self._fallback.incr(key, window_ms)
        allowed = count <= max_requests
        if not allowed:
            RL_REJECTED.labels(action=action_key).inc()
        return allowed


def client_ip(req: Request) -> str:
    # prefer X-Forwarded-For (first hop), then X-Real-IP, then the socket peer.
    # Clients with none of these share the "unknown" bucket.
    h = req.headers.get("x-forwarded-for")
    if h and h.split(",")[0].strip():
        return h.split(",")[0].strip()
    real = req.headers.get("x-real-ip")
    if real and real.strip():
        return real.strip()
    return req.client.host if req.client and req.client.host else "unknown"


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.RATE_LIMIT_BACKEND == "memory":
        return RateLimiter(LocalRateLimitStore(), failure_mode=settings.RATE_LIMIT_FAILURE_MODE)
    from ..redis_client import redis
    return RateLimiter(RedisRateLimitStore(redis), failure_mode=settings.RATE_LIMIT_FAILURE_MODE)


# ---- public helper ----
async def enforce(limiter: RateLimiter, req: Request, action: str, *, window_ms: int, limit: int) -> str:
    """Reject with RateLimited when over the limit; returns the client id."""
    ip = client_ip(req)
    if not await limiter.allow(action, ip, window_ms, limit):
        raise RateLimited()
    return ip
