"""Fixed-window rate limiting per tenant and endpoint.

Counters live in a shared store exposing ``incr``/``expire`` (Redis in
production). Any store failure fails open: the request is allowed and the
failure is logged and counted, never retried.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import from_url as redis_from_url

from photoverify.config import Settings
from photoverify.observability import metrics

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int
    limit: int = 0
    window_seconds: int = 0

    @property
    def failed_open(self) -> bool:
        return self.remaining < 0


class CounterStore(Protocol):
    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> Any: ...


class MemoryCounterStore:
    """In-process counter store with Redis-like INCR/EXPIRE semantics.

    Every window gets a fresh key, so expired keys are swept whenever a new
    key is created and old windows never accumulate.
    """

    def __init__(self, now: Callable[[], float] = time.time) -> None:
        self._now = now
        self._data: Dict[str, Tuple[int, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._data)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and now >= exp]
        for key in expired:
            del self._data[key]

    def _live(self, key: str) -> Tuple[int, Optional[float]]:
        count, expires_at = self._data.get(key, (0, None))
        if expires_at is not None and self._now() >= expires_at:
            self._data.pop(key, None)
            return 0, None
        return count, expires_at

    async def incr(self, key: str) -> int:
        async with self._lock:
            if key not in self._data:
                self._sweep(self._now())
            count, expires_at = self._live(key)
            count += 1
            self._data[key] = (count, expires_at)
            return count

    async def expire(self, key: str, seconds: int) -> bool:
        async with self._lock:
            count, _ = self._live(key)
            if key not in self._data:
                return False
            self._data[key] = (count, self._now() + seconds)
            return True

    async def ping(self) -> bool:
        return True


class FixedWindowRateLimiter:
    def __init__(
        self,
        client: CounterStore,
        *,
        prefix: str = "rl:",
        now: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._now = now

    @property
    def client(self) -> CounterStore:
        return self._client

    def _key(self, tenant_id: str, endpoint: str, window_index: int) -> str:
        return f"{self._prefix}{tenant_id}:{endpoint}:{window_index}"

    async def check(
        self,
        tenant_id: str,
        endpoint: str,
        max_requests: int,
        window_seconds: int = 60,
    ) -> RateLimitResult:
        now = int(math.floor(self._now()))
        window_index = now // window_seconds
        key = self._key(tenant_id, endpoint, window_index)
        try:
            count = int(await self._client.incr(key))
            if count == 1:
                await self._client.expire(key, window_seconds)
        except Exception as exc:
            log.warning(
                "rate limit store unavailable; failing open",
                extra={"tenant_id": tenant_id, "endpoint": endpoint, "error": str(exc)},
            )
            metrics.inc_rate_limit_fail_open(endpoint)
            return RateLimitResult(
                allowed=True,
                remaining=-1,
                reset_at=0,
                limit=max_requests,
                window_seconds=window_seconds,
            )

        allowed = count <= max_requests
        if not allowed:
            metrics.inc_rate_limited(endpoint)
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, max_requests - count),
            reset_at=(window_index + 1) * window_seconds,
            limit=max_requests,
            window_seconds=window_seconds,
        )


def build_counter_store(settings: Settings) -> CounterStore:
    """Build the counter store named by RATE_LIMIT_BACKEND."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        if not settings.REDIS_URL:
            log.warning("RATE_LIMIT_BACKEND=redis without REDIS_URL; using memory store")
            return MemoryCounterStore()
        timeout = settings.RATE_LIMIT_REDIS_TIMEOUT_MS / 1000.0
        return redis_from_url(
            settings.REDIS_URL,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
    return MemoryCounterStore()


def build_rate_limiter(settings: Settings, client: Optional[CounterStore] = None) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        client if client is not None else build_counter_store(settings),
        prefix=settings.RATE_LIMIT_REDIS_KEY_PREFIX,
    )
