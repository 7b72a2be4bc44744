"""Fixed-window rate limiting for public tracking lookups."""

from __future__ import annotations

import asyncio
import json
import math
import time
from collections.abc import Callable, Mapping

from litestar.stores.base import Store
from litestar.stores.memory import MemoryStore

from litestar_shipdesk.protocols import RateLimitStore
from litestar_shipdesk.types import RateLimitDecision

KEY_PREFIX = "shipdesk-rate-limit:"


class StoreRateLimitStore:
    """Window counters kept in a Litestar store.

    Defaults to a per-process :class:`MemoryStore`; pass a shared store
    (e.g. ``RedisStore``) to count across instances. Entries expire with
    their window, so the backing store prunes them itself.
    """

    def __init__(
        self,
        store: Store | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store or MemoryStore()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def increment(
        self, key: str, window_seconds: int
    ) -> tuple[int, float]:
        async with self._lock:
            now = self._clock()
            count, reset_at = await self._read(key)
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            await self.store.set(
                KEY_PREFIX + key,
                json.dumps({"count": count, "reset_at": reset_at}),
                expires_in=max(1, math.ceil(reset_at - now)),
            )
            return count, reset_at

    async def _read(self, key: str) -> tuple[int, float]:
        raw = await self.store.get(KEY_PREFIX + key)
        if raw is None:
            return 0, 0.0
        window = json.loads(raw)
        return int(window["count"]), float(window["reset_at"])


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore | None = None,
        *,
        limit: int = 10,
        window_seconds: int = 60,
    ) -> None:
        self.store = store or StoreRateLimitStore()
        self.limit = limit
        self.window_seconds = window_seconds

    async def hit(self, key: str) -> RateLimitDecision:
        count, reset_at = await self.store.increment(key, self.window_seconds)
        return RateLimitDecision(
            allowed=count <= self.limit,
            remaining=max(0, self.limit - count),
            reset_at=reset_at,
            limit=self.limit,
        )


def client_key(
    headers: Mapping[str, str], client_host: str | None = None
) -> str:
    """Caller identity for rate limiting; first proxy hop wins."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return client_host or "unknown"
