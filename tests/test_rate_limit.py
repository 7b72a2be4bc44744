# tests/test_rate_limit.py
"""Public lookup rate limiting tests."""

import json

import pytest
from litestar.stores.memory import MemoryStore

from litestar_shipdesk.rate_limit import (
    RateLimiter,
    StoreRateLimitStore,
    client_key,
)


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(
        StoreRateLimitStore(clock=clock), limit=3, window_seconds=60
    )


async def test_allows_up_to_limit(limiter):
    """The limit-th request is still allowed."""
    decisions = [await limiter.hit("1.2.3.4") for _ in range(3)]
    assert all(d.allowed for d in decisions)
    assert [d.remaining for d in decisions] == [2, 1, 0]
    assert decisions[0].limit == 3
    assert decisions[0].reset_at == 1_060.0


async def test_denies_over_limit(limiter):
    for _ in range(3):
        await limiter.hit("1.2.3.4")
    decision = await limiter.hit("1.2.3.4")
    assert not decision.allowed
    assert decision.remaining == 0


async def test_window_resets(limiter, clock):
    """A new window starts once the previous one expires."""
    for _ in range(4):
        await limiter.hit("1.2.3.4")
    clock.now += 60
    decision = await limiter.hit("1.2.3.4")
    assert decision.allowed
    assert decision.remaining == 2
    assert decision.reset_at == 1_120.0


async def test_keys_are_independent(limiter):
    for _ in range(4):
        await limiter.hit("1.2.3.4")
    assert (await limiter.hit("5.6.7.8")).allowed


async def test_counters_live_in_litestar_store(clock):
    backend = MemoryStore()
    store = StoreRateLimitStore(backend, clock=clock)
    await store.increment("a", 10)
    await store.increment("a", 10)
    raw = await backend.get("shipdesk-rate-limit:a")
    assert json.loads(raw) == {"count": 2, "reset_at": 1_010.0}


async def test_limiters_sharing_a_store_share_counts(clock):
    """Instances backed by one store enforce a single limit."""
    backend = MemoryStore()
    first = RateLimiter(
        StoreRateLimitStore(backend, clock=clock), limit=2, window_seconds=60
    )
    second = RateLimiter(
        StoreRateLimitStore(backend, clock=clock), limit=2, window_seconds=60
    )
    assert (await first.hit("1.2.3.4")).allowed
    assert (await second.hit("1.2.3.4")).allowed
    assert not (await first.hit("1.2.3.4")).allowed


async def test_expired_entry_starts_new_window(clock):
    backend = MemoryStore()
    store = StoreRateLimitStore(backend, clock=clock)
    await store.increment("a", 10)
    await backend.delete("shipdesk-rate-limit:a")
    assert await store.increment("a", 10) == (1, 1_010.0)


def test_client_key_prefers_forwarded_for():
    headers = {"x-forwarded-for": "9.9.9.9, 10.0.0.1", "x-real-ip": "8.8.8.8"}
    assert client_key(headers, "127.0.0.1") == "9.9.9.9"


def test_client_key_falls_back_to_real_ip():
    assert client_key({"x-real-ip": " 8.8.8.8 "}, "127.0.0.1") == "8.8.8.8"


def test_client_key_uses_peer_address():
    assert client_key({}, "127.0.0.1") == "127.0.0.1"
    assert client_key({}) == "unknown"
