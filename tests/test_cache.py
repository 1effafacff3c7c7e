import asyncio

import pytest

from cache import TTLCache
from config import RateLimitSettings
from ratelimit import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_get_and_set(clock):
    cache = TTLCache(clock=clock)
    assert cache.get("a") is None
    cache.set("a", {"success": True}, 10)
    assert cache.get("a") == {"success": True}
    assert cache.stats() == {"hits": 1, "misses": 1, "keys": 1}


def test_entries_expire_after_ttl(clock):
    cache = TTLCache(clock=clock)
    cache.set("short", 1, 5)
    cache.set("forever", 2, 0)
    clock.now += 5
    assert cache.get("short") is None
    assert cache.get("forever") == 2
    assert cache.keys() == ["forever"]


def test_std_ttl_applies_when_ttl_omitted(clock):
    cache = TTLCache(std_ttl=30, clock=clock)
    cache.set("k", "v")
    clock.now += 29
    assert cache.get("k") == "v"
    clock.now += 1
    assert cache.get("k") is None


def test_sweep_drops_expired_entries(clock):
    cache = TTLCache(check_period=120, clock=clock)
    cache.set("a", 1, 10)
    cache.set("b", 2, 500)
    clock.now += 121
    cache.get("b")
    assert "a" not in cache._data
    assert "b" in cache._data


def test_flush_all_resets_entries_and_stats(clock):
    cache = TTLCache(clock=clock)
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")
    cache.flush_all()
    assert cache.keys() == []
    assert cache.stats() == {"hits": 0, "misses": 0, "keys": 0}


def test_get_or_compute_caches_only_successful_results():
    cache = TTLCache()
    calls = []

    async def failing():
        calls.append("fail")
        return {"success": False}

    async def main():
        await cache.get_or_compute("k", 60, failing)
        await cache.get_or_compute("k", 60, failing)

    asyncio.run(main())
    assert calls == ["fail", "fail"]
    assert cache.keys() == []


def test_get_or_compute_coalesces_concurrent_misses():
    cache = TTLCache()
    calls = []

    async def produce():
        calls.append(1)
        await asyncio.sleep(0.01)
        return {"success": True, "n": len(calls)}

    async def main():
        return await asyncio.gather(*[cache.get_or_compute("episode:x", 60, produce) for _ in range(5)])

    results = asyncio.run(main())
    assert len(calls) == 1
    assert all(r == {"success": True, "n": 1} for r in results)
    assert cache.get("episode:x") == {"success": True, "n": 1}
    assert cache._inflight == {}


def test_get_or_compute_propagates_errors_without_caching():
    cache = TTLCache()

    async def broken():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        asyncio.run(cache.get_or_compute("k", 60, broken))
    assert cache.keys() == []
    assert cache._inflight == {}


def test_rate_limiter_blocks_after_limit(clock):
    limiter = RateLimiter(RateLimitSettings(window_seconds=60, max_requests=2), clock=clock)
    assert limiter.hit("1.2.3.4") == (True, 1, 60)
    assert limiter.hit("1.2.3.4") == (True, 0, 60)
    allowed, remaining, _ = limiter.hit("1.2.3.4")
    assert (allowed, remaining) == (False, 0)
    assert limiter.hit("5.6.7.8")[0] is True


def test_rate_limiter_window_resets(clock):
    limiter = RateLimiter(RateLimitSettings(window_seconds=60, max_requests=1), clock=clock)
    limiter.hit("ip")
    assert limiter.hit("ip")[0] is False
    clock.now += 60
    assert limiter.hit("ip") == (True, 0, 60)
