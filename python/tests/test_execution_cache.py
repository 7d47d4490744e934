"""Tests for the single-flight execution cache (agentcore/execution/cache.py)."""

import asyncio

import pytest

from agentcore.execution import ExecutionCache, generate_cache_key


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ExecutionCache(default_ttl=60, clock=clock)


class TestCacheKey:
    def test_stable_and_whitespace_insensitive(self):
        a = generate_cache_key("a1", "gpt-4o", [{"role": "user", "content": "hi "}], {"temperature": 0.2})
        b = generate_cache_key("a1", "gpt-4o", [{"role": "user", "content": "hi"}], {"temperature": 0.2})
        assert a == b
        assert a.startswith("exec:")

    def test_differs_by_agent_model_and_options(self):
        messages = [{"role": "user", "content": "hi"}]
        base = generate_cache_key("a1", "gpt-4o", messages)
        assert base != generate_cache_key("a2", "gpt-4o", messages)
        assert base != generate_cache_key("a1", "gpt-4", messages)
        assert base != generate_cache_key("a1", "gpt-4o", messages, {"temperature": 1.0})


class TestKeyValue:
    def test_set_get_and_expiry(self, cache, clock):
        cache.set("k", {"v": 1})
        assert cache.get("k") == {"v": 1}
        assert cache.get_ttl("k") == 60
        clock.now = 60
        assert cache.get("k") is None
        assert not cache.exists("k")

    def test_custom_ttl(self, cache, clock):
        cache.set("k", 1, ttl=5)
        clock.now = 4
        assert cache.exists("k")
        clock.now = 5
        assert not cache.exists("k")

    def test_delete_pattern(self, cache):
        cache.set("exec:a", 1)
        cache.set("exec:b", 2)
        cache.set("embedding:c", 3)
        assert cache.delete_pattern("exec:*") == 2
        assert cache.exists("embedding:c")

    def test_stats_hit_rate(self, cache):
        cache.set("k", 1)
        cache.get("k")
        cache.get("missing")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


class TestSingleFlight:
    """Concurrent callers for one key share a single computation."""

    async def test_concurrent_callers_share_one_computation(self, cache):
        calls = 0
        release = asyncio.Event()

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return "value"

        tasks = [asyncio.create_task(cache.get_or_compute("k", compute)) for _ in range(5)]
        await asyncio.sleep(0)
        assert cache.inflight("k")
        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert [v for v, _ in results] == ["value"] * 5
        assert sorted(hit for _, hit in results) == [False, True, True, True, True]
        assert cache.stats()["joined"] == 4
        assert not cache.inflight("k")

    async def test_stored_value_is_a_hit(self, cache):
        async def compute():
            return 42

        assert await cache.get_or_compute("k", compute) == (42, False)
        assert await cache.get_or_compute("k", compute) == (42, True)

    async def test_error_is_shared_and_not_cached(self, cache):
        release = asyncio.Event()
        calls = 0

        async def failing():
            nonlocal calls
            calls += 1
            await release.wait()
            raise RuntimeError("boom")

        tasks = [asyncio.create_task(cache.get_or_compute("k", failing)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert not cache.exists("k")

    async def test_bypass_recomputes_and_stores(self, cache):
        cache.set("k", "stale")

        async def compute():
            return "fresh"

        assert await cache.get_or_compute("k", compute, bypass=True) == ("fresh", False)
        assert cache.get("k") == "fresh"

    async def test_store_predicate_can_veto(self, cache):
        async def compute():
            return {"complete": False}

        await cache.get_or_compute("k", compute, store=lambda v: v["complete"])
        assert not cache.exists("k")

    async def test_cancelled_leader_hands_over(self, cache):
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)
            return "slow"

        async def fast():
            return "fast"

        leader = asyncio.create_task(cache.get_or_compute("k", slow))
        await started.wait()
        follower = asyncio.create_task(cache.get_or_compute("k", fast))
        await asyncio.sleep(0)
        leader.cancel()

        value, from_cache = await follower
        assert value == "fast"
        assert from_cache is False
        with pytest.raises(asyncio.CancelledError):
            await leader
