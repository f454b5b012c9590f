"""
Unit tests for the periodic sweep that reclaims expired store entries.
"""

import asyncio

import pytest

from shared.periodic import PeriodicTask
from service_downloads.app.caching.ttl_cache import TTLCache
from service_downloads.app.ratelimit.fixed_window import FixedWindowRateLimiter


async def wait_for(predicate, timeout: float = 1.0):
    """Poll ``predicate`` until it holds or the timeout elapses."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class TestPeriodicTask:
    """Test cases for PeriodicTask."""

    @pytest.mark.asyncio
    async def test_runs_callback_repeatedly_until_stopped(self):
        calls = []
        task = PeriodicTask("test", 0.01, lambda: calls.append(1))

        await task.start()
        await wait_for(lambda: len(calls) >= 3)
        await task.stop()

        settled = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == settled
        assert task.running is False

    @pytest.mark.asyncio
    async def test_supports_async_callbacks(self):
        calls = []

        async def callback():
            calls.append(1)

        task = PeriodicTask("async", 0.01, callback)
        await task.start()
        await wait_for(lambda: calls)
        await task.stop()

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_kill_loop(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("boom")

        task = PeriodicTask("flaky", 0.01, flaky)
        await task.start()
        await wait_for(lambda: len(attempts) >= 2)
        await task.stop()

    @pytest.mark.asyncio
    async def test_run_once(self):
        task = PeriodicTask("once", 60, lambda: 7)
        assert await task.run_once() == 7
        assert task.runs == 1

    @pytest.mark.asyncio
    async def test_stop_without_start_is_safe(self):
        task = PeriodicTask("idle", 60, lambda: None)
        await task.stop()
        assert task.running is False


class TestStoreSweepers:
    """Test cases for the store-owned sweep lifecycle."""

    @pytest.mark.asyncio
    async def test_cache_sweeper_evicts_expired_entries(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("old", 1, 5)
        cache.set("fresh", 2, 500)
        clock.advance(10)
        evictions = []

        await cache.start(interval_seconds=0.01, on_sweep=evictions.append)
        assert cache.get_stats()["sweeper_running"] is True
        await wait_for(lambda: cache.size == 1)
        await cache.stop()

        assert cache.keys() == ["fresh"]
        assert 1 in evictions
        assert cache.get_stats()["sweeper_running"] is False

    @pytest.mark.asyncio
    async def test_rate_limiter_sweeper_evicts_closed_windows(self, clock):
        limiter = FixedWindowRateLimiter(clock=clock)
        limiter.check_rate_limit("a:minute", 20, 60)
        limiter.check_rate_limit("a:hour", 100, 3600)
        clock.advance(120)

        await limiter.start(interval_seconds=0.01)
        await wait_for(lambda: limiter.size == 1)
        await limiter.stop()

        assert limiter.get_entry("a:hour") is not None

    @pytest.mark.asyncio
    async def test_start_twice_keeps_single_sweeper(self, clock):
        cache = TTLCache(clock=clock)
        await cache.start(interval_seconds=60)
        first = cache._sweeper
        await cache.start(interval_seconds=60)
        assert cache._sweeper is first
        await cache.stop()
