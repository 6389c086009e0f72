"""Unit tests for flowcal.calendar.feed_cache."""

import asyncio

import pytest

from flowcal.calendar.feed_cache import FeedCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingLoader:
    """Loader returning incrementing values and counting invocations."""

    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        return f"feed-v{self.calls}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> FeedCache[str]:
    return FeedCache(ttl_seconds=300, clock=clock)


class TestFeedCacheFreshness:
    """TTL behaviour with an injected clock."""

    async def test_get_or_load_when_fresh_then_served_from_cache(
        self, cache: FeedCache[str], clock: FakeClock
    ) -> None:
        """A second call inside the TTL does not reload."""
        loader = CountingLoader()

        first = await cache.get_or_load("u", loader)
        clock.advance(299)
        second = await cache.get_or_load("u", loader)

        assert first == second == "feed-v1"
        assert loader.calls == 1

    async def test_get_or_load_when_stale_then_reloads(
        self, cache: FeedCache[str], clock: FakeClock
    ) -> None:
        """Entries older than the TTL are refreshed."""
        loader = CountingLoader()

        await cache.get_or_load("u", loader)
        clock.advance(300)
        result = await cache.get_or_load("u", loader)

        assert result == "feed-v2"
        assert loader.calls == 2

    async def test_peek_when_stale_then_none(
        self, cache: FeedCache[str], clock: FakeClock
    ) -> None:
        """peek never returns stale data."""
        await cache.get_or_load("u", CountingLoader())

        assert cache.peek("u") == "feed-v1"
        clock.advance(301)
        assert cache.peek("u") is None

    async def test_invalidate_when_called_then_next_call_reloads(
        self, cache: FeedCache[str]
    ) -> None:
        """Invalidation forces a fresh load."""
        loader = CountingLoader()
        await cache.get_or_load("u", loader)

        cache.invalidate("u")
        result = await cache.get_or_load("u", loader)

        assert result == "feed-v2"
        assert len(cache) == 1

    async def test_clear_when_called_then_empty(self, cache: FeedCache[str]) -> None:
        await cache.get_or_load("a", CountingLoader())
        await cache.get_or_load("b", CountingLoader())

        cache.clear()

        assert len(cache) == 0


class TestFeedCacheConcurrency:
    """Single-flight loading and failure handling."""

    async def test_get_or_load_when_concurrent_cold_requests_then_one_upstream_call(
        self, cache: FeedCache[str]
    ) -> None:
        """Concurrent callers for a cold key share one load."""
        release = asyncio.Event()
        calls = 0

        async def slow_loader() -> str:
            nonlocal calls
            calls += 1
            await release.wait()
            return "shared"

        waiters = [asyncio.ensure_future(cache.get_or_load("u", slow_loader)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["shared"] * 5
        assert calls == 1

    async def test_get_or_load_when_loader_fails_then_error_not_cached(
        self, cache: FeedCache[str]
    ) -> None:
        """A failed load propagates and the next call retries."""
        attempts = 0

        async def flaky_loader() -> str:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("upstream down")
            return "recovered"

        with pytest.raises(RuntimeError, match="upstream down"):
            await cache.get_or_load("u", flaky_loader)

        assert len(cache) == 0
        assert await cache.get_or_load("u", flaky_loader) == "recovered"
        assert attempts == 2

    async def test_get_or_load_when_concurrent_failure_then_all_waiters_see_it(
        self, cache: FeedCache[str]
    ) -> None:
        """Every caller joined on a failing load receives the error."""
        release = asyncio.Event()

        async def failing_loader() -> str:
            await release.wait()
            raise ValueError("bad feed")

        waiters = [asyncio.ensure_future(cache.get_or_load("u", failing_loader)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, ValueError) for r in results)
        assert cache.peek("u") is None

    async def test_get_or_load_when_one_caller_cancelled_then_others_still_complete(
        self, cache: FeedCache[str]
    ) -> None:
        """Cancelling one waiter does not cancel the shared load."""
        release = asyncio.Event()

        async def slow_loader() -> str:
            await release.wait()
            return "done"

        first = asyncio.ensure_future(cache.get_or_load("u", slow_loader))
        second = asyncio.ensure_future(cache.get_or_load("u", slow_loader))
        await asyncio.sleep(0)
        first.cancel()
        release.set()

        assert await second == "done"
        assert cache.peek("u") == "done"
