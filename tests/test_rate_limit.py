"""Fixed-window rate limiter tests.

Test scenarios:
  - The first 10 requests in a window pass, the 11th is refused
  - Counters are per key: another client or route is unaffected
  - The window resets once its reset time has passed
  - Retry-After is never below one second
  - sweep() drops only expired windows
  - Header rendering for allowed and refused results
  - peek() reports the window without counting
  - The limits-backed limiter enforces the same budget
  - Plain limits URIs (memory://, redis://) are mapped to their async variant
"""

import pytest

from survey_intake.rate_limit import (
    InMemoryRateLimiter,
    RateLimitResult,
    StorageRateLimiter,
    async_storage_uri,
    build_rate_limiter,
    rate_limit_headers,
)

KEY = "203.0.113.7:/api/form/submit"


class TestInMemoryRateLimiter:

    @pytest.mark.asyncio
    async def test_eleventh_request_is_refused(self, limiter):
        """Ten requests inside one window pass; the eleventh is blocked."""
        results = [await limiter.check(KEY) for _ in range(11)]
        assert all(r.allowed for r in results[:10])
        assert [r.remaining for r in results[:10]] == list(range(9, -1, -1))
        blocked = results[10]
        assert not blocked.allowed
        assert blocked.remaining == 0
        assert blocked.retry_after == 60

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, limiter):
        for _ in range(10):
            await limiter.check(KEY)
        assert not (await limiter.check(KEY)).allowed
        assert (await limiter.check("198.51.100.1:/api/form/submit")).allowed
        assert (await limiter.check("203.0.113.7:/api/survey/submit")).allowed

    @pytest.mark.asyncio
    async def test_window_resets_after_reset_time(self, limiter, timer):
        for _ in range(10):
            await limiter.check(KEY)
        timer.advance(30)
        refused = await limiter.check(KEY)
        assert not refused.allowed
        assert refused.retry_after == 30

        timer.advance(30.5)
        again = await limiter.check(KEY)
        assert again.allowed, "A new window should start after reset_time"
        assert again.remaining == 9

    @pytest.mark.asyncio
    async def test_retry_after_at_least_one_second(self, limiter, timer):
        for _ in range(10):
            await limiter.check(KEY)
        timer.advance(59.9)
        refused = await limiter.check(KEY)
        assert not refused.allowed
        assert refused.retry_after == 1

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired_windows(self, limiter, timer):
        await limiter.check("a:/api/x")
        timer.advance(45)
        await limiter.check("b:/api/x")
        timer.advance(20)

        removed = await limiter.sweep()
        assert removed == 1
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_refused_requests_do_not_extend_window(self, timer):
        lim = InMemoryRateLimiter(max_requests=1, window_seconds=10, clock=timer)
        first = await lim.check(KEY)
        for _ in range(5):
            timer.advance(1)
            assert not (await lim.check(KEY)).allowed
        assert (await lim.check(KEY)).reset_time == first.reset_time

    @pytest.mark.asyncio
    async def test_peek_does_not_count(self, limiter, timer):
        fresh = await limiter.peek(KEY)
        assert fresh.allowed
        assert fresh.remaining == 10
        assert fresh.reset_time == timer.current + 60
        assert len(limiter) == 0

        for _ in range(3):
            await limiter.check(KEY)
        for _ in range(5):
            assert (await limiter.peek(KEY)).remaining == 7
        assert (await limiter.check(KEY)).remaining == 6

    @pytest.mark.asyncio
    async def test_peek_reports_exhausted_window(self, limiter, timer):
        for _ in range(10):
            await limiter.check(KEY)
        timer.advance(20)
        seen = await limiter.peek(KEY)
        assert not seen.allowed
        assert seen.remaining == 0
        assert seen.retry_after == 40


class TestHeaders:

    def test_allowed_result_has_no_retry_after(self):
        headers = rate_limit_headers(RateLimitResult(
            allowed=True, limit=10, remaining=4, reset_time=0.0,
        ))
        assert headers["X-RateLimit-Limit"] == "10"
        assert headers["X-RateLimit-Remaining"] == "4"
        assert headers["X-RateLimit-Reset"] == "1970-01-01T00:00:00+00:00"
        assert "Retry-After" not in headers

    def test_refused_result_carries_retry_after(self):
        headers = rate_limit_headers(RateLimitResult(
            allowed=False, limit=10, remaining=0, reset_time=120.0, retry_after=42,
        ))
        assert headers["Retry-After"] == "42"
        assert headers["X-RateLimit-Remaining"] == "0"


class TestStorageRateLimiter:

    @pytest.mark.asyncio
    async def test_memory_storage_enforces_budget(self):
        lim = StorageRateLimiter("async+memory://", max_requests=3, window_seconds=60)
        results = [await lim.check(KEY) for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[3].retry_after >= 1
        assert results[0].limit == 3

    @pytest.mark.asyncio
    async def test_storage_peek_does_not_count(self):
        lim = StorageRateLimiter("async+memory://", max_requests=3, window_seconds=60)
        assert (await lim.peek(KEY)).remaining == 3
        await lim.check(KEY)
        assert (await lim.peek(KEY)).remaining == 2
        assert (await lim.peek(KEY)).remaining == 2
        await lim.check(KEY)
        await lim.check(KEY)
        exhausted = await lim.peek(KEY)
        assert not exhausted.allowed
        assert exhausted.retry_after >= 1

    def test_build_picks_backend_from_uri(self):
        assert isinstance(build_rate_limiter(None), InMemoryRateLimiter)
        assert isinstance(build_rate_limiter("async+memory://"), StorageRateLimiter)

    @pytest.mark.asyncio
    async def test_sync_memory_uri_is_accepted(self):
        lim = build_rate_limiter("memory://")
        assert isinstance(lim, StorageRateLimiter)
        result = await lim.check(KEY)
        assert result.allowed
        assert result.remaining == 9

    @pytest.mark.parametrize("uri, expected", [
        ("memory://", "async+memory://"),
        ("redis://localhost:6379/0", "async+redis://localhost:6379/0"),
        ("redis+sentinel://h:26379/mymaster", "async+redis+sentinel://h:26379/mymaster"),
        ("async+redis://localhost:6379", "async+redis://localhost:6379"),
    ])
    def test_async_storage_uri(self, uri, expected):
        assert async_storage_uri(uri) == expected

    def test_uri_without_scheme_is_rejected(self):
        with pytest.raises(ValueError):
            async_storage_uri("localhost:6379")
