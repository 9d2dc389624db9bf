"""Fixed-window rate limiting.

Two :class:`~survey_intake.interfaces.RateLimiter` backends:

  - :class:`InMemoryRateLimiter`: a lock-protected dict of windows, swept
    periodically.  Best effort and single-process: counters are not shared
    between instances.
  - :class:`StorageRateLimiter`: delegates to the ``limits`` library, so the
    counters can live in Redis (``redis://...``) and be shared by every
    instance behind a load balancer.

:func:`build_rate_limiter` picks one from the configured storage URI.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from limits import RateLimitItemPerSecond
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string

from survey_intake.constants import (
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_SWEEP_SECONDS,
    RATE_LIMIT_WINDOW_SECONDS,
)
from survey_intake.interfaces import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one :meth:`RateLimiter.check` call.

    ``reset_time`` is a Unix timestamp (seconds) at which the current window
    ends.  ``retry_after`` is only set when the request was refused.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: int | None = None


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """``X-RateLimit-*`` headers (plus ``Retry-After`` when blocked)."""
    reset = datetime.fromtimestamp(result.reset_time, tz=timezone.utc)
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": reset.isoformat(),
    }
    if not result.allowed and result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def _retry_after(reset_time: float, now: float) -> int:
    # Never advertise 0: the client would retry inside the same window.
    return max(1, math.ceil(reset_time - now))


# ------------------------------------------------------------------
# In-memory backend
# ------------------------------------------------------------------

@dataclass
class _Window:
    count: int
    reset_time: float


class InMemoryRateLimiter(RateLimiter):
    """Process-local fixed-window counter.

    Args:
        max_requests: requests allowed per key per window
        window_seconds: window length
        clock: returns the current Unix time; injectable for tests
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max = max_requests
        self._window = window_seconds
        self._clock = clock
        self._entries: dict[str, _Window] = {}
        # Requests for the same key can race on the increment.
        self._lock = threading.Lock()

    async def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_time:
                entry = _Window(count=1, reset_time=now + self._window)
                self._entries[key] = entry
                return RateLimitResult(
                    allowed=True,
                    limit=self._max,
                    remaining=self._max - 1,
                    reset_time=entry.reset_time,
                )

            if entry.count >= self._max:
                return RateLimitResult(
                    allowed=False,
                    limit=self._max,
                    remaining=0,
                    reset_time=entry.reset_time,
                    retry_after=_retry_after(entry.reset_time, now),
                )

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                limit=self._max,
                remaining=self._max - entry.count,
                reset_time=entry.reset_time,
            )

    async def peek(self, key: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_time:
                return RateLimitResult(
                    allowed=True,
                    limit=self._max,
                    remaining=self._max,
                    reset_time=now + self._window,
                )
            if entry.count >= self._max:
                return RateLimitResult(
                    allowed=False,
                    limit=self._max,
                    remaining=0,
                    reset_time=entry.reset_time,
                    retry_after=_retry_after(entry.reset_time, now),
                )
            return RateLimitResult(
                allowed=True,
                limit=self._max,
                remaining=self._max - entry.count,
                reset_time=entry.reset_time,
            )

    async def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.reset_time]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("Rate limiter sweep removed %d windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


# ------------------------------------------------------------------
# limits-backed backend
# ------------------------------------------------------------------

ASYNC_SCHEME_PREFIX = "async+"


def async_storage_uri(storage_uri: str) -> str:
    """Map a ``limits`` storage URI onto its asyncio variant.

    ``"redis://host:6379"`` becomes ``"async+redis://host:6379"``; URIs that
    already name an async storage are returned unchanged.
    """
    if "://" not in storage_uri:
        raise ValueError(f"Invalid rate limit storage URI: {storage_uri!r}")
    if storage_uri.startswith(ASYNC_SCHEME_PREFIX):
        return storage_uri
    return ASYNC_SCHEME_PREFIX + storage_uri


class StorageRateLimiter(RateLimiter):
    """Fixed-window limiter whose counters live in a ``limits`` storage.

    Args:
        storage_uri: a ``limits`` storage URI, e.g. ``"memory://"`` or
            ``"redis://localhost:6379"``; the ``async+`` prefix the asyncio
            strategy requires is added when missing
    """

    def __init__(
        self,
        storage_uri: str,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
    ) -> None:
        self._storage = storage_from_string(async_storage_uri(storage_uri))
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._max = max_requests
        self._window = window_seconds

    async def check(self, key: str) -> RateLimitResult:
        allowed = await self._strategy.hit(self._item, key)
        stats = await self._strategy.get_window_stats(self._item, key)
        if allowed:
            return RateLimitResult(
                allowed=True,
                limit=self._max,
                remaining=stats.remaining,
                reset_time=stats.reset_time,
            )
        return RateLimitResult(
            allowed=False,
            limit=self._max,
            remaining=0,
            reset_time=stats.reset_time,
            retry_after=_retry_after(stats.reset_time, time.time()),
        )

    async def peek(self, key: str) -> RateLimitResult:
        stats = await self._strategy.get_window_stats(self._item, key)
        now = time.time()
        if stats.remaining >= self._max:
            # No window open for this key yet.
            return RateLimitResult(
                allowed=True,
                limit=self._max,
                remaining=self._max,
                reset_time=now + self._window,
            )
        if stats.remaining > 0:
            return RateLimitResult(
                allowed=True,
                limit=self._max,
                remaining=stats.remaining,
                reset_time=stats.reset_time,
            )
        return RateLimitResult(
            allowed=False,
            limit=self._max,
            remaining=0,
            reset_time=stats.reset_time,
            retry_after=_retry_after(stats.reset_time, now),
        )


def build_rate_limiter(storage_uri: str | None = None) -> RateLimiter:
    """In-memory limiter when no URI is configured, ``limits`` storage otherwise."""
    if not storage_uri:
        logger.info("Using in-memory rate limiting (single process)")
        return InMemoryRateLimiter()
    logger.info("Using shared rate limit storage")
    return StorageRateLimiter(storage_uri)


async def run_sweeper(
    limiter: RateLimiter, interval: float = RATE_LIMIT_SWEEP_SECONDS,
) -> None:
    """Call ``limiter.sweep()`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await limiter.sweep()
        except Exception:
            logger.exception("Rate limiter sweep failed")
