"""
Sliding-window rate limiter for vendor APIs.

Provides:
- Proactive quota guard: check() raises RateLimitExceeded before the
  request is sent, never after the vendor rejects it
- Per-source window (e.g. 60 requests / 60 seconds per application id)
- Injected clock for deterministic tests

Uses Django cache for distributed tracking across workers, so every
client and run for the same source shares one window.
"""

import logging
import math
import time
from typing import Callable, List, Optional

from django.conf import settings
from django.core.cache import cache

from ingestion.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Track request timestamps within a rolling window.

    Usage:
        limiter = SlidingWindowRateLimiter(max_requests=60, window_seconds=60, name="duga")
        limiter.check()      # raises RateLimitExceeded when the window is full
        response = requests.get(...)
        limiter.record()

    Or, when check and record belong together:
        limiter.acquire()
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
        name: str = "api",
        cache_prefix: str = "ingest:ratelimit",
    ):
        """
        Initialize rate limiter.

        Args:
            max_requests: Requests allowed per window
                (default INGEST_API_RATE_LIMIT_MAX_REQUESTS)
            window_seconds: Window length
                (default INGEST_API_RATE_LIMIT_WINDOW_SECONDS)
            clock: Wall-clock time source, injectable for tests
            name: Source slug; limiters with the same name share a window
            cache_prefix: Prefix for cache keys
        """
        self.max_requests = max_requests or getattr(
            settings, "INGEST_API_RATE_LIMIT_MAX_REQUESTS", 60
        )
        self.window_seconds = window_seconds or getattr(
            settings, "INGEST_API_RATE_LIMIT_WINDOW_SECONDS", 60.0
        )
        # Wall clock, since timestamps are compared across processes
        self.clock = clock or time.time
        self.name = name
        self.cache_prefix = cache_prefix

    def _window_key(self) -> str:
        """
        Generate cache key for the request window.

        Returns:
            Cache key string like "ingest:ratelimit:duga:window"
        """
        return f"{self.cache_prefix}:{self.name}:window"

    def _get_timestamps(self, now: Optional[float] = None) -> List[float]:
        """Timestamps still inside the window, oldest first."""
        if now is None:
            now = self.clock()
        cutoff = now - self.window_seconds
        return [ts for ts in cache.get(self._window_key(), []) if ts > cutoff]

    def remaining(self) -> int:
        """Requests still allowed in the current window (never negative)."""
        return max(0, self.max_requests - len(self._get_timestamps()))

    def check(self):
        """
        Verify a request may be sent now.

        Raises:
            RateLimitExceeded: If the window already holds max_requests
                timestamps; retry_after is the time until the oldest leaves
        """
        now = self.clock()
        timestamps = self._get_timestamps(now)
        if len(timestamps) >= self.max_requests:
            retry_after = max(0.0, timestamps[0] + self.window_seconds - now)
            logger.debug(f"{self.name} rate limit reached, retry in {retry_after:.1f}s")
            raise RateLimitExceeded(
                f"{self.name} rate limit exceeded "
                f"({self.max_requests} requests per {self.window_seconds:g} seconds)",
                retry_after=retry_after,
            )

    def record(self):
        """Record that a request was sent."""
        now = self.clock()
        timestamps = self._get_timestamps(now)
        timestamps.append(now)
        cache.set(self._window_key(), timestamps, math.ceil(self.window_seconds) + 1)
        logger.debug(
            f"{self.name} request recorded: {len(timestamps)}/{self.max_requests} "
            f"in {self.window_seconds:g}s window"
        )

    def acquire(self):
        """check() then record()."""
        self.check()
        self.record()
