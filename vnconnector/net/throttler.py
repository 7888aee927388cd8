"""
Rate limiting and backoff for outbound API calls.

FastConnect rejects bursts with HTTP 429; every request passes through a
sliding-window throttler keyed by host before it is sent, and transient
failures are retried with exponential backoff.
"""

import random
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Dict

from vnconnector.logging import get_logger, LogStream

logger = get_logger(LogStream.TRANSPORT)


@dataclass(frozen=True)
class RateLimit:
    """Rate limit configuration"""
    max_requests: int  # Maximum requests
    time_window: float  # Time window in seconds

    def __str__(self):
        return f"{self.max_requests} requests per {self.time_window}s"


class Throttler:
    """
    Thread-safe sliding-window rate limiter.

    Usage:
        throttler = Throttler({
            'data_api': RateLimit(10, 1.0),
            'trading_api': RateLimit(10, 1.0),
        })

        waited = throttler.acquire('data_api')

    The per-limit lock is held while waiting, so concurrent callers queue in
    arrival order instead of all waking at once when the window frees up.
    """

    def __init__(
        self,
        rate_limits: Dict[str, RateLimit],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._rate_limits = dict(rate_limits)
        self._clock = clock
        self._sleep = sleep
        self._request_times: Dict[str, deque] = defaultdict(deque)
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

        logger.debug(
            "Throttler initialized",
            extra={"limits": {k: str(v) for k, v in self._rate_limits.items()}},
        )

    def _lock_for(self, limit_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[limit_id]

    def acquire(self, limit_id: str) -> float:
        """
        Block until a request under ``limit_id`` is allowed, then record it.

        Returns:
            Time waited in seconds (0 if no wait)
        """
        with self._lock_for(limit_id):
            waited = self._wait_if_needed(limit_id)
            self._request_times[limit_id].append(self._clock())
            return waited

    def _wait_if_needed(self, limit_id: str) -> float:
        if limit_id not in self._rate_limits:
            return 0.0

        limit = self._rate_limits[limit_id]
        request_times = self._request_times[limit_id]

        now = self._clock()
        cutoff_time = now - limit.time_window
        while request_times and request_times[0] <= cutoff_time:
            request_times.popleft()

        if len(request_times) < limit.max_requests:
            return 0.0

        wait_time = (request_times[0] + limit.time_window) - now
        if wait_time <= 0:
            return 0.0

        logger.warning(
            f"Rate limit reached for {limit_id}, waiting {wait_time:.2f}s",
            extra={
                'limit_id': limit_id,
                'wait_time': wait_time,
                'limit': str(limit),
                'current_requests': len(request_times),
            }
        )
        self._sleep(wait_time)

        request_times.popleft()
        return wait_time


class ExponentialBackoff:
    """
    Exponential backoff for retry logic.

    Usage:
        backoff = ExponentialBackoff(base=1.0, max_delay=30.0)

        for attempt in range(max_retries):
            try:
                return send()
            except RetryableError:
                time.sleep(backoff.next_delay(attempt))
    """

    def __init__(
        self,
        base: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
        jitter: bool = True
    ):
        """
        Args:
            base: Base delay in seconds
            multiplier: Exponential multiplier
            max_delay: Maximum delay cap
            jitter: Add random jitter (±25%)
        """
        self.base = base
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-indexed)."""
        delay = min(self.base * (self.multiplier ** attempt), self.max_delay)

        if self.jitter and delay > 0:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)
