"""
Provides an adaptive rate limiter to stay under the Spotify Web API's rolling
request window.
"""

import asyncio
import logging
import time

log = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """
    Spaces out calls and backs off when Spotify answers 429 Too Many Requests.
    """

    def __init__(
        self, initial_calls_per_second: float = 5.0, max_calls_per_second: float = 10.0
    ):
        """
        Args:
            initial_calls_per_second: The starting rate of calls per second.
            max_calls_per_second: The maximum rate to recover to.
        """
        self._rate = initial_calls_per_second
        self._max_rate = max_calls_per_second
        self._min_interval = 1.0 / self._rate
        self._last_call_time = 0.0
        self._last_429_time = 0.0
        self._blocked_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    async def on_429(self, retry_after: float | None = None) -> None:
        """
        Halves the request rate and, when Spotify sent Retry-After, holds every
        caller until that many seconds have passed.
        """
        async with self._lock:
            self._rate = max(1.0, self._rate * 0.5)
            self._min_interval = 1.0 / self._rate
            now = time.monotonic()
            self._last_429_time = now
            if retry_after:
                self._blocked_until = max(self._blocked_until, now + retry_after)
            log.warning(
                f"[yellow]Spotify rate limit hit. New rate: {self._rate:.1f} calls/s"
                f"{f', paused {retry_after:g}s' if retry_after else ''}[/yellow]"
            )

    async def acquire(self) -> None:
        """
        Waits if necessary to respect the current rate limit before allowing a call.
        """
        async with self._lock:
            now = time.monotonic()
            if now - self._last_429_time > 300:
                self._rate = min(self._max_rate, self._rate * 1.005)
                self._min_interval = 1.0 / self._rate

            wait = max(
                self._blocked_until - now,
                self._min_interval - (now - self._last_call_time),
            )
            if wait > 0:
                await asyncio.sleep(wait)

            self._last_call_time = time.monotonic()
