"""
Circuit breaker guarding calls to the Spotify Web API.

When the catalog keeps failing, requests are rejected immediately for a
cool-down period instead of piling up on a dead upstream.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Probing for recovery


class CircuitBreakerError(Exception):
    """Raised when a call is attempted while the circuit is open."""

    def __init__(self, name: str, retry_after: float):
        super().__init__(
            f"{name} is unavailable after repeated failures; "
            f"retrying in {retry_after:.0f}s."
        )
        self.retry_after = retry_after


class CircuitBreaker:
    """
    Async context manager that counts failures of the wrapped block.

    States:
    - CLOSED: calls pass through
    - OPEN: too many consecutive failures, calls are rejected
    - HALF_OPEN: recovery timeout elapsed, calls pass until one fails
    """

    def __init__(
        self,
        name: str = "upstream",
        failure_threshold: int = 5,
        recovery_timeout: float = 30,
        success_threshold: int = 2,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
    ):
        """
        Args:
            name: Service name used in log and error messages.
            failure_threshold: Consecutive failures before the circuit opens.
            recovery_timeout: Seconds the circuit stays open before probing.
            success_threshold: Successful probes needed to close it again.
            ignored_exceptions: Errors that mean the caller asked for something
                bad (e.g. a 404), not that the service is down.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.ignored_exceptions = ignored_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _remaining_open_time(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (time.monotonic() - self._opened_at))

    async def _on_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    log.info(f"[green]✓ {self.name} recovered, circuit closed.[/green]")
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                log.warning(
                    f"[yellow]{self.name} recovery probe failed, "
                    "circuit re-opened.[/yellow]"
                )
                self._open()
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                log.error(
                    f"[red]✗ {self.name} circuit opened after "
                    f"{self._failure_count} consecutive failures.[/red]"
                )
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._failure_count = 0
        self._success_count = 0

    async def __aenter__(self):
        async with self._lock:
            if self._state == CircuitState.OPEN:
                remaining = self._remaining_open_time()
                if remaining > 0:
                    raise CircuitBreakerError(self.name, remaining)
                log.info(f"[yellow]{self.name} circuit half-open, probing.[/yellow]")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None or issubclass(exc_type, self.ignored_exceptions):
            await self._on_success()
        elif not issubclass(exc_type, asyncio.CancelledError):
            await self._on_failure()
        return False
