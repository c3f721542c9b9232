"""Tests for the single-flight helper and the circuit breaker."""

import asyncio

import pytest

from trackstream.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
)
from trackstream.utils.formatting import format_size, mask_secret
from trackstream.utils.single_flight import SingleFlight


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "done"

        flight = SingleFlight()
        results = await asyncio.gather(*(flight.run("k", work) for _ in range(4)))

        assert results == ["done"] * 4
        assert calls == 1
        assert flight.joined == 3
        assert len(flight) == 0

    @pytest.mark.asyncio
    async def test_key_is_forgotten_after_failure(self):
        async def fail():
            raise RuntimeError("nope")

        flight = SingleFlight()
        with pytest.raises(RuntimeError):
            await flight.run("k", fail)

        assert not flight.in_flight("k")
        assert await flight.run("k", lambda: asyncio.sleep(0, result=1)) == 1


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60)

        for _ in range(2):
            with pytest.raises(ValueError):
                async with breaker:
                    raise ValueError("down")

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerError):
            async with breaker:
                pass

    @pytest.mark.asyncio
    async def test_ignored_exceptions_do_not_count(self):
        breaker = CircuitBreaker(
            "test", failure_threshold=1, ignored_exceptions=(KeyError,)
        )

        with pytest.raises(KeyError):
            async with breaker:
                raise KeyError("404")

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_recovers_after_successful_probes(self):
        breaker = CircuitBreaker(
            "test", failure_threshold=1, recovery_timeout=0, success_threshold=2
        )
        with pytest.raises(ValueError):
            async with breaker:
                raise ValueError("down")
        assert breaker.state == CircuitState.OPEN

        async with breaker:
            pass
        assert breaker.state == CircuitState.HALF_OPEN
        async with breaker:
            pass
        assert breaker.state == CircuitState.CLOSED


class TestFormatting:
    def test_format_size(self):
        assert format_size(512) == "512.0 B"
        assert format_size(2048) == "2.0 KB"
        assert format_size(0) == "0 B"

    def test_mask_secret(self):
        assert mask_secret("abcdefgh") == "abcd****"
        assert mask_secret("") == "(not set)"
