"""Tests for the intelligence circuit breaker (driven by an injected clock)."""

import asyncio

import pytest

from src.forest.circuit_breaker import CircuitBreaker
from src.forest.exceptions import CircuitOpenError, CircuitTimeoutError


def make_breaker(clock, **kwargs):
    return CircuitBreaker(
        name="test",
        failure_threshold=kwargs.get("failure_threshold", 3),
        cooldown_ms=kwargs.get("cooldown_ms", 120_000),
        default_timeout_ms=kwargs.get("default_timeout_ms", 1_000),
        clock=clock,
    )


async def failing():
    raise RuntimeError("provider down")


async def succeeding():
    return {"ok": True}


class TestCircuitBreaker:
    def test_starts_closed(self, clock):
        breaker = make_breaker(clock)
        assert breaker.can_execute()
        assert breaker.failure_count == 0

    def test_opens_at_threshold_and_stays_open_until_cooldown(self, clock):
        breaker = make_breaker(clock)
        for _ in range(2):
            breaker.record_failure()
        assert breaker.can_execute()

        breaker.record_failure()
        assert not breaker.can_execute()

        clock.advance(119.999)
        assert not breaker.can_execute()

        clock.advance(0.001)
        assert breaker.can_execute()

    def test_success_resets_failures(self, clock):
        breaker = make_breaker(clock)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.can_execute()
        assert breaker.failure_count == 1

    def test_trial_call_failure_after_cooldown_reopens(self, clock):
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(120)
        assert breaker.can_execute()

        breaker.record_failure()
        assert not breaker.can_execute()

    def test_status_snapshot(self, clock):
        breaker = make_breaker(clock, failure_threshold=1)
        breaker.record_failure()
        status = breaker.get_status()
        assert status["open"] is True
        assert status["failure_count"] == 1
        assert status["open_until"] == pytest.approx(clock.now + 120)

    @pytest.mark.asyncio
    async def test_execute_returns_result(self, clock):
        breaker = make_breaker(clock)
        assert await breaker.execute(succeeding) == {"ok": True}

    @pytest.mark.asyncio
    async def test_execute_counts_failures_then_short_circuits(self, clock):
        breaker = make_breaker(clock)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(failing)

        called = False

        async def should_not_run():
            nonlocal called
            called = True

        with pytest.raises(CircuitOpenError):
            await breaker.execute(should_not_run)
        assert called is False

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, clock):
        breaker = make_breaker(clock, default_timeout_ms=10)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(CircuitTimeoutError) as exc_info:
            await breaker.execute(slow)
        assert exc_info.value.details["timeout_ms"] == 10
        assert breaker.failure_count == 1

    def test_reset_closes(self, clock):
        breaker = make_breaker(clock, failure_threshold=1)
        breaker.record_failure()
        breaker.reset()
        assert breaker.can_execute()
        assert breaker.failure_count == 0
