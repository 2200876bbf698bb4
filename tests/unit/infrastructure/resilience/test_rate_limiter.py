"""Tests for the token bucket admission controller."""

import asyncio
import math
import random

import pytest

from apishield.domain.errors import AdmissionTimeout, OperationCancelled
from apishield.domain.models.policies import RateLimitConfig
from apishield.infrastructure.resilience.rate_limiter import AdmissionController


def make_limiter(clock=None, rate=10.0, burst=20.0, timeout=30.0):
    config = RateLimitConfig(requests_per_second=rate, burst_size=burst, timeout_interval=timeout)
    if clock is None:
        return AdmissionController(config)
    return AdmissionController(config, clock=clock)


class TestRateLimitConfig:
    """RateLimitConfig validation."""

    @pytest.mark.parametrize(
        "rate, burst, timeout",
        [(0, 10, 1), (-1, 10, 1), (1, 0, 1), (1, 10, -0.5)],
    )
    def test_rejects_invalid_values(self, rate, burst, timeout):
        with pytest.raises(ValueError):
            RateLimitConfig(requests_per_second=rate, burst_size=burst, timeout_interval=timeout)


class TestImmediateAdmission:
    """Acquires that fit in the bucket never suspend."""

    @pytest.mark.asyncio
    async def test_acquire_debits_tokens(self, clock):
        limiter = make_limiter(clock, burst=5)

        await limiter.acquire(2)

        assert limiter.status()["available_tokens"] == 3.0

    @pytest.mark.asyncio
    async def test_default_cost_is_one(self, clock):
        limiter = make_limiter(clock, burst=5)

        await limiter.acquire()

        assert limiter.status()["available_tokens"] == 4.0

    @pytest.mark.asyncio
    async def test_refill_is_capped_at_capacity(self, clock):
        limiter = make_limiter(clock, rate=10, burst=5)
        await limiter.acquire(5)

        clock.advance(100)
        await limiter.acquire(1)

        assert limiter.status()["available_tokens"] == 4.0

    @pytest.mark.asyncio
    async def test_refill_is_proportional_to_elapsed_time(self, clock):
        limiter = make_limiter(clock, rate=10, burst=20)
        await limiter.acquire(20)

        clock.advance(0.5)
        await limiter.acquire(3)

        assert limiter.status()["available_tokens"] == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_execute_runs_operation_after_admission(self, clock):
        limiter = make_limiter(clock, burst=5)

        async def operation():
            return "done"

        assert await limiter.execute(operation, cost=2) == "done"
        assert limiter.status()["available_tokens"] == 3.0

    @pytest.mark.asyncio
    async def test_negative_cost_is_rejected(self, clock):
        limiter = make_limiter(clock)
        with pytest.raises(ValueError):
            await limiter.acquire(-1)


class TestFailFast:
    """Requests that can never be granted in time fail without queueing."""

    @pytest.mark.asyncio
    async def test_cost_above_capacity_times_out_immediately(self, clock):
        limiter = make_limiter(clock, rate=10, burst=20, timeout=5)

        with pytest.raises(AdmissionTimeout) as exc_info:
            await limiter.acquire(25)

        assert exc_info.value.cost == 25
        assert math.isinf(exc_info.value.wait_needed)
        assert limiter.status()["waiting_operations"] == 0
        # Nothing was debited.
        assert limiter.status()["available_tokens"] == 20.0

    @pytest.mark.asyncio
    async def test_wait_longer_than_budget_times_out(self, clock):
        limiter = make_limiter(clock, rate=1, burst=10, timeout=2)
        await limiter.acquire(10)

        with pytest.raises(AdmissionTimeout) as exc_info:
            await limiter.acquire(5)

        assert exc_info.value.wait_needed == pytest.approx(5.0)
        assert exc_info.value.wait_timeout == 2
        assert limiter.status()["waiting_operations"] == 0

    def test_wait_time_estimate(self, clock):
        limiter = make_limiter(clock, rate=2, burst=4)
        assert limiter.wait_time(1) == 0.0
        assert math.isinf(limiter.wait_time(5))


class TestTokenBounds:
    """0 <= tokens <= capacity after every operation."""

    @pytest.mark.asyncio
    async def test_tokens_stay_within_bounds(self, clock):
        limiter = make_limiter(clock, rate=5, burst=10, timeout=0)
        rng = random.Random(7)

        for _ in range(200):
            clock.advance(rng.uniform(0, 0.5))
            try:
                await limiter.acquire(rng.uniform(0, 4))
            except AdmissionTimeout:
                pass
            tokens = limiter.status()["available_tokens"]
            assert 0.0 <= tokens <= 10.0


class TestWaitingQueue:
    """Suspended acquires are resumed in arrival order."""

    @pytest.mark.asyncio
    async def test_queued_waiter_is_resumed_by_refill_tick(self):
        limiter = make_limiter(rate=50, burst=1, timeout=1)
        await limiter.acquire(1)

        await asyncio.wait_for(limiter.acquire(1), timeout=1)

        assert limiter.status()["waiting_operations"] == 0

    @pytest.mark.asyncio
    async def test_fifo_fairness_large_request_first(self):
        limiter = make_limiter(rate=100, burst=10, timeout=1)
        await limiter.acquire(10)
        order = []

        async def waiter(name, cost):
            await limiter.acquire(cost)
            order.append(name)

        w1 = asyncio.create_task(waiter("w1", 10))
        await asyncio.sleep(0)
        w2 = asyncio.create_task(waiter("w2", 1))
        await asyncio.sleep(0)
        assert limiter.status()["waiting_operations"] == 2

        await asyncio.wait_for(asyncio.gather(w1, w2), timeout=2)

        assert order == ["w1", "w2"]

    @pytest.mark.asyncio
    async def test_new_caller_does_not_jump_the_queue(self, clock):
        limiter = make_limiter(clock, rate=10, burst=10, timeout=5)
        await limiter.acquire(10)
        blocked = asyncio.create_task(limiter.acquire(10))
        await asyncio.sleep(0)

        clock.advance(0.2)  # 2 tokens: enough for a cost-1 caller, not for the head
        late = asyncio.create_task(limiter.acquire(1))
        await asyncio.sleep(0)

        assert not late.done()
        assert limiter.status()["waiting_operations"] == 2

        limiter.close()
        for task in (blocked, late):
            with pytest.raises(OperationCancelled):
                await task

    @pytest.mark.asyncio
    async def test_cancel_event_aborts_wait(self, clock):
        limiter = make_limiter(clock, rate=1, burst=1, timeout=10)
        await limiter.acquire(1)
        cancel = asyncio.Event()

        task = asyncio.create_task(limiter.acquire(1, cancel_event=cancel))
        await asyncio.sleep(0)
        assert limiter.status()["waiting_operations"] == 1

        cancel.set()
        with pytest.raises(OperationCancelled):
            await task
        assert limiter.status()["waiting_operations"] == 0

    @pytest.mark.asyncio
    async def test_preset_cancel_event_fails_before_queueing(self, clock):
        limiter = make_limiter(clock)
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelled):
            await limiter.acquire(1, cancel_event=cancel)
        assert limiter.status()["available_tokens"] == 20.0

    @pytest.mark.asyncio
    async def test_task_cancellation_removes_waiter(self, clock):
        limiter = make_limiter(clock, rate=1, burst=1, timeout=10)
        await limiter.acquire(1)

        task = asyncio.create_task(limiter.acquire(1))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert limiter.status()["waiting_operations"] == 0

        # The abandoned waiter must not consume tokens on the next refill.
        clock.advance(1)
        await limiter.acquire(1)
        assert limiter.status()["available_tokens"] == 0.0

    @pytest.mark.asyncio
    async def test_close_fails_pending_waiters(self, clock):
        limiter = make_limiter(clock, rate=1, burst=1, timeout=10)
        await limiter.acquire(1)
        task = asyncio.create_task(limiter.acquire(1))
        await asyncio.sleep(0)

        limiter.close()

        with pytest.raises(OperationCancelled):
            await task
        assert limiter.status()["waiting_operations"] == 0


class TestAcrossEventLoops:
    """A controller outlives the event loop that queued its first waiter."""

    def test_waiters_in_a_later_loop_are_resumed(self):
        limiter = make_limiter(rate=1, burst=1, timeout=10)

        async def first_run():
            await limiter.acquire(1)
            queued = asyncio.create_task(limiter.acquire(0.1))
            await asyncio.sleep(0.2)
            # Served by lazy refill before its tick fires.
            await limiter.acquire(0)
            await queued

        asyncio.run(first_run())
        assert limiter._refill_handle is None

        async def second_run():
            await limiter.acquire(limiter.status()["available_tokens"])
            await asyncio.wait_for(limiter.acquire(0.5), timeout=3)

        asyncio.run(second_run())
        assert limiter.status()["waiting_operations"] == 0


class TestConfigure:
    """Reconfiguration replaces the policy wholesale."""

    @pytest.mark.asyncio
    async def test_configure_resets_tokens_to_new_capacity(self, clock):
        limiter = make_limiter(clock, rate=10, burst=5)
        await limiter.acquire(5)

        limiter.configure(RateLimitConfig(requests_per_second=2, burst_size=8, timeout_interval=1))

        status = limiter.status()
        assert status["available_tokens"] == 8.0
        assert status["burst_size"] == 8
        assert status["requests_per_second"] == 2

    @pytest.mark.asyncio
    async def test_configure_keeps_waiters_queued(self):
        limiter = make_limiter(rate=1, burst=1, timeout=10)
        await limiter.acquire(1)
        task = asyncio.create_task(limiter.acquire(1))
        await asyncio.sleep(0)

        limiter.configure(RateLimitConfig(requests_per_second=100, burst_size=5, timeout_interval=10))
        assert limiter.status()["waiting_operations"] == 1

        await asyncio.wait_for(task, timeout=1)
        assert limiter.status()["waiting_operations"] == 0
