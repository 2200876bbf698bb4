"""Implementation of a token bucket rate limiter.

Controls the frequency of outgoing requests to prevent overloading the remote
API. Tokens refill continuously; each admission debits its cost. Callers that
cannot be admitted right away wait in a strict FIFO queue and are resumed by
a refill tick scheduled on the event loop.
"""

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

from apishield.domain.errors import AdmissionTimeout, OperationCancelled
from apishield.domain.models.common import RateLimitStatus
from apishield.domain.models.policies import DEFAULT_RATE_LIMIT_CONFIG, RateLimitConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Waiter:
    """A queued acquire: the tokens it needs and the future that resumes it."""
    cost: float
    future: "asyncio.Future[None]"


class AdmissionController:
    """Token bucket admission controller with a fair waiting queue.

    All state is mutated from the event loop without suspension points
    between reading and writing it, so no lock is needed.
    """

    def __init__(
        self,
        config: RateLimitConfig = DEFAULT_RATE_LIMIT_CONFIG,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the rate limiter.

        Args:
            config: Refill rate, bucket capacity and wait budget.
            clock: Monotonic time source in seconds (injectable for tests).
        """
        self._config = config
        self._clock = clock
        self._tokens = float(config.burst_size)
        self._last_refill = clock()
        self._waiters: Deque[_Waiter] = deque()
        self._refill_handle: Optional[asyncio.TimerHandle] = None
        logger.info(
            f"Rate limiter initialized: {config.requests_per_second} requests/second, "
            f"burst size: {config.burst_size}, timeout: {config.timeout_interval}s"
        )

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def configure(self, config: RateLimitConfig) -> None:
        """Replaces the policy and refills the bucket to the new capacity.

        Pending waiters stay queued and are serviced on the next refill tick,
        which is rescheduled at the new rate.
        """
        self._config = config
        self._tokens = float(config.burst_size)
        self._last_refill = self._clock()
        self._cancel_refill()
        self._schedule_refill()
        logger.info(
            f"Rate limiter configured: {config.requests_per_second} requests/second, "
            f"burst size: {config.burst_size}"
        )

    async def acquire(self, cost: float = 1, cancel_event: Optional[asyncio.Event] = None) -> None:
        """Acquires permission to proceed with an operation.

        Args:
            cost: Tokens the operation consumes.
            cancel_event: Optional event; setting it aborts a pending wait.

        Raises:
            AdmissionTimeout: If the cost can never fit in the bucket or the
                projected wait exceeds the configured timeout.
            OperationCancelled: If cancel_event is set before admission.
            ValueError: If cost is negative.
        """
        if cost < 0:
            raise ValueError("cost must not be negative.")
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Admission cancelled before it started.")

        self._refill()

        # Joining behind queued callers keeps admission strictly FIFO.
        if not self._waiters and self._tokens >= cost:
            self._tokens -= cost
            logger.debug(f"Admitted cost={cost}; {self._tokens:.2f} tokens left.")
            return

        if cost > self._config.burst_size:
            logger.warning(f"Rejected cost={cost}: exceeds bucket capacity {self._config.burst_size}.")
            raise AdmissionTimeout(cost, math.inf, self._config.timeout_interval)

        wait_needed = max(0.0, (cost - self._tokens) / self._config.requests_per_second)
        if wait_needed > self._config.timeout_interval:
            logger.warning(
                f"Rejected cost={cost}: wait {wait_needed:.2f}s exceeds "
                f"timeout {self._config.timeout_interval}s."
            )
            raise AdmissionTimeout(cost, wait_needed, self._config.timeout_interval)

        waiter = _Waiter(cost=cost, future=asyncio.get_running_loop().create_future())
        self._waiters.append(waiter)
        self._schedule_refill()
        logger.debug(f"Queued cost={cost} (position {len(self._waiters)}), estimated wait {wait_needed:.2f}s.")

        try:
            if cancel_event is None:
                await waiter.future
            else:
                await self._wait_or_cancel(waiter.future, cancel_event)
        except BaseException:
            self._abandon(waiter)
            raise

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        cost: float = 1,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Executes an operation once admission is granted."""
        await self.acquire(cost, cancel_event=cancel_event)
        return await operation()

    def wait_time(self, cost: float = 1) -> float:
        """Estimates the seconds until `cost` tokens are available, ignoring queued callers.

        Does not mutate the bucket. Returns math.inf for a cost above capacity.
        """
        if cost > self._config.burst_size:
            return math.inf
        projected = self._projected_tokens()
        return max(0.0, (cost - projected) / self._config.requests_per_second)

    def status(self) -> RateLimitStatus:
        """Gets the current rate limit status (observability only)."""
        return RateLimitStatus(
            available_tokens=self._tokens,
            requests_per_second=self._config.requests_per_second,
            burst_size=self._config.burst_size,
            waiting_operations=len(self._waiters),
            time_since_last_refill=self._clock() - self._last_refill,
        )

    def close(self) -> None:
        """Stops the refill timer and fails every pending waiter."""
        self._cancel_refill()
        pending = 0
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.future.done():
                waiter.future.set_exception(OperationCancelled("Rate limiter closed."))
                pending += 1
        if pending:
            logger.info(f"Rate limiter closed with {pending} pending waiter(s).")

    # --- Internals ---

    def _projected_tokens(self) -> float:
        elapsed = max(0.0, self._clock() - self._last_refill)
        return min(float(self._config.burst_size), self._tokens + elapsed * self._config.requests_per_second)

    def _refill(self) -> None:
        """Refills the bucket for the elapsed time, then admits waiters from the head."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(
            float(self._config.burst_size),
            self._tokens + elapsed * self._config.requests_per_second,
        )
        self._last_refill = now
        self._drain()

    def _drain(self) -> None:
        while self._waiters:
            head = self._waiters[0]
            if head.future.done():
                # Abandoned by its caller; drop it without charging tokens.
                self._waiters.popleft()
                continue
            if self._tokens < head.cost:
                break
            self._tokens -= head.cost
            self._waiters.popleft()
            head.future.set_result(None)
            logger.debug(f"Resumed queued cost={head.cost}; {self._tokens:.2f} tokens left.")
        if not self._waiters:
            # A pending tick may belong to a loop that never runs it again.
            self._cancel_refill()

    def _on_refill_tick(self) -> None:
        self._refill_handle = None
        self._refill()
        self._schedule_refill()

    def _schedule_refill(self) -> None:
        if self._refill_handle is not None or not self._waiters:
            return
        loop = self._waiters[0].future.get_loop()
        interval = 1.0 / self._config.requests_per_second
        self._refill_handle = loop.call_later(interval, self._on_refill_tick)

    def _cancel_refill(self) -> None:
        if self._refill_handle is not None:
            self._refill_handle.cancel()
            self._refill_handle = None

    def _abandon(self, waiter: _Waiter) -> None:
        """Cleans up after a waiter whose caller stopped waiting."""
        if waiter.future.done() and not waiter.future.cancelled() and waiter.future.exception() is None:
            # Granted in the same loop iteration the caller was cancelled: refund.
            self._tokens = min(float(self._config.burst_size), self._tokens + waiter.cost)
        elif not waiter.future.done():
            waiter.future.cancel()
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        if not self._waiters:
            self._cancel_refill()
        else:
            self._drain()

    @staticmethod
    async def _wait_or_cancel(future: "asyncio.Future[Any]", cancel_event: asyncio.Event) -> None:
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({future, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
        if future.done():
            future.result()
            return
        raise OperationCancelled("Admission wait cancelled.")
