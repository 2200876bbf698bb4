"""Service for executing API calls with automatic retries.

Implements exponential backoff with jitter for transient errors such as
dropped connections, timeouts or temporary server issues (5xx). Errors are
never wrapped: once retries are exhausted, or the error is not retryable, the
caller sees the original exception.
"""

import asyncio
import logging
import random
import socket
from typing import Awaitable, Callable, Optional, TypeVar

from apishield.domain.errors import (
    DecodingError,
    NetworkError,
    NoDataError,
    OperationCancelled,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from apishield.domain.models.policies import DEFAULT_RETRY_POLICY, RetryPolicy, RetryProgress

logger = logging.getLogger(__name__)

T = TypeVar("T")

ShouldRetry = Callable[[BaseException], bool]
ProgressCallback = Callable[[RetryProgress], None]
SleepFunc = Callable[[float], Awaitable[None]]


def is_retryable_error(error: BaseException) -> bool:
    """Determines if an error should be retried based on common criteria.

    Transport failures (timeouts, lost or refused connections, no
    connectivity, DNS failures, exhausted request bodies), 5xx server errors
    and empty responses are transient. Authentication and decoding failures,
    and anything unrecognised, are not.
    """
    if isinstance(error, (UnauthorizedError, DecodingError)):
        return False
    if isinstance(error, ServerError):
        return error.status_code is None or error.status_code >= 500
    if isinstance(error, NoDataError):
        return True
    if isinstance(error, TransportError):
        return error.is_transient
    if isinstance(error, NetworkError):
        return False

    # Standard library transport failures raised by socket-level clients
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(error, socket.gaierror):
        return True
    if isinstance(error, ConnectionError):
        return True
    return False


class BackoffExecutor:
    """Runs async operations, retrying failures with exponential backoff and jitter."""

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the BackoffExecutor.

        Args:
            policy: Policy used when a call does not pass its own.
            sleep: Coroutine function used to wait between attempts.
            rng: Random source for jitter.
        """
        self.policy = policy
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        logger.info(
            f"BackoffExecutor initialized: max_attempts={policy.max_attempts}, "
            f"initial_delay={policy.initial_delay}s, max_delay={policy.max_delay}s, "
            f"multiplier={policy.multiplier}, jitter={policy.jitter}"
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        should_retry: Optional[ShouldRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Executes an operation with retry logic.

        Args:
            operation: Zero-argument coroutine function performing the work.
            policy: Retry policy for this call (defaults to the executor's).
            should_retry: Classifier deciding if an error is worth retrying.
            cancel_event: Optional event; setting it aborts a pending backoff sleep.

        Returns:
            The operation's result.

        Raises:
            Exception: The last error raised by the operation, unchanged.
            OperationCancelled: If cancel_event is set during a backoff sleep.
        """
        return await self._run(operation, policy, should_retry, None, cancel_event)

    async def execute_with_progress(
        self,
        operation: Callable[[], Awaitable[T]],
        progress: ProgressCallback,
        policy: Optional[RetryPolicy] = None,
        should_retry: Optional[ShouldRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Like execute, reporting a RetryProgress after every attempt.

        The final report has is_complete=True, whether the call succeeded or not.
        """
        return await self._run(operation, policy, should_retry, progress, cancel_event)

    def jittered_delay(self, delay: float, jitter: float) -> float:
        """Applies a random +/- jitter fraction to a delay, never going below zero.

        The result is not re-clamped to the policy's max_delay.
        """
        factor = self._rng.uniform(-jitter, jitter) if jitter > 0 else 0.0
        return max(0.0, delay + delay * factor)

    async def _run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy],
        should_retry: Optional[ShouldRetry],
        progress: Optional[ProgressCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> T:
        policy = policy or self.policy
        should_retry = should_retry or is_retryable_error
        attempt = 1
        delay = policy.initial_delay

        while True:
            try:
                result = await operation()
            except Exception as e:
                try_again = attempt < policy.max_attempts and should_retry(e)
                actual_delay = self.jittered_delay(delay, policy.jitter) if try_again else 0.0

                if progress is not None:
                    progress(RetryProgress(
                        attempt=attempt,
                        max_attempts=policy.max_attempts,
                        delay=actual_delay,
                        error=e,
                        is_complete=not try_again,
                        is_success=False,
                    ))

                if not try_again:
                    logger.error(f"Operation failed after {attempt} attempt(s): {type(e).__name__}: {e}")
                    raise

                logger.info(
                    f"Attempt {attempt}/{policy.max_attempts} failed with {type(e).__name__}, "
                    f"retrying in {actual_delay:.2f}s"
                )
                await self._pause(actual_delay, cancel_event)
                attempt += 1
                delay = min(delay * policy.multiplier, policy.max_delay)
                continue

            if progress is not None:
                progress(RetryProgress(
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay=0.0,
                    error=None,
                    is_complete=True,
                    is_success=True,
                ))
            if attempt > 1:
                logger.info(f"Operation succeeded on attempt {attempt}.")
            return result

    async def _pause(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleeps between attempts, waking early with OperationCancelled if cancelled."""
        if cancel_event is None:
            await self._sleep(delay)
            return
        if cancel_event.is_set():
            raise OperationCancelled("Retry cancelled before backoff.")

        sleep_task = asyncio.ensure_future(self._sleep(delay))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleep_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleep_task.cancel()
            cancel_task.cancel()
        if cancel_event.is_set():
            logger.info("Retry cancelled during backoff.")
            raise OperationCancelled("Retry cancelled during backoff.")
