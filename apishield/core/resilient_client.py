"""Resilient Client: composes admission control, retries and caching.

A call is first admitted by the AdmissionController, then run through the
BackoffExecutor. Reads via `fetch` consult the TTLCache before touching the
network path and populate it on success. Errors from the primitives are
propagated unchanged so callers can match on the original exception.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from apishield.domain.errors import AdmissionTimeout
from apishield.domain.events.api_events import (
    CacheHit,
    CacheMiss,
    CallAdmitted,
    CallFailed,
    CallRejected,
    CallSucceeded,
    DomainEvent,
    RetryScheduled,
)
from apishield.domain.models.common import CacheKey
from apishield.domain.models.policies import RetryPolicy, RetryProgress
from apishield.infrastructure.cache.caching_service import TTLCache
from apishield.infrastructure.resilience.api_retry import BackoffExecutor, ShouldRetry
from apishield.infrastructure.resilience.rate_limiter import AdmissionController

logger = logging.getLogger(__name__)

T = TypeVar("T")

EventHandler = Callable[[DomainEvent], None]


class ResilientClient:
    """Runs operations through the admission -> retry -> cache path."""

    def __init__(
        self,
        admission: AdmissionController,
        executor: BackoffExecutor,
        cache: Optional[TTLCache] = None,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the ResilientClient.

        Args:
            admission: Rate limiter gating every call.
            executor: Retry executor wrapping every call.
            cache: Optional response cache used by fetch.
            event_handler: Optional sink for domain events; events are logged at DEBUG otherwise.
        """
        self.admission = admission
        self.executor = executor
        self.cache = cache
        self._event_handler = event_handler

    def _dispatch(self, event: DomainEvent) -> None:
        if self._event_handler is not None:
            self._event_handler(event)
        else:
            logger.debug(f"EVENT: {event}")

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        endpoint: Optional[str] = None,
        cost: float = 1,
        policy: Optional[RetryPolicy] = None,
        should_retry: Optional[ShouldRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Executes an operation with admission control and retries.

        Args:
            operation: Zero-argument coroutine function performing the request.
            endpoint: Name used in events and logs (defaults to the function name).
            cost: Tokens to acquire before the first attempt.
            policy: Retry policy override.
            should_retry: Retry classifier override.
            cancel_event: Aborts a pending admission wait or backoff sleep when set.

        Returns:
            The operation's result.

        Raises:
            AdmissionTimeout: If admission would wait longer than allowed.
            Exception: The operation's last error after retries, unchanged.
        """
        effective_endpoint = endpoint or getattr(operation, "__name__", "operation")

        admission_start = time.perf_counter()
        try:
            await self.admission.acquire(cost, cancel_event=cancel_event)
        except AdmissionTimeout as e:
            self._dispatch(CallRejected(endpoint=effective_endpoint, cost=cost, wait_needed_seconds=e.wait_needed))
            raise
        waited = time.perf_counter() - admission_start
        self._dispatch(CallAdmitted(endpoint=effective_endpoint, cost=cost, waited_seconds=waited))

        attempts = 0

        def on_progress(progress: RetryProgress) -> None:
            nonlocal attempts
            attempts = progress.attempt
            if not progress.is_complete:
                self._dispatch(RetryScheduled(
                    endpoint=effective_endpoint,
                    attempt_number=progress.attempt,
                    delay_seconds=progress.delay,
                    error_type=type(progress.error).__name__,
                ))

        call_start = time.perf_counter()
        try:
            result = await self.executor.execute_with_progress(
                operation,
                on_progress,
                policy=policy,
                should_retry=should_retry,
                cancel_event=cancel_event,
            )
        except Exception as e:
            self._dispatch(CallFailed(
                endpoint=effective_endpoint,
                error_type=type(e).__name__,
                error_message=str(e),
                attempts=attempts or None,
            ))
            raise

        latency_ms = (time.perf_counter() - call_start) * 1000
        self._dispatch(CallSucceeded(endpoint=effective_endpoint, attempts=attempts, latency_ms=latency_ms))
        return result

    async def fetch(
        self,
        key: CacheKey,
        operation: Callable[[], Awaitable[bytes]],
        *,
        ttl: Optional[float] = None,
        use_cache: bool = True,
        endpoint: Optional[str] = None,
        cost: float = 1,
        policy: Optional[RetryPolicy] = None,
        should_retry: Optional[ShouldRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> bytes:
        """Returns cached bytes for key, or runs the operation and caches its result."""
        if self.cache is not None and use_cache:
            cached = await self.cache.retrieve(key)
            if cached is not None:
                self._dispatch(CacheHit(key=str(key), size_bytes=len(cached)))
                return cached
            self._dispatch(CacheMiss(key=str(key)))

        data = await self.call(
            operation,
            endpoint=endpoint or str(key),
            cost=cost,
            policy=policy,
            should_retry=should_retry,
            cancel_event=cancel_event,
        )
        if self.cache is not None:
            await self.cache.store(data, key, ttl=ttl)
        return data

    async def status(self) -> Dict[str, Any]:
        """Combined observability snapshot of the limiter and the cache."""
        snapshot: Dict[str, Any] = {"rate_limiter": self.admission.status()}
        if self.cache is not None:
            snapshot["cache"] = await self.cache.status()
        return snapshot

    # --- Lifecycle ---

    async def start(self) -> None:
        if self.cache is not None:
            await self.cache.start()

    async def close(self) -> None:
        self.admission.close()
        if self.cache is not None:
            await self.cache.close()

    async def __aenter__(self) -> "ResilientClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
