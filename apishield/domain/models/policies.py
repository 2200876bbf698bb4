"""Configuration value objects for the three resilience primitives.

All of them are frozen dataclasses validated on construction; components
receive a whole new object on reconfiguration instead of mutating one.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket parameters.

    Attributes:
        requests_per_second: Refill rate in tokens per second.
        burst_size: Bucket capacity (maximum tokens held at once).
        timeout_interval: Longest projected wait, in seconds, an acquire may queue for.
    """

    requests_per_second: float
    burst_size: float
    timeout_interval: float

    def __post_init__(self) -> None:
        if self.requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive.")
        if self.burst_size <= 0:
            raise ValueError("burst_size must be positive.")
        if self.timeout_interval < 0:
            raise ValueError("timeout_interval must not be negative.")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff parameters.

    Attributes:
        max_attempts: Total number of attempts, the first one included.
        initial_delay: Delay in seconds before the second attempt (pre-jitter).
        max_delay: Cap applied when the delay is advanced for the next round.
        multiplier: Growth factor between rounds.
        jitter: Fraction of the delay randomly added or removed, clamped to [0, 1].

    Example:
        >>> RetryPolicy(max_attempts=5, initial_delay=1.0, jitter=3).jitter
        1.0
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must not be negative.")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be greater than or equal to initial_delay.")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1.")
        # frozen, so go through object.__setattr__
        object.__setattr__(self, "jitter", min(max(float(self.jitter), 0.0), 1.0))


@dataclass(frozen=True)
class RetryProgress:
    """Progress snapshot emitted once per attempt."""

    attempt: int
    max_attempts: int
    delay: float
    error: Optional[BaseException]
    is_complete: bool
    is_success: bool

    @property
    def attempts_remaining(self) -> int:
        if self.is_complete:
            return 0
        return max(self.max_attempts - self.attempt, 0)


@dataclass(frozen=True)
class CacheConfig:
    """Cache bounds.

    Attributes:
        max_size: Maximum total payload size in bytes.
        max_age: Default time-to-live in seconds.
        cleanup_interval: Seconds between background expiry sweeps.
    """

    max_size: int
    max_age: float
    cleanup_interval: float

    def __post_init__(self) -> None:
        if self.max_size <= 0:
            raise ValueError("max_size must be positive.")
        if self.max_age <= 0:
            raise ValueError("max_age must be positive.")
        if self.cleanup_interval <= 0:
            raise ValueError("cleanup_interval must be positive.")


DEFAULT_RATE_LIMIT_CONFIG = RateLimitConfig(
    requests_per_second=10,
    burst_size=20,
    timeout_interval=30,
)

DEFAULT_RETRY_POLICY = RetryPolicy()

DEFAULT_CACHE_CONFIG = CacheConfig(
    max_size=50 * 1024 * 1024,  # 50MB
    max_age=3600,  # 1 hour
    cleanup_interval=300,  # 5 minutes
)
