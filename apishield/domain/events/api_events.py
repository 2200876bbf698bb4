"""Domain Events related to calls made through the resilience layer.

Examples include events for when calls are admitted, rejected, retried,
fail, succeed, or are answered from the cache.
"""

from dataclasses import dataclass, field
import time
from typing import Optional

# Base Event Class
@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Admission Events ---

@dataclass
class CallAdmitted(DomainEvent):
    """Event triggered when the admission controller grants tokens for a call."""
    endpoint: str
    cost: float
    waited_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class CallRejected(DomainEvent):
    """Event triggered when admission is refused because the wait would exceed the budget."""
    endpoint: str
    cost: float
    wait_needed_seconds: float
    timestamp: float = field(default_factory=time.time)

# --- Execution Events ---

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed call."""
    endpoint: str
    attempt_number: int
    delay_seconds: float
    error_type: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class CallSucceeded(DomainEvent):
    """Event triggered when a call succeeds."""
    endpoint: str
    attempts: int
    latency_ms: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class CallFailed(DomainEvent):
    """Event triggered when a call fails definitively (after retries)."""
    endpoint: str
    error_type: str
    error_message: str
    attempts: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

# --- Cache Events ---

@dataclass
class CacheHit(DomainEvent):
    """Event triggered when a read is served from the cache."""
    key: str
    size_bytes: int
    timestamp: float = field(default_factory=time.time)

@dataclass
class CacheMiss(DomainEvent):
    """Event triggered when a read falls through to the network path."""
    key: str
    timestamp: float = field(default_factory=time.time)
