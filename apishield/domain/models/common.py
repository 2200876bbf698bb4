"""Defines common Value Objects used across the resilience layer.

These objects represent simple values like cache keys and
status snapshots, ensuring consistency and type safety.
"""

from typing import NewType, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are plain values at runtime.
CacheKey = NewType("CacheKey", str)          # Opaque key for a cache entry

# --- Status Snapshots (observability only) ---

class RateLimitStatus(TypedDict):
    """Snapshot of the admission controller's token bucket."""
    available_tokens: float
    requests_per_second: float
    burst_size: float
    waiting_operations: int
    time_since_last_refill: float

class CacheStatus(TypedDict):
    """Snapshot of the TTL cache accounting."""
    total_size: int
    entry_count: int
    max_size: int
    available_space: int
    utilization: float
