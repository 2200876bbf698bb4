"""API Resilience Implementations.

Contains services for admission control (token bucket rate limiting) and
retries with exponential backoff.
Bounded Context: API Resilience
"""
