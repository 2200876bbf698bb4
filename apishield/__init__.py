"""apishield: client-side network resilience layer.

Admission control (token bucket), retry with exponential backoff and jitter,
and a size/age-bounded disk cache, composed by ResilientClient.
"""

__version__ = "0.1.0"
