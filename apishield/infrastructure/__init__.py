"""Infrastructure Layer: Contains concrete implementations and adapters.

Implements the rate limiter, retry executor and disk cache, plus the
configuration, logging and console adapters around them.
"""
