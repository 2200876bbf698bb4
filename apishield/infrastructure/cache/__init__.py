"""Caching Service Implementation.

Provides the disk-backed TTL cache implementing the CacheService interface.
Bounded Context: Cache Management
"""
