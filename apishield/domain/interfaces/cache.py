"""Interface for response caching.

Defines the contract for storing, retrieving, and managing cached payloads
with per-entry time-to-live and a bounded total size.
"""

import abc
from typing import Optional

from apishield.domain.models.common import CacheKey, CacheStatus
from apishield.domain.models.policies import CacheConfig

class CacheService(abc.ABC):
    """Abstract Base Class for caching operations."""

    @abc.abstractmethod
    async def store(self, data: bytes, key: CacheKey, ttl: Optional[float] = None) -> None:
        """Stores a payload under a key asynchronously.

        Args:
            data: The bytes to store.
            key: The cache key to store the payload under.
            ttl: Time-to-live in seconds (uses the configured max age if None).
        """
        pass

    @abc.abstractmethod
    async def retrieve(self, key: CacheKey) -> Optional[bytes]:
        """Retrieves a payload from the cache asynchronously.

        Args:
            key: The cache key to retrieve.

        Returns:
            The cached bytes if present and not expired, otherwise None.
        """
        pass

    @abc.abstractmethod
    async def remove(self, key: CacheKey) -> None:
        """Deletes a single entry asynchronously.

        Args:
            key: The cache key to delete.
        """
        pass

    @abc.abstractmethod
    async def clear_all(self) -> None:
        """Clears every entry asynchronously."""
        pass

    @abc.abstractmethod
    async def configure(self, config: CacheConfig) -> None:
        """Replaces the cache bounds.

        Args:
            config: The new size and age limits.
        """
        pass

    @abc.abstractmethod
    async def status(self) -> CacheStatus:
        """Returns an accounting snapshot for observability."""
        pass
