"""Disk-backed TTL cache bounded by total size and entry age.

Each payload lives in its own file, named by the SHA-256 of its key, inside a
directory the cache exclusively owns. An in-memory index is the source of
truth for accounting; it is rebuilt from the directory on startup. When space
runs out, entries closest to expiry are evicted first. A background sweep
reclaims entries that expired without being evicted.
"""

import asyncio
import hashlib
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from apishield.domain.interfaces.cache import CacheService
from apishield.domain.models.common import CacheKey, CacheStatus
from apishield.domain.models.policies import DEFAULT_CACHE_CONFIG, CacheConfig

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".apishield" / "cache"
TEMP_SUFFIX = ".tmp"


@dataclass
class CacheEntry:
    """Index record for one cached payload."""
    key: str          # original key, or the file name for entries rediscovered on disk
    file_name: str
    size_bytes: int
    expires_at: float  # Unix timestamp when the entry expires

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


class TTLCache(CacheService):
    """Size/age-bounded key-value cache persisted as one file per key.

    Every operation runs under one asyncio.Lock, so index mutations and the
    file writes backing them are never interleaved.
    """

    def __init__(
        self,
        cache_dir: Path = DEFAULT_CACHE_DIR,
        config: CacheConfig = DEFAULT_CACHE_CONFIG,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the cache and reconciles the index with the directory.

        Args:
            cache_dir: Directory owned by this cache.
            config: Size, age and sweep interval bounds.
            clock: Wall-clock time source in seconds (injectable for tests).
        """
        self.cache_dir = Path(cache_dir)
        self._config = config
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}  # file name -> entry
        self._total_size = 0
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional["asyncio.Task[None]"] = None

        self._setup_cache_dir()
        self._load_entries()

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def total_size(self) -> int:
        return self._total_size

    def __len__(self) -> int:
        return len(self._entries)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Starts the background expiry sweep."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.debug(f"Cache sweep scheduled every {self._config.cleanup_interval}s.")

    async def close(self) -> None:
        """Stops the background expiry sweep."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "TTLCache":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # --- CacheService Interface Implementation ---

    async def configure(self, config: CacheConfig) -> None:
        """Replaces the bounds and reschedules the sweep.

        Expired entries are swept at once, and a smaller max_size evicts
        soonest-to-expire entries until the cache fits again.
        """
        async with self._lock:
            self._config = config
            logger.info(
                f"Cache configured: maxSize={_format_bytes(config.max_size)}, "
                f"maxAge={config.max_age}s, cleanupInterval={config.cleanup_interval}s"
            )
            self._remove_expired()
            if self._total_size > config.max_size:
                self._make_space(0)
        if self._cleanup_task is not None:
            await self.close()
            await self.start()

    async def store(self, data: bytes, key: CacheKey, ttl: Optional[float] = None) -> None:
        """Stores data under key, evicting soonest-to-expire entries if space is short."""
        data = bytes(data)
        size = len(data)
        async with self._lock:
            now = self._clock()
            expires_at = now + (ttl if ttl is not None else self._config.max_age)
            file_name = self._file_name(key)

            if size > self._config.max_size:
                logger.warning(
                    f"Not caching key {key!r}: {_format_bytes(size)} exceeds max size "
                    f"{_format_bytes(self._config.max_size)}."
                )
                return

            previous = self._entries.pop(file_name, None)
            if previous is not None:
                self._total_size -= previous.size_bytes

            if self._total_size + size > self._config.max_size:
                self._make_space(size)

            if not self._write_file(file_name, data):
                # The old payload may have been clobbered; keep index and disk in step.
                self._delete_file(file_name)
                return

            self._entries[file_name] = CacheEntry(
                key=str(key),
                file_name=file_name,
                size_bytes=size,
                expires_at=expires_at,
            )
            self._total_size += size
            logger.debug(f"Stored {_format_bytes(size)} for key: {key}")

    async def retrieve(self, key: CacheKey) -> Optional[bytes]:
        """Returns the cached bytes, or None on a miss or an expired entry."""
        async with self._lock:
            file_name = self._file_name(key)
            entry = self._entries.get(file_name)
            if entry is None:
                logger.debug(f"Cache miss for key: {key}")
                return None
            if entry.is_expired(self._clock()):
                # Left on disk for the sweep.
                logger.debug(f"Cache entry expired for key: {key}")
                return None

            file_path = self.cache_dir / file_name
            try:
                data = file_path.read_bytes()
            except OSError as e:
                logger.warning(f"Failed to read cache file {file_path}: {e}. Removing entry.")
                self._remove_entry(file_name)
                return None
            if len(data) != entry.size_bytes:
                logger.warning(
                    f"Cache file {file_path} is {len(data)} bytes, index says "
                    f"{entry.size_bytes}. Removing entry."
                )
                self._remove_entry(file_name)
                return None

            logger.debug(f"Retrieved {_format_bytes(entry.size_bytes)} for key: {key}")
            return data

    async def remove(self, key: CacheKey) -> None:
        """Removes the entry for key, if any."""
        async with self._lock:
            self._remove_entry(self._file_name(key))

    async def clear_all(self) -> None:
        """Deletes every cached file and resets the index."""
        async with self._lock:
            try:
                if self.cache_dir.exists():
                    shutil.rmtree(self.cache_dir)
                self._setup_cache_dir()
            except OSError as e:
                logger.error(f"Failed to clear cache directory {self.cache_dir}: {e}")
                return
            self._entries.clear()
            self._total_size = 0
            logger.info("Cache cleared")

    async def status(self) -> CacheStatus:
        """Gets the current cache accounting."""
        async with self._lock:
            max_size = self._config.max_size
            return CacheStatus(
                total_size=self._total_size,
                entry_count=len(self._entries),
                max_size=max_size,
                available_space=max_size - self._total_size,
                utilization=self._total_size / max_size,
            )

    async def cleanup_expired(self) -> int:
        """Removes every expired entry now. Returns the number removed."""
        async with self._lock:
            return self._remove_expired()

    def entries(self) -> List[CacheEntry]:
        """Returns a copy of the index entries, soonest expiry first."""
        return sorted(self._entries.values(), key=lambda e: e.expires_at)

    # --- Internals (callers hold the lock) ---

    @staticmethod
    def _file_name(key: str) -> str:
        return hashlib.sha256(str(key).encode("utf-8")).hexdigest()

    def _setup_cache_dir(self) -> None:
        """Creates the cache directory if it doesn't exist."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create cache directory {self.cache_dir}: {e}")
            raise

    def _load_entries(self) -> None:
        """Rebuilds the index from the files already in the cache directory.

        Original expiry times are not recoverable, so every file is given a
        fresh max_age.
        """
        expires_at = self._clock() + self._config.max_age
        for file_path in sorted(self.cache_dir.iterdir()):
            if not file_path.is_file():
                continue
            if file_path.suffix == TEMP_SUFFIX:
                # Leftover from an interrupted write.
                file_path.unlink(missing_ok=True)
                continue
            try:
                size = file_path.stat().st_size
            except OSError as e:
                logger.warning(f"Skipping unreadable cache file {file_path}: {e}")
                continue
            self._entries[file_path.name] = CacheEntry(
                key=file_path.name,
                file_name=file_path.name,
                size_bytes=size,
                expires_at=expires_at,
            )
            self._total_size += size

        logger.info(
            f"Loaded {len(self._entries)} cache entries, total size: "
            f"{_format_bytes(self._total_size)} (dir={self.cache_dir})"
        )

    def _write_file(self, file_name: str, data: bytes) -> bool:
        """Writes atomically via a temp file. Returns False on failure."""
        file_path = self.cache_dir / file_name
        temp_path = file_path.with_suffix(TEMP_SUFFIX)
        try:
            temp_path.write_bytes(data)
            os.replace(temp_path, file_path)
            return True
        except OSError as e:
            logger.error(f"Failed to write cache file {file_path}: {e}")
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass  # nothing more to clean
            return False

    def _delete_file(self, file_name: str) -> bool:
        try:
            (self.cache_dir / file_name).unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.error(f"Failed to remove cache file {file_name}: {e}")
            return False

    def _remove_entry(self, file_name: str) -> bool:
        entry = self._entries.get(file_name)
        if entry is None:
            return False
        if not self._delete_file(file_name):
            return False
        del self._entries[file_name]
        self._total_size -= entry.size_bytes
        logger.debug(f"Removed cache entry for key: {entry.key}")
        return True

    def _make_space(self, size: int) -> None:
        """Evicts entries closest to expiry until `size` more bytes fit."""
        space_needed = self._total_size + size - self._config.max_size
        evicted = 0
        for entry in sorted(self._entries.values(), key=lambda e: e.expires_at):
            if space_needed <= 0:
                break
            if self._remove_entry(entry.file_name):
                space_needed -= entry.size_bytes
                evicted += 1
        if evicted:
            logger.debug(f"Evicted {evicted} cache entries to make room for {_format_bytes(size)}.")

    def _remove_expired(self) -> int:
        now = self._clock()
        expired = [e for e in self._entries.values() if e.expires_at < now]
        removed = sum(1 for e in expired if self._remove_entry(e.file_name))
        if removed:
            logger.debug(f"Cleaned up {removed} expired cache entries")
        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval)
            try:
                await self.cleanup_expired()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}", exc_info=True)
