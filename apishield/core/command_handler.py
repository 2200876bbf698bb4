"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the
work to the ResilientClient and its cache, reporting results and failures
through the UserInterface port.
"""

import asyncio
import logging
import random
from pathlib import Path
from typing import Dict, Optional

from apishield.core.resilient_client import ResilientClient
from apishield.domain.errors import AdmissionTimeout, TransportError
from apishield.domain.interfaces.user_interface import UserInterface
from apishield.domain.models.common import CacheKey

logger = logging.getLogger(__name__)

class CommandHandler:
    """Handles incoming commands and delegates to the resilience services."""

    def __init__(self, client: ResilientClient, ui: UserInterface):
        self.client = client
        self.ui = ui

    def _require_cache(self) -> bool:
        if self.client.cache is None:
            self.ui.display_error("No cache is configured.")
            return False
        return True

    async def handle_status(self) -> None:
        """Handles the 'status' command."""
        logger.info("Handling 'status' command.")
        try:
            snapshot = await self.client.status()
            self.ui.display_status("Rate limiter", snapshot["rate_limiter"])
            if "cache" in snapshot:
                self.ui.display_status("Cache", snapshot["cache"])
        except Exception as e:
            logger.error(f"Status command failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to read status: {e}")

    async def handle_cache_put(self, key: str, file_path: Path, ttl: Optional[float] = None) -> None:
        """Handles the 'cache-put' command."""
        logger.info(f"Handling 'cache-put' for key: {key} from {file_path}")
        if not self._require_cache():
            return
        try:
            data = file_path.read_bytes()
            await self.client.cache.store(data, CacheKey(key), ttl=ttl)
            self.ui.display_info(f"Stored {len(data)} bytes under '{key}'.")
        except Exception as e:
            logger.error(f"Cache put failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to store '{key}': {e}")

    async def handle_cache_get(self, key: str, output: Optional[Path] = None) -> None:
        """Handles the 'cache-get' command."""
        logger.info(f"Handling 'cache-get' for key: {key}")
        if not self._require_cache():
            return
        try:
            data = await self.client.cache.retrieve(CacheKey(key))
            if data is None:
                self.ui.display_warning(f"Cache miss for '{key}'.")
                return
            if output is not None:
                output.write_bytes(data)
                self.ui.display_info(f"Wrote {len(data)} bytes to {output}.")
            else:
                self.ui.display_output(data.decode("utf-8", errors="replace"), title=key)
        except Exception as e:
            logger.error(f"Cache get failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to read '{key}': {e}")

    async def handle_cache_remove(self, key: str) -> None:
        """Handles the 'cache-remove' command."""
        logger.info(f"Handling 'cache-remove' for key: {key}")
        if not self._require_cache():
            return
        try:
            await self.client.cache.remove(CacheKey(key))
            self.ui.display_info(f"Removed '{key}' from the cache.")
        except Exception as e:
            logger.error(f"Cache remove failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to remove '{key}': {e}")

    async def handle_clear_cache(self) -> None:
        """Handles the 'clear-cache' command."""
        logger.info("Handling 'clear-cache' command.")
        if not self._require_cache():
            return
        try:
            await self.client.cache.clear_all()
            self.ui.display_info("Cache cleared successfully.")
        except Exception as e:
            logger.error(f"Failed to clear cache: {e}", exc_info=True)
            self.ui.display_error(f"Failed to clear cache: {e}")

    async def handle_sweep(self) -> None:
        """Handles the 'sweep' command: one expiry sweep, right now."""
        logger.info("Handling 'sweep' command.")
        if not self._require_cache():
            return
        try:
            removed = await self.client.cache.cleanup_expired()
            self.ui.display_info(f"Removed {removed} expired cache entries.")
        except Exception as e:
            logger.error(f"Sweep failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to sweep cache: {e}")

    async def handle_simulate(
        self,
        requests: int,
        cost: float = 1,
        failure_rate: float = 0.3,
        seed: Optional[int] = None,
    ) -> Dict[str, int]:
        """Handles the 'simulate' command.

        Fires `requests` concurrent calls at a synthetic endpoint that drops
        the connection with probability `failure_rate`, and reports how many
        succeeded, were rejected by admission control, or failed after retries.
        """
        logger.info(f"Handling 'simulate': requests={requests}, cost={cost}, failure_rate={failure_rate}")
        rng = random.Random(seed)
        summary = {"succeeded": 0, "rejected": 0, "failed": 0}

        async def flaky_endpoint() -> bytes:
            if rng.random() < failure_rate:
                raise TransportError(TransportError.CONNECTION_LOST)
            return b"ok"

        async def one_request(index: int) -> str:
            try:
                await self.client.call(flaky_endpoint, endpoint=f"simulated-{index}", cost=cost)
                return "succeeded"
            except AdmissionTimeout:
                return "rejected"
            except TransportError:
                return "failed"

        try:
            outcomes = await asyncio.gather(*(one_request(i) for i in range(requests)))
        except Exception as e:
            logger.error(f"Simulation failed: {e}", exc_info=True)
            self.ui.display_error(f"Simulation failed: {e}")
            return summary

        for outcome in outcomes:
            summary[outcome] += 1
        self.ui.display_status("Simulation", summary)
        return summary
