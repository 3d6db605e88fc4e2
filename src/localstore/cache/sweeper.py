"""
Active expiration for TTL caches.

Sweeps once at startup and, when an interval is configured, keeps sweeping
on a background task. A failed sweep is logged and retried on the next tick.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from localstore.exceptions import StoreError
from localstore.logging import get_logger, log_context

if TYPE_CHECKING:
    from localstore.cache.expiring import ExpiringCache
    from localstore.config import Settings

logger = get_logger(__name__)


class CacheSweeper:
    """Runs clear_expired_cache() at startup and then periodically."""

    def __init__(
        self,
        cache: ExpiringCache,
        interval_seconds: float = 0.0,
        sweep_on_start: bool = True,
    ) -> None:
        """Initialize the sweeper.

        Args:
            cache: Cache to sweep.
            interval_seconds: Period between sweeps; 0 disables the loop.
            sweep_on_start: Whether start() sweeps immediately.
        """
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.sweep_on_start = sweep_on_start
        self.sweeps = 0
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, cache: ExpiringCache, settings: Settings) -> CacheSweeper:
        return cls(
            cache,
            interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
            sweep_on_start=settings.SWEEP_ON_INIT,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Sweep once (if enabled) and start the periodic loop (if configured)."""
        if self.running:
            logger.warning("Sweeper already running", partition=self.cache.partition)
            return

        if self.sweep_on_start:
            await self.sweep()

        if self.interval_seconds > 0:
            self._task = asyncio.get_running_loop().create_task(self._loop())
            logger.info(
                "Sweeper started",
                partition=self.cache.partition,
                interval_seconds=self.interval_seconds,
            )

    async def stop(self) -> None:
        """Cancel the periodic loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sweeper stopped", partition=self.cache.partition, sweeps=self.sweeps)

    async def sweep(self) -> int:
        """Run one sweep.

        Returns:
            Number of entries removed (0 if the sweep failed).
        """
        with log_context(partition=self.cache.partition, operation="sweep"):
            try:
                removed = await self.cache.clear_expired_cache()
            except StoreError as e:
                logger.warning("Sweep failed", error=str(e))
                return 0
        self.sweeps += 1
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.sweep()
