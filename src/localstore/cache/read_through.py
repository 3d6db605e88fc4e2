"""
Stale-while-revalidate read-through cache.

A cached value, fresh or expired, is returned immediately and a background
refresh is started; only a miss waits for the fetcher. The TTL passed in
sets the expiry of the entry written by the fetch, it does not decide
whether a cached value may be served.

Background refresh failures are logged and counted, never raised: the caller
has already been served. Failures on the miss path propagate.

Refreshes run as tasks on the event loop; shut down with close() (or drain()
before engine.close()) so none outlives the connection.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from localstore.cache.base import CacheStats
from localstore.cache.expiring import ExpiringCache
from localstore.engine import StoreEngine
from localstore.exceptions import BackgroundRefreshError
from localstore.logging import get_logger, log_context
from localstore.schema import CACHE_PARTITION

logger = get_logger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


class ReadThroughCache:
    """Serve the last known value instantly and refresh it in the background.

    Usage:
        cache = ReadThroughCache(engine)
        product = await cache.get("product:p1", lambda: api.fetch_product("p1"), 300)
    """

    def __init__(
        self,
        engine: StoreEngine,
        partition: str = CACHE_PARTITION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the read-through cache.

        Args:
            engine: Store engine holding the cache partitions.
            partition: Default cache partition.
            clock: Returns the current time in epoch seconds.
        """
        self.engine = engine
        self.partition = partition
        self.clock = clock
        self.stats = CacheStats()
        self._caches: dict[str, ExpiringCache] = {}
        self._refreshing: dict[tuple[str, str], asyncio.Task[None]] = {}

    def cache_for(self, partition: str | None = None) -> ExpiringCache:
        """Get the TTL cache for a partition (the default one if None)."""
        name = partition or self.partition
        cache = self._caches.get(name)
        if cache is None:
            cache = ExpiringCache(self.engine, name, clock=self.clock)
            self._caches[name] = cache
        return cache

    @property
    def pending(self) -> int:
        """Number of background refreshes in flight."""
        return len(self._refreshing)

    async def stale_while_revalidate(
        self,
        key: str,
        fetcher: Fetcher,
        ttl_seconds: float,
        partition: str | None = None,
    ) -> Any:
        """Return the cached value for key, refreshing it in the background.

        Args:
            key: Cache key.
            fetcher: Zero-argument coroutine function loading the value.
            ttl_seconds: TTL of the entry written from the fetched value.
            partition: Cache partition (the default one if None).

        Returns:
            The cached value if one exists, else the fetched value.

        Raises:
            Exception: Whatever fetcher or the store raises on a miss.
        """
        cache = self.cache_for(partition)

        entry = await cache.peek(key)
        if entry is not None:
            self.stats.hits += 1
            self._schedule_refresh(cache, key, fetcher, ttl_seconds)
            return entry.data

        self.stats.misses += 1
        data = await fetcher()
        await cache.set_cache(key, data, ttl_seconds)
        return data

    get = stale_while_revalidate

    def _schedule_refresh(
        self, cache: ExpiringCache, key: str, fetcher: Fetcher, ttl_seconds: float
    ) -> None:
        token = (cache.partition, key)
        if token in self._refreshing:
            return

        task = asyncio.get_running_loop().create_task(
            self._refresh(cache, key, fetcher, ttl_seconds)
        )
        self._refreshing[token] = task
        task.add_done_callback(lambda _: self._refreshing.pop(token, None))

    async def _refresh(
        self, cache: ExpiringCache, key: str, fetcher: Fetcher, ttl_seconds: float
    ) -> None:
        with log_context(partition=cache.partition, operation="revalidate"):
            try:
                data = await fetcher()
                await cache.set_cache(key, data, ttl_seconds)
            except Exception as e:
                self.stats.refresh_failures += 1
                error = BackgroundRefreshError(
                    "Background refresh failed", {"key": key, "partition": cache.partition}
                )
                error.__cause__ = e
                logger.warning(str(error), error=repr(e))
                return

        self.stats.refreshes += 1
        logger.debug("Refreshed entry", partition=cache.partition, key=key)

    async def drain(self) -> None:
        """Wait for every in-flight background refresh to finish."""
        while self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)

    async def close(self) -> None:
        """Drain pending refreshes, then close the engine.

        A refresh still running after engine.close() would re-open the
        store, so owners should shut down through this method.
        """
        await self.drain()
        await self.engine.close()
