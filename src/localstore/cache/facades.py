"""
Named domain caches with fixed TTLs.

Each facade namespaces its keys as "{name}:{id}" inside a shared cache
partition and applies its own TTL. They add no behavior of their own.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Mapping

from localstore.cache.read_through import Fetcher, ReadThroughCache
from localstore.cache.sweeper import CacheSweeper
from localstore.config import Settings, get_settings
from localstore.engine import StoreEngine


class DomainCache:
    """Cache for one kind of record (products, sessions, ...)."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        read_through: ReadThroughCache,
        partition: str | None = None,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.read_through = read_through
        self.partition = partition
        self.cache = read_through.cache_for(partition)

    def __repr__(self) -> str:
        return f"DomainCache(name={self.name!r}, ttl_seconds={self.ttl_seconds!r})"

    def key_for(self, item_id: str | int) -> str:
        return f"{self.name}:{item_id}"

    async def cache_item(self, item_id: str | int, data: Any) -> None:
        await self.cache.set_cache(self.key_for(item_id), data, self.ttl_seconds)

    async def get_cached(self, item_id: str | int) -> Any | None:
        return await self.cache.get_cache(self.key_for(item_id))

    async def get_or_fetch(self, item_id: str | int, fetcher: Fetcher) -> Any:
        """Stale-while-revalidate lookup of one item."""
        return await self.read_through.stale_while_revalidate(
            self.key_for(item_id), fetcher, self.ttl_seconds, self.partition
        )

    async def invalidate(self, item_id: str | int) -> None:
        await self.cache.delete_cache(self.key_for(item_id))

    async def invalidate_all(self) -> int:
        """Drop every cached item of this kind."""
        return await self.cache.invalidate_prefix(f"{self.name}:")


class CacheFacades:
    """The application's domain caches, sharing one read-through cache.

    Usage:
        async with CacheFacades.from_settings(engine) as facades:
            await facades.products.cache_item("p1", {"name": "Widget"})
            product = await facades.products.get_cached("p1")

    Entering the context (or calling start()) runs the startup sweep of
    the shared cache partition and, if configured, the periodic sweep.
    Leaving it stops the sweeper, drains refreshes and closes the engine.
    """

    def __init__(
        self,
        read_through: ReadThroughCache,
        ttls: Mapping[str, float],
        sweeper: CacheSweeper | None = None,
    ) -> None:
        self.read_through = read_through
        self.sweeper = sweeper
        self._caches = {
            name: DomainCache(name, ttl, read_through) for name, ttl in ttls.items()
        }

    @classmethod
    def from_settings(
        cls,
        engine: StoreEngine,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> CacheFacades:
        settings = settings or get_settings()
        read_through = ReadThroughCache(engine, clock=clock)
        sweeper = CacheSweeper.from_settings(read_through.cache_for(), settings)
        return cls(read_through, settings.domain_ttls, sweeper)

    async def __aenter__(self) -> CacheFacades:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Start the sweeper: an immediate sweep and the optional periodic one."""
        if self.sweeper is not None:
            await self.sweeper.start()

    async def close(self) -> None:
        """Stop sweeping, wait for background refreshes, close the engine."""
        if self.sweeper is not None:
            await self.sweeper.stop()
        await self.read_through.close()

    def __getitem__(self, name: str) -> DomainCache:
        return self._caches[name]

    def __contains__(self, name: object) -> bool:
        return name in self._caches

    @property
    def names(self) -> list[str]:
        return list(self._caches)

    @property
    def products(self) -> DomainCache:
        return self._caches["products"]

    @property
    def orders(self) -> DomainCache:
        return self._caches["orders"]

    @property
    def tickets(self) -> DomainCache:
        return self._caches["tickets"]

    @property
    def customers(self) -> DomainCache:
        return self._caches["customers"]

    @property
    def sessions(self) -> DomainCache:
        return self._caches["sessions"]
