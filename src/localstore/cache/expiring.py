"""
TTL cache over a store partition.

Entries are written as {"key", "value": {"data", "timestamp", "expiresAt"}}
records. An entry is dead once now > expiresAt; dead entries are never
returned. They are removed either lazily, by the read that finds them, or
actively, by clear_expired_cache() walking the expiresAt index.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from localstore.cache.base import CacheBackend, CacheStats
from localstore.config import get_settings
from localstore.engine import StoreEngine
from localstore.exceptions import InvalidRecordError
from localstore.logging import get_logger
from localstore.schema import CACHE_PARTITION, EXPIRES_AT_INDEX
from localstore.types import CacheEntry, KeyRange, Record, now_ms

logger = get_logger(__name__)

# Highest code point; bounds a prefix range
_MAX_CHAR = "\U0010ffff"


class ExpiringCache(CacheBackend):
    """TTL-governed cache stored in one engine partition.

    The partition must be declared with cache_partition(): key path "key"
    and an "expiresAt" index on "value.expiresAt".
    """

    def __init__(
        self,
        engine: StoreEngine,
        partition: str = CACHE_PARTITION,
        default_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            engine: Store engine holding the partition.
            partition: Name of the cache partition.
            default_ttl_seconds: TTL for set_cache() calls without one.
                Defaults to DEFAULT_TTL_SECONDS from settings.
            clock: Returns the current time in epoch seconds.
        """
        self.engine = engine
        self.partition = partition
        self.default_ttl_seconds = (
            default_ttl_seconds
            if default_ttl_seconds is not None
            else get_settings().DEFAULT_TTL_SECONDS
        )
        self.clock = clock
        self.stats = CacheStats()

    def now(self) -> int:
        """Current time in epoch milliseconds."""
        return now_ms(self.clock())

    def _decode(self, record: Record) -> CacheEntry:
        try:
            return CacheEntry.from_record(record)
        except (KeyError, TypeError, AttributeError) as e:
            raise InvalidRecordError(
                "Malformed cache record", {"partition": self.partition}
            ) from e

    async def set_cache(
        self, key: str, data: Any, ttl_seconds: float | None = None
    ) -> CacheEntry:
        """Write an entry expiring ttl_seconds from now.

        Overwrites any entry under the same key, live or dead.
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        entry = CacheEntry.create(key, data, ttl, self.now())
        await self.engine.put(self.partition, entry.to_record())
        return entry

    async def peek(self, key: str) -> CacheEntry | None:
        """Get the stored entry regardless of expiry, without evicting it."""
        record = await self.engine.get(self.partition, key)
        return self._decode(record) if record is not None else None

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Get a live entry, evicting it if it has expired."""
        entry = await self.peek(key)
        if entry is None:
            self.stats.misses += 1
            return None

        if entry.is_expired(self.now()):
            await self.engine.delete(self.partition, key)
            self.stats.misses += 1
            self.stats.evictions += 1
            logger.debug("Evicted expired entry", partition=self.partition, key=key)
            return None

        self.stats.hits += 1
        return entry

    async def get_cache(self, key: str) -> Any | None:
        """Get live data for a key, or None on a miss or an expired entry."""
        entry = await self.get_entry(key)
        return entry.data if entry is not None else None

    async def has_cache(self, key: str) -> bool:
        return await self.get_entry(key) is not None

    async def delete_cache(self, key: str) -> None:
        await self.engine.delete(self.partition, key)

    async def clear_expired_cache(self) -> int:
        """Delete every entry with expiresAt <= now.

        Walks the expiresAt index forward from the oldest entry until the
        range is exhausted.

        Returns:
            Number of entries removed.
        """
        now = self.now()
        removed = 0
        async for cursor in self.engine.iterate(
            self.partition, EXPIRES_AT_INDEX, KeyRange.upper_bound(now)
        ):
            await cursor.delete()
            removed += 1

        self.stats.evictions += removed
        if removed:
            logger.info("Swept expired entries", partition=self.partition, removed=removed)
        return removed

    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix.

        Returns:
            Number of entries removed.
        """
        if not prefix:
            raise ValueError("prefix must not be empty")
        keys = await self.engine.get_all_keys(
            self.partition, KeyRange.bound(prefix, prefix + _MAX_CHAR)
        )
        await self.engine.bulk_delete(self.partition, keys)
        logger.debug(
            "Invalidated entries", partition=self.partition, prefix=prefix, removed=len(keys)
        )
        return len(keys)
