"""
Base classes for caching.

- CacheBackend: Abstract interface for TTL cache implementations
- CacheStats: Hit/miss/refresh counters kept by cache implementations
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from localstore.types import CacheEntry


@dataclass
class CacheStats:
    """Counters for cache monitoring."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    refreshes: int = 0
    refresh_failures: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "refreshes": self.refreshes,
            "refresh_failures": self.refresh_failures,
            "hit_rate": self.hit_rate,
        }


class CacheBackend(ABC):
    """Abstract interface for TTL cache implementations."""

    @abstractmethod
    async def get_cache(self, key: str) -> Any | None:
        """Get a live value from the cache, or None."""
        ...

    @abstractmethod
    async def set_cache(
        self, key: str, data: Any, ttl_seconds: float | None = None
    ) -> CacheEntry:
        """Set a value in the cache."""
        ...

    @abstractmethod
    async def delete_cache(self, key: str) -> None:
        """Delete a value from the cache."""
        ...

    @abstractmethod
    async def has_cache(self, key: str) -> bool:
        """Check if a live value exists in the cache."""
        ...

    @abstractmethod
    async def peek(self, key: str) -> CacheEntry | None:
        """Get the stored entry regardless of expiry, without evicting it."""
        ...

    @abstractmethod
    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix."""
        ...
