"""
Cache package built on the store engine.

This package provides caching layers for:
- TTL cache (expiring.py): lazy eviction on read plus active sweeps
- Sweeper (sweeper.py): startup and periodic sweeps of expired entries
- Read-through cache (read_through.py): stale-while-revalidate over a fetcher
- Domain facades (facades.py): named caches with fixed TTLs
"""

from __future__ import annotations

from localstore.cache.base import CacheBackend, CacheStats
from localstore.cache.expiring import ExpiringCache
from localstore.cache.facades import CacheFacades, DomainCache
from localstore.cache.read_through import Fetcher, ReadThroughCache
from localstore.cache.sweeper import CacheSweeper

__all__ = [
    "CacheBackend",
    "CacheFacades",
    "CacheStats",
    "CacheSweeper",
    "DomainCache",
    "ExpiringCache",
    "Fetcher",
    "ReadThroughCache",
]
