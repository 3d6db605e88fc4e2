"""
localstore - client-resident persistence and caching layer.

Partitioned SQLite-backed store with secondary indexes, a TTL cache with
lazy and active expiration, and a stale-while-revalidate read-through cache.
"""

from __future__ import annotations

__version__ = "0.1.0"

from localstore.engine import Cursor, StoreEngine
from localstore.exceptions import (
    BackgroundRefreshError,
    ConstraintError,
    InitializationError,
    KeyCollisionError,
    PartialBatchFailure,
    StorageError,
    StoreError,
)
from localstore.schema import DEFAULT_SCHEMA, cache_partition
from localstore.types import CacheEntry, IndexSpec, KeyRange, PartitionSpec, Schema

__all__ = [
    "BackgroundRefreshError",
    "CacheEntry",
    "ConstraintError",
    "Cursor",
    "DEFAULT_SCHEMA",
    "IndexSpec",
    "InitializationError",
    "KeyCollisionError",
    "KeyRange",
    "PartialBatchFailure",
    "PartitionSpec",
    "Schema",
    "StorageError",
    "StoreEngine",
    "StoreError",
    "__version__",
    "cache_partition",
]
