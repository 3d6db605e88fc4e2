"""
Core types for the local store.

This module defines the fundamental data structures used throughout the store:
- Frozen dataclasses for schema declarations (IndexSpec, PartitionSpec, Schema)
- KeyRange for primary-key and index range queries
- CacheEntry, the in-memory view of a TTL cache record
- Helpers for key paths, key validation and timestamps
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from localstore.exceptions import SchemaError

Key = Union[str, int, float]
Record = dict[str, Any]

_MISSING = object()

_MIN_INT_KEY = -(2**63)
_MAX_INT_KEY = 2**63 - 1


def now_ms(clock_seconds: float | None = None) -> int:
    """Get the current wall-clock time in epoch milliseconds.

    Args:
        clock_seconds: Epoch seconds to convert instead of time.time().
    """
    seconds = time.time() if clock_seconds is None else clock_seconds
    return int(seconds * 1000)


def is_valid_key(value: Any) -> bool:
    """Check whether a value can be used as a primary or index key.

    Keys are strings, finite floats and ints that fit SQLite's signed 64-bit
    INTEGER. Booleans are not keys even though they are ints.
    """
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return True
    if isinstance(value, int):
        return _MIN_INT_KEY <= value <= _MAX_INT_KEY
    if isinstance(value, float):
        return math.isfinite(value)
    return False


def resolve_key_path(record: Mapping[str, Any], key_path: str) -> Any:
    """Extract the value at a dotted key path.

    Returns the module's missing sentinel when any segment is absent; use
    extract_key() for the common "key or None" case.
    """
    value: Any = record
    for part in key_path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def extract_key(record: Mapping[str, Any], key_path: str) -> Key | None:
    """Return the key at key_path, or None if it is missing or not a valid key."""
    value = resolve_key_path(record, key_path)
    if value is _MISSING or not is_valid_key(value):
        return None
    return value


@dataclass(frozen=True)
class IndexSpec:
    """Secondary index declaration."""

    name: str
    key_path: str
    unique: bool = False


@dataclass(frozen=True)
class PartitionSpec:
    """A named storage compartment with its primary key path and indexes."""

    name: str
    key_path: str
    indexes: tuple[IndexSpec, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise SchemaError("Partition name must not be empty")
        if not self.key_path:
            raise SchemaError("Partition key path must not be empty", {"partition": self.name})
        # Accept lists from callers, store as a tuple
        object.__setattr__(self, "indexes", tuple(self.indexes))
        seen: set[str] = set()
        for index in self.indexes:
            if not index.name or not index.key_path:
                raise SchemaError(
                    "Index name and key path must not be empty",
                    {"partition": self.name, "index": index.name},
                )
            if index.name in seen:
                raise SchemaError(
                    "Duplicate index name", {"partition": self.name, "index": index.name}
                )
            seen.add(index.name)

    def index(self, name: str) -> IndexSpec | None:
        """Look up an index by name."""
        for index in self.indexes:
            if index.name == name:
                return index
        return None


@dataclass(frozen=True)
class Schema:
    """Versioned, ordered set of partition declarations.

    Bumping `version` makes the next init() create any partitions and
    indexes that are declared but not yet present.
    """

    version: int
    partitions: tuple[PartitionSpec, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.version < 1:
            raise SchemaError("Schema version must be >= 1", {"version": self.version})
        object.__setattr__(self, "partitions", tuple(self.partitions))
        names = [p.name for p in self.partitions]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise SchemaError("Duplicate partition names", {"partitions": duplicates})

    def partition(self, name: str) -> PartitionSpec | None:
        """Look up a partition by name."""
        for partition in self.partitions:
            if partition.name == name:
                return partition
        return None


@dataclass(frozen=True)
class KeyRange:
    """Range of keys with optionally open bounds.

    A bound of None means unbounded on that side.

        KeyRange.only("a")              # key == "a"
        KeyRange.upper_bound(now)       # key <= now
        KeyRange.bound(1, 5, upper_open=True)  # 1 <= key < 5
    """

    lower: Key | None = None
    upper: Key | None = None
    lower_open: bool = False
    upper_open: bool = False

    def __post_init__(self) -> None:
        for bound in (self.lower, self.upper):
            if bound is not None and not is_valid_key(bound):
                raise ValueError(f"Invalid key range bound: {bound!r}")
        if self.lower is not None and self.upper is not None:
            if _compare(self.lower, self.upper) > 0:
                raise ValueError("Lower bound is greater than upper bound")
            if _compare(self.lower, self.upper) == 0 and (self.lower_open or self.upper_open):
                raise ValueError("Open range on a single key is empty")

    @classmethod
    def only(cls, value: Key) -> KeyRange:
        return cls(value, value)

    @classmethod
    def lower_bound(cls, value: Key, open: bool = False) -> KeyRange:
        return cls(lower=value, lower_open=open)

    @classmethod
    def upper_bound(cls, value: Key, open: bool = False) -> KeyRange:
        return cls(upper=value, upper_open=open)

    @classmethod
    def bound(
        cls,
        lower: Key,
        upper: Key,
        lower_open: bool = False,
        upper_open: bool = False,
    ) -> KeyRange:
        return cls(lower, upper, lower_open, upper_open)

    def includes(self, key: Key) -> bool:
        """Check whether a key falls inside the range."""
        if not is_valid_key(key):
            return False
        if self.lower is not None:
            cmp = _compare(key, self.lower)
            if cmp < 0 or (cmp == 0 and self.lower_open):
                return False
        if self.upper is not None:
            cmp = _compare(key, self.upper)
            if cmp > 0 or (cmp == 0 and self.upper_open):
                return False
        return True

    def to_sql(self, column: str) -> tuple[str, list[Key]]:
        """Render the range as a SQL condition on a column."""
        conditions: list[str] = []
        params: list[Key] = []
        if self.lower is not None:
            conditions.append(f"{column} {'>' if self.lower_open else '>='} ?")
            params.append(self.lower)
        if self.upper is not None:
            conditions.append(f"{column} {'<' if self.upper_open else '<='} ?")
            params.append(self.upper)
        return " AND ".join(conditions) or "1=1", params


def _compare(a: Key, b: Key) -> int:
    """Compare keys the way SQLite orders them: numbers before strings."""
    a_num = not isinstance(a, str)
    b_num = not isinstance(b, str)
    if a_num != b_num:
        return -1 if a_num else 1
    if a < b:  # type: ignore[operator]
        return -1
    if a > b:  # type: ignore[operator]
        return 1
    return 0


@dataclass(frozen=True)
class CacheEntry:
    """A TTL cache record.

    Persisted as {"key": ..., "value": {"data": ..., "timestamp": ...,
    "expiresAt": ...}} with timestamps in epoch milliseconds.
    """

    key: str
    data: Any
    created_at: int
    expires_at: int

    @classmethod
    def create(cls, key: str, data: Any, ttl_seconds: float, now: int) -> CacheEntry:
        """Build an entry expiring ttl_seconds after `now` (epoch ms)."""
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        return cls(key, data, now, now + int(round(ttl_seconds * 1000)))

    @property
    def ttl_ms(self) -> int:
        return self.expires_at - self.created_at

    def is_expired(self, now: int) -> bool:
        """An entry is dead once now is strictly past expires_at."""
        return now > self.expires_at

    def to_record(self) -> Record:
        return {
            "key": self.key,
            "value": {
                "data": self.data,
                "timestamp": self.created_at,
                "expiresAt": self.expires_at,
            },
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> CacheEntry:
        value = record["value"]
        return cls(
            key=record["key"],
            data=value.get("data"),
            created_at=value["timestamp"],
            expires_at=value["expiresAt"],
        )
