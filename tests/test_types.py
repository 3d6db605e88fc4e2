"""
Tests for schema declarations, key ranges and cache entries.
"""

from __future__ import annotations

import math

import pytest

from localstore.exceptions import SchemaError
from localstore.schema import DEFAULT_SCHEMA, EXPIRES_AT_INDEX, cache_partition
from localstore.types import (
    CacheEntry,
    IndexSpec,
    KeyRange,
    PartitionSpec,
    Schema,
    extract_key,
    is_valid_key,
    now_ms,
)


class TestKeys:
    """Test key validation and key path extraction."""

    def test_valid_keys(self) -> None:
        assert is_valid_key("a")
        assert is_valid_key("")
        assert is_valid_key(0)
        assert is_valid_key(1.5)

    def test_invalid_keys(self) -> None:
        assert not is_valid_key(None)
        assert not is_valid_key(True)
        assert not is_valid_key(math.nan)
        assert not is_valid_key(["a"])
        assert not is_valid_key({"a": 1})

    def test_non_finite_floats_are_not_keys(self) -> None:
        """orjson writes inf as null, so such a key could not round-trip."""
        assert not is_valid_key(math.inf)
        assert not is_valid_key(-math.inf)
        assert is_valid_key(1e308)

    def test_int_keys_limited_to_64_bits(self) -> None:
        assert is_valid_key(2**63 - 1)
        assert is_valid_key(-(2**63))
        assert not is_valid_key(2**63)
        assert not is_valid_key(-(2**63) - 1)

    def test_extract_nested_key(self) -> None:
        record = {"key": "k", "value": {"expiresAt": 42}}

        assert extract_key(record, "value.expiresAt") == 42
        assert extract_key(record, "key") == "k"

    def test_extract_missing_or_invalid_key(self) -> None:
        record = {"value": {"data": [1, 2]}, "flag": False}

        assert extract_key(record, "value.expiresAt") is None
        assert extract_key(record, "value.data") is None
        assert extract_key(record, "flag") is None
        assert extract_key(record, "value.data.first") is None

    def test_now_ms(self) -> None:
        assert now_ms(1_700_000_000.25) == 1_700_000_000_250


class TestSchema:
    """Test schema declaration validation."""

    def test_default_schema_is_valid(self) -> None:
        assert DEFAULT_SCHEMA.version >= 1
        assert DEFAULT_SCHEMA.partition("customers").index("email").unique
        assert DEFAULT_SCHEMA.partition("missing") is None

    def test_cache_partition_declaration(self) -> None:
        spec = cache_partition("sessions_cache")

        assert spec.key_path == "key"
        assert spec.index(EXPIRES_AT_INDEX) == IndexSpec("expiresAt", "value.expiresAt")

    def test_version_must_be_positive(self) -> None:
        with pytest.raises(SchemaError):
            Schema(0, ())

    def test_duplicate_partitions_rejected(self) -> None:
        with pytest.raises(SchemaError) as exc_info:
            Schema(1, (PartitionSpec("a", "id"), PartitionSpec("a", "id")))
        assert exc_info.value.context["partitions"] == ["a"]

    def test_duplicate_indexes_rejected(self) -> None:
        with pytest.raises(SchemaError):
            PartitionSpec("a", "id", (IndexSpec("x", "x"), IndexSpec("x", "y")))

    def test_empty_names_rejected(self) -> None:
        with pytest.raises(SchemaError):
            PartitionSpec("", "id")
        with pytest.raises(SchemaError):
            PartitionSpec("a", "")
        with pytest.raises(SchemaError):
            PartitionSpec("a", "id", (IndexSpec("x", ""),))

    def test_indexes_accept_lists(self) -> None:
        spec = PartitionSpec("a", "id", [IndexSpec("x", "x")])  # type: ignore[arg-type]
        assert spec.indexes == (IndexSpec("x", "x"),)


class TestKeyRange:
    """Test key range construction and membership."""

    def test_only(self) -> None:
        key_range = KeyRange.only("a")

        assert key_range.includes("a")
        assert not key_range.includes("b")

    def test_upper_bound_is_inclusive_by_default(self) -> None:
        key_range = KeyRange.upper_bound(100)

        assert key_range.includes(100)
        assert key_range.includes(-5)
        assert not key_range.includes(101)
        assert not KeyRange.upper_bound(100, open=True).includes(100)

    def test_bound_with_open_ends(self) -> None:
        key_range = KeyRange.bound(1, 5, lower_open=True, upper_open=True)

        assert not key_range.includes(1)
        assert key_range.includes(3)
        assert not key_range.includes(5)

    def test_numbers_sort_before_strings(self) -> None:
        key_range = KeyRange.lower_bound("a")

        assert not key_range.includes(10)
        assert key_range.includes("b")
        assert KeyRange.upper_bound("a").includes(10)

    def test_invalid_ranges(self) -> None:
        with pytest.raises(ValueError):
            KeyRange.bound(5, 1)
        with pytest.raises(ValueError):
            KeyRange.bound(1, 1, lower_open=True)
        with pytest.raises(ValueError):
            KeyRange.only(True)  # type: ignore[arg-type]

    def test_to_sql(self) -> None:
        assert KeyRange().to_sql("pk") == ("1=1", [])
        assert KeyRange.bound(1, 5, upper_open=True).to_sql("pk") == (
            "pk >= ? AND pk < ?",
            [1, 5],
        )


class TestCacheEntry:
    """Test TTL cache entries."""

    def test_create_sets_expiry(self) -> None:
        entry = CacheEntry.create("k", {"a": 1}, 1.5, now=1_000)

        assert entry.created_at == 1_000
        assert entry.expires_at == 2_500
        assert entry.ttl_ms == 1_500

    def test_expiry_is_strict(self) -> None:
        entry = CacheEntry.create("k", "v", 1, now=1_000)

        assert not entry.is_expired(2_000)
        assert entry.is_expired(2_001)

    def test_zero_ttl_lives_until_clock_moves(self) -> None:
        entry = CacheEntry.create("k", "v", 0, now=1_000)

        assert not entry.is_expired(1_000)
        assert entry.is_expired(1_001)

    def test_negative_ttl_rejected(self) -> None:
        with pytest.raises(ValueError):
            CacheEntry.create("k", "v", -1, now=1_000)

    def test_record_layout(self) -> None:
        entry = CacheEntry.create("k", [1, 2], 60, now=1_000)
        record = entry.to_record()

        assert record == {
            "key": "k",
            "value": {"data": [1, 2], "timestamp": 1_000, "expiresAt": 61_000},
        }
        assert CacheEntry.from_record(record) == entry
