"""
Default schema for the admin data store.

Partitions mirror the records the admin application keeps offline. Bump
SCHEMA_VERSION when adding partitions or indexes.
"""

from __future__ import annotations

from localstore.types import IndexSpec, PartitionSpec, Schema

SCHEMA_VERSION = 1

CACHE_PARTITION = "cache"
EXPIRES_AT_INDEX = "expiresAt"


def cache_partition(name: str = CACHE_PARTITION) -> PartitionSpec:
    """Declare a TTL cache partition.

    Records are keyed by "key" and indexed on "value.expiresAt" so expired
    entries can be swept with a range scan.
    """
    return PartitionSpec(
        name=name,
        key_path="key",
        indexes=(IndexSpec(EXPIRES_AT_INDEX, "value.expiresAt"),),
    )


DEFAULT_SCHEMA = Schema(
    version=SCHEMA_VERSION,
    partitions=(
        PartitionSpec(
            name="products",
            key_path="id",
            indexes=(
                IndexSpec("name", "name"),
                IndexSpec("category", "category"),
                IndexSpec("updatedAt", "updatedAt"),
            ),
        ),
        PartitionSpec(
            name="orders",
            key_path="id",
            indexes=(
                IndexSpec("orderId", "orderId"),
                IndexSpec("status", "status"),
                IndexSpec("customerEmail", "customerEmail"),
                IndexSpec("createdAt", "createdAt"),
            ),
        ),
        PartitionSpec(
            name="tickets",
            key_path="id",
            indexes=(
                IndexSpec("status", "status"),
                IndexSpec("priority", "priority"),
                IndexSpec("assignedAgent", "assignedAgent"),
                IndexSpec("updatedAt", "updatedAt"),
            ),
        ),
        PartitionSpec(
            name="customers",
            key_path="id",
            indexes=(
                IndexSpec("email", "email", unique=True),
                IndexSpec("name", "name"),
                IndexSpec("updatedAt", "updatedAt"),
            ),
        ),
        cache_partition(),
    ),
)
