"""
Custom exception hierarchy for the local store.

All exceptions inherit from StoreError, which provides optional context
for structured error handling and logging. A missing record is never an
error: lookups return None instead.
"""

from __future__ import annotations

from typing import Any


class StoreError(Exception):
    """Base exception for all store errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(StoreError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Empty STORE_PATH
        - Negative TTL values
    """

    pass


class SchemaError(StoreError):
    """Raised when a schema declaration is invalid or incompatible.

    Context should include:
        - partition: The partition being declared or opened
        - version: The schema version involved
    """

    pass


class InitializationError(StoreError):
    """Raised when the storage connection cannot be established.

    Fatal to the init call that raised it; a later call retries from scratch.

    Context should include:
        - path: The database path
        - version: The declared schema version
    """

    pass


class StorageError(StoreError):
    """Raised when the underlying storage rejects an operation.

    Context should include:
        - operation: The store operation (put, get, query, ...)
        - partition: The partition being accessed
    """

    pass


class UnknownPartitionError(StorageError):
    """Raised when an operation names a partition that does not exist."""

    pass


class UnknownIndexError(StorageError):
    """Raised when a query names an index its partition does not declare."""

    pass


class InvalidRecordError(StorageError):
    """Raised when a record cannot be stored.

    Examples:
        - Missing primary key field
        - Primary key that is not a str, int or float
        - Value that cannot be serialized to JSON
    """

    pass


class InvalidKeyError(InvalidRecordError):
    """Raised when a lookup key is not a str, int or float."""

    pass


class ConstraintError(StorageError):
    """Raised when a write violates a uniqueness constraint."""

    pass


class KeyCollisionError(ConstraintError):
    """Raised by add() when the primary key is already present.

    Recoverable: the caller decides whether to put() instead.
    """

    pass


class PartialBatchFailure(StorageError):
    """Raised when an item of bulk_put/bulk_delete fails.

    Items before the failing one remain committed; items after it were
    never attempted. The underlying error is chained as __cause__ and kept
    on `error`.

    Attributes:
        error: The first error encountered.
        failed_index: Position of the failing item in the batch.
        applied: Number of items committed before the failure.
    """

    def __init__(
        self,
        message: str,
        error: BaseException,
        failed_index: int,
        applied: int,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.error = error
        self.failed_index = failed_index
        self.applied = applied


class BackgroundRefreshError(StoreError):
    """A background revalidation failed.

    Created and logged by the read-through cache; never raised to a caller
    that has already been served a cached value.

    Context should include:
        - key: The cache key being refreshed
        - partition: The cache partition
    """

    pass
