"""
Partitioned key-value store engine backed by SQLite.

Each partition is a table keyed by the partition's primary key path; every
secondary index is an extra column holding the extracted index value plus a
SQL index over it (UNIQUE where declared). Records are stored as JSON blobs
serialized with orjson.

The engine owns one aiosqlite connection, opened lazily on first use and
shared by every partition. There is no engine-level locking: operations are
issued in the order callers await them, and concurrent writes to the same key
race with the last committed write winning.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Generator, Mapping, Sequence

import aiosqlite
import orjson

from localstore.exceptions import (
    ConstraintError,
    InitializationError,
    InvalidKeyError,
    InvalidRecordError,
    KeyCollisionError,
    PartialBatchFailure,
    SchemaError,
    StorageError,
    UnknownIndexError,
    UnknownPartitionError,
)
from localstore.logging import get_logger, log_context
from localstore.schema import DEFAULT_SCHEMA
from localstore.types import (
    IndexSpec,
    Key,
    KeyRange,
    PartitionSpec,
    Record,
    Schema,
    extract_key,
    is_valid_key,
)

if TYPE_CHECKING:
    from localstore.config import Settings

logger = get_logger(__name__)

MEMORY = ":memory:"


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _table(partition: str) -> str:
    return _quote(f"p:{partition}")


def _column(index: str) -> str:
    return _quote(f"ix:{index}")


def _sql_index(partition: str, index: str) -> str:
    return _quote(f"idx:{partition}:{index}")


@dataclass
class Cursor:
    """Position of a forward iteration over a partition or index.

    `key` is the index value (the primary key when iterating the partition
    itself).
    """

    engine: StoreEngine = field(repr=False)
    partition: str
    key: Key
    primary_key: Key
    value: Record

    async def delete(self) -> None:
        """Delete the record under the cursor."""
        await self.engine.delete(self.partition, self.primary_key)


class StoreEngine:
    """Schema-declared partitioned store with secondary indexes.

    Usage:
        engine = StoreEngine(".cache/localstore.db")
        await engine.put("products", {"id": "p1", "name": "Widget"})
        product = await engine.get("products", "p1")
        await engine.close()

    Every operation initializes the connection on demand, so callers never
    need to call init() explicitly, including after close().
    """

    def __init__(self, path: str | Path, schema: Schema = DEFAULT_SCHEMA) -> None:
        """Initialize the engine without opening the database.

        Args:
            path: SQLite database file, or ":memory:".
            schema: Versioned partition declarations.
        """
        self.path: str | Path = MEMORY if str(path) == MEMORY else Path(path)
        self.schema = schema
        self._db: aiosqlite.Connection | None = None
        self._init_task: asyncio.Task[None] | None = None
        self._catalog: dict[str, PartitionSpec] = {}
        self._version = 0

    @classmethod
    def from_settings(cls, settings: Settings, schema: Schema = DEFAULT_SCHEMA) -> StoreEngine:
        """Create an engine for the configured STORE_PATH."""
        return cls(settings.STORE_PATH, schema)

    @property
    def name(self) -> str:
        """Short store name used in logs."""
        if self.path == MEMORY:
            return "memory"
        return Path(self.path).stem

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def __aenter__(self) -> StoreEngine:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the connection and apply the schema.

        Idempotent. Callers arriving while an open is in flight wait on the
        same attempt. A failed attempt is forgotten so the next call retries.

        Raises:
            InitializationError: If the database cannot be opened or its
                stored schema is incompatible with the declared one.
        """
        if self._db is not None:
            return

        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._open())

        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _open(self) -> None:
        with log_context(store=self.name, operation="init"):
            try:
                await self._open_connection()
            except InitializationError as e:
                logger.error("Store initialization failed", error=str(e))
                raise

    async def _open_connection(self) -> None:
        context = {"path": str(self.path), "version": self.schema.version}
        try:
            db = await self._connect()
        except (OSError, sqlite3.Error) as e:
            raise InitializationError("Failed to open store", context) from e

        try:
            self._version = await self._upgrade(db)
            self._catalog = await self._load_catalog(db)
        except Exception as e:
            await db.close()
            raise InitializationError(f"Failed to initialize store: {e}", context) from e

        self._db = db
        logger.info(
            "Store opened",
            path=str(self.path),
            version=self._version,
            partitions=len(self._catalog),
        )

    async def _connect(self) -> aiosqlite.Connection:
        if self.path != MEMORY:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit: every statement outside an explicit BEGIN is its own
        # transaction
        db = await aiosqlite.connect(self.path, isolation_level=None)
        db.row_factory = aiosqlite.Row
        return db

    async def close(self) -> None:
        """Release the connection.

        Invalidates it for every consumer; the next operation re-opens.
        """
        task = self._init_task
        if task is not None and not task.done():
            # Errors from the in-flight open surface to its own caller
            await asyncio.wait([task])

        db, self._db = self._db, None
        self._init_task = None
        self._catalog = {}

        if db is not None:
            await db.close()
            logger.info("Store closed", path=str(self.path))

    async def delete_all(self) -> None:
        """Close the store and delete the database with all its partitions."""
        await self.close()
        if self.path == MEMORY:
            return

        try:
            for suffix in ("", "-journal", "-wal", "-shm"):
                Path(f"{self.path}{suffix}").unlink(missing_ok=True)
        except OSError as e:
            raise StorageError("Failed to delete store", {"path": str(self.path)}) from e

        logger.info("Store deleted", path=str(self.path))

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def _upgrade(self, db: aiosqlite.Connection) -> int:
        """Create declared partitions and indexes missing at the stored version.

        Returns:
            The schema version now stored in the database.
        """
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        stored = row[0] if row else 0

        if stored > self.schema.version:
            raise SchemaError(
                "Stored schema version is newer than declared",
                {"stored": stored, "declared": self.schema.version},
            )
        if stored == self.schema.version:
            return stored

        await db.execute("BEGIN IMMEDIATE")
        try:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS _partitions (
                    name TEXT PRIMARY KEY,
                    key_path TEXT NOT NULL,
                    position INTEGER NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS _indexes (
                    partition TEXT NOT NULL,
                    name TEXT NOT NULL,
                    key_path TEXT NOT NULL,
                    is_unique INTEGER NOT NULL,
                    PRIMARY KEY (partition, name)
                )
            """)

            existing = await self._load_catalog(db)
            for position, spec in enumerate(self.schema.partitions):
                await self._create_partition(db, spec, existing.get(spec.name), position)

            await db.execute(f"PRAGMA user_version = {int(self.schema.version)}")
            await db.execute("COMMIT")
        except Exception:
            await db.execute("ROLLBACK")
            raise

        logger.info(
            "Upgraded store schema",
            from_version=stored,
            to_version=self.schema.version,
        )
        return self.schema.version

    async def _create_partition(
        self,
        db: aiosqlite.Connection,
        spec: PartitionSpec,
        existing: PartitionSpec | None,
        position: int,
    ) -> None:
        table = _table(spec.name)

        if existing is None:
            columns = ["pk NOT NULL PRIMARY KEY", "value BLOB NOT NULL"]
            columns.extend(_column(index.name) for index in spec.indexes)
            await db.execute(f"CREATE TABLE {table} ({', '.join(columns)})")
            await db.execute(
                "INSERT INTO _partitions (name, key_path, position) VALUES (?, ?, ?)",
                (spec.name, spec.key_path, position),
            )
            new_indexes: Sequence[IndexSpec] = spec.indexes
        else:
            if existing.key_path != spec.key_path:
                raise SchemaError(
                    "Partition key path cannot change",
                    {
                        "partition": spec.name,
                        "stored": existing.key_path,
                        "declared": spec.key_path,
                    },
                )
            for index in spec.indexes:
                stored_index = existing.index(index.name)
                if stored_index is not None and stored_index != index:
                    raise SchemaError(
                        "Index definition cannot change",
                        {"partition": spec.name, "index": index.name},
                    )
            new_indexes = [i for i in spec.indexes if existing.index(i.name) is None]
            for index in new_indexes:
                await db.execute(f"ALTER TABLE {table} ADD COLUMN {_column(index.name)}")

        for index in new_indexes:
            await db.execute(
                "INSERT INTO _indexes (partition, name, key_path, is_unique) "
                "VALUES (?, ?, ?, ?)",
                (spec.name, index.name, index.key_path, int(index.unique)),
            )
            if existing is not None:
                await self._backfill_index(db, spec.name, index)
            sql_index = _sql_index(spec.name, index.name)
            column = _column(index.name)
            if index.unique:
                sql = f"CREATE UNIQUE INDEX {sql_index} ON {table} ({column})"
            else:
                sql = f"CREATE INDEX {sql_index} ON {table} ({column}, pk)"
            await db.execute(sql)

    async def _backfill_index(
        self, db: aiosqlite.Connection, partition: str, index: IndexSpec
    ) -> None:
        """Populate a newly added index column from the stored records."""
        table = _table(partition)
        async with db.execute(f"SELECT pk, value FROM {table}") as cursor:
            rows = await cursor.fetchall()
        for row in rows:
            value = extract_key(orjson.loads(row["value"]), index.key_path)
            if value is not None:
                await db.execute(
                    f"UPDATE {table} SET {_column(index.name)} = ? WHERE pk = ?",
                    (value, row["pk"]),
                )

    async def _load_catalog(self, db: aiosqlite.Connection) -> dict[str, PartitionSpec]:
        async with db.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = '_partitions'"
        ) as cursor:
            if await cursor.fetchone() is None:
                return {}

        indexes: dict[str, list[IndexSpec]] = {}
        async with db.execute(
            "SELECT partition, name, key_path, is_unique FROM _indexes ORDER BY rowid"
        ) as cursor:
            async for row in cursor:
                indexes.setdefault(row["partition"], []).append(
                    IndexSpec(row["name"], row["key_path"], bool(row["is_unique"]))
                )

        catalog: dict[str, PartitionSpec] = {}
        async with db.execute(
            "SELECT name, key_path FROM _partitions ORDER BY position"
        ) as cursor:
            async for row in cursor:
                catalog[row["name"]] = PartitionSpec(
                    row["name"], row["key_path"], tuple(indexes.get(row["name"], ()))
                )
        return catalog

    async def version(self) -> int:
        """Get the schema version stored in the database."""
        await self._ensure_db()
        return self._version

    async def partitions(self) -> list[PartitionSpec]:
        """List the partitions present in the database, in declaration order."""
        await self._ensure_db()
        return list(self._catalog.values())

    async def describe(self, partition: str) -> PartitionSpec:
        """Get the stored declaration of a partition.

        Raises:
            UnknownPartitionError: If the partition does not exist.
        """
        await self._ensure_db()
        return self._partition(partition)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.init()
        if self._db is None:
            raise InitializationError(
                "Store was closed during initialization", {"path": str(self.path)}
            )
        return self._db

    def _partition(self, name: str) -> PartitionSpec:
        spec = self._catalog.get(name)
        if spec is None:
            raise UnknownPartitionError("Unknown partition", {"partition": name})
        return spec

    def _index(self, spec: PartitionSpec, name: str) -> IndexSpec:
        index = spec.index(name)
        if index is None:
            raise UnknownIndexError("Unknown index", {"partition": spec.name, "index": name})
        return index

    @staticmethod
    def _check_key(partition: str, key: Any) -> None:
        if not is_valid_key(key):
            raise InvalidKeyError("Invalid key", {"partition": partition, "key": key})

    def _encode(self, spec: PartitionSpec, record: Any) -> tuple[Key, bytes, list[Key | None]]:
        if not isinstance(record, Mapping):
            raise InvalidRecordError(
                "Record must be a mapping",
                {"partition": spec.name, "type": type(record).__name__},
            )
        pk = extract_key(record, spec.key_path)
        if pk is None:
            raise InvalidRecordError(
                "Record has no valid primary key",
                {"partition": spec.name, "key_path": spec.key_path},
            )
        try:
            blob = orjson.dumps(dict(record))
        except TypeError as e:
            raise InvalidRecordError(
                "Record is not JSON serializable", {"partition": spec.name, "key": pk}
            ) from e
        return pk, blob, [extract_key(record, index.key_path) for index in spec.indexes]

    @contextmanager
    def _storage_errors(
        self, operation: str, partition: str, key: Key | None = None
    ) -> Generator[None, None, None]:
        """Translate SQLite errors into the store's exception types."""
        context: dict[str, Any] = {"operation": operation, "partition": partition}
        if key is not None:
            context["key"] = key
        try:
            yield
        except sqlite3.IntegrityError as e:
            if str(e).endswith(".pk"):
                raise KeyCollisionError("Key already exists", context) from e
            raise ConstraintError(f"Constraint violated: {e}", context) from e
        except sqlite3.Error as e:
            raise StorageError(f"{operation} failed: {e}", context) from e

    async def _fetchall(
        self, db: aiosqlite.Connection, sql: str, params: Sequence[Any]
    ) -> list[aiosqlite.Row]:
        async with db.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    # ------------------------------------------------------------------
    # Single-record operations
    # ------------------------------------------------------------------

    async def _write(self, operation: str, partition: str, record: Record, upsert: bool) -> Key:
        db = await self._ensure_db()
        spec = self._partition(partition)
        pk, blob, index_values = self._encode(spec, record)

        columns = ["pk", "value"] + [_column(index.name) for index in spec.indexes]
        sql = (
            f"INSERT INTO {_table(partition)} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' * len(columns))})"
        )
        if upsert:
            updates = ", ".join(f"{col} = excluded.{col}" for col in columns[1:])
            sql += f" ON CONFLICT(pk) DO UPDATE SET {updates}"

        with self._storage_errors(operation, partition, pk):
            await db.execute(sql, [pk, blob, *index_values])
        return pk

    async def add(self, partition: str, record: Record) -> Key:
        """Insert a record whose primary key is not yet present.

        Returns:
            The record's primary key.

        Raises:
            KeyCollisionError: If the primary key already exists.
            ConstraintError: If a unique index already holds the value.
        """
        return await self._write("add", partition, record, upsert=False)

    async def put(self, partition: str, record: Record) -> Key:
        """Insert or replace a record by primary key.

        Returns:
            The record's primary key.

        Raises:
            ConstraintError: If another record holds a unique index value.
        """
        return await self._write("put", partition, record, upsert=True)

    async def get(self, partition: str, key: Key) -> Record | None:
        """Get a record by primary key, or None if absent."""
        db = await self._ensure_db()
        self._partition(partition)
        self._check_key(partition, key)

        with self._storage_errors("get", partition, key):
            async with db.execute(
                f"SELECT value FROM {_table(partition)} WHERE pk = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()

        return orjson.loads(row["value"]) if row else None

    async def delete(self, partition: str, key: Key) -> None:
        """Delete a record by primary key. Deleting an absent key is a no-op."""
        db = await self._ensure_db()
        self._partition(partition)
        self._check_key(partition, key)

        with self._storage_errors("delete", partition, key):
            await db.execute(f"DELETE FROM {_table(partition)} WHERE pk = ?", (key,))

    # ------------------------------------------------------------------
    # Partition-wide operations
    # ------------------------------------------------------------------

    async def get_all(
        self,
        partition: str,
        key_range: KeyRange | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        """Get records in primary-key order, optionally within a key range."""
        db = await self._ensure_db()
        self._partition(partition)
        condition, params = (key_range or KeyRange()).to_sql("pk")
        sql = f"SELECT value FROM {_table(partition)} WHERE {condition} ORDER BY pk"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._storage_errors("get_all", partition):
            rows = await self._fetchall(db, sql, params)
        return [orjson.loads(row["value"]) for row in rows]

    async def get_all_keys(
        self, partition: str, key_range: KeyRange | None = None
    ) -> list[Key]:
        """Get primary keys in order, optionally within a key range."""
        db = await self._ensure_db()
        self._partition(partition)
        condition, params = (key_range or KeyRange()).to_sql("pk")

        with self._storage_errors("get_all_keys", partition):
            rows = await self._fetchall(
                db,
                f"SELECT pk FROM {_table(partition)} WHERE {condition} ORDER BY pk",
                params,
            )
        return [row["pk"] for row in rows]

    async def query(
        self,
        partition: str,
        index_name: str,
        key_range: KeyRange | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        """Get records whose indexed value falls within a range.

        Results are ordered ascending by the indexed value, then primary key.
        Records without a value for the index are never returned.

        Args:
            partition: Partition to query.
            index_name: Declared secondary index.
            key_range: Range of index values (None for all indexed records).
            limit: Maximum number of records.

        Raises:
            UnknownIndexError: If the partition has no such index.
        """
        db = await self._ensure_db()
        spec = self._partition(partition)
        column = _column(self._index(spec, index_name).name)
        condition, params = (key_range or KeyRange()).to_sql(column)
        sql = (
            f"SELECT value FROM {_table(partition)} "
            f"WHERE {column} IS NOT NULL AND {condition} ORDER BY {column}, pk"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._storage_errors("query", partition):
            rows = await self._fetchall(db, sql, params)
        return [orjson.loads(row["value"]) for row in rows]

    async def count(self, partition: str, key_range: KeyRange | None = None) -> int:
        """Count records, optionally within a primary-key range."""
        db = await self._ensure_db()
        self._partition(partition)
        condition, params = (key_range or KeyRange()).to_sql("pk")

        with self._storage_errors("count", partition):
            async with db.execute(
                f"SELECT COUNT(*) FROM {_table(partition)} WHERE {condition}", params
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else 0

    async def clear(self, partition: str) -> None:
        """Delete every record in a partition."""
        db = await self._ensure_db()
        self._partition(partition)

        with self._storage_errors("clear", partition):
            await db.execute(f"DELETE FROM {_table(partition)}")
        logger.debug("Cleared partition", partition=partition)

    async def iterate(
        self,
        partition: str,
        index_name: str | None = None,
        key_range: KeyRange | None = None,
        batch_size: int = 100,
    ) -> AsyncIterator[Cursor]:
        """Iterate forward over a partition or one of its indexes.

        Rows are fetched in pages positioned after the last row seen, so
        deleting through the cursor while iterating is safe.

        Args:
            partition: Partition to iterate.
            index_name: Index to walk, or None for primary-key order.
            key_range: Range over the walked key.
            batch_size: Rows fetched per page.

        Yields:
            Cursor objects in ascending key order.
        """
        spec = await self.describe(partition)
        column = "pk" if index_name is None else _column(self._index(spec, index_name).name)
        condition, params = (key_range or KeyRange()).to_sql(column)
        last: tuple[Key, Key] | None = None

        while True:
            db = await self._ensure_db()
            where = f"{column} IS NOT NULL AND {condition}"
            page_params: list[Any] = list(params)
            if last is not None:
                where += f" AND ({column}, pk) > (?, ?)"
                page_params.extend(last)
            page_params.append(batch_size)

            with self._storage_errors("iterate", partition):
                rows = await self._fetchall(
                    db,
                    f"SELECT {column} AS k, pk, value FROM {_table(partition)} "
                    f"WHERE {where} ORDER BY {column}, pk LIMIT ?",
                    page_params,
                )

            for row in rows:
                yield Cursor(self, partition, row["k"], row["pk"], orjson.loads(row["value"]))

            if len(rows) < batch_size:
                return
            last = (rows[-1]["k"], rows[-1]["pk"])

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    async def bulk_put(self, partition: str, records: Sequence[Record]) -> list[Key]:
        """Put records one at a time, in order.

        Not atomic: each record commits on its own. The first failure stops
        the batch; records before it stay committed and records after it are
        never attempted.

        Returns:
            Primary keys of the stored records.

        Raises:
            PartialBatchFailure: Wrapping the first error encountered.
        """
        keys: list[Key] = []
        for position, record in enumerate(records):
            try:
                keys.append(await self.put(partition, record))
            except StorageError as e:
                raise self._batch_failure("bulk_put", partition, e, position) from e

        logger.debug("Bulk put", partition=partition, count=len(keys))
        return keys

    async def bulk_delete(self, partition: str, keys: Sequence[Key]) -> None:
        """Delete keys one at a time, in order, with bulk_put's failure semantics.

        Raises:
            PartialBatchFailure: Wrapping the first error encountered.
        """
        for position, key in enumerate(keys):
            try:
                await self.delete(partition, key)
            except StorageError as e:
                raise self._batch_failure("bulk_delete", partition, e, position) from e

        logger.debug("Bulk delete", partition=partition, count=len(keys))

    @staticmethod
    def _batch_failure(
        operation: str, partition: str, error: StorageError, position: int
    ) -> PartialBatchFailure:
        context: dict[str, Any] = {
            "operation": operation,
            "partition": partition,
            "failed_index": position,
            "applied": position,
        }
        if "key" in error.context:
            context["key"] = error.context["key"]
        logger.warning(
            "Batch stopped at failing item",
            operation=operation,
            partition=partition,
            failed_index=position,
            error=str(error),
        )
        return PartialBatchFailure(
            f"{operation} failed at item {position}: {error.message}",
            error=error,
            failed_index=position,
            applied=position,
            context=context,
        )
