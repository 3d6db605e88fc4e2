"""
Tests for the stale-while-revalidate read-through cache.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock
from localstore.cache.read_through import ReadThroughCache
from localstore.engine import StoreEngine
from localstore.schema import DEFAULT_SCHEMA, cache_partition
from localstore.types import Schema


class Source:
    """Fetcher factory recording how often it was called."""

    def __init__(self) -> None:
        self.calls = 0

    def returning(self, value):
        async def fetch():
            self.calls += 1
            await asyncio.sleep(0)
            return value

        return fetch

    def failing(self, error: Exception):
        async def fetch():
            self.calls += 1
            raise error

        return fetch


@pytest.fixture
def read_through(engine: StoreEngine, clock: FakeClock) -> ReadThroughCache:
    return ReadThroughCache(engine, clock=clock)


class TestStaleWhileRevalidate:
    """Test the serve-then-refresh contract."""

    @pytest.mark.asyncio
    async def test_miss_awaits_fetcher_and_persists(
        self, read_through: ReadThroughCache, engine: StoreEngine
    ) -> None:
        source = Source()

        value = await read_through.stale_while_revalidate("k", source.returning("A"), 60)

        assert value == "A"
        assert source.calls == 1
        assert read_through.stats.misses == 1
        assert read_through.pending == 0
        record = await engine.get("cache", "k")
        assert record["value"]["data"] == "A"

    @pytest.mark.asyncio
    async def test_hit_serves_old_value_and_refreshes(
        self, read_through: ReadThroughCache
    ) -> None:
        """The second call returns the cached value; the refresh shows on the third."""
        await read_through.get("k", Source().returning("A"), 60)

        second = await read_through.get("k", Source().returning("B"), 60)
        assert second == "A"
        assert read_through.pending == 1

        await read_through.drain()
        assert read_through.pending == 0

        third = await read_through.get("k", Source().returning("C"), 60)
        assert third == "B"
        await read_through.drain()
        assert read_through.stats.refreshes == 2

    @pytest.mark.asyncio
    async def test_expired_value_is_still_served(
        self, read_through: ReadThroughCache, clock: FakeClock
    ) -> None:
        await read_through.get("k", Source().returning("old"), 1)
        clock.advance(3600)

        value = await read_through.get("k", Source().returning("new"), 1)

        assert value == "old"
        await read_through.drain()
        assert await read_through.cache_for().get_cache("k") == "new"

    @pytest.mark.asyncio
    async def test_refresh_failure_is_swallowed(self, read_through: ReadThroughCache) -> None:
        await read_through.get("k", Source().returning("A"), 60)

        value = await read_through.get("k", Source().failing(RuntimeError("offline")), 60)
        await read_through.drain()

        assert value == "A"
        assert read_through.stats.refresh_failures == 1
        assert await read_through.cache_for().get_cache("k") == "A"

    @pytest.mark.asyncio
    async def test_miss_failure_propagates(
        self, read_through: ReadThroughCache, engine: StoreEngine
    ) -> None:
        with pytest.raises(RuntimeError, match="offline"):
            await read_through.get("k", Source().failing(RuntimeError("offline")), 60)

        assert await engine.get("cache", "k") is None

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_are_deduplicated(
        self, read_through: ReadThroughCache
    ) -> None:
        await read_through.get("k", Source().returning("A"), 60)
        source = Source()

        values = await asyncio.gather(
            *(read_through.get("k", source.returning("B"), 60) for _ in range(3))
        )
        await read_through.drain()

        assert values == ["A", "A", "A"]
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_partitions_are_independent(self, engine: StoreEngine, clock: FakeClock) -> None:
        schema = Schema(
            DEFAULT_SCHEMA.version,
            DEFAULT_SCHEMA.partitions + (cache_partition("sessions_cache"),),
        )
        async with StoreEngine(engine.path.with_name("multi.db"), schema) as multi:
            read_through = ReadThroughCache(multi, clock=clock)

            await read_through.get("k", Source().returning("default"), 60)
            await read_through.get("k", Source().returning("sessions"), 60, "sessions_cache")

            assert await read_through.cache_for().get_cache("k") == "default"
            assert await read_through.cache_for("sessions_cache").get_cache("k") == "sessions"
            assert read_through.cache_for("sessions_cache") is read_through.cache_for(
                "sessions_cache"
            )

    @pytest.mark.asyncio
    async def test_drain_without_refreshes(self, read_through: ReadThroughCache) -> None:
        await read_through.drain()
        assert read_through.pending == 0

    @pytest.mark.asyncio
    async def test_close_finishes_refreshes_before_closing_engine(
        self, read_through: ReadThroughCache, engine: StoreEngine
    ) -> None:
        """No refresh is left to re-open the store after close()."""
        await read_through.get("k", Source().returning("A"), 60)
        await read_through.get("k", Source().returning("B"), 60)
        assert read_through.pending == 1

        await read_through.close()

        assert read_through.pending == 0
        assert read_through.stats.refreshes == 1
        assert not engine.is_open
