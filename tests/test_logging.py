"""
Tests for structured logging.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Generator

import pytest

from localstore.engine import StoreEngine
from localstore.exceptions import InitializationError
from localstore.logging import get_logger, get_partition, log_context, setup_logging


@pytest.fixture
def log_file(temp_dir: Path) -> Generator[Path, None, None]:
    path = temp_dir / "logs" / "store.jsonl"
    setup_logging("DEBUG", path, console_output=False)
    yield path
    setup_logging()


class TestLogging:
    """Test context propagation into log records."""

    def test_json_lines_include_context(self, log_file: Path) -> None:
        logger = get_logger("tests")

        with log_context(store="test", partition="cache", operation="sweep"):
            logger.info("Swept expired entries", removed=3)

        line = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert line["message"] == "Swept expired entries"
        assert line["logger"] == "localstore.tests"
        assert line["store"] == "test"
        assert line["partition"] == "cache"
        assert line["extra"]["removed"] == 3

    def test_context_is_restored(self) -> None:
        with log_context(partition="outer"):
            with log_context(partition="inner"):
                assert get_partition() == "inner"
            assert get_partition() == "outer"
        assert get_partition() is None

    def test_level_filters(self, temp_dir: Path) -> None:
        path = temp_dir / "warn.jsonl"
        setup_logging("WARNING", path, console_output=False)
        try:
            logger = get_logger("tests")
            logger.debug("hidden")
            logger.warning("shown")
        finally:
            setup_logging()

        messages = [json.loads(line)["message"] for line in path.read_text().splitlines()]
        assert messages == ["shown"]

    @pytest.mark.asyncio
    async def test_failed_init_logs_error(self, log_file: Path, temp_dir: Path) -> None:
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(InitializationError):
            await StoreEngine(blocker / "store.db").init()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        failures = [line for line in lines if line["message"] == "Store initialization failed"]
        assert len(failures) == 1
        assert failures[0]["level"] == "ERROR"
        assert failures[0]["store"] == "store"
        assert failures[0]["operation"] == "init"
