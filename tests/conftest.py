"""
Pytest configuration and fixtures for local store tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import patch

import pytest

from localstore.config import Settings, clear_settings_cache
from localstore.engine import StoreEngine
from localstore.schema import DEFAULT_SCHEMA


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "STORE_PATH": str(temp_dir / "store" / "test.db"),
        "DEFAULT_TTL_SECONDS": "60",
        "SWEEP_ON_INIT": "true",
        "SWEEP_INTERVAL_SECONDS": "0",
        "PRODUCTS_TTL_SECONDS": "300",
        "SESSIONS_TTL_SECONDS": "1800",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from localstore.config import get_settings

    yield get_settings()
    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "store" / "test.db"


@pytest.fixture
async def engine(db_path: Path) -> AsyncGenerator[StoreEngine, None]:
    """Create an initialized engine with the default schema."""
    store = StoreEngine(db_path, DEFAULT_SCHEMA)
    await store.init()
    yield store
    await store.close()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
