"""
Shared pytest fixtures for jobspine tests.

This module provides:
- A temp-file SQLite engine with the jobspine schema
- A ManualClock pinned to a known Monday noon (UTC)
- Registry, structlog and context-variable cleanup for test isolation
"""

from datetime import UTC, datetime
from pathlib import Path

import pytest
import structlog

from jobspine.core.storage import create_schema, create_storage_engine
from jobspine.scheduling.registry import reset_default_registry
from jobspine.testing import ManualClock

# 2025-01-06 is a Monday
NOON = datetime(2025, 1, 6, 12, 0, 0, tzinfo=UTC)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def engine(tmp_path: Path):
    """SQLite file database with the outcome table created."""
    engine = create_storage_engine(f"sqlite:///{tmp_path / 'jobspine.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(NOON)


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset the default job registry and structlog state around each test."""
    reset_default_registry()
    structlog.contextvars.clear_contextvars()
    yield
    reset_default_registry()
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
