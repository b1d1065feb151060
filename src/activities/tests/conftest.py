"""Shared fixtures and record factories for activity engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.activities.base import ActivityRecord, ActivityType, SourceKind
from src.activities.cache import ActivityCache, MemoryKeyValueStore
from src.activities.config_loader import (
    CacheConfig,
    DedupConfig,
    SyncConfig,
    load_sync_config,
)

# Canonical reference instant for timelines
T0 = datetime(2026, 3, 1, 7, 0, tzinfo=timezone.utc)


def make_record(
    record_id: str,
    activity_type: ActivityType = ActivityType.RUN,
    offset_seconds: float = 0,
    distance: float = 5000.0,
    elevation: float = 0.0,
    moving_time: float = 1800.0,
    source_kind: SourceKind = SourceKind.OTHER,
    bundle_id: str | None = None,
    step_count: int | None = None,
) -> ActivityRecord:
    """Build a record starting ``offset_seconds`` after T0."""
    start = T0 + timedelta(seconds=offset_seconds)
    end = start + timedelta(seconds=moving_time)
    return ActivityRecord(
        id=record_id,
        activity_type=activity_type,
        start_date=start,
        end_date=end,
        start_date_local=start,
        end_date_local=end,
        distance_meters=distance,
        moving_time_seconds=moving_time,
        total_elevation_gain_meters=elevation,
        step_count=step_count,
        source_bundle_id=bundle_id,
        source_kind=source_kind,
    )


def make_step_count(record_id: str, offset_seconds: float = 0, steps: int = 8000) -> ActivityRecord:
    return make_record(
        record_id,
        activity_type=ActivityType.STEP_COUNT,
        offset_seconds=offset_seconds,
        distance=0.0,
        moving_time=0.0,
        source_kind=SourceKind.HEALTH_STORE,
        step_count=steps,
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real bundled sync config."""
    return load_sync_config()


@pytest.fixture
def dedup_config() -> DedupConfig:
    return DedupConfig()


# ---------------------------------------------------------------------------
# Cache fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def activity_cache(memory_store: MemoryKeyValueStore) -> ActivityCache:
    return ActivityCache(memory_store, CacheConfig())


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_httpx_client() -> AsyncMock:
    """An httpx.AsyncClient stand-in whose GET returns a configurable body."""
    client = AsyncMock()
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json = MagicMock(return_value=[])
    client.get = AsyncMock(return_value=response)
    return client
