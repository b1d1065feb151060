"""Tests for the activity timeline HTTP endpoints."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.activities.adapters.static import StaticAdapter
from src.activities.aggregator import ActivityAggregator
from src.activities.base import ActivityRecord, ActivityType, ProviderAdapter, SourceKind
from src.activities.cache import ActivityCache, MemoryKeyValueStore
from src.activities.config_loader import CacheConfig, SyncConfig
from src.activities.tests.conftest import make_record
from src.config import get_settings
from src.routers import activities, health


class ReadOnlyAdapter(StaticAdapter):
    async def delete(self, record: ActivityRecord) -> None:
        await ProviderAdapter.delete(self, record)


def _aggregator() -> ActivityAggregator:
    health_store = StaticAdapter(
        "hk",
        [
            make_record("hk_1", distance=1004, moving_time=600),
            make_record(
                "hk_2", activity_type=ActivityType.WALK, offset_seconds=3600,
                distance=2000, moving_time=1200,
            ),
        ],
        source_kind=SourceKind.HEALTH_STORE,
    )
    garmin = StaticAdapter(
        "garmin",
        [make_record("garmin_7", offset_seconds=10, distance=1000, moving_time=600)],
        source_kind=SourceKind.GARMIN,
    )
    wahoo = ReadOnlyAdapter(
        "wahoo",
        [make_record("wahoo_3", activity_type=ActivityType.BIKE_RIDE, offset_seconds=7200)],
    )
    return ActivityAggregator(
        [health_store, garmin, wahoo],
        cache=ActivityCache(MemoryKeyValueStore(), CacheConfig()),
        config=SyncConfig(),
    )


def _app(aggregator: ActivityAggregator | None) -> FastAPI:
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(activities.router, prefix="/api/v1")
    if aggregator is not None:
        app.state.aggregator = aggregator
    return app


@pytest.fixture
def client() -> TestClient:
    with TestClient(_app(_aggregator())) as test_client:
        yield test_client


@pytest.fixture
def loaded_client(client: TestClient) -> TestClient:
    assert client.post("/api/v1/activities/refresh").status_code == 200
    return client


class TestTimelineEndpoints:
    def test_health_before_first_load(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["timeline"] == "uninitialized"

    def test_refresh(self, client: TestClient) -> None:
        response = client.post("/api/v1/activities/refresh")
        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "ready"
        assert [a["id"] for a in body["activities"]] == ["wahoo_3", "hk_2", "garmin_7"]

    def test_health_after_load(self, loaded_client: TestClient) -> None:
        body = loaded_client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["activities"] == 3

    def test_list(self, loaded_client: TestClient) -> None:
        body = loaded_client.get("/api/v1/activities").json()
        assert body["count"] == 3
        first = body["activities"][0]
        assert first["provider"] == "wahoo"
        assert first["activity_type"] == "Ride"

    def test_list_limit(self, loaded_client: TestClient) -> None:
        body = loaded_client.get("/api/v1/activities", params={"limit": 1}).json()
        assert [a["id"] for a in body["activities"]] == ["wahoo_3"]

    def test_list_by_type(self, loaded_client: TestClient) -> None:
        body = loaded_client.get("/api/v1/activities", params={"activity_type": "Walk"}).json()
        assert [a["id"] for a in body["activities"]] == ["hk_2"]

    def test_invalid_type_rejected(self, loaded_client: TestClient) -> None:
        response = loaded_client.get("/api/v1/activities", params={"activity_type": "Teleport"})
        assert response.status_code == 422

    def test_get_activity(self, loaded_client: TestClient) -> None:
        body = loaded_client.get("/api/v1/activities/garmin_7").json()
        assert body["source_kind"] == "garmin"
        assert body["distance_meters"] == 1000

    def test_get_missing_activity(self, loaded_client: TestClient) -> None:
        assert loaded_client.get("/api/v1/activities/hk_404").status_code == 404

    def test_totals(self, loaded_client: TestClient) -> None:
        body = loaded_client.get("/api/v1/activities/totals").json()
        assert body["total_distance_meters"]["value"] == 8000
        assert body["total_time_seconds"]["value"] == 3600

    def test_summary(self, loaded_client: TestClient) -> None:
        body = loaded_client.get("/api/v1/activities/summary").json()
        assert body["total"] == 3
        assert body["activity_type_counts"] == {"Ride": 1, "Walk": 1, "Run": 1}

    def test_delete(self, loaded_client: TestClient) -> None:
        assert loaded_client.delete("/api/v1/activities/hk_2").status_code == 204
        assert loaded_client.get("/api/v1/activities/hk_2").status_code == 404
        assert loaded_client.delete("/api/v1/activities/hk_2").status_code == 404
        totals = loaded_client.get("/api/v1/activities/totals").json()
        assert totals["total_distance_meters"]["value"] == 6000

    def test_delete_refused_by_provider(self, loaded_client: TestClient) -> None:
        response = loaded_client.delete("/api/v1/activities/wahoo_3")
        assert response.status_code == 409
        assert loaded_client.get("/api/v1/activities/wahoo_3").status_code == 200


class TestExactIdRoutes:
    def test_get_and_delete_name_the_same_record(self) -> None:
        garmin = StaticAdapter(
            "garmin",
            [make_record("garmin_1"), make_record("garmin_12", offset_seconds=3600)],
            source_kind=SourceKind.GARMIN,
        )
        aggregator = ActivityAggregator(
            [garmin],
            cache=ActivityCache(MemoryKeyValueStore(), CacheConfig()),
            config=SyncConfig(),
        )
        with TestClient(_app(aggregator)) as client:
            client.post("/api/v1/activities/refresh")
            assert client.get("/api/v1/activities/garmin_1").json()["id"] == "garmin_1"
            assert client.get("/api/v1/activities/1").status_code == 404
            assert client.delete("/api/v1/activities/garmin_1").status_code == 204
            assert client.get("/api/v1/activities/garmin_1").status_code == 404
            assert client.get("/api/v1/activities/garmin_12").status_code == 200


class TestWithoutAggregator:
    def test_routes_unavailable(self) -> None:
        with TestClient(_app(None)) as client:
            assert client.get("/api/v1/activities").status_code == 503
            assert client.get("/health").json()["timeline"] == "uninitialized"


class TestAppLifespan:
    def test_startup_builds_ready_timeline(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CACHE_DIR", str(tmp_path))
        monkeypatch.setenv("FEED_URLS", "{}")
        get_settings.cache_clear()
        try:
            from src.main import create_app

            with TestClient(create_app()) as client:
                body = client.get("/health").json()
                assert body["status"] == "healthy"
                assert body["activities"] == 0
                assert client.get("/api/v1/activities").json()["state"] == "ready"
        finally:
            get_settings.cache_clear()
