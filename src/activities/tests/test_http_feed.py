"""Tests for the canonical JSON feed adapter and the adapter registry."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.activities.adapters import (
    ADAPTER_REGISTRY,
    HttpFeedAdapter,
    StaticAdapter,
    build_feed_adapters,
    get_adapter,
)
from src.activities.base import ProviderError, SourceKind
from src.activities.cache import CachedActivityRecord, encode_records
from src.activities.tests.conftest import make_record

FEED_URL = "https://feeds.example.com/garmin/activities"


def _feed_items(*record_ids: str) -> list[dict]:
    cached = [
        CachedActivityRecord.from_record(make_record(rid, offset_seconds=i * 60))
        for i, rid in enumerate(record_ids)
    ]
    return json.loads(encode_records(cached))


def _adapter(client: AsyncMock, **kwargs) -> HttpFeedAdapter:
    return HttpFeedAdapter(
        "garmin",
        FEED_URL,
        source_kind=SourceKind.GARMIN,
        http_client=client,
        **kwargs,
    )


class TestFeedLoad:
    @pytest.mark.asyncio
    async def test_decodes_list_payload(self, mock_httpx_client: AsyncMock) -> None:
        mock_httpx_client.get.return_value.json.return_value = _feed_items("garmin_1", "garmin_2")
        records = await _adapter(mock_httpx_client).load()
        assert [r.id for r in records] == ["garmin_1", "garmin_2"]
        assert all(r.source_kind is SourceKind.GARMIN for r in records)
        assert not any(r.is_cached for r in records)

    @pytest.mark.asyncio
    async def test_decodes_wrapped_payload(self, mock_httpx_client: AsyncMock) -> None:
        mock_httpx_client.get.return_value.json.return_value = {
            "activities": _feed_items("garmin_1"),
        }
        records = await _adapter(mock_httpx_client).load()
        assert [r.id for r in records] == ["garmin_1"]

    @pytest.mark.asyncio
    async def test_malformed_items_skipped(self, mock_httpx_client: AsyncMock) -> None:
        items = _feed_items("garmin_1")
        items.append({"id": "garmin_2"})
        mock_httpx_client.get.return_value.json.return_value = items
        records = await _adapter(mock_httpx_client).load()
        assert [r.id for r in records] == ["garmin_1"]

    @pytest.mark.asyncio
    async def test_unexpected_payload_raises(self, mock_httpx_client: AsyncMock) -> None:
        mock_httpx_client.get.return_value.json.return_value = "nope"
        with pytest.raises(ProviderError):
            await _adapter(mock_httpx_client).load()

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, mock_httpx_client: AsyncMock) -> None:
        mock_httpx_client.get.return_value.json.side_effect = ValueError("bad json")
        with pytest.raises(ProviderError, match="invalid JSON"):
            await _adapter(mock_httpx_client).load()

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, mock_httpx_client: AsyncMock) -> None:
        mock_httpx_client.get.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(ProviderError, match="feed request failed"):
            await _adapter(mock_httpx_client).load()

    @pytest.mark.asyncio
    async def test_http_status_error_raises(self, mock_httpx_client: AsyncMock) -> None:
        response = mock_httpx_client.get.return_value
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "503 Service Unavailable", request=MagicMock(), response=MagicMock()
        )
        with pytest.raises(ProviderError):
            await _adapter(mock_httpx_client).load()

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, mock_httpx_client: AsyncMock) -> None:
        await _adapter(mock_httpx_client, access_token="tok_123").load()
        _, kwargs = mock_httpx_client.get.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer tok_123"
        assert kwargs["headers"]["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_without_injected_client(self) -> None:
        response = MagicMock()
        response.raise_for_status = MagicMock()
        response.json = MagicMock(return_value=_feed_items("garmin_1"))
        client = AsyncMock()
        client.get = AsyncMock(return_value=response)
        client.__aenter__.return_value = client

        with patch(
            "src.activities.adapters.http_feed.httpx.AsyncClient", return_value=client
        ):
            records = await HttpFeedAdapter("garmin", FEED_URL).load()
        assert [r.id for r in records] == ["garmin_1"]


class TestFeedAuthorization:
    @pytest.mark.asyncio
    async def test_configured_url_is_authorized(self, mock_httpx_client: AsyncMock) -> None:
        assert await _adapter(mock_httpx_client).is_authorized()

    @pytest.mark.asyncio
    async def test_missing_url_not_authorized(self) -> None:
        adapter = HttpFeedAdapter("garmin", None)
        assert not await adapter.is_authorized()
        with pytest.raises(ProviderError):
            await adapter.load()

    @pytest.mark.asyncio
    async def test_delete_unsupported(self, mock_httpx_client: AsyncMock) -> None:
        with pytest.raises(ProviderError, match="not supported"):
            await _adapter(mock_httpx_client).delete(make_record("garmin_1"))

    @pytest.mark.asyncio
    async def test_no_live_updates(self, mock_httpx_client: AsyncMock) -> None:
        received = [r async for r in _adapter(mock_httpx_client).live_updates()]
        assert received == []


class TestRegistry:
    def test_registry_contents(self) -> None:
        assert set(ADAPTER_REGISTRY) == {"static", "http_feed"}
        assert get_adapter("static") is StaticAdapter

    def test_unknown_kind(self) -> None:
        with pytest.raises(KeyError, match="http_feed"):
            get_adapter("carrier_pigeon")

    def test_build_feed_adapters(self) -> None:
        adapters = build_feed_adapters(
            {"garmin": FEED_URL, "komoot": "https://feeds.example.com/komoot"},
            {"garmin": "tok"},
        )
        by_name = {a.NAME: a for a in adapters}
        assert by_name["garmin"].SOURCE_KIND is SourceKind.GARMIN
        assert by_name["komoot"].SOURCE_KIND is SourceKind.OTHER
        assert by_name["garmin"]._build_headers()["Authorization"] == "Bearer tok"
        assert "Authorization" not in by_name["komoot"]._build_headers()
