"""Generic JSON feed adapter.

Pulls activities already expressed in the canonical serialized form (the
same shape the aggregation cache stores) from an HTTP endpoint.  Vendor
schemas are translated upstream of the feed.

Accepted payloads::

    [{"id": "garmin_1", "activity_type": "Run", ...}, ...]
    {"activities": [...]}
"""

from __future__ import annotations

import logging
from dataclasses import replace

import httpx

from src.activities.base import ActivityRecord, ProviderAdapter, ProviderError, SourceKind
from src.activities.cache import MalformedRecordError, decode_record

logger = logging.getLogger("cadence.activities.adapters.http_feed")


class HttpFeedAdapter(ProviderAdapter):
    """Provider backed by a canonical JSON feed (no live updates)."""

    def __init__(
        self,
        name: str,
        url: str | None,
        access_token: str | None = None,
        source_kind: SourceKind = SourceKind.OTHER,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the adapter.

        Args:
            name:         Provider name; the id prefix of its records.
            url:          Feed URL.  An empty URL means not connected.
            access_token: Optional bearer token sent with each request.
            source_kind:  Discriminant stamped on decoded records.
            http_client:  Optional pre-configured httpx client (useful for testing).
            timeout:      Request timeout in seconds.
        """
        self.NAME = name
        self.SOURCE_KIND = source_kind
        self._url = url or ""
        self._access_token = access_token
        self._http_client = http_client
        self._timeout = timeout

    async def is_authorized(self) -> bool:
        return bool(self._url)

    def _build_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def _get(self) -> object:
        """GET the feed and return its parsed JSON body.

        Raises:
            ProviderError: On transport errors, non-2xx responses or bad JSON.
        """
        headers = self._build_headers()
        try:
            if self._http_client:
                response = await self._http_client.get(self._url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._url, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            raise ProviderError(self.NAME, f"feed request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(self.NAME, f"feed returned invalid JSON: {exc}") from exc

    async def load(self) -> list[ActivityRecord]:
        if not self._url:
            raise ProviderError(self.NAME, "no feed URL configured")

        payload = await self._get()
        if isinstance(payload, dict):
            payload = payload.get("activities", [])
        if not isinstance(payload, list):
            raise ProviderError(self.NAME, f"unexpected feed payload: {type(payload).__name__}")

        records: list[ActivityRecord] = []
        for item in payload:
            try:
                cached = decode_record(item)
            except MalformedRecordError as exc:
                logger.warning("%s: skipping malformed feed item: %s", self.NAME, exc)
                continue
            records.append(
                replace(cached.to_record(), is_cached=False, source_kind=self.SOURCE_KIND)
            )

        logger.info("%s feed returned %d activities", self.NAME, len(records))
        return records
