"""Two-tier aggregation cache for the reconciled activity timeline.

Tier 1 is a bounded in-process map (item-count ceiling, no expiry).  Tier 2
is a durable key-value store.  Both are keyed by one logical key
(``cache.key`` in sync_config.yaml, "activities" by default).

Failures never leave this module: a failed read behaves like a miss, a
failed write is logged and the in-memory tier stays authoritative, and a
record that fails to decode is dropped from the result on its own.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.activities.base import ActivityRecord, ActivityType, SourceKind
from src.activities.config_loader import CacheConfig, get_sync_config

logger = logging.getLogger("cadence.activities.cache")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CacheError(Exception):
    """Base class for aggregation cache failures."""


class CacheReadError(CacheError):
    """The durable tier could not be read or its payload is unreadable."""


class CacheWriteError(CacheError):
    """The durable tier rejected a write."""


class MalformedRecordError(CacheError):
    """One serialized record could not be decoded."""


# ---------------------------------------------------------------------------
# Serializable record projection
# ---------------------------------------------------------------------------


class CachedActivityRecord(BaseModel):
    """Flat, serializable projection of an ActivityRecord.

    Used only at the cache boundary.  Every field of ActivityRecord except
    the ``is_cached`` flag round-trips.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    activity_type: ActivityType
    distance_meters: float = 0.0
    moving_time_seconds: float = 0.0
    total_elevation_gain_meters: float = 0.0
    active_calories: float = 0.0
    step_count: int | None = None
    start_date: datetime
    end_date: datetime
    start_date_local: datetime
    end_date_local: datetime
    source_bundle_id: str | None = None
    source_kind: SourceKind = SourceKind.OTHER

    @field_validator("start_date", "end_date", "start_date_local", "end_date_local")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are read as UTC so every record shares one clock
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_record(cls, record: ActivityRecord) -> CachedActivityRecord:
        return cls(
            id=record.id,
            activity_type=record.activity_type,
            distance_meters=record.distance_meters,
            moving_time_seconds=record.moving_time_seconds,
            total_elevation_gain_meters=record.total_elevation_gain_meters,
            active_calories=record.active_calories,
            step_count=record.step_count,
            start_date=record.start_date,
            end_date=record.end_date,
            start_date_local=record.start_date_local,
            end_date_local=record.end_date_local,
            source_bundle_id=record.source_bundle_id,
            source_kind=record.source_kind,
        )

    def to_record(self) -> ActivityRecord:
        """Rebuild a canonical record flagged as a cached snapshot."""
        return ActivityRecord(
            id=self.id,
            activity_type=self.activity_type,
            start_date=self.start_date,
            end_date=self.end_date,
            start_date_local=self.start_date_local,
            end_date_local=self.end_date_local,
            distance_meters=self.distance_meters,
            moving_time_seconds=self.moving_time_seconds,
            total_elevation_gain_meters=self.total_elevation_gain_meters,
            active_calories=self.active_calories,
            step_count=self.step_count,
            source_bundle_id=self.source_bundle_id,
            source_kind=self.source_kind,
            is_cached=True,
        )


def encode_records(records: list[CachedActivityRecord]) -> bytes:
    """Serialize cached records to UTF-8 JSON bytes."""
    return json.dumps([r.model_dump(mode="json") for r in records]).encode("utf-8")


def decode_record(item: Any) -> CachedActivityRecord:
    """Decode one serialized record.

    Raises:
        MalformedRecordError: If the item fails validation.
    """
    try:
        return CachedActivityRecord.model_validate(item)
    except ValidationError as exc:
        raise MalformedRecordError(str(exc)) from exc


def decode_records(payload: bytes) -> list[CachedActivityRecord]:
    """Decode a serialized record list, dropping records that fail to decode.

    Raises:
        CacheReadError: If the payload is not a JSON list.
    """
    try:
        items = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CacheReadError(f"unreadable cache payload: {exc}") from exc
    if not isinstance(items, list):
        raise CacheReadError(f"cache payload must be a list, got {type(items).__name__}")

    records: list[CachedActivityRecord] = []
    for index, item in enumerate(items):
        try:
            records.append(decode_record(item))
        except MalformedRecordError as exc:
            logger.debug("Dropping malformed cached record #%d: %s", index, exc)
    return records


# ---------------------------------------------------------------------------
# Durable key-value stores
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Persistence collaborator backing the durable tier.

    Any exception raised by ``get`` or ``set`` is treated as a failed read
    or write of the durable tier.
    """

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...


class FileKeyValueStore:
    """Key-value store with one file per key under a directory.

    Writes go to a temporary file that is then renamed over the target, so
    a crash mid-write never leaves a truncated value behind.
    """

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self._directory / f"{safe}.json"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def set(self, key: str, value: bytes) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(value)
        os.replace(tmp, path)


class MemoryKeyValueStore:
    """Dict-backed store for tests and ephemeral deployments."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = value


# ---------------------------------------------------------------------------
# In-memory tier
# ---------------------------------------------------------------------------


class MemoryTier:
    """Bounded in-process map evicting the least recently used key.

    There is no time-based expiry; entries leave only through eviction.
    """

    def __init__(self, count_limit: int = 500) -> None:
        self._count_limit = count_limit
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._entries:
                return None
            self._entries.move_to_end(key)
            return self._entries[key]

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self._count_limit:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Memory tier evicted %s", evicted)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Aggregation cache
# ---------------------------------------------------------------------------


class ActivityCache:
    """Write-through cache of the reconciled timeline.

    Usage::

        cache = ActivityCache(FileKeyValueStore(settings.cache_dir))
        cache.set([CachedActivityRecord.from_record(r) for r in timeline])
        cached = cache.get()   # None on a cold start
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        config: CacheConfig | None = None,
    ) -> None:
        self._config = config or get_sync_config().cache
        self._store = store
        self._memory = MemoryTier(self._config.memory_count_limit)

    @property
    def key(self) -> str:
        return self._config.key

    def get(self) -> list[CachedActivityRecord] | None:
        """Return the cached timeline, or None on a miss.

        Falls through to the durable tier when the in-memory tier is cold
        and warms it on success.
        """
        cached = self._memory.get(self.key)
        if cached is not None:
            return list(cached)

        try:
            records = self._read_durable()
        except CacheReadError as exc:
            logger.warning("Activity cache read failed, treating as miss: %s", exc)
            return None
        if records is None:
            return None

        self._memory.set(self.key, tuple(records))
        return records

    def set(self, records: list[CachedActivityRecord]) -> None:
        """Replace the cached timeline in both tiers.

        Durable write failures are logged, never raised.
        """
        self._memory.set(self.key, tuple(records))
        try:
            self._write_durable(records)
        except CacheWriteError as exc:
            logger.warning("Activity cache write failed, memory tier kept: %s", exc)

    def set_records(self, records: list[ActivityRecord]) -> None:
        """Project canonical records and store them."""
        self.set([CachedActivityRecord.from_record(r) for r in records])

    def _read_durable(self) -> list[CachedActivityRecord] | None:
        if self._store is None:
            return None
        try:
            payload = self._store.get(self.key)
        except Exception as exc:
            raise CacheReadError(str(exc)) from exc
        if payload is None:
            return None
        return decode_records(payload)

    def _write_durable(self, records: list[CachedActivityRecord]) -> None:
        if self._store is None:
            return
        try:
            self._store.set(self.key, encode_records(records))
        except Exception as exc:
            raise CacheWriteError(str(exc)) from exc
