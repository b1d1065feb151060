"""Activity aggregator: owns the reconciled timeline.

Workflow of ``load_all()``:
1. Check every provider's authorization concurrently (bounded by a timeout)
2. Launch one load task per provider, plus the step-count feed where offered
3. Concatenate the results; a failing task contributes nothing
4. Deduplicate into the canonical, newest-first timeline
5. Commit: swap the snapshot, write through to the cache, publish
6. Fold the timeline into the running totals

Live events from provider streams are inserted one at a time without a full
dedup pass; the next ``load_all()`` reconciles them against history.

All writes to the timeline and totals happen under one asyncio.Lock.  Reads
return the current immutable snapshot, so a refresh in progress never
exposes a partial merge.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable

from src.activities.base import (
    ActivityRecord,
    ActivityType,
    ProviderAdapter,
    ProviderError,
    SourceKind,
    WorkoutSource,
)
from src.activities.cache import ActivityCache, KeyValueStore
from src.activities.config_loader import SyncConfig, get_sync_config
from src.activities.dedup import remove_duplicates, sort_timeline
from src.activities.events import (
    ActivityDeleted,
    ActivitySynced,
    EventBus,
    TimelineChanged,
)
from src.activities.totals import IncrementalAggregateUpdater, RunningTotals

logger = logging.getLogger("cadence.activities.aggregator")

TOTALS_KEY = "running_totals"

# Live events held while the timeline is not ready; oldest dropped first
MAX_DEFERRED_EVENTS = 500

ErrorSink = Callable[[str, BaseException], None]


class TimelineState(str, Enum):
    """Readiness of the reconciled timeline."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


@dataclass
class VisibilityPreferences:
    """User-facing visibility toggles consulted at runtime."""

    show_step_count: bool = True


def log_provider_error(provider: str, exc: BaseException) -> None:
    """Default observability sink: log and move on."""
    logger.warning("Provider %s failed: %s", provider, exc)


class ActivityAggregator:
    """Fan out to providers, reconcile, cache and publish the timeline.

    Construct one instance per process and pass it to collaborators.

    Usage::

        aggregator = ActivityAggregator(
            adapters=[health_store, garmin, wahoo],
            cache=ActivityCache(FileKeyValueStore(settings.cache_dir)),
        )
        aggregator.seed_from_cache()
        await aggregator.load_all()
        await aggregator.start_live_updates_for_authorized()
    """

    def __init__(
        self,
        adapters: Iterable[ProviderAdapter],
        cache: ActivityCache | None = None,
        bus: EventBus | None = None,
        preferences: VisibilityPreferences | None = None,
        updater: IncrementalAggregateUpdater | None = None,
        totals_store: KeyValueStore | None = None,
        error_sink: ErrorSink | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            adapters:     Providers to aggregate.  Each NAME must equal the
                          id prefix of the records it produces.
            cache:        Two-tier cache for the timeline snapshot.
            bus:          Event bus for timeline notifications.
            preferences:  Visibility toggles (step counts).
            updater:      Running totals.  Restored from ``totals_store``
                          when omitted and a stored state exists.
            totals_store: Key-value store persisting the running totals.
            error_sink:   Callback(provider, exc) for isolated failures.
            config:       Engine tunables.  Uses the loaded sync config by default.
        """
        self._config = config or get_sync_config()
        self._adapters: dict[str, ProviderAdapter] = {a.NAME: a for a in adapters}
        self._cache = cache
        self.bus = bus or EventBus()
        self.preferences = preferences or VisibilityPreferences()
        self._totals_store = totals_store
        self._updater = updater or IncrementalAggregateUpdater(
            totals=self._restore_totals(),
            offset_seconds=self._config.totals.watermark_offset_seconds,
        )
        self._error_sink = error_sink or log_provider_error

        self._timeline: tuple[ActivityRecord, ...] = ()
        self._lock = asyncio.Lock()
        self._loads_in_flight = 0
        self._has_loaded = False
        self._deferred: dict[str, ActivityRecord] = {}
        self._connected: frozenset[str] = frozenset()
        self._live_tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> TimelineState:
        if self._loads_in_flight:
            return TimelineState.LOADING
        if self._has_loaded:
            return TimelineState.READY
        return TimelineState.UNINITIALIZED

    @property
    def activities(self) -> tuple[ActivityRecord, ...]:
        """Current timeline snapshot, newest first."""
        return self._timeline

    @property
    def totals(self) -> RunningTotals:
        return self._updater.totals

    @property
    def adapters(self) -> dict[str, ProviderAdapter]:
        return dict(self._adapters)

    @property
    def has_health_store_activities(self) -> bool:
        return any(
            r.source_kind is SourceKind.HEALTH_STORE or r.is_step_count
            for r in self._timeline
        )

    @property
    def has_tracked_own_activity(self) -> bool:
        """True if any activity was recorded by this app itself."""
        return any(r.workout_source is WorkoutSource.CADENCE for r in self._timeline)

    def activity(self, id_fragment: str) -> ActivityRecord | None:
        """Return the first record whose id contains ``id_fragment``.

        Matches both provider-qualified ids ("garmin_123") and native ids ("123").
        """
        return next((r for r in self._timeline if id_fragment in r.id), None)

    def activity_by_id(self, activity_id: str) -> ActivityRecord | None:
        """Return the record with exactly this provider-qualified id."""
        return next((r for r in self._timeline if r.id == activity_id), None)

    def activity_before(self, moment: datetime) -> ActivityRecord | None:
        """Return the most recent record that started (local time) before ``moment``."""
        return next((r for r in self._timeline if r.start_date_local < moment), None)

    async def load_activity(self, activity_id: str) -> ActivityRecord | None:
        """Fetch a fresh reconciliation and return the record with this id.

        The fetched timeline is not committed.
        """
        reconciled = await self.fetch_reconciled()
        return next((r for r in reconciled if r.id == activity_id), None)

    # ------------------------------------------------------------------
    # Cold start
    # ------------------------------------------------------------------

    def seed_from_cache(self) -> int:
        """Populate the timeline from the cache before the first load.

        Honors the step-count visibility preference.  Does nothing once a
        load has committed.

        Returns:
            Number of records seeded.
        """
        if self._has_loaded or self._cache is None:
            return 0
        cached = self._cache.get()
        if not cached:
            logger.info("Activity cache cold, starting with an empty timeline")
            return 0

        records = [
            c.to_record()
            for c in cached
            if self.preferences.show_step_count
            or c.activity_type is not ActivityType.STEP_COUNT
        ]
        self._timeline = tuple(sort_timeline(records))
        logger.info("Seeded %d activities from cache", len(self._timeline))
        self.bus.publish(TimelineChanged(activities=self._timeline))
        return len(self._timeline)

    # ------------------------------------------------------------------
    # Bulk load
    # ------------------------------------------------------------------

    async def load_all(self, update_totals: bool = True) -> list[ActivityRecord]:
        """Fetch from every provider, reconcile and commit the timeline.

        Never raises on provider or cache failures; with every provider
        unavailable the result is an empty (valid) timeline.

        Args:
            update_totals: Fold the new timeline into the running totals.

        Returns:
            The committed canonical timeline, newest first.
        """
        self._loads_in_flight += 1
        try:
            reconciled = await self.fetch_reconciled()
            async with self._lock:
                self._commit(reconciled)
                if update_totals:
                    self._update_totals(reconciled)
            return reconciled
        finally:
            self._loads_in_flight -= 1
            if self.state is TimelineState.READY and self._deferred:
                await self._replay_deferred()

    async def fetch_reconciled(self) -> list[ActivityRecord]:
        """Run the provider fan-out and dedup without touching shared state."""
        authorized = await self._authorizations()
        self._connected = frozenset(n for n, ok in authorized.items() if ok)

        labels: list[str] = []
        tasks = []
        for name, adapter in self._adapters.items():
            labels.append(name)
            tasks.append(self._isolated(name, self._load_provider(adapter, authorized)))
            if (
                adapter.SUPPORTS_STEP_COUNTS
                and self.preferences.show_step_count
                and authorized.get(name)
            ):
                labels.append(f"{name}:steps")
                tasks.append(self._isolated(name, adapter.load_step_counts()))

        results = await asyncio.gather(*tasks)

        combined: list[ActivityRecord] = []
        for label, records in zip(labels, results):
            logger.debug("Provider task %s returned %d records", label, len(records))
            combined.extend(records)

        reconciled = remove_duplicates(combined, self._config.dedup)
        logger.info(
            "Loaded %d records from %d tasks → %d activities",
            len(combined), len(tasks), len(reconciled),
        )
        return reconciled

    async def _authorizations(self) -> dict[str, bool]:
        names = list(self._adapters)
        checks = [self._is_authorized(self._adapters[n]) for n in names]
        return dict(zip(names, await asyncio.gather(*checks)))

    async def _is_authorized(self, adapter: ProviderAdapter) -> bool:
        timeout = self._config.providers.auth_timeout_seconds
        try:
            return bool(await asyncio.wait_for(adapter.is_authorized(), timeout))
        except asyncio.TimeoutError:
            self._error_sink(
                adapter.NAME,
                ProviderError(adapter.NAME, f"authorization check timed out after {timeout}s"),
            )
            return False
        except Exception as exc:
            self._error_sink(adapter.NAME, exc)
            return False

    async def _load_provider(
        self, adapter: ProviderAdapter, authorized: dict[str, bool]
    ) -> list[ActivityRecord]:
        if not authorized.get(adapter.NAME):
            logger.debug("Skipping unauthorized provider %s", adapter.NAME)
            return []

        records = await adapter.load()

        connected = {n for n, ok in authorized.items() if ok}
        kept = [r for r in records if not self._delivered_elsewhere(r, connected)]
        if len(kept) != len(records):
            logger.info(
                "Filtered %d %s records already delivered by a connected vendor",
                len(records) - len(kept), adapter.NAME,
            )
        return kept

    @staticmethod
    def _delivered_elsewhere(record: ActivityRecord, connected) -> bool:
        """True if another connected vendor delivers this record natively."""
        source = record.workout_source
        return (
            source is not None
            and source.vendor != record.provider
            and source.vendor in connected
        )

    async def _isolated(self, provider: str, coro) -> list[ActivityRecord]:
        """Await a provider coroutine, turning any failure into no records."""
        try:
            return list(await coro)
        except Exception as exc:
            self._error_sink(provider, exc)
            return []

    def _commit(self, reconciled: list[ActivityRecord]) -> None:
        self._timeline = tuple(reconciled)
        self._has_loaded = True
        if self._cache is not None:
            self._cache.set_records(reconciled)
        self.bus.publish(TimelineChanged(activities=self._timeline))

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    async def apply_live_event(self, record: ActivityRecord) -> bool:
        """Insert one newly observed record if it is not already present.

        Events that arrive before the timeline is ready are held and applied
        once the running load commits.

        Returns:
            True if the record was inserted now.
        """
        if record.is_step_count and not self.preferences.show_step_count:
            return False
        if self._delivered_elsewhere(record, self._connected):
            logger.debug("Dropping live event %s delivered by its vendor", record.id)
            return False
        if self.state is not TimelineState.READY:
            logger.debug("Deferring live event %s until timeline is ready", record.id)
            self._defer(record)
            return False

        async with self._lock:
            return self._insert_live(record)

    def _insert_live(self, record: ActivityRecord) -> bool:
        if any(r.id == record.id for r in self._timeline):
            return False

        index = next(
            (i for i, r in enumerate(self._timeline) if r.start_date <= record.start_date),
            len(self._timeline),
        )
        self._timeline = self._timeline[:index] + (record,) + self._timeline[index:]
        if self._cache is not None:
            self._cache.set_records(list(self._timeline))
        self._update_totals(list(self._timeline))

        logger.info("Live activity synced: %s", record.id)
        self.bus.publish(ActivitySynced(activity=record))
        self.bus.publish(TimelineChanged(activities=self._timeline))
        return True

    def _defer(self, record: ActivityRecord) -> None:
        self._deferred.pop(record.id, None)
        self._deferred[record.id] = record
        if len(self._deferred) > MAX_DEFERRED_EVENTS:
            dropped = next(iter(self._deferred))
            del self._deferred[dropped]
            logger.warning("Deferred live events over limit, dropped %s", dropped)

    async def _replay_deferred(self) -> None:
        pending, self._deferred = list(self._deferred.values()), {}
        async with self._lock:
            for record in pending:
                if record.is_step_count and not self.preferences.show_step_count:
                    continue
                self._insert_live(record)

    def start_live_updates(self, adapter: ProviderAdapter) -> asyncio.Task:
        """Start consuming one provider's live stream.

        Idempotent while the subscription is running.
        """
        existing = self._live_tasks.get(adapter.NAME)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._consume(adapter), name=f"live-{adapter.NAME}")
        self._live_tasks[adapter.NAME] = task
        logger.info("Started live updates for %s", adapter.NAME)
        return task

    async def start_live_updates_for_authorized(self) -> list[str]:
        """Subscribe to every authorized provider's live stream.

        Returns:
            Names of the providers now subscribed.
        """
        authorized = await self._authorizations()
        started = []
        for name, ok in authorized.items():
            if ok:
                self.start_live_updates(self._adapters[name])
                started.append(name)
        return started

    async def stop_live_updates(self, name: str) -> None:
        """Tear down one provider's subscription, leaving the others running."""
        task = self._live_tasks.pop(name, None)
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped live updates for %s", name)

    async def stop_all_live_updates(self) -> None:
        for name in list(self._live_tasks):
            await self.stop_live_updates(name)

    def is_observing(self, name: str) -> bool:
        task = self._live_tasks.get(name)
        return task is not None and not task.done()

    async def _consume(self, adapter: ProviderAdapter) -> None:
        last_id: str | None = None
        try:
            async for record in adapter.live_updates():
                # Streams may redeliver the same record back to back
                if record.id == last_id:
                    continue
                last_id = record.id
                await self.apply_live_event(record)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_sink(adapter.NAME, exc)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_activity(self, activity_id: str) -> ActivityRecord | None:
        """Delete a record at its provider and remove it from the timeline.

        Its distance and time are subtracted from the running totals.

        Returns:
            The removed record, or None if no record has this id.

        Raises:
            ProviderError: If the owning provider refuses the deletion.
        """
        record = self.activity_by_id(activity_id)
        if record is None:
            return None

        adapter = self._adapters.get(record.provider)
        if adapter is not None:
            await adapter.delete(record)

        async with self._lock:
            self._timeline = tuple(r for r in self._timeline if r.id != activity_id)
            if self._cache is not None:
                self._cache.set_records(list(self._timeline))
            self._updater.subtract(record)
            self._persist_totals()

        logger.info("Deleted activity %s", activity_id)
        self.bus.publish(ActivityDeleted(activity=record))
        self.bus.publish(TimelineChanged(activities=self._timeline))
        return record

    # ------------------------------------------------------------------
    # Running totals
    # ------------------------------------------------------------------

    def _update_totals(self, activities: list[ActivityRecord]) -> None:
        self._updater.update(activities)
        self._persist_totals()

    def _restore_totals(self) -> RunningTotals | None:
        if self._totals_store is None:
            return None
        try:
            payload = self._totals_store.get(TOTALS_KEY)
            return RunningTotals.loads(payload) if payload else None
        except (OSError, ValueError) as exc:
            logger.warning("Could not restore running totals: %s", exc)
            return None

    def _persist_totals(self) -> None:
        if self._totals_store is None:
            return
        try:
            self._totals_store.set(TOTALS_KEY, self._updater.totals.dumps())
        except OSError as exc:
            logger.warning("Could not persist running totals: %s", exc)
