"""Incremental running totals over the reconciled timeline.

Total distance and total moving time are additive accumulators.  Each owns a
watermark (``last_refresh_date``): an update only counts activities whose
``start_date_local`` is after it, then moves it to the newest activity's
local start plus a small offset.  History is never rescanned.

Edits or deletions of already-counted activities are not detected here; the
caller subtracts a deleted activity's contribution with ``subtract()``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable

from src.activities.base import ActivityRecord
from src.activities.config_loader import get_sync_config

logger = logging.getLogger("cadence.activities.totals")


@dataclass
class RunningTotal:
    """One watermarked accumulator.

    Attributes:
        value:             Accumulated total (meters or seconds).
        last_refresh_date: Local start time up to which activities are counted.
                           None until the first non-empty update.
    """

    value: float = 0.0
    last_refresh_date: datetime | None = None

    def to_json(self) -> dict:
        return {
            "value": self.value,
            "last_refresh_date": (
                self.last_refresh_date.isoformat() if self.last_refresh_date else None
            ),
        }

    @classmethod
    def from_json(cls, data: dict) -> RunningTotal:
        raw_date = data.get("last_refresh_date")
        return cls(
            value=float(data.get("value", 0.0)),
            last_refresh_date=datetime.fromisoformat(raw_date) if raw_date else None,
        )


@dataclass
class RunningTotals:
    """Distance and time totals, persisted as JSON between runs."""

    total_distance: RunningTotal = field(default_factory=RunningTotal)
    total_time: RunningTotal = field(default_factory=RunningTotal)

    def to_json(self) -> dict:
        return {
            "total_distance": self.total_distance.to_json(),
            "total_time": self.total_time.to_json(),
        }

    def dumps(self) -> bytes:
        return json.dumps(self.to_json()).encode("utf-8")

    @classmethod
    def from_json(cls, data: dict) -> RunningTotals:
        return cls(
            total_distance=RunningTotal.from_json(data.get("total_distance") or {}),
            total_time=RunningTotal.from_json(data.get("total_time") or {}),
        )

    @classmethod
    def loads(cls, payload: bytes) -> RunningTotals:
        return cls.from_json(json.loads(payload))


def _advance(
    total: RunningTotal,
    activities: list[ActivityRecord],
    metric: Callable[[ActivityRecord], float],
    offset: timedelta,
) -> float:
    """Fold activities newer than the watermark into one total.

    The first update (no watermark yet) counts every activity given.

    Returns:
        The amount added.
    """
    if total.last_refresh_date is None:
        latest = activities
    else:
        latest = [a for a in activities if a.start_date_local > total.last_refresh_date]

    added = sum(metric(a) for a in latest)
    total.value += added

    newest = max(a.start_date_local for a in activities) + offset
    if total.last_refresh_date is None or newest > total.last_refresh_date:
        total.last_refresh_date = newest
    return added


class IncrementalAggregateUpdater:
    """Maintain total distance and total time without full rescans.

    Not synchronized: the owning aggregator serializes calls under its lock.

    Usage::

        updater = IncrementalAggregateUpdater()
        updater.update(timeline)
        updater.totals.total_distance.value
    """

    def __init__(
        self,
        totals: RunningTotals | None = None,
        offset_seconds: float | None = None,
    ) -> None:
        self.totals = totals or RunningTotals()
        if offset_seconds is None:
            offset_seconds = get_sync_config().totals.watermark_offset_seconds
        self._offset = timedelta(seconds=offset_seconds)

    def update(self, activities: Iterable[ActivityRecord]) -> RunningTotals:
        """Add activities newer than each watermark to the totals.

        Step-count records are not workouts and are not counted.  An empty
        list is a no-op and leaves both watermarks where they are.

        Args:
            activities: The reconciled timeline (any order).

        Returns:
            The updated totals.
        """
        workouts = [a for a in activities if not a.is_step_count]
        if not workouts:
            return self.totals

        distance = _advance(
            self.totals.total_distance, workouts, lambda a: a.distance_meters, self._offset
        )
        moving_time = _advance(
            self.totals.total_time, workouts, lambda a: a.moving_time_seconds, self._offset
        )
        if distance or moving_time:
            logger.info(
                "Totals advanced by %.1f m / %.0f s (now %.1f m / %.0f s)",
                distance,
                moving_time,
                self.totals.total_distance.value,
                self.totals.total_time.value,
            )
        return self.totals

    def subtract(self, activity: ActivityRecord) -> RunningTotals:
        """Remove a deleted activity's contribution, clamping at zero."""
        distance = self.totals.total_distance
        distance.value = max(distance.value - activity.distance_meters, 0.0)
        moving_time = self.totals.total_time
        moving_time.value = max(moving_time.value - activity.moving_time_seconds, 0.0)
        return self.totals
