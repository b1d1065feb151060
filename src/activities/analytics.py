"""Timeline analytics summary.

Counts what the user actually did: step-count records and cached snapshots
(which have not been re-confirmed by a provider yet) are ignored.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from src.activities.base import ActivityRecord
from src.activities.events import EventBus, TimelineChanged

logger = logging.getLogger("cadence.activities.analytics")


@dataclass
class TimelineSummary:
    """Aggregate counts over a timeline.

    Attributes:
        activity_type_counts:   Activity type value → number of activities.
        activities_since_signup: Activities started at or after the signup date.
        last_activity_start:    Start of the newest counted activity.
    """

    activity_type_counts: dict[str, int] = field(default_factory=dict)
    activities_since_signup: int = 0
    last_activity_start: datetime | None = None

    @property
    def total(self) -> int:
        return sum(self.activity_type_counts.values())


def summarize(
    activities: Iterable[ActivityRecord],
    signup_date: datetime | None = None,
) -> TimelineSummary:
    """Summarize a newest-first timeline."""
    counted = [a for a in activities if not a.is_step_count and not a.is_cached]

    counts = Counter(a.activity_type.value for a in counted)
    since_signup = 0
    if signup_date is not None:
        since_signup = sum(1 for a in counted if a.start_date >= signup_date)

    return TimelineSummary(
        activity_type_counts=dict(counts),
        activities_since_signup=since_signup,
        last_activity_start=counted[0].start_date if counted else None,
    )


class TimelineAnalyticsObserver:
    """Keep a summary current by listening for timeline changes.

    Usage::

        observer = TimelineAnalyticsObserver(bus, on_summary=report)
        observer.start()
        ...
        observer.stop()
    """

    def __init__(
        self,
        bus: EventBus,
        signup_date: datetime | None = None,
        on_summary: Callable[[TimelineSummary], None] | None = None,
    ) -> None:
        self._bus = bus
        self._signup_date = signup_date
        self._on_summary = on_summary
        self._unsubscribe: Callable[[], None] | None = None
        self.latest: TimelineSummary | None = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._bus.subscribe(TimelineChanged, self._handle)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle(self, event: TimelineChanged) -> None:
        self.latest = summarize(event.activities, self._signup_date)
        logger.debug(
            "Timeline summary: %d activities, %d types",
            self.latest.total, len(self.latest.activity_type_counts),
        )
        if self._on_summary is not None:
            self._on_summary(self.latest)
