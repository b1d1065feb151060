"""Publish/subscribe bus for timeline notifications.

Delivery is fire-and-forget and at-most-once: each published event is handed
to the subscribers registered at that moment, there is no replay for late
subscribers, and a failing subscriber is logged without affecting the
publisher or the other subscribers.  Coroutine subscribers are scheduled as
tasks on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from src.activities.base import ActivityRecord

logger = logging.getLogger("cadence.activities.events")


@dataclass(frozen=True)
class TimelineChanged:
    """The reconciled timeline changed; carries the full current list."""

    activities: tuple[ActivityRecord, ...]


@dataclass(frozen=True)
class ActivitySynced:
    """A single new activity arrived through a live update."""

    activity: ActivityRecord


@dataclass(frozen=True)
class ActivityDeleted:
    """An activity was removed from the timeline."""

    activity: ActivityRecord


Subscriber = Callable[[Any], Any]


class EventBus:
    """Multi-subscriber event bus keyed by event class.

    Usage::

        bus = EventBus()
        unsubscribe = bus.subscribe(TimelineChanged, on_timeline_changed)
        bus.publish(TimelineChanged(activities=tuple(timeline)))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Subscriber]] = {}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: type, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``event_type``.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subscribers.get(event_type, []))

    def publish(self, event: Any) -> None:
        """Deliver ``event`` once to every current subscriber of its type."""
        for callback in list(self._subscribers.get(type(event), [])):
            try:
                result = callback(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s", callback, type(event).__name__)
                continue
            if inspect.isawaitable(result):
                self._schedule(result, callback, event)

    def _schedule(self, awaitable: Any, callback: Subscriber, event: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running loop for async subscriber %r, dropping %s",
                callback, type(event).__name__,
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "Async subscriber %r failed on %s: %s",
                    callback, type(event).__name__, t.exception(),
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled async subscribers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
