"""In-process provider backed by a record list and an asyncio queue.

Used for the on-device bridge (records are pushed in by the host process)
and in tests.  A StaticAdapter created with ``live=False`` has a permanently
empty live stream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Iterable

from src.activities.base import (
    ActivityRecord,
    ProviderAdapter,
    ProviderError,
    SourceKind,
)

logger = logging.getLogger("cadence.activities.adapters.static")


class StaticAdapter(ProviderAdapter):
    """Provider whose records are supplied by the caller."""

    def __init__(
        self,
        name: str,
        records: Iterable[ActivityRecord] = (),
        step_counts: Iterable[ActivityRecord] | None = None,
        authorized: bool = True,
        source_kind: SourceKind = SourceKind.OTHER,
        live: bool = True,
    ) -> None:
        """Initialize the adapter.

        Args:
            name:        Provider name; the id prefix of its records.
            records:     Activities returned by ``load()``.
            step_counts: Daily step-count records.  None means the provider
                         has no step-count feed.
            authorized:  Value reported by ``is_authorized()``.
            source_kind: Discriminant of the records it produces.
            live:        Whether ``push()`` events are streamed.
        """
        self.NAME = name
        self.SOURCE_KIND = source_kind
        self.SUPPORTS_STEP_COUNTS = step_counts is not None
        self.authorized = authorized
        self._records = list(records)
        self._step_counts = list(step_counts or [])
        self._live = live
        self._queue: asyncio.Queue[ActivityRecord | None] = asyncio.Queue()

    @property
    def records(self) -> list[ActivityRecord]:
        return list(self._records)

    async def is_authorized(self) -> bool:
        return self.authorized

    async def load(self) -> list[ActivityRecord]:
        if not self.authorized:
            raise ProviderError(self.NAME, "not authorized")
        return list(self._records)

    async def load_step_counts(self) -> list[ActivityRecord]:
        return list(self._step_counts)

    def add(self, record: ActivityRecord) -> None:
        """Make a record visible to subsequent ``load()`` calls."""
        self._records.append(record)

    def push(self, record: ActivityRecord) -> None:
        """Add a record and emit it on the live stream."""
        self._records.append(record)
        if self._live:
            self._queue.put_nowait(record)

    def close(self) -> None:
        """End the live stream."""
        self._queue.put_nowait(None)

    async def live_updates(self) -> AsyncIterator[ActivityRecord]:
        if not self._live:
            return
        while True:
            record = await self._queue.get()
            if record is None:
                return
            yield record

    async def delete(self, record: ActivityRecord) -> None:
        before = len(self._records)
        self._records = [r for r in self._records if r.id != record.id]
        if len(self._records) == before:
            logger.debug("%s has no record %s to delete", self.NAME, record.id)
