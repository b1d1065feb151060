"""Cross-provider deduplication of activity records.

The same workout routinely arrives through several paths (e.g. recorded on a
Garmin watch, pushed to Garmin Connect, then copied into the on-device health
store).  Providers use unrelated identifiers, so duplicates are found by
record linkage on activity type, start time and distance, and each group is
collapsed to a single winner chosen by source priority.

Matching a record only against its neighbours in the start-date-sorted list
keeps a pass linear in practice: true duplicates carry near-identical start
times, so they sit next to each other once sorted.  Duplicates further apart
than ``dedup.window_size`` positions are not merged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from src.activities.base import ActivityRecord
from src.activities.config_loader import DedupConfig, get_sync_config

logger = logging.getLogger("cadence.activities.dedup")


@dataclass
class DeduplicationGroup:
    """Records judged to describe one real-world workout.

    Attributes:
        anchor:  The record whose search window produced the group.
        members: Every matched record, in start-date-descending order.
        winner:  The single record kept in the timeline.
    """

    anchor: ActivityRecord
    members: list[ActivityRecord] = field(default_factory=list)
    winner: ActivityRecord | None = None

    @property
    def losers(self) -> list[ActivityRecord]:
        winner_id = self.winner.id if self.winner else None
        return [m for m in self.members if m.id != winner_id]

    @property
    def providers(self) -> list[str]:
        return [m.provider for m in self.members]


def sort_timeline(records: Iterable[ActivityRecord]) -> list[ActivityRecord]:
    """Return records ordered by start_date, newest first.

    Python's sort is stable, so records with equal start dates keep their
    input order.
    """
    return sorted(records, key=lambda r: r.start_date, reverse=True)


def _is_match(current: ActivityRecord, other: ActivityRecord, cfg: DedupConfig) -> bool:
    """Return True if ``other`` describes the same workout as ``current``.

    All three must hold:
        1. Same activity type, or types related through ``matching_types``.
        2. Start times at most ``time_threshold_seconds`` apart.
        3. Distances strictly less than ``distance_threshold_meters`` apart.
    """
    if other.is_step_count:
        return False
    if not current.activity_type.matches(other.activity_type):
        return False
    start_diff = abs((other.start_date - current.start_date).total_seconds())
    if start_diff > cfg.time_threshold_seconds:
        return False
    return abs(other.distance_meters - current.distance_meters) < cfg.distance_threshold_meters


def select_winner(
    matches: list[ActivityRecord],
    current: ActivityRecord,
    vendor_priority: list[str] | None = None,
) -> ActivityRecord:
    """Pick the record to keep from a group of duplicates.

    Priority (first rule with a candidate wins, ties go to the first record
    in ``matches`` order):
        1. Each vendor in ``vendor_priority`` order (default Garmin, Wahoo).
        2. Distance and elevation gain both recorded.
        3. Distance recorded.
        4. Elevation gain recorded.
        5. ``current`` itself.

    Args:
        matches:         Group members in start-date-descending order.
        current:         The record whose window produced the group.
        vendor_priority: Vendor names, highest priority first.

    Returns:
        The winning record.
    """
    if vendor_priority is None:
        vendor_priority = get_sync_config().dedup.vendor_priority

    for vendor in vendor_priority:
        for record in matches:
            if record.vendor == vendor:
                return record

    rules = (
        lambda r: r.distance_meters > 0 and r.total_elevation_gain_meters > 0,
        lambda r: r.distance_meters > 0,
        lambda r: r.total_elevation_gain_meters > 0,
    )
    for rule in rules:
        for record in matches:
            if rule(record):
                return record
    return current


def find_duplicate_groups(
    records: Iterable[ActivityRecord],
    config: DedupConfig | None = None,
) -> tuple[list[ActivityRecord], list[DeduplicationGroup]]:
    """Run one windowed linkage pass over ``records``.

    Algorithm:
        1. Drop repeated ids, keeping the first copy.
        2. Sort by start_date, newest first.
        3. For each record not already accounted for and not a step count,
           collect matches within ``window_size`` positions on either side
           (the record itself included, accounted-for records excluded).
        4. Groups with more than one member keep their winner; every other
           member is accounted for and removed.

    Args:
        records: Activity records from any number of providers.
        config:  Dedup thresholds.  Uses the loaded sync config by default.

    Returns:
        ``(survivors, groups)``: the deduplicated timeline, newest first,
        and every multi-member group that was collapsed.
    """
    cfg = config or get_sync_config().dedup

    unique: dict[str, ActivityRecord] = {}
    for record in records:
        unique.setdefault(record.id, record)
    ordered = sort_timeline(unique.values())

    accounted: set[str] = set()
    groups: list[DeduplicationGroup] = []
    last = len(ordered) - 1

    for i, current in enumerate(ordered):
        if current.id in accounted:
            continue
        # Step counts are copied through, never merged
        if current.is_step_count:
            continue

        lower = max(i - cfg.window_size, 0)
        upper = min(i + cfg.window_size, last)
        matches = [
            other
            for other in ordered[lower : upper + 1]
            if other.id not in accounted and _is_match(current, other, cfg)
        ]
        if len(matches) < 2:
            continue

        winner = select_winner(matches, current, cfg.vendor_priority)
        group = DeduplicationGroup(anchor=current, members=matches, winner=winner)
        accounted.update(loser.id for loser in group.losers)
        groups.append(group)
        logger.debug(
            "Duplicate group %s → kept %s",
            [m.id for m in matches],
            winner.id,
        )

    survivors = [r for r in ordered if r.id not in accounted]
    return survivors, groups


def remove_duplicates(
    records: Iterable[ActivityRecord],
    config: DedupConfig | None = None,
) -> list[ActivityRecord]:
    """Collapse cross-provider duplicates into one record per workout.

    Pure function: the input is not modified.  The result is sorted by
    start_date descending, contains only ids present in the input and is
    never longer than it.

    Args:
        records: Activity records from any number of providers.
        config:  Dedup thresholds.  Uses the loaded sync config by default.

    Returns:
        The deduplicated timeline, newest first.
    """
    records = list(records)
    survivors, groups = find_duplicate_groups(records, config)
    if groups:
        logger.info(
            "Dedup: %d records → %d (%d duplicate groups)",
            len(records), len(survivors), len(groups),
        )
    return survivors
