"""Pydantic response models for the activity timeline API."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from src.activities.aggregator import TimelineState
from src.activities.analytics import TimelineSummary
from src.activities.base import ActivityRecord, ActivityType, SourceKind
from src.activities.totals import RunningTotals
from src.models.base import CadenceBase


# ---------- Activities ----------

class ActivityRead(CadenceBase):
    id: str
    provider: str
    activity_type: ActivityType
    start_date: datetime
    end_date: datetime
    start_date_local: datetime
    end_date_local: datetime
    distance_meters: float = Field(ge=0)
    moving_time_seconds: float = Field(ge=0)
    total_elevation_gain_meters: float = 0.0
    active_calories: float = 0.0
    step_count: int | None = None
    source_bundle_id: str | None = None
    source_kind: SourceKind
    is_cached: bool = False

    @classmethod
    def from_record(cls, record: ActivityRecord) -> ActivityRead:
        return cls(
            id=record.id,
            provider=record.provider,
            activity_type=record.activity_type,
            start_date=record.start_date,
            end_date=record.end_date,
            start_date_local=record.start_date_local,
            end_date_local=record.end_date_local,
            distance_meters=max(record.distance_meters, 0.0),
            moving_time_seconds=max(record.moving_time_seconds, 0.0),
            total_elevation_gain_meters=record.total_elevation_gain_meters,
            active_calories=record.active_calories,
            step_count=record.step_count,
            source_bundle_id=record.source_bundle_id,
            source_kind=record.source_kind,
            is_cached=record.is_cached,
        )


class TimelineRead(CadenceBase):
    state: TimelineState
    count: int
    activities: list[ActivityRead]


# ---------- Totals ----------

class RunningTotalRead(CadenceBase):
    value: float
    last_refresh_date: datetime | None = None


class TotalsRead(CadenceBase):
    total_distance_meters: RunningTotalRead
    total_time_seconds: RunningTotalRead

    @classmethod
    def from_totals(cls, totals: RunningTotals) -> TotalsRead:
        return cls(
            total_distance_meters=RunningTotalRead(
                value=totals.total_distance.value,
                last_refresh_date=totals.total_distance.last_refresh_date,
            ),
            total_time_seconds=RunningTotalRead(
                value=totals.total_time.value,
                last_refresh_date=totals.total_time.last_refresh_date,
            ),
        )


# ---------- Summary ----------

class SummaryRead(CadenceBase):
    total: int
    activity_type_counts: dict[str, int]
    activities_since_signup: int
    last_activity_start: datetime | None = None

    @classmethod
    def from_summary(cls, summary: TimelineSummary) -> SummaryRead:
        return cls(
            total=summary.total,
            activity_type_counts=summary.activity_type_counts,
            activities_since_signup=summary.activities_since_signup,
            last_activity_start=summary.last_activity_start,
        )
