"""Activity timeline endpoints.

Reads are served from the aggregator's current snapshot and never wait for
a refresh in progress.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Response, status

from src.activities.aggregator import ActivityAggregator
from src.activities.analytics import summarize
from src.activities.base import ActivityType, ProviderError
from src.dependencies import Aggregator
from src.models.activities import ActivityRead, SummaryRead, TimelineRead, TotalsRead
from src.models.base import ErrorDetail

router = APIRouter(prefix="/activities", tags=["activities"])
logger = logging.getLogger("cadence.activities.api")


def _timeline(aggregator: ActivityAggregator, records) -> TimelineRead:
    return TimelineRead(
        state=aggregator.state,
        count=len(records),
        activities=[ActivityRead.from_record(r) for r in records],
    )


@router.get("", response_model=TimelineRead)
async def list_activities(
    aggregator: Aggregator,
    limit: int | None = Query(None, ge=1, le=5000),
    activity_type: ActivityType | None = None,
) -> TimelineRead:
    """Return the reconciled timeline, newest first."""
    records = list(aggregator.activities)
    if activity_type is not None:
        records = [r for r in records if activity_type.matches(r.activity_type)]
    if limit is not None:
        records = records[:limit]
    return _timeline(aggregator, records)


@router.post("/refresh", response_model=TimelineRead)
async def refresh_activities(aggregator: Aggregator) -> TimelineRead:
    """Run a full provider load and return the committed timeline."""
    records = await aggregator.load_all()
    return _timeline(aggregator, records)


@router.get("/totals", response_model=TotalsRead)
async def get_totals(aggregator: Aggregator) -> TotalsRead:
    return TotalsRead.from_totals(aggregator.totals)


@router.get("/summary", response_model=SummaryRead)
async def get_summary(aggregator: Aggregator) -> SummaryRead:
    return SummaryRead.from_summary(summarize(aggregator.activities))


@router.get(
    "/{activity_id}",
    response_model=ActivityRead,
    responses={404: {"model": ErrorDetail}},
)
async def get_activity(activity_id: str, aggregator: Aggregator) -> ActivityRead:
    record = aggregator.activity_by_id(activity_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Activity {activity_id} not found")
    return ActivityRead.from_record(record)


@router.delete(
    "/{activity_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorDetail}, 409: {"model": ErrorDetail}},
)
async def delete_activity(activity_id: str, aggregator: Aggregator) -> Response:
    """Delete an activity at its provider and drop it from the timeline."""
    try:
        removed = await aggregator.delete_activity(activity_id)
    except ProviderError as exc:
        logger.warning("Delete of %s refused: %s", activity_id, exc)
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if removed is None:
        raise HTTPException(status_code=404, detail=f"Activity {activity_id} not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
