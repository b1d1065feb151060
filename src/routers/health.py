"""Health check endpoint, public."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.activities.aggregator import TimelineState
from src.config import get_settings

router = APIRouter(tags=["system"])
logger = logging.getLogger("cadence.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Reports the timeline state; "degraded" until the first load commits.
    """
    settings = get_settings()
    aggregator = getattr(request.app.state, "aggregator", None)
    state = aggregator.state if aggregator is not None else TimelineState.UNINITIALIZED
    count = len(aggregator.activities) if aggregator is not None else 0

    return {
        "status": "healthy" if state is TimelineState.READY else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "timeline": state.value,
        "activities": count,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
