"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.activities.aggregator import ActivityAggregator
from src.config import Settings, get_settings


async def get_aggregator(request: Request) -> ActivityAggregator:
    """Return the process-wide aggregator built by the app lifespan."""
    aggregator: ActivityAggregator | None = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Activity timeline not initialized")
    return aggregator


# Annotated shortcuts for route signatures
Aggregator = Annotated[ActivityAggregator, Depends(get_aggregator)]
AppSettings = Annotated[Settings, Depends(get_settings)]
