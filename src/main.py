"""Cadence API: FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.activities.adapters import build_feed_adapters
from src.activities.aggregator import ActivityAggregator, VisibilityPreferences
from src.activities.analytics import TimelineAnalyticsObserver
from src.activities.cache import ActivityCache, FileKeyValueStore
from src.activities.config_loader import get_sync_config
from src.config import Settings, get_settings
from src.routers import activities, health

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("cadence")


def build_aggregator(settings: Settings) -> ActivityAggregator:
    """Wire the aggregator from settings and the bundled sync config."""
    base = get_sync_config()
    config = replace(
        base,
        cache=replace(base.cache, memory_count_limit=settings.memory_cache_count_limit),
        providers=replace(
            base.providers, auth_timeout_seconds=settings.provider_auth_timeout_seconds
        ),
    )

    store = FileKeyValueStore(settings.cache_dir)
    return ActivityAggregator(
        adapters=build_feed_adapters(settings.feed_urls, settings.feed_tokens),
        cache=ActivityCache(store, config.cache),
        preferences=VisibilityPreferences(show_step_count=settings.show_step_count),
        totals_store=store,
        config=config,
    )


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting Cadence API v%s [%s]",
        settings.app_version,
        settings.environment,
    )

    aggregator = build_aggregator(settings)
    analytics = TimelineAnalyticsObserver(aggregator.bus)
    analytics.start()
    app.state.aggregator = aggregator
    app.state.analytics = analytics

    aggregator.seed_from_cache()
    if settings.load_on_startup:
        await aggregator.load_all()
        await aggregator.start_live_updates_for_authorized()

    yield

    await aggregator.stop_all_live_updates()
    analytics.stop()
    logger.info("Cadence API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Cadence API",
        description=(
            "Unified activity timeline: workouts from every connected provider, "
            "deduplicated, cached and totalled."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(activities.router, prefix=v1_prefix)

    return app


app = create_app()
