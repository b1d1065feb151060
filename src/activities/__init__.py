"""Cadence activity aggregation engine.

This package ingests workout and step-count records from several providers,
collapses cross-provider duplicates into one canonical record per workout,
keeps the reconciled timeline in a two-tier cache, and maintains running
distance/time totals incrementally.

Subpackages:
    adapters/  Vendor-neutral provider adapters (static, HTTP feed)

Core modules:
    base           ProviderAdapter ABC and the canonical ActivityRecord
    dedup          Windowed cross-provider deduplication
    cache          Two-tier aggregation cache and cached record projection
    totals         Watermarked running totals
    events         Publish/subscribe bus for timeline notifications
    aggregator     Provider fan-out, reconciliation and live updates
    analytics      Timeline summary counts
    config_loader  Load/validate/hot-reload sync_config.yaml
"""

from src.activities.aggregator import (
    ActivityAggregator,
    TimelineState,
    VisibilityPreferences,
)
from src.activities.base import (
    ActivityRecord,
    ActivityType,
    ProviderAdapter,
    ProviderError,
    SourceKind,
    WorkoutSource,
)
from src.activities.cache import ActivityCache, CachedActivityRecord
from src.activities.config_loader import SyncConfig, get_sync_config
from src.activities.dedup import remove_duplicates
from src.activities.totals import IncrementalAggregateUpdater

__all__ = [
    "ActivityAggregator",
    "ActivityCache",
    "ActivityRecord",
    "ActivityType",
    "CachedActivityRecord",
    "IncrementalAggregateUpdater",
    "ProviderAdapter",
    "ProviderError",
    "SourceKind",
    "SyncConfig",
    "TimelineState",
    "VisibilityPreferences",
    "WorkoutSource",
    "get_sync_config",
    "remove_duplicates",
]
