"""Load, validate, and hot-reload the activity engine tunables.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an update, no restart required.

Usage::

    from src.activities.config_loader import get_sync_config

    config = get_sync_config()
    config.dedup.window_size          # 10
    config.dedup.vendor_priority      # ['garmin', 'wahoo']
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("cadence.activities.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class DedupConfig:
    """Record linkage thresholds for the deduplicator."""

    window_size: int = 10
    time_threshold_seconds: float = 30.0
    distance_threshold_meters: float = 10.0
    vendor_priority: list[str] = field(default_factory=lambda: ["garmin", "wahoo"])


@dataclass
class CacheConfig:
    """Aggregation cache settings."""

    key: str = "activities"
    memory_count_limit: int = 500


@dataclass
class TotalsConfig:
    """Running total settings."""

    watermark_offset_seconds: float = 1.0


@dataclass
class ProvidersConfig:
    """Provider fan-out settings."""

    auth_timeout_seconds: float = 10.0


@dataclass
class SyncConfig:
    """Complete, validated engine configuration.

    Attributes:
        version:   Config schema version string.
        dedup:     Deduplicator thresholds.
        cache:     Aggregation cache key and memory ceiling.
        totals:    Incremental total settings.
        providers: Provider fan-out settings.
    """

    version: str = "1.0"
    dedup: DedupConfig = field(default_factory=DedupConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    totals: TotalsConfig = field(default_factory=TotalsConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Every problem is collected so the error lists them all at once.

    Raises:
        ConfigValidationError: If any value is missing or invalid.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, name: str, default: float, minimum: float) -> float:
        value = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{name}.{key} = {number} must be >= {minimum}")
        return number

    def _section(key: str) -> dict:
        section = raw.get(key) or {}
        if not isinstance(section, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return section

    version = str(raw.get("version", "1.0"))

    # ── Dedup ──
    dd_raw = _section("dedup")
    vendor_priority = dd_raw.get("vendor_priority", ["garmin", "wahoo"])
    if not isinstance(vendor_priority, list) or not all(
        isinstance(v, str) for v in vendor_priority
    ):
        errors.append("dedup.vendor_priority must be a list of vendor names")
        vendor_priority = []
    dedup = DedupConfig(
        window_size=int(_number(dd_raw, "window_size", "dedup", 10, 0)),
        time_threshold_seconds=_number(dd_raw, "time_threshold_seconds", "dedup", 30, 0),
        distance_threshold_meters=_number(
            dd_raw, "distance_threshold_meters", "dedup", 10, 0
        ),
        vendor_priority=[v.lower() for v in vendor_priority],
    )

    # ── Cache ──
    c_raw = _section("cache")
    key = c_raw.get("key", "activities")
    if not isinstance(key, str) or not key:
        errors.append("cache.key must be a non-empty string")
        key = "activities"
    cache = CacheConfig(
        key=key,
        memory_count_limit=int(_number(c_raw, "memory_count_limit", "cache", 500, 1)),
    )

    # ── Totals ──
    t_raw = _section("totals")
    totals = TotalsConfig(
        watermark_offset_seconds=_number(
            t_raw, "watermark_offset_seconds", "totals", 1, 0
        ),
    )

    # ── Providers ──
    p_raw = _section("providers")
    providers = ProvidersConfig(
        auth_timeout_seconds=_number(p_raw, "auth_timeout_seconds", "providers", 10, 0),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        dedup=dedup,
        cache=cache,
        totals=totals,
        providers=providers,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is
    re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
