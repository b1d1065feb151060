"""Tests for sync_config.yaml loading and validation."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from src.activities.config_loader import (
    ConfigValidationError,
    SyncConfig,
    _validate_and_build,
    get_sync_config,
    load_sync_config,
    reload_sync_config,
)


class TestConfigLoading:
    """Tests for loading the bundled sync_config.yaml."""

    def test_load_default_config(self, sync_config: SyncConfig) -> None:
        assert sync_config.version == "1.0"

    def test_dedup_defaults(self, sync_config: SyncConfig) -> None:
        dedup = sync_config.dedup
        assert dedup.window_size == 10
        assert dedup.time_threshold_seconds == 30
        assert dedup.distance_threshold_meters == 10
        assert dedup.vendor_priority == ["garmin", "wahoo"]

    def test_cache_defaults(self, sync_config: SyncConfig) -> None:
        assert sync_config.cache.key == "activities"
        assert sync_config.cache.memory_count_limit == 500

    def test_totals_and_provider_defaults(self, sync_config: SyncConfig) -> None:
        assert sync_config.totals.watermark_offset_seconds == 1
        assert sync_config.providers.auth_timeout_seconds == 10

    def test_singleton(self) -> None:
        assert get_sync_config() is get_sync_config()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_sync_config(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("dedup: [unclosed")
        with pytest.raises(ConfigValidationError):
            load_sync_config(path)


class TestValidation:
    def test_empty_document_uses_defaults(self) -> None:
        config = _validate_and_build({})
        assert config.dedup.window_size == 10
        assert config.cache.key == "activities"

    def test_vendor_priority_lowercased(self) -> None:
        config = _validate_and_build({"dedup": {"vendor_priority": ["Wahoo", "GARMIN"]}})
        assert config.dedup.vendor_priority == ["wahoo", "garmin"]

    def test_collects_every_error(self) -> None:
        raw = {
            "dedup": {"window_size": -1, "time_threshold_seconds": "soon"},
            "cache": {"key": "", "memory_count_limit": 0},
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            _validate_and_build(raw)
        message = str(exc_info.value)
        assert "4 validation error" in message
        assert "dedup.window_size" in message
        assert "dedup.time_threshold_seconds" in message
        assert "cache.key" in message
        assert "cache.memory_count_limit" in message

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigValidationError, match="'totals' must be a mapping"):
            _validate_and_build({"totals": [1, 2]})

    def test_vendor_priority_must_be_list(self) -> None:
        with pytest.raises(ConfigValidationError, match="vendor_priority"):
            _validate_and_build({"dedup": {"vendor_priority": "garmin"}})


class TestReload:
    def test_reload_replaces_singleton(self, tmp_path: Path) -> None:
        path = tmp_path / "sync_config.yaml"
        path.write_text(textwrap.dedent("""\
            version: "2.0"
            dedup:
              window_size: 4
        """))
        try:
            reloaded = reload_sync_config(path)
            assert reloaded.version == "2.0"
            assert get_sync_config().dedup.window_size == 4
        finally:
            reload_sync_config()

    def test_invalid_reload_keeps_old_config(self, tmp_path: Path) -> None:
        before = get_sync_config()
        path = tmp_path / "sync_config.yaml"
        path.write_text("dedup:\n  window_size: -5\n")
        with pytest.raises(ConfigValidationError):
            reload_sync_config(path)
        assert get_sync_config() is before
