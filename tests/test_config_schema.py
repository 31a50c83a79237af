"""Tests for taskmirror.config_schema: Pydantic models for the YAML config."""

import pytest
from pydantic import ValidationError

from taskmirror.config_schema import (
    ClickUpConfig,
    DriveConfig,
    MirrorConfig,
    UnifiedConfig,
    build_config,
)


class TestUnifiedConfig:
    def test_zero_config_valid(self):
        cfg = UnifiedConfig()
        assert cfg.clickup.api_key is None
        assert cfg.mirror.interval_minutes is None
        assert cfg.logging.level is None

    def test_build_config_empty(self):
        assert build_config({}) == UnifiedConfig()

    def test_build_config_sections(self):
        cfg = build_config(
            {
                "clickup": {"api_key": "pk", "workspace_id": "9", "space": "Ops", "list": "Inbox"},
                "drive": {"folder_id": "abc", "scan_depth": 3},
                "mirror": {"source": "none", "tags": ["urgent"], "prune_missing": True},
                "server": {"port": 8080},
                "logging": {"level": "DEBUG", "file": "/tmp/taskmirror.log"},
            }
        )
        assert cfg.clickup.list == "Inbox"
        assert cfg.drive.scan_depth == 3
        assert cfg.mirror.source == "none"
        assert cfg.mirror.tags == ["urgent"]
        assert cfg.server.port == 8080
        assert cfg.logging.file == "/tmp/taskmirror.log"

    def test_frozen(self):
        cfg = ClickUpConfig(api_key="pk")
        with pytest.raises(ValidationError):
            cfg.api_key = "other"


class TestValidation:
    def test_unknown_source_rejected(self):
        with pytest.raises(ValidationError):
            MirrorConfig(source="dropbox")

    def test_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            MirrorConfig(interval_minutes=0)

    def test_timeout_bounds(self):
        with pytest.raises(ValidationError):
            MirrorConfig(request_timeout=0)
        with pytest.raises(ValidationError):
            MirrorConfig(request_timeout=301)

    def test_scan_depth_bounds(self):
        with pytest.raises(ValidationError):
            DriveConfig(scan_depth=11)
        assert DriveConfig(scan_depth=0).scan_depth == 0

    def test_port_bounds(self):
        with pytest.raises(ValidationError):
            build_config({"server": {"port": 70000}})

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            build_config({"mirror": {"interval_minutes": -1}})
