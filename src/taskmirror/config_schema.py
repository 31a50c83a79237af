"""Configuration file schema for taskmirror.

Defines Pydantic models for the YAML config structure with one section
per concern.  Every field has a default or is optional, so an empty or
absent config file is valid; environment variables and CLI arguments
fill in the rest when ``load_config()`` builds the runtime ``Config``.

Usage:
    from taskmirror.config_loader import load_hierarchical_config
    from taskmirror.config_schema import build_config

    unified = build_config(load_hierarchical_config())
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ClickUpConfig(BaseModel):
    """ClickUp credentials and destination container names."""

    api_key: str | None = Field(default=None, description="ClickUp API key")
    workspace_id: str | None = Field(
        default=None, description="ClickUp workspace (team) id"
    )
    space: str | None = Field(
        default=None, description="Space that holds mirrored tasks"
    )
    folder: str | None = Field(
        default=None,
        description="Folder inside the space; omit for a folderless list",
    )
    list: str | None = Field(
        default=None, description="List that receives mirrored tasks"
    )

    model_config = {"frozen": True}


class DriveConfig(BaseModel):
    """Google Drive OAuth client and scan settings."""

    client_id: str | None = None
    client_secret: str | None = None
    refresh_token: str | None = None
    folder_id: str | None = Field(
        default=None, description="Root folder to scan ('root' = My Drive)"
    )
    scan_depth: int | None = Field(
        default=None, ge=0, le=10, description="Folder recursion depth"
    )

    model_config = {"frozen": True}


class MirrorConfig(BaseModel):
    """Reconciliation and scheduling settings."""

    source: Literal["drive", "none"] | None = None
    index_path: str | None = Field(
        default=None, description="Path of the task index JSON file"
    )
    interval_minutes: int | None = Field(
        default=None, ge=1, description="Minutes between scheduled passes"
    )
    run_on_start: bool | None = None
    prune_missing: bool | None = Field(
        default=None,
        description="Drop index entries for items absent from the listing",
    )
    tags: list[str] | None = Field(
        default=None,
        description="Only mirror items carrying at least one of these tags",
    )
    request_timeout: float | None = Field(
        default=None, gt=0, le=300, description="Per-request timeout (s)"
    )

    model_config = {"frozen": True}


class ServerConfig(BaseModel):
    """HTTP server bind settings."""

    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unset means INFO for ``serve`` and WARNING for other commands.
        file: Optional log file path.
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration file model.

    ``UnifiedConfig()`` (zero-config) is always valid.
    """

    clickup: ClickUpConfig = Field(default_factory=ClickUpConfig)
    drive: DriveConfig = Field(default_factory=DriveConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged YAML dict.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a section has invalid values.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
