"""Runtime configuration and credential store.

Builds one ``Config`` object at startup from CLI overrides, environment
variables, ``.env`` files and the YAML config file.  The object is passed
explicitly to every component; nothing reads credentials from globals.

Precedence (highest to lowest):
    CLI overrides > Environment variables > .env file > YAML config > defaults

Environment variables:
    CLICKUP_API_KEY: ClickUp API key (required; CLICKUP_API_TOKEN accepted)
    CLICKUP_WORKSPACE_ID: ClickUp workspace id (required)
    CLICKUP_SPACE / CLICKUP_FOLDER / CLICKUP_LIST: destination names
    GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REFRESH_TOKEN:
        Drive OAuth credentials (required when the source is "drive")
    DRIVE_FOLDER_ID: Root folder to scan (default: root)
    DRIVE_SCAN_DEPTH: Folder recursion depth (default: 2)
    TASKMIRROR_SOURCE: "drive" or "none" (default: drive)
    MIRROR_TAGS: Comma-separated tag filter (default: mirror everything)
    MIRROR_PRUNE_MISSING: Drop index entries absent from a listing
    SCAN_INTERVAL: Minutes between passes (default: 360)
    MEMORY_STORAGE_PATH: Directory holding task_index.json
    TASKMIRROR_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
    HOST, PORT: HTTP bind address (default: 0.0.0.0:3000)
    TASKMIRROR_DEBUG: Enable debug logging
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config_schema import UnifiedConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

INDEX_FILENAME = "task_index.json"
DEFAULT_STORAGE_DIR = "./memory-cord"


@dataclass
class ClickUpCredentials:
    api_key: str
    workspace_id: str


@dataclass
class DriveCredentials:
    client_id: str
    client_secret: str
    refresh_token: str


@dataclass
class Config:
    clickup: ClickUpCredentials
    drive: DriveCredentials | None = None
    source: str = "drive"
    root_folder_id: str = "root"
    scan_depth: int = 2
    container_path: list[str] = field(
        default_factory=lambda: ["Drive Mirror", "Inbox"]
    )
    required_tags: list[str] = field(default_factory=list)
    index_path: Path = Path(DEFAULT_STORAGE_DIR) / INDEX_FILENAME
    interval_minutes: int = 360
    run_on_start: bool = True
    prune_missing: bool = False
    request_timeout: float = 30.0
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values.

    Raises:
        ConfigurationError: If credentials are blank or values are out of
            range.
    """
    config.clickup.api_key = config.clickup.api_key.strip()
    config.clickup.workspace_id = config.clickup.workspace_id.strip()
    if not config.clickup.api_key:
        raise ConfigurationError(
            "ClickUp API key cannot be empty. Set CLICKUP_API_KEY."
        )
    if not config.clickup.workspace_id:
        raise ConfigurationError(
            "ClickUp workspace id cannot be empty. Set CLICKUP_WORKSPACE_ID."
        )

    if config.source not in ("drive", "none"):
        raise ConfigurationError(
            f"Invalid source '{config.source}': must be 'drive' or 'none'"
        )
    if config.source == "drive":
        drive = config.drive
        if drive is None or not all(
            v.strip()
            for v in (drive.client_id, drive.client_secret, drive.refresh_token)
        ):
            raise ConfigurationError(
                "Google Drive credentials are incomplete. Set GOOGLE_CLIENT_ID, "
                "GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN, or set "
                "TASKMIRROR_SOURCE=none."
            )

    if len(config.container_path) not in (2, 3) or not all(
        name.strip() for name in config.container_path
    ):
        raise ConfigurationError(
            "Destination must name a space and a list, with an optional "
            f"folder in between; got {config.container_path!r}"
        )
    if config.interval_minutes < 1:
        raise ConfigurationError(
            f"Invalid scan interval {config.interval_minutes}: must be at least 1 minute"
        )
    if config.scan_depth < 0:
        raise ConfigurationError(
            f"Invalid scan depth {config.scan_depth}: must not be negative"
        )
    if config.request_timeout <= 0:
        raise ConfigurationError(
            f"Invalid request timeout {config.request_timeout}: must be positive"
        )


# ---------------------------------------------------------------------------
# Value resolution helpers
# ---------------------------------------------------------------------------


def _env(*names: str) -> str | None:
    """Return the first non-empty environment value among *names*."""
    for name in names:
        val = os.getenv(name)
        if val:
            return val
    return None


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _int_env(key: str, minimum: int, maximum: int | None = None) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid {key} '{raw}': must be a number") from None
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"between {minimum} and {maximum}" if maximum else f"at least {minimum}"
        raise ConfigurationError(f"Invalid {key} '{raw}': must be {bound}")
    return value


def _float_env(key: str) -> float | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid {key} '{raw}': must be a number") from None


def _split_list(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _first(*values: Any) -> Any:
    """Return the first value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


def load_config(
    overrides: dict[str, Any] | None = None,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    The caller is responsible for calling ``load_dotenv()`` first so
    that .env values are visible through ``os.getenv()``.

    Args:
        overrides: Values from CLI arguments (keys: ``index_path``,
            ``interval_minutes``, ``host``, ``port``, ``source``,
            ``debug``).
        unified: Parsed config file, used as the fallback layer.

    Returns:
        Validated ``Config`` instance.

    Raises:
        ConfigurationError: If required values are missing after checking
            all sources, or a value is invalid.
    """
    cli = overrides or {}
    fb = unified or UnifiedConfig()

    # --- Credentials ---

    api_key = _env("CLICKUP_API_KEY", "CLICKUP_API_TOKEN") or fb.clickup.api_key
    if not api_key:
        raise ConfigurationError(
            "ClickUp API key not found. Set CLICKUP_API_KEY environment "
            "variable or add 'api_key' to the clickup section of config.yml."
        )
    workspace_id = _env("CLICKUP_WORKSPACE_ID") or fb.clickup.workspace_id
    if not workspace_id:
        raise ConfigurationError(
            "ClickUp workspace id not found. Set CLICKUP_WORKSPACE_ID "
            "environment variable or add 'workspace_id' to config.yml."
        )

    source = cli.get("source") or _env("TASKMIRROR_SOURCE") or fb.mirror.source or "drive"

    drive: DriveCredentials | None = None
    client_id = _env("GOOGLE_CLIENT_ID") or fb.drive.client_id
    client_secret = _env("GOOGLE_CLIENT_SECRET") or fb.drive.client_secret
    refresh_token = _env("GOOGLE_REFRESH_TOKEN") or fb.drive.refresh_token
    if client_id or client_secret or refresh_token:
        drive = DriveCredentials(
            client_id=(client_id or "").strip(),
            client_secret=(client_secret or "").strip(),
            refresh_token=(refresh_token or "").strip(),
        )

    # --- Destination ---

    space = _env("CLICKUP_SPACE") or fb.clickup.space or "Drive Mirror"
    folder = _env("CLICKUP_FOLDER") or fb.clickup.folder
    list_name = _env("CLICKUP_LIST") or fb.clickup.list or "Inbox"
    container_path = [space, folder, list_name] if folder else [space, list_name]

    # --- Mirror settings ---

    tags_raw = _env("MIRROR_TAGS")
    required_tags = _split_list(tags_raw) if tags_raw else list(fb.mirror.tags or [])

    storage_dir = _env("MEMORY_STORAGE_PATH")
    if cli.get("index_path"):
        index_path = Path(cli["index_path"])
    elif storage_dir:
        index_path = Path(storage_dir) / INDEX_FILENAME
    elif fb.mirror.index_path:
        index_path = Path(fb.mirror.index_path)
    else:
        index_path = Path(DEFAULT_STORAGE_DIR) / INDEX_FILENAME

    interval_minutes = _first(
        cli.get("interval_minutes"),
        _int_env("SCAN_INTERVAL", 1),
        fb.mirror.interval_minutes,
        360,
    )
    scan_depth = _first(
        _int_env("DRIVE_SCAN_DEPTH", 0, 10), fb.drive.scan_depth, 2
    )
    request_timeout = _first(
        _float_env("TASKMIRROR_REQUEST_TIMEOUT"), fb.mirror.request_timeout, 30.0
    )
    prune_missing = _first(
        get_bool_env("MIRROR_PRUNE_MISSING"), fb.mirror.prune_missing, False
    )
    run_on_start = _first(
        cli.get("run_on_start"),
        get_bool_env("TASKMIRROR_RUN_ON_START"),
        fb.mirror.run_on_start,
        True,
    )

    # --- Server ---

    host = cli.get("host") or _env("HOST") or fb.server.host or "0.0.0.0"
    port = _first(cli.get("port"), _int_env("PORT", 1, 65535), fb.server.port, 3000)

    debug = bool(cli.get("debug")) or bool(get_bool_env("TASKMIRROR_DEBUG"))

    config = Config(
        clickup=ClickUpCredentials(api_key=api_key, workspace_id=workspace_id),
        drive=drive,
        source=source,
        root_folder_id=_env("DRIVE_FOLDER_ID") or fb.drive.folder_id or "root",
        scan_depth=scan_depth,
        container_path=container_path,
        required_tags=required_tags,
        index_path=index_path,
        interval_minutes=interval_minutes,
        run_on_start=run_on_start,
        prune_missing=prune_missing,
        request_timeout=request_timeout,
        host=host,
        port=port,
        debug=debug,
    )

    validate_config(config)
    logger.debug(
        "Configuration loaded: source=%s destination=%s index=%s interval=%dm",
        config.source,
        "/".join(config.container_path),
        config.index_path,
        config.interval_minutes,
    )
    return config
