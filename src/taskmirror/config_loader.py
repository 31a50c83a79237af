"""
Config file discovery and loading for taskmirror.

Config files are plain YAML with two extensions:

* ``!include other.yml`` inlines another file, resolved relative to the
  file that contains the tag.  Useful for keeping ClickUp and Google
  secrets out of a checked-in config.
* ``${VAR}`` / ``${VAR:-default}`` in any string value is replaced from
  the environment after all files are merged.

Files found by ``discover_config_files()`` are merged key by key, so a
project file can set ``clickup.list`` while the global file keeps
``clickup.api_key``.

Usage:
    from taskmirror.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TASKMIRROR_CONFIG"
PROJECT_DIR = ".taskmirror"

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable yields its default, or ``""`` without one.
    Text that merely starts with ``${`` is left as is.
    """

    def _lookup(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        return os.environ.get(name) or (default or "")

    return _ENV_VAR_PATTERN.sub(_lookup, value)


def _interpolate_recursive(obj: Any) -> Any:
    match obj:
        case str():
            return interpolate_env_vars(obj)
        case dict():
            return {key: _interpolate_recursive(val) for key, val in obj.items()}
        case list():
            return [_interpolate_recursive(val) for val in obj]
        case _:
            return obj


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with ``!include``; ``yaml.safe_load`` is unaffected.

    ``include_stack`` holds the files being loaded, outermost first, and
    is used to reject include cycles.
    """

    include_stack: list[Path]


def _resolve_include(loader: ConfigLoader, target: str) -> Path:
    path = Path(target).expanduser()
    if not path.is_absolute():
        path = Path(loader.name).resolve().parent / path
    path = path.resolve()

    if path in loader.include_stack:
        chain = " -> ".join(str(p) for p in (*loader.include_stack, path))
        raise ValueError(f"Circular include detected: {chain}")
    if not path.exists():
        raise FileNotFoundError(
            f"Include file not found: {path} "
            f"(referenced from {loader.include_stack[-1]})"
        )
    return path


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    path = _resolve_include(loader, loader.construct_scalar(node))
    return _load_yaml_with_includes(path, _include_stack=[*loader.include_stack, path])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Parse one YAML file, following ``!include`` tags."""
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader.include_stack = _include_stack or [path]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. the path in ``TASKMIRROR_CONFIG``
        2. ``.taskmirror/config.yml`` (or ``config.yaml``) in the CWD
        3. ``~/.config/taskmirror/config.yml``
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project = Path.cwd() / PROJECT_DIR
    candidates += [project / "config.yml", project / "config.yaml"]
    candidates.append(Path.home() / ".config" / "taskmirror" / "config.yml")

    found: list[Path] = []
    for path in candidates:
        if path.is_file() and path not in found:
            found.append(path)
    return found


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Files are merged from lowest to highest precedence; nested mappings
    are merged key by key, other values are replaced.  Returns ``{}``
    when no file exists.

    Raises:
        yaml.YAMLError: If a file is not valid YAML.
        OSError: If a file or an included file cannot be read.
        ValueError: On circular includes.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using environment only")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = _load_yaml_with_includes(path)
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )
            continue
        merged = _deep_merge(merged, data)

    return _interpolate_recursive(merged)
