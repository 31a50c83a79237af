"""Remote collection sources.

The source is chosen from configuration by ``build_source()``:
``drive`` scans Google Drive, ``none`` yields nothing.
"""

from __future__ import annotations

from ..config import Config
from .base import NullSource, RemoteSource, StaticSource
from .drive import DriveSource


def build_source(config: Config) -> RemoteSource:
    """Return the source selected by ``config.source``."""
    if config.source == "drive":
        return DriveSource(config)
    return NullSource()


__all__ = [
    "DriveSource",
    "NullSource",
    "RemoteSource",
    "StaticSource",
    "build_source",
]
