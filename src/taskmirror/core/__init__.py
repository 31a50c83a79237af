"""Task store client and async bridging helpers."""

from .async_utils import run_sync
from .client import ClickUpClient, ListHandle

__all__ = ["ClickUpClient", "ListHandle", "run_sync"]
