"""Task index persistence layer.

The task index is the reconciliation ledger: one JSON document mapping
remote item ids to the tasks that mirror them.  It is read at the start
of every pass and rewritten wholesale at the end.

Key design choices:

* **Load never fails** -- a missing, unreadable or invalid file yields an
  empty index.  Corrupt content is logged and discarded.
* **Atomic writes** -- ``save()`` writes to a temp file in the target
  directory then calls ``os.replace()``, so a crash mid-write leaves the
  previous file intact.
* **Explicit in-memory store** -- ``MemoryTaskIndexStore`` implements the
  same interface for tests and throwaway setups.  It is selected by the
  caller, never used as a silent fallback when file I/O fails.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ..errors import IndexWriteError
from .models import TaskIndex

logger = logging.getLogger(__name__)


class TaskIndexStore(Protocol):
    """Persistence interface consumed by the reconciler."""

    def load(self) -> TaskIndex: ...

    def save(self, index: TaskIndex) -> None: ...


class JsonTaskIndexStore:
    """Load and save the task index as a UTF-8 JSON file.

    Args:
        path: Location of the index file.  Parent directories are created
            on first save.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> TaskIndex:
        """Read the index from disk.

        Returns:
            The stored index, or an empty index if the file is missing or
            cannot be parsed.
        """
        if not self.path.exists():
            logger.debug("No task index at %s, starting empty", self.path)
            return TaskIndex()
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
            return TaskIndex.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            # json.JSONDecodeError is a ValueError
            logger.warning(
                "Discarding unreadable task index %s: %s", self.path, exc
            )
            return TaskIndex()

    def save(self, index: TaskIndex) -> None:
        """Replace the index file with *index*.

        Raises:
            IndexWriteError: If the file could not be written.  The
                previous file is left untouched.
        """
        payload = index.model_dump(mode="json", by_alias=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.path.parent), suffix=".tmp"
            )
        except OSError as exc:
            raise IndexWriteError(
                f"Cannot write task index {self.path}: {exc}",
                path=str(self.path),
            ) from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, ensure_ascii=False)
                fh.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(exc, OSError):
                raise IndexWriteError(
                    f"Cannot write task index {self.path}: {exc}",
                    path=str(self.path),
                ) from exc
            raise
        logger.debug(
            "Saved task index with %d tasks to %s",
            index.total_tasks,
            self.path,
        )


class MemoryTaskIndexStore:
    """In-process task index with the same interface as the JSON store."""

    def __init__(self, index: TaskIndex | None = None) -> None:
        self.index = index or TaskIndex()
        self.save_count = 0

    def load(self) -> TaskIndex:
        return self.index

    def save(self, index: TaskIndex) -> None:
        self.index = index
        self.save_count += 1
