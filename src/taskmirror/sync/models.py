"""Pydantic models for the task-mirroring pipeline.

Defines the data contracts shared by the source, the task store client,
the index and the reconciler:

- ``RemoteItem``: one file observed in the remote collection.
- ``TaskRecord``: a task mirroring one remote item.
- ``TaskIndex``: the persisted ledger of mirrored tasks.
- ``SyncAction``: outcome category of one item.
- ``SyncResult``: outcome of mirroring one item.
- ``PassReport``: aggregate outcome of a full pass.

All models are frozen and serialise with camelCase aliases so the JSON
written to disk and returned over HTTP uses ``externalItemId`` style
keys.  Construct with either the field name or the alias.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

_MODEL_CONFIG = {
    "frozen": True,
    "alias_generator": to_camel,
    "populate_by_name": True,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RemoteItem(BaseModel):
    """Snapshot of a remote file as seen during one fetch.

    Attributes:
        id: Stable identifier assigned by the source.
        name: Display name.
        kind: MIME type.
        tags: Tags attached to the file.
        location: Human-readable folder path.
        created_at: Creation time reported by the source.
        modified_at: Last modification time reported by the source.
        size_bytes: Size in bytes, if the source reports one.
        source_link: URL that opens the item.
    """

    id: str
    name: str
    kind: str = ""
    tags: frozenset[str] = frozenset()
    location: str = ""
    created_at: datetime | None = None
    modified_at: datetime | None = None
    size_bytes: int | None = None
    source_link: str = ""

    model_config = _MODEL_CONFIG


class TaskRecord(BaseModel):
    """A task in the tracker that mirrors one ``RemoteItem``."""

    task_id: str
    external_item_id: str
    name: str
    description: str = ""
    tags: list[str] = []

    model_config = _MODEL_CONFIG


class TaskIndex(BaseModel):
    """Persisted mapping from remote item id to mirrored task.

    ``total_tasks`` always equals ``len(tasks)`` and no two records share
    an ``external_item_id``; both are checked on construction.
    """

    generated_at: datetime = Field(default_factory=utc_now)
    total_tasks: int = 0
    tasks: list[TaskRecord] = []

    model_config = _MODEL_CONFIG

    @model_validator(mode="after")
    def _check_invariants(self) -> TaskIndex:
        if self.total_tasks != len(self.tasks):
            raise ValueError(
                f"totalTasks is {self.total_tasks} but {len(self.tasks)} tasks are listed"
            )
        seen: set[str] = set()
        for record in self.tasks:
            if record.external_item_id in seen:
                raise ValueError(
                    f"duplicate externalItemId '{record.external_item_id}'"
                )
            seen.add(record.external_item_id)
        return self

    @classmethod
    def build(cls, tasks: list[TaskRecord]) -> TaskIndex:
        """Create an index stamped with the current time."""
        return cls(
            generated_at=utc_now(), total_tasks=len(tasks), tasks=list(tasks)
        )

    def by_external_id(self) -> dict[str, TaskRecord]:
        """Return a lookup from ``external_item_id`` to record."""
        return {r.external_item_id: r for r in self.tasks}


class SyncAction(str, Enum):
    """Outcome of mirroring one remote item."""

    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Outcome of mirroring one remote item.

    Attributes:
        action: What happened.
        external_item_id: The remote item's id.
        task_id: Task id for created/updated items.
        error: Error message for failed items.
        error_kind: Task store error category for failed items.
    """

    action: SyncAction
    external_item_id: str
    task_id: str | None = None
    error: str | None = None
    error_kind: str | None = None

    model_config = _MODEL_CONFIG


class PassReport(BaseModel):
    """Aggregate outcome of one full sync pass."""

    started_at: datetime
    completed_at: datetime | None = None
    results: list[SyncResult] = []
    index_saved: bool = True
    index_error: str | None = None
    interrupted: bool = False

    model_config = _MODEL_CONFIG

    @property
    def created(self) -> list[SyncResult]:
        return [r for r in self.results if r.action == SyncAction.CREATED]

    @property
    def updated(self) -> list[SyncResult]:
        return [r for r in self.results if r.action == SyncAction.UPDATED]

    @property
    def failed(self) -> list[SyncResult]:
        return [r for r in self.results if r.action == SyncAction.FAILED]

    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.results),
            "created": len(self.created),
            "updated": len(self.updated),
            "failed": len(self.failed),
        }

    def summary(self) -> str:
        """Format a short multi-line summary with counts by action."""
        lines = [
            "Sync pass" + (" (interrupted)" if self.interrupted else ""),
            f"  Created: {len(self.created)}",
            f"  Updated: {len(self.updated)}",
            f"  Failed:  {len(self.failed)}",
            f"  Total:   {len(self.results)}",
        ]
        if not self.index_saved:
            lines.append(f"  Index not saved: {self.index_error}")
        return "\n".join(lines)
