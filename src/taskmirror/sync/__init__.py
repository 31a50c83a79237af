"""Task-mirroring pipeline.

Reconciles the remote collection (Drive files) against the task index
and the task tracker (ClickUp).

Modules:

- ``models``     -- ``RemoteItem``, ``TaskRecord``, ``TaskIndex``,
  ``SyncAction``, ``SyncResult``, ``PassReport``.
- ``index``      -- ``JsonTaskIndexStore`` / ``MemoryTaskIndexStore``.
- ``reconciler`` -- ``MirrorReconciler``: one pass over a listing.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from taskmirror.core.client import ClickUpClient
    from taskmirror.sync import JsonTaskIndexStore, MirrorReconciler

    reconciler = MirrorReconciler(
        store=ClickUpClient(config),
        index_store=JsonTaskIndexStore(config.index_path),
        container_path=["Drive Mirror", "Inbox"],
    )
    results = reconciler.reconcile(items)
"""

from .index import JsonTaskIndexStore, MemoryTaskIndexStore, TaskIndexStore
from .models import (
    PassReport,
    RemoteItem,
    SyncAction,
    SyncResult,
    TaskIndex,
    TaskRecord,
)
from .reconciler import MirrorReconciler, TaskStore, filter_by_tags
from .reporter import format_pass_report, report_to_json

__all__ = [
    "JsonTaskIndexStore",
    "MemoryTaskIndexStore",
    "MirrorReconciler",
    "PassReport",
    "RemoteItem",
    "SyncAction",
    "SyncResult",
    "TaskIndex",
    "TaskIndexStore",
    "TaskRecord",
    "TaskStore",
    "filter_by_tags",
    "format_pass_report",
    "report_to_json",
]
