"""Mirror reconciler: one pass of remote items into tracker tasks.

The ``MirrorReconciler`` ties together the task store client and the
task index.  For one pass it:

1. Resolves the destination list (memoised by the client).
2. Loads the task index and builds an ``external id -> record`` lookup.
3. Updates the task of every indexed item and creates a task for every
   other item, in input order.
4. Records a ``failed`` result for any item whose task store call raised
   and moves on to the next item.
5. Rewrites the index from this pass's successes plus retained records.
6. Returns one ``SyncResult`` per processed item.

Retention rules for the rewritten index:

* An item whose create failed is not indexed, so the next pass retries
  the create.
* An indexed item whose update failed keeps its previous record, so the
  next pass updates it again rather than creating a duplicate.  If the
  update failed with ``not_found`` the task is gone from the tracker and
  the record is dropped so it gets recreated.
* Records for items absent from this pass's listing are carried forward
  unless ``prune_missing`` is set.  An interrupted pass always carries
  forward the records of items it did not reach.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Iterable, Protocol

from ..errors import ErrorKind, IndexWriteError, TaskStoreError
from .index import TaskIndexStore
from .models import RemoteItem, SyncAction, SyncResult, TaskIndex, TaskRecord

if TYPE_CHECKING:
    from ..core.client import ListHandle

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    """Task tracker operations consumed by the reconciler."""

    def resolve_destination_list(self, path: list[str]) -> ListHandle: ...

    def invalidate(self, path: list[str] | None = None) -> None: ...

    def create_task(self, list_handle: ListHandle, item: RemoteItem) -> TaskRecord: ...

    def update_task(
        self,
        task_id: str,
        item: RemoteItem,
        known_tags: list[str] | None = None,
    ) -> TaskRecord: ...


def filter_by_tags(
    items: Iterable[RemoteItem], required_tags: Iterable[str]
) -> list[RemoteItem]:
    """Keep items carrying at least one of *required_tags* (case-insensitive).

    An empty tag list keeps every item.
    """
    wanted = {t.strip().lower() for t in required_tags if t.strip()}
    if not wanted:
        return list(items)
    return [
        item for item in items if wanted & {t.lower() for t in item.tags}
    ]


class MirrorReconciler:
    """Reconcile remote items against the task index.

    Args:
        store: Task tracker client.
        index_store: Persistence for the task index.
        container_path: Destination ``[space, (folder,) list]`` names.
        prune_missing: Drop index records for items absent from a listing.
        stop_event: When set, the pass stops after the current item.
    """

    def __init__(
        self,
        store: TaskStore,
        index_store: TaskIndexStore,
        container_path: list[str],
        prune_missing: bool = False,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.store = store
        self.index_store = index_store
        self.container_path = list(container_path)
        self.prune_missing = prune_missing
        self.stop_event = stop_event or threading.Event()
        self.interrupted = False

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def reconcile(self, items: Iterable[RemoteItem]) -> list[SyncResult]:
        """Mirror *items* into the task store and rewrite the index.

        Returns:
            One result per processed item, in input order.

        Raises:
            TaskStoreError: If the destination list cannot be resolved.
                Nothing else has happened at that point.
            IndexWriteError: If the new index cannot be saved.  The
                exception's ``results`` holds the full result list.
        """
        items = list(items)
        self.interrupted = False

        list_handle = self.store.resolve_destination_list(self.container_path)

        index = self.index_store.load()
        known = index.by_external_id()

        results: list[SyncResult] = []
        records: dict[str, TaskRecord] = {}
        handled: set[str] = set()

        for item in items:
            if self.stop_event.is_set():
                self.interrupted = True
                logger.warning(
                    "Stop requested, %d of %d items left unprocessed",
                    len(items) - len(results),
                    len(items),
                )
                break

            handled.add(item.id)
            # An id repeated in the listing is updated, not created twice
            existing = records.get(item.id) or known.get(item.id)
            try:
                if existing is not None:
                    record = self.store.update_task(
                        existing.task_id, item, existing.tags
                    )
                    action = SyncAction.UPDATED
                else:
                    record, list_handle = self._create(list_handle, item)
                    action = SyncAction.CREATED
            except Exception as exc:
                kind = exc.kind if isinstance(exc, TaskStoreError) else None
                logger.error(
                    "Failed to mirror '%s' (%s): %s", item.name, item.id, exc
                )
                results.append(
                    SyncResult(
                        action=SyncAction.FAILED,
                        external_item_id=item.id,
                        task_id=existing.task_id if existing else None,
                        error=str(exc),
                        error_kind=kind.value if kind else None,
                    )
                )
                if existing is not None and kind != ErrorKind.NOT_FOUND:
                    records[item.id] = existing
                else:
                    records.pop(item.id, None)
                continue

            records[item.id] = record
            results.append(
                SyncResult(
                    action=action,
                    external_item_id=item.id,
                    task_id=record.task_id,
                )
            )
            logger.debug("%s task %s for '%s'", action.value, record.task_id, item.name)

        for record in index.tasks:
            item_id = record.external_item_id
            if item_id in handled:
                continue
            if self.interrupted or not self.prune_missing:
                records[item_id] = record
            else:
                logger.info(
                    "Pruning index entry for '%s' (%s), absent from listing",
                    record.name,
                    item_id,
                )

        new_index = TaskIndex.build(list(records.values()))
        self._log_summary(results, new_index)
        try:
            self.index_store.save(new_index)
        except IndexWriteError as exc:
            exc.results = results
            logger.error("Task index not saved: %s", exc)
            raise
        except OSError as exc:
            logger.error("Task index not saved: %s", exc)
            raise IndexWriteError(str(exc), results=results) from exc

        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create(
        self, list_handle: ListHandle, item: RemoteItem
    ) -> tuple[TaskRecord, ListHandle]:
        """Create a task, re-resolving the list once if it has gone stale."""
        try:
            return self.store.create_task(list_handle, item), list_handle
        except TaskStoreError as exc:
            if exc.kind != ErrorKind.NOT_FOUND:
                raise
            logger.warning(
                "Destination list %s not found, resolving %s again",
                list_handle.id,
                "/".join(self.container_path),
            )
            self.store.invalidate(self.container_path)
            fresh = self.store.resolve_destination_list(self.container_path)
            if fresh.id == list_handle.id:
                raise
            return self.store.create_task(fresh, item), fresh

    @staticmethod
    def _log_summary(results: list[SyncResult], index: TaskIndex) -> None:
        counts = {action: 0 for action in SyncAction}
        for result in results:
            counts[result.action] += 1
        logger.info(
            "Reconciled %d items: %d created, %d updated, %d failed; index holds %d tasks",
            len(results),
            counts[SyncAction.CREATED],
            counts[SyncAction.UPDATED],
            counts[SyncAction.FAILED],
            index.total_tasks,
        )
