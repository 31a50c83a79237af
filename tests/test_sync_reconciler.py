"""Tests for MirrorReconciler.

Covers:
- First pass creates one task per item and indexes it
- Second pass over the same listing updates, never creates
- A tag dropped from a file is removed from the task and the index
- A failed create is reported and not indexed, later items still run
- A failed update keeps the previous record unless the task is gone
- Absent items are carried forward unless prune_missing is set
- A stop request ends the pass and keeps unreached records
- A stale destination list is re-resolved once
- An unresolvable destination aborts before any item work
- An index write failure still exposes every result
- Tag filtering
"""

from __future__ import annotations

import threading

import pytest
from conftest import FakeTaskStore, make_item

from taskmirror.errors import ErrorKind, IndexWriteError, TaskStoreError
from taskmirror.sync.index import MemoryTaskIndexStore
from taskmirror.sync.models import SyncAction, TaskIndex, TaskRecord
from taskmirror.sync.reconciler import MirrorReconciler, filter_by_tags

PATH = ["Drive Mirror", "Inbox"]


def _reconciler(store, index_store=None, **kwargs) -> MirrorReconciler:
    return MirrorReconciler(
        store, index_store or MemoryTaskIndexStore(), PATH, **kwargs
    )


def _indexed(*pairs: tuple[str, str]) -> MemoryTaskIndexStore:
    return MemoryTaskIndexStore(
        TaskIndex.build(
            [
                TaskRecord(task_id=task_id, external_item_id=item_id, name=item_id)
                for item_id, task_id in pairs
            ]
        )
    )


class FailingIndexStore(MemoryTaskIndexStore):
    def save(self, index: TaskIndex) -> None:
        raise IndexWriteError("disk full")


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------


class TestCreateAndUpdate:
    def test_first_pass_creates_and_indexes(self, fake_store: FakeTaskStore):
        index_store = MemoryTaskIndexStore()
        results = _reconciler(fake_store, index_store).reconcile([make_item("f1")])

        assert len(results) == 1
        assert results[0].action == SyncAction.CREATED
        assert results[0].external_item_id == "f1"
        assert results[0].task_id == "t-100"
        assert index_store.index.total_tasks == 1
        assert index_store.index.by_external_id()["f1"].task_id == "t-100"

    def test_second_pass_updates(self, fake_store: FakeTaskStore):
        index_store = MemoryTaskIndexStore()
        reconciler = _reconciler(fake_store, index_store)
        reconciler.reconcile([make_item("f1")])
        results = reconciler.reconcile([make_item("f1", name="Renamed.pdf")])

        assert [r.action for r in results] == [SyncAction.UPDATED]
        assert results[0].task_id == "t-100"
        assert fake_store.create_calls == ["f1"]
        assert fake_store.tasks["t-100"]["name"] == "Renamed.pdf"
        assert index_store.index.tasks[0].name == "Renamed.pdf"

    def test_dropped_tag_removed_and_index_follows(self, fake_store: FakeTaskStore):
        index_store = MemoryTaskIndexStore()
        reconciler = _reconciler(fake_store, index_store)
        reconciler.reconcile([make_item("f1", tags=frozenset({"urgent", "q3"}))])
        assert fake_store.tasks["t-100"]["tags"] == {"urgent", "q3"}

        reconciler.reconcile([make_item("f1", tags=frozenset({"urgent"}))])
        assert fake_store.removed_tags == ["q3"]
        assert fake_store.tasks["t-100"]["tags"] == {"urgent"}
        assert index_store.index.tasks[0].tags == ["urgent"]

        # Index and task agree, so a third pass has nothing left to remove
        reconciler.reconcile([make_item("f1", tags=frozenset({"urgent"}))])
        assert fake_store.removed_tags == ["q3"]

    def test_repeated_passes_are_idempotent(self, fake_store: FakeTaskStore):
        index_store = MemoryTaskIndexStore()
        reconciler = _reconciler(fake_store, index_store)
        items = [make_item("f1"), make_item("f2")]
        for _ in range(3):
            reconciler.reconcile(items)

        assert len(fake_store.tasks) == 2
        assert index_store.index.total_tasks == 2
        assert len(fake_store.update_calls) == 4

    def test_results_follow_input_order(self, fake_store: FakeTaskStore):
        index_store = _indexed(("f2", "t-9"))
        results = _reconciler(fake_store, index_store).reconcile(
            [make_item("f3"), make_item("f2"), make_item("f1")]
        )
        assert [r.external_item_id for r in results] == ["f3", "f2", "f1"]
        assert [r.action for r in results] == [
            SyncAction.CREATED,
            SyncAction.UPDATED,
            SyncAction.CREATED,
        ]

    def test_update_passes_known_tags(self):
        store = FakeTaskStore()
        seen = {}

        def update_task(task_id, item, known_tags=None):
            seen["known"] = known_tags
            return FakeTaskStore.update_task(store, task_id, item, known_tags)

        store.update_task = update_task
        index_store = MemoryTaskIndexStore(
            TaskIndex.build(
                [
                    TaskRecord(
                        task_id="t-1",
                        external_item_id="f1",
                        name="A",
                        tags=["urgent"],
                    )
                ]
            )
        )
        _reconciler(store, index_store).reconcile([make_item("f1")])
        assert seen["known"] == ["urgent"]

    def test_duplicate_id_in_listing_creates_once(self, fake_store: FakeTaskStore):
        index_store = MemoryTaskIndexStore()
        results = _reconciler(fake_store, index_store).reconcile(
            [make_item("f1"), make_item("f1", name="Again")]
        )
        assert [r.action for r in results] == [SyncAction.CREATED, SyncAction.UPDATED]
        assert fake_store.create_calls == ["f1"]
        assert index_store.index.total_tasks == 1

    def test_empty_listing_rewrites_index(self, fake_store: FakeTaskStore):
        index_store = MemoryTaskIndexStore()
        assert _reconciler(fake_store, index_store).reconcile([]) == []
        assert index_store.save_count == 1


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestPartialFailure:
    def test_failed_create_not_indexed(self, fake_store: FakeTaskStore):
        fake_store.fail_create["f2"] = TaskStoreError(
            ErrorKind.SERVER, "boom", status_code=500
        )
        index_store = MemoryTaskIndexStore()
        results = _reconciler(fake_store, index_store).reconcile(
            [make_item("f1"), make_item("f2"), make_item("f3")]
        )

        assert [r.action for r in results] == [
            SyncAction.CREATED,
            SyncAction.FAILED,
            SyncAction.CREATED,
        ]
        failed = results[1]
        assert failed.task_id is None
        assert failed.error_kind == "server"
        assert "boom" in failed.error
        assert set(index_store.index.by_external_id()) == {"f1", "f3"}

    def test_failed_create_retried_next_pass(self, fake_store: FakeTaskStore):
        fake_store.fail_create["f1"] = TaskStoreError(ErrorKind.RATE_LIMITED, "slow down")
        index_store = MemoryTaskIndexStore()
        reconciler = _reconciler(fake_store, index_store)
        reconciler.reconcile([make_item("f1")])

        del fake_store.fail_create["f1"]
        results = reconciler.reconcile([make_item("f1")])
        assert results[0].action == SyncAction.CREATED
        assert fake_store.create_calls == ["f1", "f1"]

    def test_failed_update_keeps_record(self, fake_store: FakeTaskStore):
        fake_store.fail_update["f1"] = TaskStoreError(ErrorKind.NETWORK, "timeout")
        index_store = _indexed(("f1", "t-7"))
        results = _reconciler(fake_store, index_store).reconcile([make_item("f1")])

        assert results[0].action == SyncAction.FAILED
        assert results[0].task_id == "t-7"
        assert results[0].error_kind == "network"
        assert index_store.index.by_external_id()["f1"].task_id == "t-7"
        assert fake_store.create_calls == []

    def test_update_of_deleted_task_drops_record(self, fake_store: FakeTaskStore):
        fake_store.fail_update["f1"] = TaskStoreError(
            ErrorKind.NOT_FOUND, "Task not found", status_code=404
        )
        index_store = _indexed(("f1", "t-7"))
        reconciler = _reconciler(fake_store, index_store)
        reconciler.reconcile([make_item("f1")])
        assert index_store.index.total_tasks == 0

        del fake_store.fail_update["f1"]
        results = reconciler.reconcile([make_item("f1")])
        assert results[0].action == SyncAction.CREATED

    def test_unexpected_exception_is_recorded(self, fake_store: FakeTaskStore):
        fake_store.fail_create["f1"] = RuntimeError("bug")  # type: ignore[assignment]
        results = _reconciler(fake_store).reconcile([make_item("f1"), make_item("f2")])
        assert results[0].action == SyncAction.FAILED
        assert results[0].error_kind is None
        assert results[1].action == SyncAction.CREATED

    def test_unresolvable_destination_aborts(self, fake_store: FakeTaskStore):
        fake_store.fail_resolve = TaskStoreError(ErrorKind.AUTH, "bad key", status_code=401)
        index_store = _indexed(("f1", "t-1"))
        with pytest.raises(TaskStoreError, match="bad key"):
            _reconciler(fake_store, index_store).reconcile([make_item("f2")])
        assert fake_store.create_calls == []
        assert index_store.save_count == 0

    def test_index_write_failure_carries_results(self, fake_store: FakeTaskStore):
        with pytest.raises(IndexWriteError) as exc_info:
            _reconciler(fake_store, FailingIndexStore()).reconcile(
                [make_item("f1"), make_item("f2")]
            )
        assert [r.action for r in exc_info.value.results] == [
            SyncAction.CREATED,
            SyncAction.CREATED,
        ]

    def test_os_error_on_save_is_wrapped(self, fake_store: FakeTaskStore):
        class OSErrorStore(MemoryTaskIndexStore):
            def save(self, index):
                raise OSError("no space left on device")

        with pytest.raises(IndexWriteError, match="no space left") as exc_info:
            _reconciler(fake_store, OSErrorStore()).reconcile([make_item("f1")])
        assert len(exc_info.value.results) == 1


# ---------------------------------------------------------------------------
# Stale destination list
# ---------------------------------------------------------------------------


class TestStaleList:
    def test_stale_list_resolved_again(self):
        store = FakeTaskStore(list_id="old")
        store.stale_lists.add("old")
        original_resolve = store.resolve_destination_list

        def resolve(path):
            handle = original_resolve(path)
            store.list_id = "new"
            return handle

        store.resolve_destination_list = resolve
        results = _reconciler(store).reconcile([make_item("f1"), make_item("f2")])

        assert [r.action for r in results] == [SyncAction.CREATED, SyncAction.CREATED]
        assert store.invalidated == 1
        assert store.tasks["t-100"]["list"] == "new"
        assert store.tasks["t-101"]["list"] == "new"

    def test_same_list_after_resolve_fails_item(self):
        store = FakeTaskStore(list_id="gone")
        store.stale_lists.add("gone")
        results = _reconciler(store).reconcile([make_item("f1")])
        assert results[0].action == SyncAction.FAILED
        assert results[0].error_kind == "not_found"
        assert store.invalidated == 1


# ---------------------------------------------------------------------------
# Retention of absent items
# ---------------------------------------------------------------------------


class TestRetention:
    def test_absent_items_carried_forward(self, fake_store: FakeTaskStore):
        index_store = _indexed(("f1", "t-1"), ("gone", "t-2"))
        _reconciler(fake_store, index_store).reconcile([make_item("f1")])
        assert set(index_store.index.by_external_id()) == {"f1", "gone"}

    def test_prune_missing_drops_absent(self, fake_store: FakeTaskStore):
        index_store = _indexed(("f1", "t-1"), ("gone", "t-2"))
        _reconciler(fake_store, index_store, prune_missing=True).reconcile(
            [make_item("f1")]
        )
        assert set(index_store.index.by_external_id()) == {"f1"}
        assert index_store.index.total_tasks == 1


# ---------------------------------------------------------------------------
# Interruption
# ---------------------------------------------------------------------------


class TestInterrupt:
    def test_stop_event_ends_pass_after_current_item(self):
        stop = threading.Event()
        store = FakeTaskStore()
        original_create = store.create_task

        def create_then_stop(list_handle, item):
            record = original_create(list_handle, item)
            stop.set()
            return record

        store.create_task = create_then_stop
        index_store = _indexed(("f3", "t-9"))
        reconciler = _reconciler(
            store, index_store, prune_missing=True, stop_event=stop
        )
        results = reconciler.reconcile(
            [make_item("f1"), make_item("f2"), make_item("f3")]
        )

        assert [r.external_item_id for r in results] == ["f1"]
        assert reconciler.interrupted is True
        # Unreached records survive even with prune_missing
        assert set(index_store.index.by_external_id()) == {"f1", "f3"}

    def test_interrupted_flag_resets(self, fake_store: FakeTaskStore):
        stop = threading.Event()
        stop.set()
        reconciler = _reconciler(fake_store, stop_event=stop)
        reconciler.reconcile([make_item("f1")])
        assert reconciler.interrupted is True

        stop.clear()
        reconciler.reconcile([make_item("f1")])
        assert reconciler.interrupted is False


# ---------------------------------------------------------------------------
# filter_by_tags()
# ---------------------------------------------------------------------------


class TestFilterByTags:
    def test_no_required_tags_keeps_everything(self):
        items = [make_item("f1"), make_item("f2", tags=frozenset({"x"}))]
        assert filter_by_tags(items, []) == items

    def test_case_insensitive_match(self):
        items = [
            make_item("f1", tags=frozenset({"Urgent"})),
            make_item("f2", tags=frozenset({"later"})),
            make_item("f3"),
        ]
        kept = filter_by_tags(items, ["urgent", "review"])
        assert [i.id for i in kept] == ["f1"]

    def test_blank_tags_ignored(self):
        items = [make_item("f1")]
        assert filter_by_tags(items, ["  ", ""]) == items
