"""Full sync passes and service status.

``MirrorService`` owns one reconciler, one source and one index store.
A pass fetches the remote listing, applies the tag filter and hands the
items to the reconciler.  A non-blocking lock keeps passes from
overlapping: the scheduler and the HTTP trigger share the same service.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from .config import Config
from .core.client import ClickUpClient
from .errors import IndexWriteError, PassInProgressError, TaskMirrorError
from .sources import RemoteSource, build_source
from .sync.index import JsonTaskIndexStore, TaskIndexStore
from .sync.models import PassReport, utc_now
from .sync.reconciler import MirrorReconciler, TaskStore, filter_by_tags

logger = logging.getLogger(__name__)


class MirrorService:
    """Run sync passes and keep the outcome of the last one.

    Args:
        config: Runtime configuration.
        source: Remote collection source.
        store: Task store client.
        index_store: Task index persistence.
    """

    def __init__(
        self,
        config: Config,
        source: RemoteSource,
        store: TaskStore,
        index_store: TaskIndexStore,
    ) -> None:
        self.config = config
        self.source = source
        self.store = store
        self.index_store = index_store
        self.stop_event = threading.Event()
        self.reconciler = MirrorReconciler(
            store,
            index_store,
            config.container_path,
            prune_missing=config.prune_missing,
            stop_event=self.stop_event,
        )
        self._pass_lock = threading.Lock()
        self.last_report: PassReport | None = None
        self.last_error: str | None = None
        self.last_attempt_at = None
        self.pass_count = 0

    @classmethod
    def from_config(cls, config: Config) -> MirrorService:
        """Wire the production source, ClickUp client and JSON index."""
        return cls(
            config,
            source=build_source(config),
            store=ClickUpClient(config),
            index_store=JsonTaskIndexStore(config.index_path),
        )

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    def run_pass(self) -> PassReport:
        """Fetch the remote listing and reconcile it.

        Returns:
            The pass report.  ``index_saved`` is False when the index
            write failed; the results still reflect what happened
            remotely.

        Raises:
            PassInProgressError: If another pass is running.
            SourceFetchError: If the source cannot be listed.  The index
                is left untouched.
            TaskStoreError: If the destination list cannot be resolved.
        """
        if not self._pass_lock.acquire(blocking=False):
            raise PassInProgressError("A sync pass is already running")
        try:
            started_at = utc_now()
            self.last_attempt_at = started_at
            logger.info("Sync pass started (source: %s)", self.source.name)
            try:
                items = self.source.fetch_items()
                items = filter_by_tags(items, self.config.required_tags)
                logger.info("%d items selected for mirroring", len(items))

                index_error: str | None = None
                try:
                    results = self.reconciler.reconcile(items)
                except IndexWriteError as exc:
                    results = exc.results
                    index_error = str(exc)
            except TaskMirrorError as exc:
                self.last_error = str(exc)
                logger.error("Sync pass aborted: %s", exc)
                raise

            report = PassReport(
                started_at=started_at,
                completed_at=utc_now(),
                results=results,
                index_saved=index_error is None,
                index_error=index_error,
                interrupted=self.reconciler.interrupted,
            )
            self.last_report = report
            self.last_error = index_error
            self.pass_count += 1
            logger.info("Sync pass finished: %s", report.counts())
            return report
        finally:
            self._pass_lock.release()

    def request_stop(self) -> None:
        """Ask a running pass to stop after its current item.

        The stop is permanent: the event is never cleared, so every later
        ``run_pass`` on this service ends before its first item and
        reports ``interrupted``.  Used at shutdown.
        """
        self.stop_event.set()

    def status(self) -> dict[str, Any]:
        """Summarise the last pass and the stored index."""
        index = self.index_store.load()
        report = self.last_report
        return {
            "running": self.running,
            "passCount": self.pass_count,
            "lastAttemptAt": self.last_attempt_at.isoformat()
            if self.last_attempt_at
            else None,
            "lastPassAt": report.completed_at.isoformat()
            if report and report.completed_at
            else None,
            "lastCounts": report.counts() if report else None,
            "lastError": self.last_error,
            "index": {
                "generatedAt": index.generated_at.isoformat(),
                "totalTasks": index.total_tasks,
            },
        }

    def verify_connections(self) -> dict[str, dict[str, Any]]:
        """Check the task store and the source; never raises."""
        status: dict[str, dict[str, Any]] = {}
        validate = getattr(self.store, "validate_connection", None)
        if validate is None:
            status["clickup"] = {"status": False, "message": "Not checked"}
        else:
            try:
                name = validate()
                status["clickup"] = {
                    "status": True,
                    "message": f"Connected to workspace: {name}",
                }
                logger.info("ClickUp connection verified successfully")
            except TaskMirrorError as exc:
                logger.error("ClickUp connection failed: %s", exc)
                status["clickup"] = {
                    "status": False,
                    "message": f"Connection failed: {exc}",
                }
        status[self.source.name] = self.source.check_connection()
        return status
