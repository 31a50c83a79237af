"""
HTTP façade for the mirror service.

Exposes a manual trigger, status, connection checks, Drive browsing and
recent log lines.  The app owns the scheduler through its lifespan: the
recurring pass starts with the server and stops (after the current item)
on shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from fastapi import FastAPI, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .core.async_utils import run_sync
from .errors import PassInProgressError, SourceFetchError, TaskStoreError
from .logger import recent_logs
from .scheduler import Scheduler
from .service import MirrorService
from .sources import DriveSource
from .sync.reporter import report_to_json

logger = logging.getLogger(__name__)

MIRROR_TASK = "mirror"
SHUTDOWN_TIMEOUT = 60.0


class ErrorCode(str, Enum):
    """Standard error codes for API responses."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    PASS_IN_PROGRESS = "PASS_IN_PROGRESS"
    SOURCE_ERROR = "SOURCE_ERROR"
    TASK_STORE_ERROR = "TASK_STORE_ERROR"
    INDEX_WRITE_ERROR = "INDEX_WRITE_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model."""

    success: bool = False
    error_code: ErrorCode
    message: str
    detail: Any = None


def _error(status_code: int, code: ErrorCode, message: str, detail: Any = None) -> JSONResponse:
    body = ErrorResponse(error_code=code, message=message, detail=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def create_app(
    service: MirrorService,
    scheduler: Scheduler | None = None,
    schedule: bool = True,
) -> FastAPI:
    """Build the FastAPI app around *service*.

    Args:
        service: The mirror service handling passes.
        scheduler: Scheduler to register the recurring pass with.
        schedule: If False, no recurring pass is registered (tests, or
            trigger-only deployments).
    """
    scheduler = scheduler or Scheduler()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("taskmirror %s starting", __version__)
        if schedule:
            scheduler.schedule(
                MIRROR_TASK,
                service.config.interval_minutes,
                service.run_pass,
                run_on_start=service.config.run_on_start,
            )
        yield
        logger.info("taskmirror shutting down")
        service.request_stop()
        await run_sync(scheduler.shutdown, SHUTDOWN_TIMEOUT)

    app = FastAPI(
        title="taskmirror",
        description="Mirror Google Drive files into ClickUp tasks",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.scheduler = scheduler

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/status")
    async def get_status() -> dict[str, Any]:
        """Last pass, index totals and schedule."""
        body = await run_sync(service.status)
        job = scheduler.get(MIRROR_TASK)
        next_run = scheduler.next_scheduled_run()
        body["version"] = __version__
        body["schedule"] = job.describe() if job else None
        body["nextScheduledRun"] = next_run.isoformat() if next_run else None
        return body

    @app.post("/sync")
    async def trigger_sync() -> Any:
        """Run a pass now and return its results."""
        logger.info("Manual sync requested")
        try:
            report = await run_sync(service.run_pass)
        except PassInProgressError as e:
            return _error(status.HTTP_409_CONFLICT, ErrorCode.PASS_IN_PROGRESS, str(e))
        except SourceFetchError as e:
            return _error(status.HTTP_502_BAD_GATEWAY, ErrorCode.SOURCE_ERROR, str(e))
        except TaskStoreError as e:
            return _error(
                status.HTTP_502_BAD_GATEWAY,
                ErrorCode.TASK_STORE_ERROR,
                str(e),
                detail={"kind": e.kind.value},
            )

        body = report_to_json(report)
        if not report.index_saved:
            return _error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                ErrorCode.INDEX_WRITE_ERROR,
                report.index_error or "Task index not saved",
                detail=body,
            )
        body["success"] = True
        return body

    @app.get("/connections")
    async def connections() -> dict[str, Any]:
        return await run_sync(service.verify_connections)

    def _drive() -> DriveSource | None:
        source = service.source
        return source if isinstance(source, DriveSource) else None

    @app.get("/drive/files")
    async def drive_files(
        folderId: str | None = None,
        pageSize: int = Query(default=10, ge=1, le=1000),
        query: str | None = None,
    ) -> Any:
        drive = _drive()
        if drive is None:
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND, "Google Drive source not configured")
        try:
            files = await run_sync(drive.list_files, folderId, pageSize, query)
        except SourceFetchError as e:
            return _error(status.HTTP_502_BAD_GATEWAY, ErrorCode.SOURCE_ERROR, str(e))
        return {"success": True, "files": files}

    @app.get("/drive/scan")
    async def drive_scan(
        folderId: str | None = None,
        depth: int = Query(default=2, ge=0, le=10),
    ) -> Any:
        if not folderId:
            return _error(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, "Folder ID is required")
        drive = _drive()
        if drive is None:
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND, "Google Drive source not configured")
        try:
            tree = await run_sync(drive.scan_folder, folderId, depth)
        except SourceFetchError as e:
            return _error(status.HTTP_502_BAD_GATEWAY, ErrorCode.SOURCE_ERROR, str(e))
        if tree is None:
            logger.warning("Drive folder scan of %s returned no results", folderId)
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND, "Folder not found")
        return {"success": True, "folder": tree}

    @app.get("/logs")
    async def logs(count: int = Query(default=5, ge=1, le=200)) -> dict[str, Any]:
        return {"count": len(recent_logs), "entries": recent_logs.recent(count)}

    return app
