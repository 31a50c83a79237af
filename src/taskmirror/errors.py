"""Exception hierarchy for taskmirror.

Exception Hierarchy:
    TaskMirrorError (base)
    ├── ConfigurationError (missing or malformed credentials/settings)
    ├── SourceFetchError (remote collection source unreachable)
    ├── TaskStoreError (task tracker call failed, carries an ErrorKind)
    ├── IndexWriteError (task index could not be persisted)
    └── PassInProgressError (a sync pass is already running)

Only ``ConfigurationError`` and ``SourceFetchError`` abort a pass before
any task store call.  ``TaskStoreError`` raised for a single item is
recovered by the reconciler and recorded as a failed result.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .sync.models import SyncResult


class ErrorKind(str, Enum):
    """Categories of task store failures."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    MALFORMED_RESPONSE = "malformed_response"
    CONFLICT = "conflict"
    SERVER = "server"


class TaskMirrorError(Exception):
    """Base exception for all taskmirror errors.

    Attributes:
        message: Human-readable error message.
        context: Additional context passed as keyword arguments.
    """

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class ConfigurationError(TaskMirrorError):
    """Required configuration is missing or invalid."""


class SourceFetchError(TaskMirrorError):
    """The remote collection source could not be listed.

    Attributes:
        source: Name of the source that failed (e.g. ``"drive"``).
    """

    def __init__(self, source: str, message: str, **context: object) -> None:
        super().__init__(message, source=source, **context)
        self.source = source

    def __str__(self) -> str:
        return f"[{self.source}] {self.message}"


class TaskStoreError(TaskMirrorError):
    """A task tracker request failed.

    Attributes:
        kind: Failure category, used to decide retry/retention policy.
        status_code: HTTP status code when the server answered.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
        **context: object,
    ) -> None:
        super().__init__(message, **context)
        self.kind = kind
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.kind.value} (HTTP {self.status_code}): {self.message}"
        return f"{self.kind.value}: {self.message}"


class IndexWriteError(TaskMirrorError):
    """The task index could not be written.

    Remote side effects of the pass have already happened.  ``results``
    holds the full outcome list so callers can still report it.
    """

    def __init__(
        self,
        message: str,
        results: list[SyncResult] | None = None,
        **context: object,
    ) -> None:
        super().__init__(message, **context)
        self.results: list[SyncResult] = list(results or [])


class PassInProgressError(TaskMirrorError):
    """Raised when a pass is requested while another one is running."""


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an ``ErrorKind``."""
    match status_code:
        case 401 | 403:
            return ErrorKind.AUTH
        case 404:
            return ErrorKind.NOT_FOUND
        case 409:
            return ErrorKind.CONFLICT
        case 429:
            return ErrorKind.RATE_LIMITED
        case _:
            return ErrorKind.SERVER
