"""Shared pytest fixtures for taskmirror tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest

from taskmirror.config import ClickUpCredentials, Config, DriveCredentials
from taskmirror.core.client import ListHandle, describe_item, task_tags
from taskmirror.errors import ErrorKind, TaskStoreError
from taskmirror.sync.models import RemoteItem, TaskRecord

# Environment variables load_config() reads; cleared for every test so a
# developer's shell or .env cannot leak into assertions.
CONFIG_ENV_VARS = (
    "CLICKUP_API_KEY",
    "CLICKUP_API_TOKEN",
    "CLICKUP_WORKSPACE_ID",
    "CLICKUP_SPACE",
    "CLICKUP_FOLDER",
    "CLICKUP_LIST",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REFRESH_TOKEN",
    "DRIVE_FOLDER_ID",
    "DRIVE_SCAN_DEPTH",
    "TASKMIRROR_SOURCE",
    "TASKMIRROR_CONFIG",
    "TASKMIRROR_DEBUG",
    "TASKMIRROR_REQUEST_TIMEOUT",
    "TASKMIRROR_RUN_ON_START",
    "MIRROR_TAGS",
    "MIRROR_PRUNE_MISSING",
    "SCAN_INTERVAL",
    "MEMORY_STORAGE_PATH",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "LOG_FILE",
)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live ClickUp/Drive credentials",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring live ClickUp and Drive credentials"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(autouse=True)
def clean_env(request, monkeypatch, tmp_path):
    """Isolate tests from the caller's environment and config files.

    Live tests keep the real environment so they can read credentials.
    """
    if request.node.get_closest_marker("live"):
        return
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def mock_config(tmp_path: Path) -> Config:
    """A valid Config pointing the index into tmp_path."""
    return Config(
        clickup=ClickUpCredentials(api_key="pk_test", workspace_id="9001"),
        drive=DriveCredentials(
            client_id="cid", client_secret="secret", refresh_token="refresh"
        ),
        source="drive",
        container_path=["Drive Mirror", "Inbox"],
        index_path=tmp_path / "memory-cord" / "task_index.json",
    )


def make_item(item_id: str, name: Optional[str] = None, **kwargs: Any) -> RemoteItem:
    """Build a RemoteItem with sensible defaults."""
    defaults: Dict[str, Any] = {
        "id": item_id,
        "name": name or f"File {item_id}",
        "kind": "application/pdf",
        "tags": frozenset(),
        "location": "My Drive/Inbox",
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "modified_at": datetime(2025, 1, 2, tzinfo=timezone.utc),
        "size_bytes": 1024,
        "source_link": f"https://drive.google.com/file/d/{item_id}/view",
    }
    defaults.update(kwargs)
    return RemoteItem(**defaults)


class FakeTaskStore:
    """In-memory ClickUpClient replacement.

    Task ids are assigned sequentially from ``t-100``.  Tags follow
    ClickUp: an update adds and removes them relative to ``known_tags``.
    Failures are injected per item id through ``fail_create`` / ``fail_update``.
    """

    def __init__(self, list_id: str = "list-1") -> None:
        self.list_id = list_id
        self.next_task = 100
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.create_calls: List[str] = []
        self.update_calls: List[str] = []
        self.removed_tags: List[str] = []
        self.resolve_calls = 0
        self.invalidated = 0
        self.fail_create: Dict[str, TaskStoreError] = {}
        self.fail_update: Dict[str, TaskStoreError] = {}
        self.fail_resolve: Optional[TaskStoreError] = None
        self.stale_lists: Set[str] = set()
        self._handle: Optional[ListHandle] = None

    def resolve_destination_list(self, path: List[str]) -> ListHandle:
        self.resolve_calls += 1
        if self.fail_resolve is not None:
            raise self.fail_resolve
        if self._handle is None:
            self._handle = ListHandle(id=self.list_id, name=path[-1], path=tuple(path))
        return self._handle

    def invalidate(self, path: Optional[List[str]] = None) -> None:
        self.invalidated += 1
        self._handle = None

    def create_task(self, list_handle: ListHandle, item: RemoteItem) -> TaskRecord:
        self.create_calls.append(item.id)
        if item.id in self.fail_create:
            raise self.fail_create[item.id]
        if list_handle.id in self.stale_lists:
            raise TaskStoreError(ErrorKind.NOT_FOUND, "List not found", status_code=404)
        task_id = f"t-{self.next_task}"
        self.next_task += 1
        self.tasks[task_id] = {"name": item.name, "list": list_handle.id, "tags": set(task_tags(item))}
        return TaskRecord(
            task_id=task_id,
            external_item_id=item.id,
            name=item.name,
            description=describe_item(item),
            tags=task_tags(item),
        )

    def update_task(
        self, task_id: str, item: RemoteItem, known_tags: Optional[List[str]] = None
    ) -> TaskRecord:
        self.update_calls.append(item.id)
        if item.id in self.fail_update:
            raise self.fail_update[item.id]
        task = self.tasks.setdefault(task_id, {"tags": set()})
        task["name"] = item.name
        known = set(known_tags or [])
        wanted = set(task_tags(item))
        task.setdefault("tags", set()).update(wanted - known)
        task["tags"].difference_update(known - wanted)
        self.removed_tags.extend(sorted(known - wanted))
        return TaskRecord(
            task_id=task_id,
            external_item_id=item.id,
            name=item.name,
            description=describe_item(item),
            tags=task_tags(item),
        )


@pytest.fixture
def fake_store() -> FakeTaskStore:
    return FakeTaskStore()
