import logging
import threading
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import requests

from ..config import Config
from ..errors import ErrorKind, TaskStoreError, classify_status
from ..sync.models import RemoteItem, TaskRecord

logger = logging.getLogger(__name__)

CLICKUP_API_BASE = "https://api.clickup.com/api/v2"
CONNECT_TIMEOUT = 10.0

# Phrases ClickUp uses when a named container already exists
_ALREADY_EXISTS_MARKERS = ("already exists", "name taken", "already taken")


@dataclass(frozen=True)
class ListHandle:
    """A resolved destination list."""

    id: str
    name: str
    path: tuple[str, ...]


def describe_item(item: RemoteItem) -> str:
    """Build the task description for a mirrored remote item."""
    lines = [f"Mirrored from: {item.location or '/'}"]
    if item.kind:
        lines.append(f"Type: {item.kind}")
    if item.created_at:
        lines.append(f"Created: {item.created_at.isoformat()}")
    if item.modified_at:
        lines.append(f"Modified: {item.modified_at.isoformat()}")
    if item.size_bytes is not None:
        lines.append(f"Size: {item.size_bytes} bytes")
    if item.source_link:
        lines.append(f"Link: {item.source_link}")
    lines.append(f"Source id: {item.id}")
    return "\n".join(lines)


def task_tags(item: RemoteItem) -> list[str]:
    """ClickUp stores tags lowercase; keep a stable order."""
    return sorted({t.strip().lower() for t in item.tags if t.strip()})


class ClickUpClient:
    """Client for the parts of the ClickUp v2 REST API the mirror uses.

    Resolved destination lists are memoised for the lifetime of the
    client.  Call ``invalidate()`` when a list id turns out to be stale.
    """

    def __init__(self, config: Config, base_url: str = CLICKUP_API_BASE):
        self.config = config
        self.base_url = base_url.rstrip("/")
        self.timeout = (CONNECT_TIMEOUT, config.request_timeout)
        self._thread_local = threading.local()
        self._lists: dict[tuple[str, ...], ListHandle] = {}
        self._lists_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": self.config.clickup.api_key,
                "Content-Type": "application/json",
            }
        )
        return session

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """
        Make a request to the ClickUp API and return the decoded body.

        Raises:
            TaskStoreError: With a kind describing the failure.
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._get_session().request(
                method, url, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise TaskStoreError(
                ErrorKind.NETWORK, f"{method} {path} failed: {e}"
            ) from e

        if response.status_code >= 400:
            message = self._error_message(response)
            kind = classify_status(response.status_code)
            if response.status_code == 400 and any(
                marker in message.lower() for marker in _ALREADY_EXISTS_MARKERS
            ):
                kind = ErrorKind.CONFLICT
            raise TaskStoreError(
                kind,
                f"{method} {path}: {message}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise TaskStoreError(
                ErrorKind.MALFORMED_RESPONSE,
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise TaskStoreError(
                ErrorKind.MALFORMED_RESPONSE,
                f"{method} {path} returned {type(data).__name__}, expected object",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason or "request failed"
        if isinstance(body, dict):
            return str(body.get("err") or body.get("error") or body)
        return str(body)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def get_teams(self) -> list[dict]:
        """List the workspaces the API key can access."""
        return self._request("GET", "/team").get("teams", [])

    def validate_connection(self) -> str:
        """
        Check the API key against the configured workspace.
        Returns the workspace name if successful.
        """
        workspace_id = self.config.clickup.workspace_id
        for team in self.get_teams():
            if str(team.get("id")) == workspace_id:
                return str(team.get("name", workspace_id))
        raise TaskStoreError(
            ErrorKind.NOT_FOUND,
            f"Workspace {workspace_id} is not accessible with this API key",
        )

    # ------------------------------------------------------------------
    # Container resolution
    # ------------------------------------------------------------------

    def resolve_destination_list(self, path: list[str]) -> ListHandle:
        """
        Resolve ``[space, folder, list]`` or ``[space, list]`` to a list,
        creating any missing level in order.

        Repeated calls with the same path return the memoised handle.
        """
        key = tuple(path)
        with self._lists_lock:
            cached = self._lists.get(key)
        if cached is not None:
            return cached

        if len(key) not in (2, 3):
            raise ValueError(
                f"Container path must have 2 or 3 names, got {len(key)}"
            )

        workspace_id = self.config.clickup.workspace_id
        space_id = self._resolve_level(
            f"/team/{workspace_id}/space", "spaces", key[0]
        )
        if len(key) == 3:
            folder_id = self._resolve_level(
                f"/space/{space_id}/folder", "folders", key[1]
            )
            list_id = self._resolve_level(
                f"/folder/{folder_id}/list", "lists", key[2]
            )
        else:
            list_id = self._resolve_level(
                f"/space/{space_id}/list", "lists", key[1]
            )

        handle = ListHandle(id=list_id, name=key[-1], path=key)
        with self._lists_lock:
            self._lists[key] = handle
        logger.info("Resolved destination %s -> list %s", "/".join(key), list_id)
        return handle

    def invalidate(self, path: list[str] | None = None) -> None:
        """Forget memoised list handles (all of them when *path* is None)."""
        with self._lists_lock:
            if path is None:
                self._lists.clear()
            else:
                self._lists.pop(tuple(path), None)

    def _resolve_level(self, collection: str, key: str, name: str) -> str:
        """Find *name* in *collection*, creating it if absent.

        A create that fails because another process created the same name
        in the meantime is treated as success: the collection is listed
        again and the existing entry used.
        """
        found = self._find_named(collection, key, name)
        if found is not None:
            return found

        logger.info("Creating %s '%s'", key.rstrip("s"), name)
        try:
            created = self._request("POST", collection, json={"name": name})
        except TaskStoreError as e:
            if e.kind != ErrorKind.CONFLICT:
                raise
            logger.info("'%s' was created concurrently, reusing it", name)
            found = self._find_named(collection, key, name)
            if found is None:
                raise
            return found

        new_id = created.get("id")
        if not new_id:
            raise TaskStoreError(
                ErrorKind.MALFORMED_RESPONSE,
                f"Create {key.rstrip('s')} '{name}' returned no id",
            )
        return str(new_id)

    def _find_named(self, collection: str, key: str, name: str) -> str | None:
        data = self._request("GET", collection, params={"archived": "false"})
        wanted = name.strip().lower()
        for entry in data.get(key, []):
            if str(entry.get("name", "")).strip().lower() == wanted:
                entry_id = entry.get("id")
                if not entry_id:
                    raise TaskStoreError(
                        ErrorKind.MALFORMED_RESPONSE,
                        f"{key.rstrip('s').capitalize()} '{name}' listed without an id",
                    )
                return str(entry_id)
        return None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, list_handle: ListHandle, item: RemoteItem) -> TaskRecord:
        """
        Create a task mirroring *item* in *list_handle*.

        Raises:
            TaskStoreError: If the request fails or returns no task id.
        """
        description = describe_item(item)
        tags = task_tags(item)
        data = self._request(
            "POST",
            f"/list/{list_handle.id}/task",
            json={"name": item.name, "description": description, "tags": tags},
        )
        task_id = data.get("id")
        if not task_id:
            raise TaskStoreError(
                ErrorKind.MALFORMED_RESPONSE,
                f"Create task for '{item.name}' returned no id",
            )
        return TaskRecord(
            task_id=str(task_id),
            external_item_id=item.id,
            name=item.name,
            description=description,
            tags=tags,
        )

    def update_task(
        self,
        task_id: str,
        item: RemoteItem,
        known_tags: list[str] | None = None,
    ) -> TaskRecord:
        """
        Update name, description and tags of *task_id*.

        ClickUp ignores tags on task update, so tags are reconciled
        against *known_tags* through the tag endpoint: new ones are
        attached, dropped ones removed.
        """
        description = describe_item(item)
        tags = task_tags(item)
        self._request(
            "PUT",
            f"/task/{task_id}",
            json={"name": item.name, "description": description},
        )
        existing = set(known_tags or [])
        for tag in tags:
            if tag not in existing:
                self._request(
                    "POST", f"/task/{task_id}/tag/{quote(tag, safe='')}"
                )
        for tag in sorted(existing - set(tags)):
            self._request(
                "DELETE", f"/task/{task_id}/tag/{quote(tag, safe='')}"
            )
        return TaskRecord(
            task_id=task_id,
            external_item_id=item.id,
            name=item.name,
            description=description,
            tags=tags,
        )

    def create_or_update_task(
        self,
        list_handle: ListHandle,
        item: RemoteItem,
        existing: TaskRecord | None = None,
    ) -> TaskRecord:
        """Update the task in *existing* if given, otherwise create one."""
        if existing is not None:
            return self.update_task(existing.task_id, item, existing.tags)
        return self.create_task(list_handle, item)
