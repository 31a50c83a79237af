"""Google Drive as a remote collection source.

Scans a root folder recursively (to a configured depth) through the
Drive v3 API and turns every non-folder file into a ``RemoteItem``.

Tags are read from two places:

* the ``tags`` key of the file's ``properties`` or ``appProperties``
  (comma-separated), and
* ``#hashtags`` in the file description.

Access tokens are refreshed by ``google-auth`` from the stored refresh
token; every HTTP call goes through an ``httplib2.Http`` with a finite
timeout.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterator

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import Config
from ..errors import ConfigurationError, SourceFetchError
from ..sync.models import RemoteItem

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
FOLDER_MIME = "application/vnd.google-apps.folder"
FILE_FIELDS = (
    "id, name, mimeType, createdTime, modifiedTime, size, webViewLink, "
    "description, properties, appProperties"
)
PAGE_SIZE = 100

_HASHTAG = re.compile(r"(?<![\w#])#([\w-]+)")


def extract_tags(file: dict[str, Any]) -> frozenset[str]:
    """Collect tags from Drive properties and description hashtags."""
    tags: set[str] = set()
    for key in ("properties", "appProperties"):
        raw = (file.get(key) or {}).get("tags")
        if raw:
            tags.update(t.strip() for t in str(raw).split(",") if t.strip())
    description = file.get("description") or ""
    tags.update(_HASHTAG.findall(description))
    return frozenset(tags)


def to_remote_item(file: dict[str, Any], location: str) -> RemoteItem:
    """Convert a Drive file resource into a ``RemoteItem``."""
    size = file.get("size")
    return RemoteItem(
        id=file["id"],
        name=file.get("name", ""),
        kind=file.get("mimeType", ""),
        tags=extract_tags(file),
        location=location,
        created_at=file.get("createdTime"),
        modified_at=file.get("modifiedTime"),
        size_bytes=int(size) if size is not None else None,
        source_link=file.get("webViewLink", ""),
    )


class DriveSource:
    """Remote source that scans a Google Drive folder tree.

    Args:
        config: Runtime configuration with Drive credentials.
        service: Prebuilt Drive API resource; built lazily from the
            credentials when omitted.
    """

    name = "drive"

    def __init__(self, config: Config, service: Any | None = None) -> None:
        self.config = config
        self.root_folder_id = config.root_folder_id
        self.depth = config.scan_depth
        self._service = service

    # ------------------------------------------------------------------
    # Service
    # ------------------------------------------------------------------

    @property
    def service(self) -> Any:
        if self._service is None:
            self._service = self._build_service()
        return self._service

    def _build_service(self) -> Any:
        drive = self.config.drive
        if drive is None:
            raise ConfigurationError("Google Drive credentials are not configured")
        creds = Credentials(
            token=None,
            refresh_token=drive.refresh_token,
            client_id=drive.client_id,
            client_secret=drive.client_secret,
            token_uri=TOKEN_URI,
            scopes=SCOPES,
        )
        http = google_auth_httplib2.AuthorizedHttp(
            creds, http=httplib2.Http(timeout=self.config.request_timeout)
        )
        service = build("drive", "v3", http=http, cache_discovery=False)
        logger.info("Drive service built successfully")
        return service

    def _execute(self, request: Any) -> dict[str, Any]:
        """Execute an API request, wrapping transport and auth failures."""
        try:
            return request.execute()
        except HttpError as e:
            raise SourceFetchError(
                self.name,
                f"Drive API error {e.resp.status}: {e.reason}",
                status_code=e.resp.status,
            ) from e
        except GoogleAuthError as e:
            raise SourceFetchError(self.name, f"Drive authentication failed: {e}") from e
        except (OSError, httplib2.HttpLib2Error) as e:
            # socket.timeout is an OSError
            raise SourceFetchError(self.name, f"Drive request failed: {e}") from e

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _iter_children(
        self, folder_id: str, query: str | None = None
    ) -> Iterator[dict[str, Any]]:
        """Yield every non-trashed child of *folder_id*, following pages."""
        q = f"'{folder_id}' in parents and trashed = false"
        if query:
            q += f" and ({query})"
        page_token: str | None = None
        while True:
            response = self._execute(
                self.service.files().list(
                    q=q,
                    pageSize=PAGE_SIZE,
                    pageToken=page_token,
                    fields=f"nextPageToken, files({FILE_FIELDS})",
                    supportsAllDrives=True,
                    includeItemsFromAllDrives=True,
                )
            )
            yield from response.get("files", [])
            page_token = response.get("nextPageToken")
            if not page_token:
                return

    def folder_name(self, folder_id: str) -> str:
        meta = self._execute(
            self.service.files().get(
                fileId=folder_id, fields="name", supportsAllDrives=True
            )
        )
        return meta.get("name", folder_id)

    def fetch_items(self) -> list[RemoteItem]:
        """Scan the root folder and return every file found.

        Raises:
            SourceFetchError: If any listing call fails.  No partial
                listing is returned.
        """
        root_name = self.folder_name(self.root_folder_id)
        items: list[RemoteItem] = []
        self._walk(self.root_folder_id, root_name, self.depth, items)
        logger.info(
            "Drive scan of '%s' found %d files (depth %d)",
            root_name,
            len(items),
            self.depth,
        )
        return items

    def _walk(
        self,
        folder_id: str,
        location: str,
        depth: int,
        out: list[RemoteItem],
    ) -> None:
        for file in self._iter_children(folder_id):
            if file.get("mimeType") == FOLDER_MIME:
                if depth > 0:
                    self._walk(
                        file["id"], f"{location}/{file.get('name', '')}", depth - 1, out
                    )
                continue
            out.append(to_remote_item(file, location))

    # ------------------------------------------------------------------
    # Browsing (HTTP endpoints)
    # ------------------------------------------------------------------

    def list_files(
        self,
        folder_id: str | None = None,
        page_size: int = 10,
        query: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return one page of files, optionally inside *folder_id*."""
        clauses = ["trashed = false"]
        if folder_id:
            clauses.append(f"'{folder_id}' in parents")
        if query:
            clauses.append(f"({query})")
        response = self._execute(
            self.service.files().list(
                q=" and ".join(clauses),
                pageSize=page_size,
                fields=f"files({FILE_FIELDS})",
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            )
        )
        return response.get("files", [])

    def scan_folder(self, folder_id: str, depth: int = 2) -> dict[str, Any] | None:
        """Return the folder tree under *folder_id*, or None if it does not exist."""
        try:
            name = self.folder_name(folder_id)
        except SourceFetchError as e:
            if e.context.get("status_code") == 404:
                return None
            raise
        return self._scan(folder_id, name, depth)

    def _scan(self, folder_id: str, name: str, depth: int) -> dict[str, Any]:
        node: dict[str, Any] = {"id": folder_id, "name": name, "files": [], "folders": []}
        for file in self._iter_children(folder_id):
            if file.get("mimeType") == FOLDER_MIME:
                if depth > 0:
                    node["folders"].append(
                        self._scan(file["id"], file.get("name", ""), depth - 1)
                    )
                continue
            node["files"].append(
                {
                    "id": file["id"],
                    "name": file.get("name", ""),
                    "mimeType": file.get("mimeType", ""),
                    "tags": sorted(extract_tags(file)),
                }
            )
        return node

    def check_connection(self) -> dict[str, Any]:
        """List a single file to verify credentials."""
        try:
            self._execute(
                self.service.files().list(pageSize=1, fields="files(id, name)")
            )
        except (SourceFetchError, ConfigurationError) as e:
            logger.error("Google Drive connection failed: %s", e)
            return {"status": False, "message": f"Connection failed: {e}"}
        return {"status": True, "message": "Connected successfully"}
