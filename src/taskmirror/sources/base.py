"""Remote collection source interface and explicit stand-ins."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from ..sync.models import RemoteItem


class RemoteSource(Protocol):
    """Enumerates the items a pass should mirror.

    ``fetch_items()`` returns a finite list; it raises
    ``SourceFetchError`` when the source cannot be listed.
    """

    name: str

    def fetch_items(self) -> list[RemoteItem]: ...

    def check_connection(self) -> dict[str, Any]: ...


class NullSource:
    """Source that never yields items.

    Selected with ``source: none`` to run the service without a remote
    collection (e.g. to exercise the task store only).
    """

    name = "none"

    def fetch_items(self) -> list[RemoteItem]:
        return []

    def check_connection(self) -> dict[str, Any]:
        return {"status": False, "message": "No remote source configured"}


class StaticSource:
    """Source backed by a fixed list of items."""

    name = "static"

    def __init__(self, items: Iterable[RemoteItem] = ()) -> None:
        self.items = list(items)

    def fetch_items(self) -> list[RemoteItem]:
        return list(self.items)

    def check_connection(self) -> dict[str, Any]:
        return {"status": True, "message": f"{len(self.items)} static items"}
