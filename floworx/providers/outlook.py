"""Outlook mail folder adapter (Microsoft Graph)

Outlook folders are genuinely hierarchical, so this provider supports moves.
Well-known system folders are hidden from the reconciler.
"""

from __future__ import annotations

from typing import Any

import requests

from floworx.config import GRAPH_API_BASE_URL, PROVIDER_TIMEOUT_SECONDS
from floworx.infrastructure.retry import ProviderApiError
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter
from floworx.storage.models import ProviderLabel

logger = get_logger(__name__)

SYSTEM_FOLDERS = frozenset(
    {
        "inbox",
        "sent items",
        "sentitems",
        "drafts",
        "deleted items",
        "deleteditems",
        "junk email",
        "junkemail",
        "archive",
        "outbox",
        "conversation history",
        "sync issues",
        "conflicts",
        "local failures",
        "server failures",
        "scheduled",
        "rss feeds",
        "rss subscriptions",
    }
)
ROOT_FOLDER = "msgfolderroot"


class OutlookFolderProvider:
    """LabelProvider over ``/me/mailFolders`` using a delegated access token."""

    supports_hierarchy = True

    def __init__(
        self,
        access_token: str,
        session: requests.Session | None = None,
        base_url: str = GRAPH_API_BASE_URL,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
        )

    def _request(self, method: str, path_or_url: str, **kwargs: Any) -> dict[str, Any]:
        url = path_or_url if path_or_url.startswith("http") else f"{self.base_url}{path_or_url}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ProviderApiError(f"Graph {method} {url} failed: {e}", provider="outlook") from e

        if not response.ok:
            raise ProviderApiError(
                f"Graph {method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                provider="outlook",
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _list_folder_page(self, path: str) -> list[dict[str, Any]]:
        folders: list[dict[str, Any]] = []
        url: str | None = path
        while url:
            data = self._request("GET", url, params={"$top": 100} if url == path else None)
            folders.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
        return folders

    def list_labels(self) -> list[ProviderLabel]:
        """All non-system folders, walked recursively through childFolders."""
        labels: list[ProviderLabel] = []
        pending: list[tuple[str, str | None]] = [("/me/mailFolders", None)]
        while pending:
            path, parent_id = pending.pop(0)
            for folder in self._list_folder_page(path):
                name = folder.get("displayName", "")
                if parent_id is None and name.strip().casefold() in SYSTEM_FOLDERS:
                    continue
                labels.append(ProviderLabel(id=folder["id"], name=name, parent_id=parent_id))
                if folder.get("childFolderCount", 0):
                    pending.append((f"/me/mailFolders/{folder['id']}/childFolders", folder["id"]))
        return labels

    def create_label(self, name: str, parent_id: str | None = None) -> ProviderLabel:
        path = (
            "/me/mailFolders"
            if parent_id is None
            else f"/me/mailFolders/{parent_id}/childFolders"
        )
        created = self._request("POST", path, json={"displayName": name})
        counter("outlook.folder_created.count")
        return ProviderLabel(id=created["id"], name=created.get("displayName", name), parent_id=parent_id)

    def delete_label(self, label_id: str) -> None:
        self._request("DELETE", f"/me/mailFolders/{label_id}")
        counter("outlook.folder_deleted.count")

    def move_label(self, label_id: str, parent_id: str | None) -> ProviderLabel:
        moved = self._request(
            "POST",
            f"/me/mailFolders/{label_id}/move",
            json={"destinationId": parent_id or ROOT_FOLDER},
        )
        return ProviderLabel(
            id=moved.get("id", label_id),
            name=moved.get("displayName", ""),
            parent_id=parent_id,
        )
