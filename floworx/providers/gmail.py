"""Gmail Labels API adapter

Gmail labels are flat: nesting is encoded in the name ("BANKING/Invoice").
This adapter normalizes that into leaf name + parent id so the reconciler can
treat Gmail and Outlook alike. Only user labels are exposed; system labels
(INBOX, CATEGORY_*, ...) are never listed, created or deleted.
"""

from __future__ import annotations

from typing import Any

from googleapiclient.errors import HttpError

from floworx.config import PROVIDER_TIMEOUT_SECONDS
from floworx.infrastructure.retry import ProviderApiError
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.storage.models import ProviderLabel

logger = get_logger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.labels"]
SEPARATOR = "/"


def build_gmail_service(credentials: Any, timeout: float = PROVIDER_TIMEOUT_SECONDS) -> Any:
    """
    Build a Gmail API service whose HTTP transport enforces a timeout.

    Args:
        credentials: google.oauth2 credentials obtained by the delivery layer
        timeout: Socket timeout in seconds for every request
    """
    import httplib2
    from google_auth_httplib2 import AuthorizedHttp
    from googleapiclient.discovery import build

    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("gmail", "v1", http=http, cache_discovery=False)


def _to_provider_error(exc: HttpError, action: str) -> ProviderApiError:
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", None)
    return ProviderApiError(
        f"Gmail {action} failed: {exc}",
        status_code=int(status) if status else None,
        provider="gmail",
    )


class GmailLabelProvider:
    """LabelProvider over ``users().labels()`` for a single mailbox."""

    supports_hierarchy = False

    def __init__(self, service: Any, user_id: str = "me"):
        self.service = service
        self.user_id = user_id
        self._full_names: dict[str, str] = {}

    def _labels(self) -> Any:
        return self.service.users().labels()

    def list_labels(self) -> list[ProviderLabel]:
        """
        List user labels with nesting resolved from their names.

        A nested label whose parent path has no label of its own is reported
        top-level under its full name.
        """
        try:
            response = self._labels().list(userId=self.user_id).execute()
        except HttpError as e:
            raise _to_provider_error(e, "labels.list") from e

        raw = [
            label
            for label in response.get("labels", [])
            if label.get("type") == "user" and not label.get("id", "").startswith("CATEGORY_")
        ]
        self._full_names = {label["id"]: label["name"] for label in raw}
        id_by_full_name = {label["name"]: label["id"] for label in raw}

        labels = []
        for label in raw:
            full_name = label["name"]
            parent_id = None
            name = full_name
            if SEPARATOR in full_name:
                parent_name, leaf = full_name.rsplit(SEPARATOR, 1)
                if parent_name in id_by_full_name:
                    parent_id = id_by_full_name[parent_name]
                    name = leaf
            labels.append(ProviderLabel(id=label["id"], name=name, parent_id=parent_id))
        return labels

    def _full_name(self, label_id: str) -> str:
        if label_id not in self._full_names:
            self.list_labels()
        if label_id not in self._full_names:
            raise ProviderApiError(f"Gmail label {label_id} not found", 404, provider="gmail")
        return self._full_names[label_id]

    def create_label(self, name: str, parent_id: str | None = None) -> ProviderLabel:
        full_name = name if parent_id is None else f"{self._full_name(parent_id)}{SEPARATOR}{name}"
        body = {
            "name": full_name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        try:
            created = self._labels().create(userId=self.user_id, body=body).execute()
        except HttpError as e:
            raise _to_provider_error(e, "labels.create") from e

        self._full_names[created["id"]] = created.get("name", full_name)
        counter("gmail.label_created.count")
        log_event("gmail.label_created", label_id=created["id"])
        return ProviderLabel(id=created["id"], name=name, parent_id=parent_id)

    def delete_label(self, label_id: str) -> None:
        try:
            self._labels().delete(userId=self.user_id, id=label_id).execute()
        except HttpError as e:
            raise _to_provider_error(e, "labels.delete") from e
        self._full_names.pop(label_id, None)
        counter("gmail.label_deleted.count")

    def move_label(self, label_id: str, parent_id: str | None) -> ProviderLabel:
        """Re-parent by renaming; Gmail has no native label hierarchy."""
        leaf = self._full_name(label_id).rsplit(SEPARATOR, 1)[-1]
        full_name = leaf if parent_id is None else f"{self._full_name(parent_id)}{SEPARATOR}{leaf}"
        try:
            self._labels().patch(
                userId=self.user_id, id=label_id, body={"name": full_name}
            ).execute()
        except HttpError as e:
            raise _to_provider_error(e, "labels.patch") from e
        self._full_names[label_id] = full_name
        return ProviderLabel(id=label_id, name=leaf, parent_id=parent_id)
