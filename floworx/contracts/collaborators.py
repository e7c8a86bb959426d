"""
Collaborator Protocols for the decision engine

The core never talks to Gmail, Outlook, an LLM vendor or a config database
directly. It depends on these protocols; concrete adapters live in
floworx/providers/ and floworx/llm/, and tests supply in-memory fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from floworx.storage.models import ProviderLabel
    from floworx.storage.tenancy import TenantConfig


@runtime_checkable
class LabelProvider(Protocol):
    """Provider label/folder API, normalized across flat and nested providers.

    ``ProviderLabel.name`` is always the leaf name and ``parent_id`` the
    provider id of the parent (None for top level), whatever the provider's
    native representation.
    """

    @property
    def supports_hierarchy(self) -> bool:
        """True when labels can be re-parented (Outlook folders)."""
        ...

    def list_labels(self) -> list[ProviderLabel]: ...

    def create_label(self, name: str, parent_id: str | None = None) -> ProviderLabel: ...

    def delete_label(self, label_id: str) -> None: ...

    def move_label(self, label_id: str, parent_id: str | None) -> ProviderLabel: ...


@runtime_checkable
class LLMCompletion(Protocol):
    """Text completion. Expected to return JSON text; parsing is the caller's job."""

    def complete(self, prompt: str) -> str: ...


@runtime_checkable
class TenantConfigStore(Protocol):
    """Read-only tenant configuration lookup."""

    def get(self, tenant_id: str) -> TenantConfig: ...
