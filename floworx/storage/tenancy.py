"""
Tenant-scoped configuration.

Every core call receives a TenantConfig explicitly; nothing here is
process-global. Stores are read-only lookups keyed by an opaque tenant id.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from floworx.classification.taxonomy import (
    TaxonomyLevel,
    TaxonomyTree,
    load_default_taxonomy,
    validate_taxonomy,
)
from floworx.observability.logging import get_logger
from floworx.routing.roles import default_roles, load_roles, parse_roles, role_index
from floworx.storage.models import BusinessInfo, Manager, Role, Supplier

logger = get_logger(__name__)


class TenantNotFoundError(KeyError):
    """No configuration exists for the requested tenant id."""


def _drop_blank_names(value: Any) -> Any:
    if value is None:
        return ()
    if isinstance(value, Iterable) and not isinstance(value, (str, bytes, Mapping)):
        kept = []
        for item in value:
            name = item.get("name") if isinstance(item, Mapping) else getattr(item, "name", None)
            if name and str(name).strip():
                kept.append(item)
        return tuple(kept)
    return value


class TenantConfig(BaseModel):
    """Everything the decision engine knows about one tenant."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    business: BusinessInfo = Field(default_factory=BusinessInfo)
    managers: tuple[Manager, ...] = ()
    suppliers: tuple[Supplier, ...] = ()
    roles: tuple[Role, ...] = Field(default_factory=default_roles)
    taxonomy_config: dict[str, Any] | list[Any] | None = None

    @field_validator("managers", "suppliers", mode="before")
    @classmethod
    def _skip_blank_entries(cls, value: Any) -> Any:
        return _drop_blank_names(value)

    def role_map(self) -> dict[str, Role]:
        return role_index(self.roles)

    def taxonomy(self) -> TaxonomyTree:
        """
        Build a fresh, validated taxonomy for this tenant.

        Manager names are added under MANAGER and supplier names under
        SUPPLIERS so AI-assigned ``MANAGER/<name>`` categories validate.

        Raises:
            TaxonomyError: If the configured taxonomy is structurally invalid
        """
        if self.taxonomy_config is None:
            tree = load_default_taxonomy()
        else:
            tree = TaxonomyTree.from_config(self.taxonomy_config)

        self._extend_primary(tree, "MANAGER", (m.name for m in self.managers))
        self._extend_primary(tree, "SUPPLIERS", (s.name for s in self.suppliers))
        return validate_taxonomy(tree)

    @staticmethod
    def _extend_primary(tree: TaxonomyTree, primary: str, names: Iterable[str]) -> None:
        parent = tree.find_by_name(primary, TaxonomyLevel.PRIMARY)
        if parent is None:
            return
        existing = {child.name.casefold() for child in tree.children(parent)}
        for name in names:
            if name.casefold() not in existing:
                tree.add(name, parent)
                existing.add(name.casefold())


class InMemoryTenantStore:
    """Dictionary-backed store, used by tests and by the delivery layer's cache."""

    def __init__(self, configs: Iterable[TenantConfig] = ()):
        self._configs: dict[str, TenantConfig] = {c.tenant_id: c for c in configs}

    def get(self, tenant_id: str) -> TenantConfig:
        try:
            return self._configs[tenant_id]
        except KeyError:
            raise TenantNotFoundError(tenant_id) from None

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._configs


class YamlTenantStore:
    """
    Reads ``<directory>/<tenant_id>.yaml`` on each lookup.

    The file mirrors TenantConfig: ``business``, ``managers``, ``suppliers``,
    optional ``roles`` and optional ``taxonomy``. ``roles`` is either a list of
    role entries or the name of a roles file in the same directory, so tenants
    can share one table.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def get(self, tenant_id: str) -> TenantConfig:
        path = self.directory / f"{tenant_id}.yaml"
        if not path.is_file():
            raise TenantNotFoundError(tenant_id)

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        payload: dict[str, Any] = {
            "tenant_id": tenant_id,
            "business": data.get("business") or {},
            "managers": data.get("managers") or (),
            "suppliers": data.get("suppliers") or (),
            "taxonomy_config": data.get("taxonomy"),
        }
        roles = data.get("roles")
        if isinstance(roles, str):
            payload["roles"] = load_roles(self.directory / roles)
        elif roles:
            payload["roles"] = parse_roles(roles)

        logger.debug("Loaded tenant config %s from %s", tenant_id, path)
        return TenantConfig(**payload)


def tenant_config_from_mapping(tenant_id: str, data: Mapping[str, Any]) -> TenantConfig:
    """Parse an external JSON/dict payload into a TenantConfig."""
    return TenantConfig(tenant_id=tenant_id, **dict(data))
