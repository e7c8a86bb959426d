"""Role table used by the manager router and the classifier prompt."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from functools import lru_cache
from pathlib import Path

import yaml

from floworx.config import DATA_DIR
from floworx.observability.logging import get_logger
from floworx.storage.models import Role

logger = get_logger(__name__)

ROLES_PATH = DATA_DIR / "roles.yaml"
OPERATIONS_MANAGER = "operations_manager"


def parse_roles(entries: Iterable[Mapping]) -> tuple[Role, ...]:
    roles = []
    for entry in entries:
        data = dict(entry)
        if "routes" in data and "matched_categories" not in data:
            data["matched_categories"] = data.pop("routes")
        roles.append(Role(**data))
    return tuple(roles)


def load_roles(path: Path | None = None) -> tuple[Role, ...]:
    """
    Load role definitions from YAML.

    Args:
        path: Alternate roles file; defaults to the packaged roles.yaml

    Returns:
        Roles in file order
    """
    if path is None:
        return default_roles()
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    roles = parse_roles(data.get("roles", []))
    logger.info("Loaded %d roles from %s", len(roles), path)
    return roles


@lru_cache(maxsize=1)
def default_roles() -> tuple[Role, ...]:
    """Packaged role table, loaded once. Role models are frozen so sharing is safe."""
    with open(ROLES_PATH, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return parse_roles(data.get("roles", []))


def role_index(roles: Iterable[Role]) -> dict[str, Role]:
    return {role.id: role for role in roles}
