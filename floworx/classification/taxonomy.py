"""
Tenant label taxonomy: a tree of primary/secondary/tertiary category nodes.

Nodes only hold a reference to their parent; children are derived by scanning
the tree, so there is no second pointer that could drift out of sync. Each node
may be bound to a provider label/folder id. Bindings are never dropped
automatically: when the provider confirms a label is gone the node is
soft-marked with ``label_deleted`` and keeps its last id for audit.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from floworx.config import DATA_DIR
from floworx.observability.logging import get_logger
from floworx.storage.models import normalize_category

logger = get_logger(__name__)

MAX_DEPTH = 3
PATH_SEPARATOR = "/"
DEFAULT_TAXONOMY_PATH = DATA_DIR / "default_taxonomy.yaml"


class TaxonomyError(ValueError):
    """Structural problem in a tenant taxonomy. Fatal to reconciliation."""

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or [message]


class AlreadyBoundError(TaxonomyError):
    """Node is already bound to a different provider label id."""


class TaxonomyLevel(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"

    @property
    def depth(self) -> int:
        return _LEVEL_DEPTH[self]

    @classmethod
    def for_depth(cls, depth: int) -> TaxonomyLevel:
        for level, level_depth in _LEVEL_DEPTH.items():
            if level_depth == depth:
                return level
        raise TaxonomyError(f"Taxonomy depth {depth} exceeds maximum of {MAX_DEPTH}")


_LEVEL_DEPTH = {TaxonomyLevel.PRIMARY: 1, TaxonomyLevel.SECONDARY: 2, TaxonomyLevel.TERTIARY: 3}


@dataclass(eq=False)
class TaxonomyNode:
    name: str
    level: TaxonomyLevel
    parent: TaxonomyNode | None = None
    provider_label_id: str | None = None
    label_deleted: bool = False

    @property
    def is_bound(self) -> bool:
        return self.provider_label_id is not None and not self.label_deleted

    @property
    def key(self) -> str:
        return normalize_category(self.name)

    def __repr__(self) -> str:
        return (
            f"TaxonomyNode(name={self.name!r}, level={self.level.value}, "
            f"label_id={self.provider_label_id!r}, deleted={self.label_deleted})"
        )


class TaxonomyTree:
    """Ordered collection of taxonomy nodes. Iteration order is insertion order."""

    def __init__(self, nodes: Iterable[TaxonomyNode] = ()):
        self._nodes: list[TaxonomyNode] = list(nodes)

    def __iter__(self) -> Iterator[TaxonomyNode]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        return any(node is candidate for candidate in self._nodes)

    @property
    def nodes(self) -> list[TaxonomyNode]:
        return list(self._nodes)

    def add(
        self,
        name: str,
        parent: TaxonomyNode | None = None,
        level: TaxonomyLevel | None = None,
        provider_label_id: str | None = None,
    ) -> TaxonomyNode:
        """Append a node; the level defaults to one below the parent."""
        if level is None:
            level = TaxonomyLevel.for_depth(self.depth(parent) + 1 if parent else 1)
        node = TaxonomyNode(
            name=name.strip(), level=level, parent=parent, provider_label_id=provider_label_id
        )
        self._nodes.append(node)
        return node

    # -- navigation -------------------------------------------------------

    def roots(self) -> list[TaxonomyNode]:
        return [node for node in self._nodes if node.parent is None]

    def children(self, node: TaxonomyNode | None) -> list[TaxonomyNode]:
        return [candidate for candidate in self._nodes if candidate.parent is node]

    def ancestors(self, node: TaxonomyNode) -> list[TaxonomyNode]:
        """Parents from nearest to root. Raises TaxonomyError on a cyclic chain."""
        chain: list[TaxonomyNode] = []
        seen = {id(node)}
        current = node.parent
        while current is not None:
            if id(current) in seen:
                raise TaxonomyError(f"Cycle detected in parent chain of {node.name!r}")
            seen.add(id(current))
            chain.append(current)
            current = current.parent
        return chain

    def depth(self, node: TaxonomyNode) -> int:
        return len(self.ancestors(node)) + 1

    def path(self, node: TaxonomyNode) -> str:
        names = [ancestor.name for ancestor in reversed(self.ancestors(node))]
        names.append(node.name)
        return PATH_SEPARATOR.join(names)

    def find(self, path: str) -> TaxonomyNode | None:
        """Look up a node by ``/``-separated path, case-insensitively."""
        parent: TaxonomyNode | None = None
        node: TaxonomyNode | None = None
        for part in path.split(PATH_SEPARATOR):
            wanted = part.strip().casefold()
            node = next(
                (child for child in self.children(parent) if child.name.casefold() == wanted),
                None,
            )
            if node is None:
                return None
            parent = node
        return node

    def find_by_name(
        self,
        name: str | None,
        level: TaxonomyLevel | None = None,
        parent: TaxonomyNode | None = None,
    ) -> TaxonomyNode | None:
        """
        Find the first node whose normalized name matches.

        ``e-transfer``, ``e-Transfer`` and ``eTransfer`` all match the same node.
        """
        key = normalize_category(name)
        if not key:
            return None
        for node in self._nodes:
            if node.key != key:
                continue
            if level is not None and node.level is not level:
                continue
            if parent is not None and node.parent is not parent:
                continue
            return node
        return None

    def walk(self) -> Iterator[TaxonomyNode]:
        """Depth-first, every parent before its children, siblings in insertion order."""

        def _visit(parent: TaxonomyNode | None) -> Iterator[TaxonomyNode]:
            for child in self.children(parent):
                yield child
                yield from _visit(child)

        yield from _visit(None)

    def bindings(self) -> dict[str, str]:
        """Map of node path to bound provider label id (live bindings only)."""
        return {self.path(node): node.provider_label_id for node in self.walk() if node.is_bound}  # type: ignore[misc]

    # -- constructors -----------------------------------------------------

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | Iterable[Any]) -> TaxonomyTree:
        """
        Build a tree from onboarding configuration.

        Accepted shapes (nestable up to three levels)::

            {"BANKING": {"e-Transfer": ["FromBusiness", "ToBusiness"]}, "SALES": None}
            ["SALES", "SUPPORT"]
            {"SUPPORT": [{"name": "General", "label_id": "Label_7"}]}

        Returns:
            Unvalidated tree; call validate_taxonomy() before use
        """
        tree = cls()
        tree._add_children(None, config)
        return tree

    @classmethod
    def from_paths(cls, paths: Iterable[str]) -> TaxonomyTree:
        """Build a tree from ``"BANKING/e-Transfer/FromBusiness"`` style paths."""
        tree = cls()
        for path in paths:
            parent: TaxonomyNode | None = None
            for part in path.split(PATH_SEPARATOR):
                existing = next(
                    (c for c in tree.children(parent) if c.name.casefold() == part.strip().casefold()),
                    None,
                )
                parent = existing or tree.add(part, parent)
        return tree

    def _add_children(self, parent: TaxonomyNode | None, entry: Any) -> None:
        if entry is None:
            return
        if isinstance(entry, str):
            self.add(entry, parent)
            return
        if isinstance(entry, Mapping):
            if "name" in entry:
                node = self.add(str(entry["name"]), parent, provider_label_id=entry.get("label_id"))
                self._add_children(node, entry.get("children"))
                return
            for name, children in entry.items():
                node = self.add(str(name), parent)
                self._add_children(node, children)
            return
        for item in entry:
            self._add_children(parent, item)


def validate_taxonomy(tree: TaxonomyTree) -> TaxonomyTree:
    """
    Check structural invariants and return the same tree.

    Rejects:
        - cycles in any parent chain
        - depth greater than three levels
        - a level that disagrees with the node's depth
        - parents that are not part of the tree
        - blank names and duplicate sibling names (case-insensitive)

    Raises:
        TaxonomyError: With every problem found listed in ``problems``
    """
    problems: list[str] = []
    siblings: dict[tuple[int, str], TaxonomyNode] = {}

    for node in tree:
        if not node.name.strip():
            problems.append("Blank category name")
            continue
        try:
            ancestors = tree.ancestors(node)
        except TaxonomyError as exc:
            problems.append(str(exc))
            continue

        depth = len(ancestors) + 1
        if depth > MAX_DEPTH:
            problems.append(f"{node.name!r} is at depth {depth}; maximum is {MAX_DEPTH}")
        elif node.level.depth != depth:
            problems.append(
                f"{node.name!r} is declared {node.level.value} but sits at depth {depth}"
            )

        if node.parent is not None and node.parent not in tree:
            problems.append(f"Parent of {node.name!r} is not part of the taxonomy")

        sibling_key = (id(node.parent), node.name.strip().casefold())
        if sibling_key in siblings:
            parent_name = node.parent.name if node.parent else "<root>"
            problems.append(f"Duplicate category {node.name!r} under {parent_name}")
        else:
            siblings[sibling_key] = node

    if problems:
        logger.warning("Taxonomy rejected with %d problem(s): %s", len(problems), problems)
        raise TaxonomyError(f"Invalid taxonomy: {problems[0]}", problems)
    return tree


def bind_label(node: TaxonomyNode, provider_label_id: str, force: bool = False) -> TaxonomyNode:
    """
    Bind a provider label id to a node.

    Binding the id a node already holds is a no-op (apart from clearing a
    soft-delete mark, since the label evidently exists). Binding a different id
    requires ``force=True``, which signals deliberate rebinding after the old
    label disappeared provider-side.

    Raises:
        AlreadyBoundError: Node holds a different id and force is False

    Side Effects:
        - Mutates node.provider_label_id and clears node.label_deleted
    """
    if node.provider_label_id == provider_label_id:
        node.label_deleted = False
        return node
    if node.provider_label_id is not None and not force:
        raise AlreadyBoundError(
            f"{node.name!r} is already bound to {node.provider_label_id!r}; "
            f"pass force=True to rebind to {provider_label_id!r}"
        )
    if node.provider_label_id is not None:
        logger.info(
            "Rebinding %s from %s to %s", node.name, node.provider_label_id, provider_label_id
        )
    node.provider_label_id = provider_label_id
    node.label_deleted = False
    return node


def mark_label_deleted(node: TaxonomyNode) -> TaxonomyNode:
    """
    Soft-delete a binding after the provider confirmed the label is gone.

    Side Effects:
        - Sets node.label_deleted; the stale id is kept for audit
    """
    if not node.label_deleted:
        logger.info("Marking label %s (%s) as deleted", node.name, node.provider_label_id)
    node.label_deleted = True
    return node


def load_taxonomy_file(path: Path) -> TaxonomyTree:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return validate_taxonomy(TaxonomyTree.from_config(data.get("categories", data)))


def load_default_taxonomy() -> TaxonomyTree:
    """Fresh, validated copy of the packaged default FloWorx taxonomy."""
    return load_taxonomy_file(DEFAULT_TAXONOMY_PATH)
