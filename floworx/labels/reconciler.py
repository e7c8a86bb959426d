"""
Folder/label reconciliation.

reconcile() compares a tenant's desired taxonomy with the labels the provider
actually reports and returns a plan; it performs no I/O. LabelReconciler
applies a plan against one tenant's provider account, one operation at a time.

Principles:
    - Provider names are the source of truth. A node whose cached id went
      stale is re-matched by (parent, name) before anything is created.
    - Only create what is missing. Existing labels are never touched unless
      they need re-parenting on a hierarchical provider.
    - Nothing is deleted unless the caller lists it as orphaned.
    - Failures are collected per operation so the caller can retry just those.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from floworx.classification.taxonomy import (
    TaxonomyError,
    TaxonomyNode,
    TaxonomyTree,
    bind_label,
    mark_label_deleted,
)
from floworx.config import RECONCILE_INTER_OP_DELAY, RECONCILE_VERIFY_ATTEMPTS
from floworx.contracts import LabelProvider
from floworx.infrastructure.retry import ProviderApiError, with_provider_retry
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event, time_block
from floworx.storage.models import ProviderLabel

logger = get_logger(__name__)

VERIFY_BASE_DELAY = 0.5


class ReconcileError(RuntimeError):
    """An operation could not be applied for a reason other than a provider error."""


class LabelVerificationError(ReconcileError):
    """A created label never became visible in the provider's listing."""


@dataclass(frozen=True)
class CreateLabel:
    path: str
    name: str
    parent_path: str | None = None
    parent_id: str | None = None


@dataclass(frozen=True)
class MoveLabel:
    path: str
    label_id: str
    new_parent_id: str | None
    new_parent_path: str | None = None


@dataclass(frozen=True)
class DeleteLabel:
    label_id: str
    name: str


ReconcileOperation = CreateLabel | MoveLabel | DeleteLabel


@dataclass(frozen=True)
class Rebind:
    """Local-only fix: node gets bound to an existing provider label found by name."""

    path: str
    label_id: str


@dataclass(frozen=True)
class StaleBinding:
    path: str
    label_id: str


@dataclass(frozen=True)
class ReconcilePlan:
    operations: tuple[ReconcileOperation, ...] = ()
    rebinds: tuple[Rebind, ...] = ()
    stale_bindings: tuple[StaleBinding, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.operations and not self.rebinds

    def creates(self) -> list[CreateLabel]:
        return [op for op in self.operations if isinstance(op, CreateLabel)]

    def moves(self) -> list[MoveLabel]:
        return [op for op in self.operations if isinstance(op, MoveLabel)]

    def deletes(self) -> list[DeleteLabel]:
        return [op for op in self.operations if isinstance(op, DeleteLabel)]


@dataclass(frozen=True)
class FailedOperation:
    operation: ReconcileOperation | Rebind
    error: str
    status_code: int | None = None
    transient: bool = False


@dataclass
class ReconcileResult:
    applied: list[ReconcileOperation | Rebind] = field(default_factory=list)
    failed: list[FailedOperation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def retry_plan(self) -> ReconcilePlan:
        """Plan containing only the failed operations, in their original order."""
        ops = tuple(f.operation for f in self.failed if not isinstance(f.operation, Rebind))
        rebinds = tuple(f.operation for f in self.failed if isinstance(f.operation, Rebind))
        return ReconcilePlan(operations=ops, rebinds=rebinds)


def _index_by_parent(actual: Iterable[ProviderLabel]) -> dict[tuple[str | None, str], ProviderLabel]:
    index: dict[tuple[str | None, str], ProviderLabel] = {}
    for label in actual:
        # First label wins if the provider reports duplicates
        index.setdefault((label.parent_id, label.name.strip().casefold()), label)
    return index


def reconcile(
    desired: TaxonomyTree,
    actual: Iterable[ProviderLabel],
    supports_hierarchy: bool = True,
    orphaned: Iterable[str] = (),
) -> ReconcilePlan:
    """
    Compute the operations that converge provider labels to the taxonomy.

    Args:
        desired: Validated tenant taxonomy (bindings are read, not modified)
        actual: Labels currently reported by the provider
        supports_hierarchy: Whether the provider can re-parent labels; when
            False (Gmail) no MoveLabel operations are produced
        orphaned: Provider label ids the tenant explicitly asked to remove

    Returns:
        ReconcilePlan with provider operations in apply order (parents
        before children, deletes last), local rebinds and stale bindings
    """
    actual = list(actual)
    by_id = {label.id: label for label in actual}
    by_parent_and_name = _index_by_parent(actual)

    operations: list[ReconcileOperation] = []
    rebinds: list[Rebind] = []
    stale: list[StaleBinding] = []
    # node -> provider id it resolves to; None while the node is pending creation
    resolved: dict[int, str | None] = {}

    for node in desired.walk():
        path = desired.path(node)
        parent = node.parent
        parent_path = desired.path(parent) if parent is not None else None
        parent_pending = parent is not None and resolved.get(id(parent)) is None
        desired_parent_id = resolved.get(id(parent)) if parent is not None else None

        bound_id = node.provider_label_id
        if bound_id is not None and bound_id in by_id:
            resolved[id(node)] = bound_id
            if node.label_deleted:
                rebinds.append(Rebind(path, bound_id))
            reported_parent = by_id[bound_id].parent_id
            if supports_hierarchy and (parent_pending or reported_parent != desired_parent_id):
                operations.append(MoveLabel(path, bound_id, desired_parent_id, parent_path))
            continue

        if bound_id is not None and not node.label_deleted:
            stale.append(StaleBinding(path, bound_id))

        match = None
        if not parent_pending:
            match = by_parent_and_name.get((desired_parent_id, node.name.strip().casefold()))
        elif not supports_hierarchy:
            # Flat providers report a child whose parent label is gone under its full path
            match = by_parent_and_name.get((None, path.strip().casefold()))
        if match is not None:
            resolved[id(node)] = match.id
            rebinds.append(Rebind(path, match.id))
            continue

        resolved[id(node)] = None
        operations.append(
            CreateLabel(
                path=path,
                name=node.name,
                parent_path=parent_path,
                parent_id=None if parent_pending else desired_parent_id,
            )
        )

    in_use = {label_id for label_id in resolved.values() if label_id is not None}
    for label_id in orphaned:
        label = by_id.get(label_id)
        if label is None:
            continue
        if label_id in in_use:
            logger.warning("Refusing to delete %s (%s): still mapped to taxonomy", label.name, label_id)
            continue
        operations.append(DeleteLabel(label_id, label.name))

    plan = ReconcilePlan(tuple(operations), tuple(rebinds), tuple(stale))
    log_event(
        "reconcile.plan",
        creates=len(plan.creates()),
        moves=len(plan.moves()),
        deletes=len(plan.deletes()),
        rebinds=len(plan.rebinds),
        stale=len(plan.stale_bindings),
    )
    return plan


class LabelReconciler:
    """
    Applies reconcile plans to one provider account.

    Operations run sequentially with a fixed delay between provider calls.
    Concurrent reconciliations for the same tenant are last-write-wins.
    """

    def __init__(
        self,
        provider: LabelProvider,
        inter_op_delay: float = RECONCILE_INTER_OP_DELAY,
        verify_attempts: int = RECONCILE_VERIFY_ATTEMPTS,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.inter_op_delay = inter_op_delay
        self.verify_attempts = max(1, verify_attempts)
        self.sleep_fn = sleep_fn

    def plan(self, taxonomy: TaxonomyTree, orphaned: Iterable[str] = ()) -> ReconcilePlan:
        actual = with_provider_retry(
            self.provider.list_labels, stage="labels.list", sleep_fn=self.sleep_fn
        )
        return reconcile(taxonomy, actual, self.provider.supports_hierarchy, orphaned)

    def sync(self, taxonomy: TaxonomyTree, orphaned: Iterable[str] = ()) -> ReconcileResult:
        """List, plan and apply in one call."""
        return self.apply(self.plan(taxonomy, orphaned), taxonomy)

    def apply(self, plan: ReconcilePlan, taxonomy: TaxonomyTree) -> ReconcileResult:
        """
        Apply a plan and bind created labels back onto the taxonomy.

        Returns:
            ReconcileResult with per-operation applied/failed lists

        Side Effects:
            - Creates, moves or deletes labels via the provider API
            - Mutates taxonomy node bindings (bind_label / mark_label_deleted)
            - Sleeps between provider calls
        """
        result = ReconcileResult()
        created: dict[str, str] = {}

        for stale in plan.stale_bindings:
            node = taxonomy.find(stale.path)
            if node is not None and node.provider_label_id == stale.label_id:
                mark_label_deleted(node)

        for rebind in plan.rebinds:
            node = taxonomy.find(rebind.path)
            if node is None:
                result.failed.append(FailedOperation(rebind, "Node not found in taxonomy"))
                continue
            bind_label(node, rebind.label_id, force=True)
            result.applied.append(rebind)

        with time_block("reconcile.apply"):
            for position, op in enumerate(plan.operations):
                if position:
                    self.sleep_fn(self.inter_op_delay)
                try:
                    self._apply_one(op, taxonomy, created)
                except ProviderApiError as exc:
                    self._record_failure(result, op, str(exc), exc.status_code, exc.is_transient)
                except (ReconcileError, TaxonomyError) as exc:
                    self._record_failure(result, op, str(exc))
                else:
                    result.applied.append(op)

        counter("reconcile.applied", len(result.applied))
        counter("reconcile.failed", len(result.failed))
        log_event("reconcile.applied", applied=len(result.applied), failed=len(result.failed))
        return result

    def _record_failure(
        self,
        result: ReconcileResult,
        op: ReconcileOperation,
        error: str,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        logger.warning("Reconcile operation %s failed: %s", op, error)
        result.failed.append(FailedOperation(op, error, status_code, transient))

    def _resolve_parent(
        self,
        parent_id: str | None,
        parent_path: str | None,
        taxonomy: TaxonomyTree,
        created: dict[str, str],
    ) -> str | None:
        """
        Provider id for an operation's parent.

        Parents created earlier in this apply come from ``created``; parents
        created by a previous apply (e.g. when replaying ``retry_plan()``) are
        read from their live taxonomy binding.
        """
        if parent_id is not None or parent_path is None:
            return parent_id
        if parent_path in created:
            return created[parent_path]
        parent = taxonomy.find(parent_path)
        if parent is None or not parent.is_bound:
            raise ReconcileError(f"Parent {parent_path!r} was not created")
        return parent.provider_label_id

    def _apply_one(self, op: ReconcileOperation, taxonomy: TaxonomyTree, created: dict[str, str]) -> None:
        if isinstance(op, CreateLabel):
            parent_id = self._resolve_parent(op.parent_id, op.parent_path, taxonomy, created)
            label = with_provider_retry(
                self.provider.create_label,
                op.name,
                parent_id,
                stage="labels.create",
                sleep_fn=self.sleep_fn,
            )
            self._verify_created(label.id)
            node = self._node(taxonomy, op.path)
            bind_label(node, label.id, force=True)
            created[op.path] = label.id
            logger.info("Created label %s (%s)", op.path, label.id)

        elif isinstance(op, MoveLabel):
            parent_id = self._resolve_parent(
                op.new_parent_id, op.new_parent_path, taxonomy, created
            )
            with_provider_retry(
                self.provider.move_label,
                op.label_id,
                parent_id,
                stage="labels.move",
                sleep_fn=self.sleep_fn,
            )
            logger.info("Moved label %s under %s", op.path, parent_id)

        elif isinstance(op, DeleteLabel):
            with_provider_retry(
                self.provider.delete_label, op.label_id, stage="labels.delete", sleep_fn=self.sleep_fn
            )
            for node in taxonomy:
                if node.provider_label_id == op.label_id:
                    mark_label_deleted(node)
            logger.info("Deleted orphaned label %s (%s)", op.name, op.label_id)

    def _verify_created(self, label_id: str) -> None:
        """Wait out the provider's eventual-consistency window before trusting a new id."""
        for attempt in range(self.verify_attempts):
            labels = with_provider_retry(
                self.provider.list_labels, stage="labels.verify", sleep_fn=self.sleep_fn
            )
            if any(label.id == label_id for label in labels):
                return
            if attempt + 1 < self.verify_attempts:
                counter("reconcile.verify_retry")
                self.sleep_fn(VERIFY_BASE_DELAY * (2**attempt))
        raise LabelVerificationError(
            f"Label {label_id} not visible after {self.verify_attempts} verification reads"
        )

    @staticmethod
    def _node(taxonomy: TaxonomyTree, path: str) -> TaxonomyNode:
        node = taxonomy.find(path)
        if node is None:
            raise ReconcileError(f"Node {path!r} not found in taxonomy")
        return node
