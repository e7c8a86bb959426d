"""
Manager/supplier router.

Maps a classified email to exactly one manager (or Unassigned). Priority
order is a business decision and is evaluated strictly, first match wins:

    1. Manager name mentioned in subject/body        -> 100
    2. Secondary category equals a manager's name     -> 95
    3. Role weights for the primary category          -> min(95, 70 + score)
    4. Role keywords (primary category MANAGER only)  -> min(85, 50 + 2 * score)
    5. Supplier mentioned -> operations manager       -> 90
    6. First manager in roster                        -> 30
       (no managers at all: Unassigned                -> 0)

Equal scores at levels 3 and 4 go to the manager listed first in the roster.
route() is pure: no I/O, no randomness, no shared state.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.routing.roles import OPERATIONS_MANAGER, role_index
from floworx.storage.models import (
    ClassificationResult,
    EmailMessage,
    Manager,
    Role,
    RoutingDecision,
    RoutingRule,
    Supplier,
)
from floworx.storage.tenancy import TenantConfig

logger = get_logger(__name__)

NAME_MATCH_CONFIDENCE = 100
SECONDARY_MATCH_CONFIDENCE = 95
SUPPLIER_MATCH_CONFIDENCE = 90
DEFAULT_CONFIDENCE = 30
UNASSIGNED_CONFIDENCE = 0
KEYWORD_ROUTING_CATEGORY = "MANAGER"
MAX_KEYWORDS_IN_REASON = 3


@dataclass(frozen=True)
class _Candidate:
    manager: Manager
    score: float
    matched_roles: tuple[str, ...]
    matched_keywords: tuple[str, ...] = ()


def _first_name(name: str) -> str:
    return name.split(" ")[0]


def _match_name(text: str, managers: Sequence[Manager]) -> Manager | None:
    for manager in managers:
        full_name = manager.name.lower()
        first_name = _first_name(full_name)
        if full_name in text or (first_name and first_name in text):
            return manager
    return None


def _match_secondary(
    classification: ClassificationResult, managers: Sequence[Manager]
) -> Manager | None:
    secondary = (classification.secondary_category or "").strip().lower()
    if not secondary:
        return None
    return next((m for m in managers if m.name.lower() == secondary), None)


def _best(candidates: Iterable[_Candidate]) -> _Candidate | None:
    """Highest score wins; strict ``>`` keeps the earliest manager on ties."""
    best: _Candidate | None = None
    for candidate in candidates:
        if candidate.score <= 0:
            continue
        if best is None or candidate.score > best.score:
            best = candidate
    return best


def _score_categories(
    primary: str, managers: Sequence[Manager], roles: dict[str, Role]
) -> _Candidate | None:
    candidates = []
    for manager in managers:
        score: float = 0
        matched = []
        for role_id in manager.roles:
            role = roles.get(role_id)
            if role is not None and primary in role.matched_categories:
                score += role.weight
                matched.append(role_id)
        candidates.append(_Candidate(manager, score, tuple(matched)))
    return _best(candidates)


def _score_keywords(
    text: str, managers: Sequence[Manager], roles: dict[str, Role]
) -> _Candidate | None:
    candidates = []
    for manager in managers:
        matched_keywords: list[str] = []
        matched_roles: list[str] = []
        for role_id in manager.roles:
            role = roles.get(role_id)
            if role is None:
                continue
            hits = [
                keyword
                for keyword in role.keywords
                if keyword.lower() in text and keyword not in matched_keywords
            ]
            if hits:
                matched_roles.append(role_id)
                matched_keywords.extend(hits)
        candidates.append(
            _Candidate(manager, len(matched_keywords), tuple(matched_roles), tuple(matched_keywords))
        )
    return _best(candidates)


def _match_supplier(
    text: str,
    sender_domain: str,
    suppliers: Sequence[Supplier],
    managers: Sequence[Manager],
) -> tuple[Supplier, Manager] | None:
    operations = next((m for m in managers if OPERATIONS_MANAGER in m.roles), None)
    if operations is None:
        return None
    for supplier in suppliers:
        if supplier.name.lower() in text or (sender_domain and sender_domain in supplier.domains):
            return supplier, operations
    return None


def route(
    email: EmailMessage,
    classification: ClassificationResult,
    managers: Sequence[Manager],
    suppliers: Sequence[Supplier] = (),
    roles: Iterable[Role] = (),
    now: datetime | None = None,
) -> RoutingDecision:
    """
    Decide which manager should handle an email.

    Args:
        email: The inbound message (subject and body are matched)
        classification: Validated classifier output
        managers: Tenant roster, in priority order for tie-breaks and fallback
        suppliers: Tenant supplier list
        roles: Role table; role ids on managers that are missing here score 0
        now: Timestamp for the decision (defaults to current UTC time)

    Returns:
        A new RoutingDecision. Never raises for ambiguous input; with no
        managers configured the decision is Unassigned with confidence 0.
    """
    decision = _decide(email, classification, list(managers), list(suppliers), role_index(roles))
    if now is not None:
        decision = decision.model_copy(update={"timestamp": now})

    counter(f"routing.{decision.rule.value}")
    log_event(
        "routing.decision",
        email_id=email.id,
        rule=decision.rule.value,
        manager=decision.manager_name,
        confidence=decision.routing_confidence,
    )
    return decision


def _decide(
    email: EmailMessage,
    classification: ClassificationResult,
    managers: list[Manager],
    suppliers: list[Supplier],
    roles: dict[str, Role],
) -> RoutingDecision:
    text = email.text_for_matching()

    # Priority 1: explicit name mention beats every classifier signal
    manager = _match_name(text, managers)
    if manager is not None:
        return RoutingDecision(
            matched_manager=manager,
            routing_reason=f'Name mentioned: "{manager.name}"',
            routing_confidence=NAME_MATCH_CONFIDENCE,
            rule=RoutingRule.NAME_MATCH,
            matched_roles=manager.roles,
        )

    # Priority 2: classifier filed it as MANAGER/<name>
    manager = _match_secondary(classification, managers)
    if manager is not None:
        return RoutingDecision(
            matched_manager=manager,
            routing_reason=f"AI classified as MANAGER/{manager.name}",
            routing_confidence=SECONDARY_MATCH_CONFIDENCE,
            rule=RoutingRule.SECONDARY_CATEGORY,
            matched_roles=manager.roles,
        )

    # Priority 3: role weights for the primary category
    primary = classification.primary_category.strip().upper()
    winner = _score_categories(primary, managers, roles)
    if winner is not None:
        return RoutingDecision(
            matched_manager=winner.manager,
            routing_reason=f"Category: {primary}",
            routing_confidence=int(min(95, 70 + winner.score)),
            rule=RoutingRule.ROLE_CATEGORY,
            matched_roles=winner.matched_roles,
        )

    # Priority 4: keyword heuristics, only for MANAGER mail
    if primary == KEYWORD_ROUTING_CATEGORY:
        winner = _score_keywords(text, managers, roles)
        if winner is not None:
            shown = ", ".join(winner.matched_keywords[:MAX_KEYWORDS_IN_REASON])
            return RoutingDecision(
                matched_manager=winner.manager,
                routing_reason=f"Keywords: {shown}",
                routing_confidence=int(min(85, 50 + 2 * winner.score)),
                rule=RoutingRule.KEYWORD,
                matched_roles=winner.matched_roles,
            )

    # Priority 5: supplier mail goes to operations
    supplier_match = _match_supplier(text, email.sender_domain, suppliers, managers)
    if supplier_match is not None:
        supplier, manager = supplier_match
        return RoutingDecision(
            matched_manager=manager,
            routing_reason=f"Supplier: {supplier.name}",
            routing_confidence=SUPPLIER_MATCH_CONFIDENCE,
            rule=RoutingRule.SUPPLIER,
            matched_roles=(OPERATIONS_MANAGER,),
        )

    if managers:
        logger.debug("No routing signal for %s, defaulting to %s", email.id, managers[0].name)
        return RoutingDecision(
            matched_manager=managers[0],
            routing_reason="Default routing",
            routing_confidence=DEFAULT_CONFIDENCE,
            rule=RoutingRule.DEFAULT,
            matched_roles=managers[0].roles,
        )

    logger.warning("No managers configured; email %s is unassigned", email.id)
    return RoutingDecision(
        matched_manager=None,
        routing_reason="No managers configured",
        routing_confidence=UNASSIGNED_CONFIDENCE,
        rule=RoutingRule.UNASSIGNED,
    )


def route_for_tenant(
    email: EmailMessage,
    classification: ClassificationResult,
    tenant_config: TenantConfig,
    now: datetime | None = None,
) -> RoutingDecision:
    """route() with the roster, suppliers and roles taken from a tenant config."""
    return route(
        email,
        classification,
        tenant_config.managers,
        tenant_config.suppliers,
        tenant_config.roles,
        now=now,
    )
