"""
Builds the tenant-specific classifier prompt.

Pure substitution into ``llm/prompts/classifier_prompt.txt``: the same tenant,
taxonomy and history always produce the same prompt text.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from floworx.classification.taxonomy import TaxonomyLevel, TaxonomyTree
from floworx.classification.validator import MANDATORY_TERTIARY, SECONDARY_REQUIRED_FOR
from floworx.config import AI_REPLY_CATEGORIES, AI_REPLY_MIN_CONFIDENCE, PROMPT_MAX_HISTORICAL_EXAMPLES
from floworx.llm.prompts import get_classifier_prompt
from floworx.storage.models import CategorySnapshot, CorrectionFeedback, normalize_category
from floworx.storage.tenancy import TenantConfig

NOT_PROVIDED = "Not provided"
MANDATORY_MARKER = "(MANDATORY - NEVER NULL)"


class QualityTier(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def quality_tier(example_count: int) -> QualityTier:
    """0 -> none, under 5 -> low, under 20 -> medium, otherwise high."""
    if example_count <= 0:
        return QualityTier.NONE
    if example_count < 5:
        return QualityTier.LOW
    if example_count < 20:
        return QualityTier.MEDIUM
    return QualityTier.HIGH


@dataclass(frozen=True)
class HistoricalExample:
    subject: str
    original: str
    corrected: str
    reason: str | None = None


@dataclass(frozen=True)
class HistoricalContext:
    """Past corrections shown to the model as few-shot guidance."""

    examples: tuple[HistoricalExample, ...] = ()
    total_count: int = 0

    @property
    def has_data(self) -> bool:
        return bool(self.examples)

    @property
    def tier(self) -> QualityTier:
        return quality_tier(self.total_count)

    @classmethod
    def from_corrections(
        cls,
        corrections: Iterable[CorrectionFeedback],
        limit: int = PROMPT_MAX_HISTORICAL_EXAMPLES,
    ) -> HistoricalContext:
        """Most recent corrections first; ties broken by id so output is stable."""
        ordered = sorted(corrections, key=lambda c: (c.created_at, c.id), reverse=True)
        examples = tuple(
            HistoricalExample(
                subject=c.email_subject,
                original=_snapshot_path(c.original_categories),
                corrected=_snapshot_path(c.corrected_categories),
                reason=c.correction_reason,
            )
            for c in ordered[: max(limit, 0)]
        )
        return cls(examples=examples, total_count=len(ordered))

    @classmethod
    def from_dicts(
        cls,
        rows: Iterable[Mapping[str, Any]],
        limit: int = PROMPT_MAX_HISTORICAL_EXAMPLES,
    ) -> HistoricalContext:
        """Accepts ``{subject, original, corrected, reason}`` rows in the given order."""
        rows = list(rows)
        examples = tuple(
            HistoricalExample(
                subject=str(row.get("subject", "")),
                original=str(row.get("original", "")),
                corrected=str(row.get("corrected", "")),
                reason=row.get("reason"),
            )
            for row in rows[: max(limit, 0)]
        )
        return cls(examples=examples, total_count=len(rows))


def _snapshot_path(snapshot: CategorySnapshot) -> str:
    return "/".join(p for p in (snapshot.primary, snapshot.secondary, snapshot.tertiary) if p)


def _or_default(value: str) -> str:
    return value.strip() if value and value.strip() else NOT_PROVIDED


def _mandatory_secondaries(taxonomy: TaxonomyTree) -> set[str]:
    keys = {normalize_category(name) for name in MANDATORY_TERTIARY}
    return {node.key for node in taxonomy if node.level.depth == 2 and node.key in keys}


def _taxonomy_block(taxonomy: TaxonomyTree) -> str:
    mandatory = _mandatory_secondaries(taxonomy)
    required_primaries = {normalize_category(p) for p in SECONDARY_REQUIRED_FOR}
    lines = []
    for node in taxonomy.walk():
        depth = taxonomy.depth(node)
        indent = "  " * (depth - 1)
        line = f"{indent}- {node.name}"
        if depth == 1 and node.key in required_primaries:
            line += f" {MANDATORY_MARKER}"
        elif depth == 2 and node.key in mandatory:
            line += f" {MANDATORY_MARKER}"
        lines.append(line)
    return "\n".join(lines) if lines else NOT_PROVIDED


def _mandatory_tertiary_block() -> str:
    lines = []
    for secondary, allowed in MANDATORY_TERTIARY.items():
        options = " or ".join(f"'{value}'" for value in allowed)
        lines.append(
            f"   - If secondary_category is '{secondary}' → tertiary_category MUST be {options}"
        )
    return "\n".join(lines)


def _managers_block(tenant_config: TenantConfig) -> str:
    if not tenant_config.managers:
        return NOT_PROVIDED
    roles = tenant_config.role_map()
    lines = []
    for manager in tenant_config.managers:
        role_labels = [roles[r].label or r for r in manager.roles if r in roles]
        line = f"- {manager.name}"
        if role_labels:
            line += f" ({', '.join(role_labels)})"
        lines.append(line)
        keywords = [kw for r in manager.roles if r in roles for kw in roles[r].keywords]
        if keywords:
            lines.append(f"  Keywords: {', '.join(dict.fromkeys(keywords))}")
    return "\n".join(lines)


def _suppliers_block(tenant_config: TenantConfig) -> str:
    if not tenant_config.suppliers:
        return NOT_PROVIDED
    lines = []
    for supplier in tenant_config.suppliers:
        line = f"- {supplier.name}"
        if supplier.domains:
            line += f" ({', '.join(supplier.domains)})"
        lines.append(line)
    return "\n".join(lines)


def _historical_block(historical: HistoricalContext | None) -> str:
    if historical is None or not historical.has_data:
        return "No historical corrections available."
    lines = [
        f"Learn from {historical.total_count} past corrections "
        f"(data quality: {historical.tier.value}). Follow the corrected category:"
    ]
    for example in historical.examples:
        line = f'- "{example.subject}": {example.original} → {example.corrected}'
        if example.reason:
            line += f" ({example.reason})"
        lines.append(line)
    return "\n".join(lines)


def _urgent_secondaries(taxonomy: TaxonomyTree) -> str:
    names = []
    for primary in SECONDARY_REQUIRED_FOR:
        node = taxonomy.find_by_name(primary, TaxonomyLevel.PRIMARY)
        if node is not None:
            names.extend(child.name for child in taxonomy.children(node))
    return ", ".join(names) if names else NOT_PROVIDED


def build_classifier_prompt(
    tenant_config: TenantConfig,
    taxonomy: TaxonomyTree | None = None,
    historical_corrections: HistoricalContext | Iterable[CorrectionFeedback] | None = None,
) -> str:
    """
    Render the classifier system prompt for one tenant.

    Args:
        tenant_config: Business profile, managers and suppliers
        taxonomy: Category tree to embed (defaults to tenant_config.taxonomy())
        historical_corrections: HistoricalContext or raw corrections

    Returns:
        Prompt text; the email itself is appended by the classifier
    """
    if taxonomy is None:
        taxonomy = tenant_config.taxonomy()
    if historical_corrections is not None and not isinstance(historical_corrections, HistoricalContext):
        historical_corrections = HistoricalContext.from_corrections(historical_corrections)

    business = tenant_config.business
    mandatory_names = ", ".join(f"'{name}'" for name in MANDATORY_TERTIARY)

    return get_classifier_prompt(
        business_name=business.name,
        urgent_secondaries=_urgent_secondaries(taxonomy),
        mandatory_tertiary_block=_mandatory_tertiary_block(),
        ai_reply_categories=" or ".join(AI_REPLY_CATEGORIES),
        ai_reply_min_confidence=str(AI_REPLY_MIN_CONFIDENCE),
        email_domain=_or_default(business.email_domain),
        business_types=", ".join(business.business_types) or NOT_PROVIDED,
        phone=_or_default(business.phone),
        website=_or_default(business.website),
        address=_or_default(business.address),
        currency=_or_default(business.currency),
        timezone=_or_default(business.timezone),
        service_areas=_or_default(business.service_areas),
        operating_hours=_or_default(business.operating_hours),
        response_time=_or_default(business.response_time),
        managers_block=_managers_block(tenant_config),
        suppliers_block=_suppliers_block(tenant_config),
        taxonomy_block=_taxonomy_block(taxonomy),
        historical_block=_historical_block(historical_corrections),
        mandatory_secondaries=mandatory_names,
    )
