"""
Validation of LLM classification output against a tenant taxonomy.

The classifier never trusts the model: every response goes through
validate_classification() before it can be routed or filed. What to do on a
violation (retry with a stricter prompt, or queue for a human) is the
caller's decision.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from floworx.classification.taxonomy import TaxonomyLevel, TaxonomyNode, TaxonomyTree
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.storage.models import ClassificationResult, normalize_category

logger = get_logger(__name__)

# Secondary categories whose tertiary category is a hard business requirement.
MANDATORY_TERTIARY: dict[str, tuple[str, ...]] = {
    "e-transfer": ("FromBusiness", "ToBusiness"),
    "receipts": ("PaymentSent", "PaymentReceived"),
    "invoice": ("BillingDocument", "PaymentDue", "FormalInvoice"),
    "bank-alert": ("SecurityAlert", "FraudWarning", "PasswordReset"),
    "refund": ("RefundIssued", "RefundReceived"),
}

SECONDARY_REQUIRED_FOR = ("URGENT",)

_MANDATORY_BY_KEY = {normalize_category(k): v for k, v in MANDATORY_TERTIARY.items()}


class ClassificationValidationError(ValueError):
    """LLM output broke a taxonomy or business rule. Never silently accepted."""

    def __init__(self, violations: list[str], raw: Any = None):
        super().__init__("; ".join(violations) or "Invalid classification")
        self.violations = list(violations)
        self.raw = raw


def mandatory_tertiary_for(secondary: str | None) -> tuple[str, ...] | None:
    """Allowed tertiary values when ``secondary`` requires one, else None."""
    return _MANDATORY_BY_KEY.get(normalize_category(secondary))


def _check_confidence(value: Any, violations: list[str]) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        violations.append(f"confidence must be a number between 0 and 1, got {value!r}")
    elif not 0.0 <= float(value) <= 1.0:
        violations.append(f"confidence {value} is outside [0, 1]")


def _check_tertiary(
    data: dict[str, Any],
    secondary_node: TaxonomyNode | None,
    taxonomy: TaxonomyTree,
    violations: list[str],
) -> None:
    secondary = data.get("secondary_category")
    tertiary = data.get("tertiary_category")
    allowed = mandatory_tertiary_for(secondary)

    if allowed and not tertiary:
        violations.append(
            f"tertiary_category is mandatory for secondary '{secondary}' "
            f"(allowed: {', '.join(allowed)})"
        )
        return
    if not tertiary:
        return

    allowed_keys = {normalize_category(value) for value in allowed or ()}
    if allowed and normalize_category(tertiary) not in allowed_keys:
        violations.append(
            f"tertiary_category '{tertiary}' is not allowed for '{secondary}' "
            f"(allowed: {', '.join(allowed)})"
        )
        return

    if secondary_node is None:
        if not allowed:
            violations.append(f"tertiary_category '{tertiary}' given without a valid secondary")
        return

    children = taxonomy.children(secondary_node)
    node = taxonomy.find_by_name(tertiary, TaxonomyLevel.TERTIARY, parent=secondary_node)
    if node is not None:
        data["tertiary_category"] = node.name
    elif children or not allowed:
        violations.append(
            f"'{tertiary}' is not a tertiary category of '{secondary_node.name}'"
        )


def validate_classification(
    result: Mapping[str, Any] | ClassificationResult, taxonomy: TaxonomyTree
) -> ClassificationResult:
    """
    Check an LLM classification against the taxonomy and business rules.

    Args:
        result: Parsed LLM JSON (dict) or an existing ClassificationResult
        taxonomy: Tenant taxonomy the categories must come from

    Returns:
        ClassificationResult with category names in the taxonomy's spelling

    Raises:
        ClassificationValidationError: Listing every violation found:
            unknown or misplaced categories, confidence outside [0, 1],
            missing secondary for URGENT, missing or disallowed tertiary for
            e-transfer, receipts, invoice, bank-alert and refund
    """
    if isinstance(result, ClassificationResult):
        data = result.model_dump()
    else:
        data = dict(result)
    violations: list[str] = []

    _check_confidence(data.get("confidence"), violations)

    for field in ("secondary_category", "tertiary_category"):
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            violations.append(f"{field} must be a string or null, got {type(value).__name__}")
            data[field] = None
        elif isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            data[field] = None

    primary = data.get("primary_category")
    primary_node = None
    if not isinstance(primary, str) or not primary.strip():
        violations.append("primary_category is required")
    else:
        primary_node = taxonomy.find_by_name(primary, TaxonomyLevel.PRIMARY)
        if primary_node is None:
            violations.append(f"Unknown primary_category '{primary}'")
        else:
            data["primary_category"] = primary_node.name

    secondary = data.get("secondary_category")
    secondary_node = None
    if primary_node is not None and not secondary:
        if normalize_category(primary_node.name) in {normalize_category(p) for p in SECONDARY_REQUIRED_FOR}:
            violations.append(f"secondary_category is mandatory for primary '{primary_node.name}'")
    if secondary and primary_node is not None:
        secondary_node = taxonomy.find_by_name(secondary, TaxonomyLevel.SECONDARY, parent=primary_node)
        if secondary_node is None:
            violations.append(f"'{secondary}' is not a secondary category of '{primary_node.name}'")
        else:
            data["secondary_category"] = secondary_node.name

    _check_tertiary(data, secondary_node, taxonomy, violations)

    if not violations:
        try:
            return ClassificationResult(**data)
        except PydanticValidationError as e:
            violations.extend(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )

    counter("classification.validation_failed")
    log_event("classification.validation_failed", violations=len(violations))
    logger.warning("Classification rejected: %s", violations)
    raise ClassificationValidationError(violations, raw=dict(result) if isinstance(result, Mapping) else data)
