"""Tests for classification output validation."""

from __future__ import annotations

import pytest

from floworx.classification.taxonomy import TaxonomyTree, validate_taxonomy
from floworx.classification.validator import (
    ClassificationValidationError,
    mandatory_tertiary_for,
    validate_classification,
)
from floworx.observability.telemetry import get_counter
from floworx.storage.models import ClassificationResult


def _payload(primary, secondary=None, tertiary=None, confidence=0.9, **extra):
    return {
        "primary_category": primary,
        "secondary_category": secondary,
        "tertiary_category": tertiary,
        "confidence": confidence,
        **extra,
    }


class TestMandatoryTertiary:
    def test_e_transfer_with_null_tertiary_rejected(self, taxonomy):
        with pytest.raises(ClassificationValidationError) as exc_info:
            validate_classification(_payload("BANKING", "e-transfer", None), taxonomy)

        assert len(exc_info.value.violations) == 1
        assert "mandatory" in exc_info.value.violations[0]
        assert exc_info.value.raw["secondary_category"] == "e-transfer"

    def test_string_null_counts_as_missing(self, taxonomy):
        with pytest.raises(ClassificationValidationError):
            validate_classification(_payload("BANKING", "Receipts", "null"), taxonomy)

    def test_tertiary_outside_allowed_values_rejected(self, taxonomy):
        with pytest.raises(ClassificationValidationError, match="not allowed"):
            validate_classification(_payload("BANKING", "e-Transfer", "PaymentSent"), taxonomy)

    @pytest.mark.parametrize(
        ("secondary", "tertiary"),
        [
            ("e-transfer", "ToBusiness"),
            ("receipts", "PaymentReceived"),
            ("invoice", "PaymentDue"),
            ("bank-alert", "FraudWarning"),
            ("refund", "RefundIssued"),
        ],
    )
    def test_allowed_values_accepted(self, taxonomy, secondary, tertiary):
        result = validate_classification(_payload("BANKING", secondary, tertiary), taxonomy)
        assert result.tertiary_category == tertiary

    def test_allowed_value_accepted_when_taxonomy_has_no_tertiary_nodes(self):
        tree = validate_taxonomy(TaxonomyTree.from_config({"BANKING": {"Refund": None}}))
        result = validate_classification(_payload("BANKING", "Refund", "RefundIssued"), tree)
        assert result.tertiary_category == "RefundIssued"

    def test_lookup_table(self):
        assert mandatory_tertiary_for("e-Transfer") == ("FromBusiness", "ToBusiness")
        assert mandatory_tertiary_for("BankAlert") == ("SecurityAlert", "FraudWarning", "PasswordReset")
        assert mandatory_tertiary_for("PaymentConfirmation") is None
        assert mandatory_tertiary_for(None) is None


class TestHierarchy:
    def test_valid_result_uses_taxonomy_spelling(self, taxonomy):
        result = validate_classification(
            _payload("banking", "E-TRANSFER", "frombusiness", ai_can_reply=False), taxonomy
        )

        assert isinstance(result, ClassificationResult)
        assert result.category_path() == ("BANKING", "e-Transfer", "FromBusiness")

    def test_unknown_primary(self, taxonomy):
        with pytest.raises(ClassificationValidationError, match="Unknown primary_category"):
            validate_classification(_payload("SPAM"), taxonomy)

    def test_secondary_must_belong_to_primary(self, taxonomy):
        with pytest.raises(ClassificationValidationError, match="not a secondary category of 'SALES'"):
            validate_classification(_payload("SALES", "General"), taxonomy)

    def test_tertiary_must_belong_to_secondary(self, taxonomy):
        with pytest.raises(ClassificationValidationError, match="not a tertiary category"):
            validate_classification(_payload("SUPPORT", "General", "Whatever"), taxonomy)

    def test_urgent_requires_secondary(self, taxonomy):
        with pytest.raises(ClassificationValidationError, match="secondary_category is mandatory"):
            validate_classification(_payload("URGENT"), taxonomy)

        result = validate_classification(_payload("URGENT", "EmergencyRepair"), taxonomy)
        assert result.secondary_category == "EmergencyRepair"

    def test_tenant_manager_is_a_valid_secondary(self, taxonomy):
        result = validate_classification(_payload("MANAGER", "hailey smith"), taxonomy)
        assert result.secondary_category == "Hailey Smith"

    def test_missing_primary(self, taxonomy):
        with pytest.raises(ClassificationValidationError, match="primary_category is required"):
            validate_classification({"confidence": 0.5}, taxonomy)

    @pytest.mark.parametrize(
        ("secondary", "tertiary", "field"),
        [
            (5, None, "secondary_category"),
            (["Invoice"], None, "secondary_category"),
            ("Invoice", 7, "tertiary_category"),
            ("Invoice", {"name": "PaymentDue"}, "tertiary_category"),
        ],
    )
    def test_non_string_categories_rejected(self, taxonomy, secondary, tertiary, field):
        with pytest.raises(ClassificationValidationError) as exc_info:
            validate_classification(_payload("BANKING", secondary, tertiary), taxonomy)

        assert f"{field} must be a string or null" in exc_info.value.violations[0]
        assert exc_info.value.raw[field] in (secondary, tertiary)


class TestConfidence:
    @pytest.mark.parametrize("confidence", [1.5, -0.1, "0.9", None, True])
    def test_confidence_must_be_a_number_in_range(self, taxonomy, confidence):
        with pytest.raises(ClassificationValidationError, match="confidence"):
            validate_classification(_payload("SALES", confidence=confidence), taxonomy)

    @pytest.mark.parametrize("confidence", [0, 1, 0.75])
    def test_bounds_inclusive(self, taxonomy, confidence):
        result = validate_classification(_payload("SALES", confidence=confidence), taxonomy)
        assert result.confidence == confidence


def test_every_violation_reported(taxonomy):
    with pytest.raises(ClassificationValidationError) as exc_info:
        validate_classification(_payload("SPAM", confidence=2), taxonomy)

    assert len(exc_info.value.violations) == 2
    assert get_counter("classification.validation_failed") == 1


def test_accepts_existing_result(taxonomy):
    existing = ClassificationResult(primary_category="BANKING", secondary_category="Invoice", confidence=0.8)
    with pytest.raises(ClassificationValidationError):
        validate_classification(existing, taxonomy)
