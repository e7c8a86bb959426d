"""Tests for boundary validation on the domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from floworx.storage.models import (
    BusinessInfo,
    ClassificationResult,
    EmailMessage,
    Manager,
    Role,
    Supplier,
    normalize_category,
)


@pytest.mark.parametrize("name", ["e-Transfer", "E-transfer", "etransfer", " E Transfer "])
def test_normalize_category(name):
    assert normalize_category(name) == "etransfer"


def test_email_repr_hides_content():
    email = EmailMessage(subject="Wire me $5000", body="secret", from_address="pat@gmail.com")

    text = repr(email)

    assert "secret" not in text
    assert "pat@gmail.com" not in text
    assert email.redacted()["subject"].startswith("hash:")
    assert email.sender_domain == "gmail.com"


def test_blank_categories_become_none():
    result = ClassificationResult(
        primary_category="SALES", secondary_category="null", tertiary_category=" ", confidence=0.5
    )
    assert result.category_path() == ("SALES",)


def test_confidence_bounds():
    with pytest.raises(ValidationError):
        ClassificationResult(primary_category="SALES", confidence=1.5)


def test_manager_blank_email_disables_forwarding():
    manager = Manager(name=" Aaron ", email="  ")
    assert manager.name == "Aaron"
    assert manager.email is None
    assert manager.forward_enabled is False


def test_supplier_domains_cleaned():
    supplier = Supplier(name="StrongSpas", domains="@StrongSpas.com, ,spa.io")
    assert supplier.domains == ("strongspas.com", "spa.io")


def test_business_and_role_normalized():
    assert BusinessInfo(email_domain=" @AcmePools.com").email_domain == "acmepools.com"
    assert Role(id="sales_manager", matched_categories=("sales",)).matched_categories == ("SALES",)
