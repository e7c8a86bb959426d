"""
Pytest configuration for FloWorx tests

Provides fixtures shared across all test files: a manager roster, the
packaged roles and taxonomy, a tenant config, an in-memory label provider and
an in-memory SQLite connection. Nothing here touches the network.
"""

from __future__ import annotations

import itertools
from datetime import UTC, datetime

import pytest

from floworx.infrastructure.database import connect, init_database
from floworx.infrastructure.retry import ProviderApiError
from floworx.observability.telemetry import reset_counters
from floworx.routing.roles import default_roles
from floworx.storage.models import (
    BusinessInfo,
    ClassificationResult,
    EmailMessage,
    Manager,
    ProviderLabel,
    Supplier,
)
from floworx.storage.tenancy import TenantConfig

FIXED_NOW = datetime(2026, 3, 2, 15, 30, tzinfo=UTC)


class FakeLabelProvider:
    """
    In-memory LabelProvider.

    ``hidden_reads`` makes each newly created label invisible to that many
    list_labels() calls, mimicking provider eventual consistency.
    ``failures`` maps a label name to a queue of errors raised by create_label.
    """

    def __init__(self, labels=(), supports_hierarchy=True, hidden_reads=0):
        self.supports_hierarchy = supports_hierarchy
        self.labels: dict[str, ProviderLabel] = {label.id: label for label in labels}
        self.hidden_reads = hidden_reads
        self.failures: dict[str, list[ProviderApiError]] = {}
        self.calls: list[tuple] = []
        self._hidden: dict[str, int] = {}
        self._ids = itertools.count(1)

    def list_labels(self):
        self.calls.append(("list",))
        visible = []
        for label in self.labels.values():
            remaining = self._hidden.get(label.id, 0)
            if remaining:
                self._hidden[label.id] = remaining - 1
                continue
            visible.append(label)
        return visible

    def create_label(self, name, parent_id=None):
        self.calls.append(("create", name, parent_id))
        queued = self.failures.get(name)
        if queued:
            raise queued.pop(0)
        label = ProviderLabel(id=f"L{next(self._ids)}", name=name, parent_id=parent_id)
        self.labels[label.id] = label
        if self.hidden_reads:
            self._hidden[label.id] = self.hidden_reads
        return label

    def delete_label(self, label_id):
        self.calls.append(("delete", label_id))
        if label_id not in self.labels:
            raise ProviderApiError(f"Label {label_id} not found", 404)
        del self.labels[label_id]

    def move_label(self, label_id, parent_id):
        self.calls.append(("move", label_id, parent_id))
        label = self.labels[label_id]
        moved = ProviderLabel(id=label.id, name=label.name, parent_id=parent_id)
        self.labels[label_id] = moved
        return moved

    def provider_calls(self):
        """Every call except listing."""
        return [call for call in self.calls if call[0] != "list"]


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def roles():
    return default_roles()


@pytest.fixture
def managers():
    """Roster in tie-break order."""
    return (
        Manager(name="Hailey Smith", email="hailey@acmepools.com", roles=("sales_manager",)),
        Manager(name="Jillian", email="jillian@acmepools.com", roles=("service_manager", "support_lead")),
        Manager(name="Aaron", email="", roles=("operations_manager",)),
    )


@pytest.fixture
def suppliers():
    return (
        Supplier(name="StrongSpas", email="orders@strongspas.com", domains="strongspas.com"),
        Supplier(name="Pool Parts Co", domains=["poolpartsco.com"]),
    )


@pytest.fixture
def tenant_config(managers, suppliers, roles):
    return TenantConfig(
        tenant_id="acme-pools",
        business=BusinessInfo(
            name="Acme Pools",
            business_types="Pools & Spas, Hot tub & Spa",
            email_domain="@AcmePools.com",
            phone="555-0100",
            service_areas="Springfield, Shelbyville",
            operating_hours="Mon-Fri 8-5",
        ),
        managers=managers,
        suppliers=suppliers,
        roles=roles,
    )


@pytest.fixture
def taxonomy(tenant_config):
    return tenant_config.taxonomy()


@pytest.fixture
def make_email():
    def _make(subject="", body="", from_address="customer@example.com", **kwargs):
        return EmailMessage(
            id=kwargs.pop("id", "msg-1"),
            subject=subject,
            body=body,
            from_address=from_address,
            to_address=kwargs.pop("to_address", "info@acmepools.com"),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_classification():
    def _make(primary="SUPPORT", secondary=None, tertiary=None, confidence=0.9, **kwargs):
        return ClassificationResult(
            primary_category=primary,
            secondary_category=secondary,
            tertiary_category=tertiary,
            confidence=confidence,
            **kwargs,
        )

    return _make


@pytest.fixture
def fake_provider():
    return FakeLabelProvider()


@pytest.fixture
def make_provider():
    return FakeLabelProvider


@pytest.fixture
def db_conn():
    conn = connect(":memory:")
    init_database(conn)
    yield conn
    conn.close()


@pytest.fixture
def now():
    return FIXED_NOW
