"""Tests for the five-level manager/supplier router."""

from __future__ import annotations

import pytest

from floworx.observability.telemetry import get_counter
from floworx.routing.router import route, route_for_tenant
from floworx.storage.models import Manager, RoutingRule


class TestNameMatch:
    def test_first_name_mention_routes_with_full_confidence(
        self, make_email, make_classification, managers, suppliers, roles
    ):
        email = make_email(subject="Pool opening", body="Please ask Hailey to follow up")
        decision = route(email, make_classification("SUPPORT"), managers, suppliers, roles)

        assert decision.matched_manager.name == "Hailey Smith"
        assert decision.routing_confidence == 100
        assert decision.rule is RoutingRule.NAME_MATCH
        assert decision.routing_reason == 'Name mentioned: "Hailey Smith"'

    def test_name_match_beats_every_other_signal(
        self, make_email, make_classification, managers, suppliers, roles
    ):
        email = make_email(
            subject="StrongSpas invoice",
            body="jillian said to send the quote and pricing",
        )
        classification = make_classification("MANAGER", secondary="Hailey Smith")
        decision = route(email, classification, managers, suppliers, roles)

        assert decision.matched_manager.name == "Jillian"
        assert decision.rule is RoutingRule.NAME_MATCH

    def test_name_in_subject_counts(self, make_email, make_classification, managers, roles):
        email = make_email(subject="For AARON", body="see attached")
        decision = route(email, make_classification("MISC"), managers, roles=roles)
        assert decision.matched_manager.name == "Aaron"


class TestSecondaryCategory:
    def test_manager_secondary_category(self, make_email, make_classification, managers, roles):
        email = make_email(subject="Question", body="Who handles this?")
        classification = make_classification("MANAGER", secondary="jillian")
        decision = route(email, classification, managers, roles=roles)

        assert decision.matched_manager.name == "Jillian"
        assert decision.routing_confidence == 95
        assert decision.routing_reason == "AI classified as MANAGER/Jillian"


class TestRoleCategory:
    def test_single_role_weight(self, make_email, make_classification, managers, roles):
        email = make_email(subject="New pool", body="Looking for a new pool")
        decision = route(email, make_classification("SALES"), managers, roles=roles)

        assert decision.matched_manager.name == "Hailey Smith"
        assert decision.routing_confidence == 80
        assert decision.routing_reason == "Category: SALES"
        assert decision.matched_roles == ("sales_manager",)

    def test_role_weights_accumulate(self, make_email, make_classification, managers, roles):
        email = make_email(subject="Heater", body="Heater is making noise")
        decision = route(email, make_classification("support"), managers, roles=roles)

        assert decision.matched_manager.name == "Jillian"
        assert decision.routing_confidence == 90
        assert set(decision.matched_roles) == {"service_manager", "support_lead"}

    def test_confidence_is_capped(self, make_email, make_classification, roles):
        roster = [Manager(name="Zed", roles=("owner", "operations_manager"))]
        email = make_email(subject="Board", body="Quarterly review")
        decision = route(email, make_classification("MANAGER"), roster, roles=roles)
        assert decision.routing_confidence == 90

        heavy = [r.model_copy(update={"weight": 50}) for r in roles]
        decision = route(email, make_classification("MANAGER"), roster, roles=heavy)
        assert decision.routing_confidence == 95

    def test_tie_goes_to_first_in_roster(self, make_email, make_classification, roles):
        roster = [
            Manager(name="Bea", roles=("sales_manager",)),
            Manager(name="Cal", roles=("sales_manager",)),
        ]
        email = make_email(subject="Quote", body="Need a new pump")
        decision = route(email, make_classification("SALES"), roster, roles=roles)
        assert decision.matched_manager.name == "Bea"

        decision = route(email, make_classification("SALES"), list(reversed(roster)), roles=roles)
        assert decision.matched_manager.name == "Cal"

    def test_unknown_role_scores_zero(self, make_email, make_classification, roles):
        roster = [Manager(name="Dee", roles=("ghost_role",)), Manager(name="Eli", roles=())]
        email = make_email(subject="Quote", body="Need a new pump")
        decision = route(email, make_classification("SALES"), roster, roles=roles)

        assert decision.rule is RoutingRule.DEFAULT
        assert decision.matched_manager.name == "Dee"


class TestKeywords:
    @pytest.fixture
    def roster(self):
        return [
            Manager(name="Hailey Smith", roles=("sales_manager",)),
            Manager(name="Jillian", roles=("service_manager",)),
        ]

    def test_keywords_used_for_manager_category(self, make_email, make_classification, roster, roles):
        email = make_email(subject="Backyard", body="Can you send a quote and pricing for the pool?")
        decision = route(email, make_classification("MANAGER"), roster, roles=roles)

        assert decision.matched_manager.name == "Hailey Smith"
        assert decision.rule is RoutingRule.KEYWORD
        assert decision.routing_confidence == 54
        assert decision.routing_reason == "Keywords: quote, pricing"

    def test_reason_lists_at_most_three_keywords(self, make_email, make_classification, roster, roles):
        email = make_email(
            subject="Repair",
            body="The pump is broken, not working, needs an emergency appointment",
        )
        decision = route(email, make_classification("MANAGER"), roster, roles=roles)

        assert decision.matched_manager.name == "Jillian"
        assert decision.routing_reason == "Keywords: repair, broken, appointment"
        assert decision.routing_confidence == 60

    def test_keywords_ignored_for_other_categories(self, make_email, make_classification, roster, roles):
        email = make_email(subject="Backyard", body="Can you send a quote and pricing for the pool?")
        decision = route(email, make_classification("MISC"), roster, roles=roles)

        assert decision.rule is RoutingRule.DEFAULT
        assert decision.routing_confidence == 30


class TestSupplier:
    def test_supplier_name_routes_to_operations(
        self, make_email, make_classification, managers, suppliers, roles
    ):
        email = make_email(subject="Shipment", body="Your StrongSpas order has shipped")
        decision = route(email, make_classification("BANKING"), managers, suppliers, roles)

        assert decision.matched_manager.name == "Aaron"
        assert decision.routing_confidence == 90
        assert decision.routing_reason == "Supplier: StrongSpas"
        assert decision.rule is RoutingRule.SUPPLIER

    def test_supplier_sender_domain(self, make_email, make_classification, managers, suppliers, roles):
        email = make_email(
            subject="Statement", body="Statement attached", from_address="billing@PoolPartsCo.com"
        )
        decision = route(email, make_classification("BANKING"), managers, suppliers, roles)
        assert decision.routing_reason == "Supplier: Pool Parts Co"

    def test_no_operations_manager_falls_through(self, make_email, make_classification, suppliers, roles):
        roster = [Manager(name="Bea", roles=("sales_manager",))]
        email = make_email(subject="Shipment", body="Your StrongSpas order has shipped")
        decision = route(email, make_classification("BANKING"), roster, suppliers, roles)
        assert decision.rule is RoutingRule.DEFAULT


class TestFallback:
    def test_no_signal_routes_to_first_manager(self, make_email, make_classification, managers, roles):
        email = make_email(subject="Hello", body="Just saying hi")
        decision = route(email, make_classification("MISC"), managers, roles=roles)

        assert decision.matched_manager.name == "Hailey Smith"
        assert decision.routing_confidence == 30
        assert decision.routing_reason == "Default routing"

    def test_no_managers_is_unassigned(self, make_email, make_classification, roles):
        email = make_email(subject="Hello", body="Please ask Hailey")
        decision = route(email, make_classification("SALES"), [], roles=roles)

        assert decision.matched_manager is None
        assert decision.is_unassigned
        assert decision.routing_confidence == 0
        assert decision.manager_folder == "MANAGER/Unassigned"
        assert decision.manager_email is None


def test_route_is_deterministic_with_fixed_time(make_email, make_classification, managers, roles, now):
    email = make_email(subject="New pool", body="Looking for a new pool")
    first = route(email, make_classification("SALES"), managers, roles=roles, now=now)
    second = route(email, make_classification("SALES"), managers, roles=roles, now=now)

    assert first == second
    assert first.timestamp == now


def test_route_emits_rule_counter(make_email, make_classification, managers, roles):
    email = make_email(subject="Hi", body="ask hailey")
    route(email, make_classification("MISC"), managers, roles=roles)
    assert get_counter("routing.name_match") == 1


def test_route_for_tenant(make_email, make_classification, tenant_config):
    email = make_email(subject="Delivery", body="StrongSpas shipment arriving Monday")
    decision = route_for_tenant(email, make_classification("BANKING"), tenant_config)

    assert decision.matched_manager.name == "Aaron"
    assert decision.manager_folder == "MANAGER/Aaron"
