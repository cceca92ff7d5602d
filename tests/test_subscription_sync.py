"""
Tests for Stripe -> local subscription mapping
"""
from datetime import datetime

import pytest

from riskmate.db.models import Organization, Subscription
from riskmate.services.subscription_sync import (
    apply_plan_to_organization,
    extract_plan_code,
    limits_for,
    normalize_stripe_status,
    subscription_values,
    sync_subscription_row,
    upsert_subscription,
)
from helpers import stripe_subscription


class TestStatusMapping:
    """normalize_stripe_status"""

    @pytest.mark.parametrize("stripe_status,expected", [
        ("active", "active"),
        ("trialing", "trialing"),
        ("past_due", "past_due"),
        ("unpaid", "past_due"),
        ("incomplete", "past_due"),
        ("canceled", "canceled"),
        ("cancelled", "canceled"),
        (None, "active"),
    ])
    def test_mapping(self, stripe_status, expected):
        assert normalize_stripe_status(stripe_status) == expected


class TestPlanCode:
    """extract_plan_code"""

    def test_plan_code_preferred(self):
        assert extract_plan_code({"plan_code": "business", "plan": "pro"}) == "business"

    def test_legacy_plan_key(self):
        assert extract_plan_code({"plan": "PRO"}) == "pro"

    def test_unknown_plan_uses_default(self):
        assert extract_plan_code({"plan_code": "enterprise"}, default="starter") == "starter"

    def test_missing_metadata(self):
        assert extract_plan_code(None) is None


class TestSubscriptionValues:
    """Row values derived from Stripe"""

    def test_active_gets_tier_limits(self):
        values = subscription_values(stripe_subscription("sub_1", "org_1"), "starter")

        assert values["seats_limit"] == 1
        assert values["jobs_limit"] == 10
        assert values["stripe_customer_id"] == "cus_123"
        assert isinstance(values["current_period_end"], datetime)

    def test_inactive_zeroes_limits(self):
        values = subscription_values(stripe_subscription("sub_1", "org_1", status="unpaid"), "business")

        assert values["status"] == "past_due"
        assert values["seats_limit"] == 0
        assert values["jobs_limit"] == 0

    def test_status_override(self):
        values = subscription_values(stripe_subscription("sub_1", "org_1", status="active"), "pro", status="canceled")

        assert values["status"] == "canceled"

    def test_period_read_from_items(self):
        subscription = {
            "id": "sub_1",
            "status": "active",
            "customer": {"id": "cus_expanded"},
            "items": {"data": [{"current_period_start": 1700000000, "current_period_end": 1702592000}]},
        }

        values = subscription_values(subscription, "pro")

        assert values["current_period_start"] == datetime(2023, 11, 14, 22, 13, 20)
        assert values["stripe_customer_id"] == "cus_expanded"

    def test_unknown_tier_falls_back_to_starter_limits(self):
        assert limits_for("enterprise") == {"seats_limit": 1, "jobs_limit": 10}


class TestUpsert:
    """upsert_subscription and apply_plan_to_organization"""

    def test_upsert_requires_subscription_id(self, db_session, organization):
        with pytest.raises(ValueError):
            upsert_subscription(db_session, organization.id, None, {"tier": "pro"})

    def test_upsert_updates_in_place(self, db_session, organization, active_subscription):
        row = upsert_subscription(
            db_session, organization.id, "sub_active", {"tier": "pro", "status": "past_due"}
        )
        db_session.commit()

        assert row.id == active_subscription.id
        assert row.tier == "pro"
        assert row.status == "past_due"
        assert db_session.query(Subscription).count() == 1

    def test_same_stripe_id_in_two_orgs_gives_two_rows(self, db_session, organization):
        other = Organization(name="Other Co")
        db_session.add(other)
        db_session.commit()

        upsert_subscription(db_session, organization.id, "sub_shared", {"tier": "pro"})
        upsert_subscription(db_session, other.id, "sub_shared", {"tier": "pro"})
        db_session.commit()

        assert db_session.query(Subscription).filter_by(stripe_subscription_id="sub_shared").count() == 2

    def test_apply_plan_mirrors_onto_organization(self, db_session, organization):
        apply_plan_to_organization(
            db_session, organization.id, "business", stripe_subscription("sub_1", organization.id, customer="cus_77")
        )
        db_session.commit()

        db_session.refresh(organization)
        assert organization.subscription_tier == "business"
        assert organization.subscription_status == "active"
        assert organization.stripe_customer_id == "cus_77"

    def test_sync_row_keeps_tier(self, db_session, organization, active_subscription):
        sync_subscription_row(
            db_session,
            active_subscription,
            stripe_subscription("sub_active", organization.id, plan="starter", status="canceled"),
        )
        db_session.commit()

        assert active_subscription.tier == "business"
        assert active_subscription.status == "canceled"
        assert active_subscription.seats_limit == 0
