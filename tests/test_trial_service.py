"""Tests for trial evaluation and the trial / upgrade lifecycle writes."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from models.models import BillingCycle, Organization, PlanType, SubscriptionStatus, UNLIMITED
from services.exceptions import OrganizationNotFoundError
from services.plan_catalog import UnknownPlanError
from services.trial_service import (
    build_trial_info,
    evaluate_trial,
    initialize_trial,
    start_trial,
    upgrade_to_paid_plan,
)
from services.usage_service import increment_package_usage

UTC = timezone.utc


class TestInitializeTrial:
    def test_sets_fixed_window_and_trial_ceilings(self, trial_organization, trial_start):
        assert trial_organization.plan_type == PlanType.TRIAL
        assert trial_organization.subscription_status == SubscriptionStatus.TRIAL
        assert trial_organization.trial_start_date == trial_start
        assert trial_organization.trial_end_date == trial_start + timedelta(days=7)
        assert trial_organization.max_users == 5
        assert trial_organization.max_packages_per_month == 500
        assert trial_organization.current_month_packages == 0

    def test_second_call_keeps_original_window(self, db, trial_organization, trial_start):
        initialize_trial(db, trial_organization.id, now=trial_start + timedelta(days=3))
        db.refresh(trial_organization)
        assert trial_organization.trial_end_date == trial_start + timedelta(days=7)

    def test_missing_organization(self, db):
        with pytest.raises(OrganizationNotFoundError):
            initialize_trial(db, 9999)

    def test_stored_instants_come_back_as_utc(self, db, make_organization):
        """A start given in UTC+02:00 is stored and read back as the same UTC instant."""
        local_start = datetime(2024, 3, 10, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        organization = initialize_trial(db, make_organization().id, now=local_start)

        db.expire_all()
        stored = db.get(Organization, organization.id)
        assert stored.trial_start_date == datetime(2024, 3, 10, 12, 0, tzinfo=UTC)
        assert stored.trial_start_date.utcoffset() == timedelta(0)
        assert stored.trial_end_date.utcoffset() == timedelta(0)
        assert stored.created_at.tzinfo is not None


class TestStartTrial:
    def test_sets_window_without_committing(self, db, trial_start):
        organization = Organization(name="Pending Mailroom")
        start_trial(organization, now=trial_start)

        assert organization.subscription_status == SubscriptionStatus.TRIAL
        assert organization.trial_end_date == trial_start + timedelta(days=7)
        assert db.exec(select(Organization)).all() == []


class TestEvaluateScenarios:
    def test_trial_timeline(self, db, trial_organization, trial_start):
        """Active with 4 days left at T0+3d, expired with 0 days at T0+8d."""
        info = evaluate_trial(db, trial_organization.id, now=trial_start + timedelta(days=3))
        assert info.is_trial_active
        assert info.days_remaining == 4
        assert not info.is_expired

        info = evaluate_trial(db, trial_organization.id, now=trial_start + timedelta(days=8))
        assert not info.is_trial_active
        assert info.is_expired
        assert info.days_remaining == 0

    def test_partial_day_rounds_up(self, db, trial_organization, trial_start):
        info = evaluate_trial(db, trial_organization.id, now=trial_start + timedelta(days=6, hours=23))
        assert info.days_remaining == 1

    def test_read_rolls_over_stale_month(self, db, make_organization):
        """A window stamped March 1st is reset by a read on April 2nd."""
        organization = make_organization(
            usage_reset_date=datetime(2024, 3, 1, tzinfo=UTC),
            current_month_packages=42,
        )
        now = datetime(2024, 4, 2, 9, 30, tzinfo=UTC)

        info = evaluate_trial(db, organization.id, now=now)

        assert info.usage_limits.current_packages == 0
        db.refresh(organization)
        assert organization.current_month_packages == 0
        assert organization.usage_reset_date == now

    def test_missing_organization(self, db):
        with pytest.raises(OrganizationNotFoundError):
            evaluate_trial(db, 9999)

    def test_counts_members_live(self, db, trial_organization, trial_start, make_user, add_member):
        add_member(trial_organization, make_user("one@acme.com"))
        add_member(trial_organization, make_user("two@acme.com"))

        info = evaluate_trial(db, trial_organization.id, now=trial_start)
        assert info.usage_limits.current_users == 2
        assert info.usage_limits.can_add_users


class TestRolloverIdempotence:
    def test_repeated_reads_in_month_keep_counter(self, db, trial_organization, trial_start):
        increment_package_usage(db, trial_organization.id, now=trial_start)
        increment_package_usage(db, trial_organization.id, now=trial_start)

        first = evaluate_trial(db, trial_organization.id, now=trial_start + timedelta(hours=1))
        second = evaluate_trial(db, trial_organization.id, now=trial_start + timedelta(hours=2))
        assert first.usage_limits.current_packages == 2
        assert second.usage_limits.current_packages == 2

    def test_boundary_crossing_resets_exactly_once(self, db, trial_organization, trial_start):
        increment_package_usage(db, trial_organization.id, now=trial_start)
        next_month = datetime(2024, 4, 1, 0, 5, tzinfo=UTC)

        assert evaluate_trial(db, trial_organization.id, now=next_month).usage_limits.current_packages == 0
        increment_package_usage(db, trial_organization.id, now=next_month + timedelta(minutes=1))
        later = evaluate_trial(db, trial_organization.id, now=next_month + timedelta(minutes=2))
        assert later.usage_limits.current_packages == 1


class TestUnlimitedSentinel:
    def test_unlimited_ceilings_always_allow(self):
        organization = Organization(
            name="Big Co",
            plan_type=PlanType.ENTERPRISE,
            subscription_status=SubscriptionStatus.ACTIVE,
            max_users=UNLIMITED,
            max_packages_per_month=UNLIMITED,
            current_month_packages=10_000,
        )
        info = build_trial_info(organization, member_count=10_000, now=datetime(2024, 5, 1, tzinfo=UTC))
        assert info.usage_limits.can_add_users
        assert info.usage_limits.can_add_packages

    def test_finite_ceiling_is_exclusive(self):
        organization = Organization(
            name="Small Co",
            subscription_status=SubscriptionStatus.ACTIVE,
            max_users=5,
            max_packages_per_month=500,
            current_month_packages=500,
        )
        info = build_trial_info(organization, member_count=4, now=datetime(2024, 5, 1, tzinfo=UTC))
        assert info.usage_limits.can_add_users
        assert not info.usage_limits.can_add_packages


class TestExpiryMonotonicity:
    def test_stays_expired_until_upgrade(self, db, trial_organization, trial_start):
        for days in (8, 9, 30, 365):
            info = evaluate_trial(db, trial_organization.id, now=trial_start + timedelta(days=days))
            assert info.is_expired

        upgrade_to_paid_plan(db, trial_organization.id, "starter", now=trial_start + timedelta(days=400))
        info = evaluate_trial(db, trial_organization.id, now=trial_start + timedelta(days=401))
        assert not info.is_expired
        assert info.subscription_status == SubscriptionStatus.ACTIVE


class TestUpgrade:
    def test_applies_catalog_ceilings(self, db, trial_organization):
        organization = upgrade_to_paid_plan(
            db,
            trial_organization.id,
            "professional",
            stripe_customer_id="cus_123",
            stripe_subscription_id="sub_123",
        )
        assert organization.plan_type == PlanType.PROFESSIONAL
        assert organization.subscription_status == SubscriptionStatus.ACTIVE
        assert organization.max_users == 100
        assert organization.max_packages_per_month == UNLIMITED
        assert organization.stripe_customer_id == "cus_123"
        assert organization.stripe_subscription_id == "sub_123"

    def test_seat_purchase_records_payment(self, db, trial_organization):
        now = datetime(2024, 1, 31, 10, 0, tzinfo=UTC)
        organization = upgrade_to_paid_plan(db, trial_organization.id, "professional", seats=3, now=now)
        assert organization.last_payment_amount == 10500
        assert organization.last_payment_date == now
        assert organization.next_billing_date == datetime(2024, 2, 29, 10, 0, tzinfo=UTC)
        assert organization.billing_cycle == BillingCycle.MONTHLY

    def test_trial_is_not_an_upgrade_target(self, db, trial_organization):
        with pytest.raises(UnknownPlanError):
            upgrade_to_paid_plan(db, trial_organization.id, "trial")

    def test_unknown_plan(self, db, trial_organization):
        with pytest.raises(UnknownPlanError):
            upgrade_to_paid_plan(db, trial_organization.id, "platinum")
