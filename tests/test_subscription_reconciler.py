"""Tests for applying Stripe webhook events to organizations."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from models.models import BillingCycle, PlanType, SubscriptionStatus, TrialAction, WebhookEvent
from services import subscription_reconciler
from services.action_gate import ActionGate, GatePolicy
from services.subscription_reconciler import (
    ReconciliationResult,
    RetryableReconciliationMiss,
    reconcile_event,
)

PERIOD_START = datetime(2024, 6, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2024, 7, 1, tzinfo=timezone.utc)


def _event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _subscription(customer="cus_123", status="active", lookup_key="professional", interval="month", **extra):
    subscription = {
        "id": "sub_123",
        "customer": customer,
        "status": status,
        "current_period_start": int(PERIOD_START.timestamp()),
        "current_period_end": int(PERIOD_END.timestamp()),
        "items": {"data": [{"price": {"id": "price_1", "lookup_key": lookup_key, "recurring": {"interval": interval}}}]},
        "metadata": {},
    }
    subscription.update(extra)
    return subscription


@pytest.fixture
def linked_organization(make_organization):
    return make_organization(stripe_customer_id="cus_123", billing_email="billing@acme.com")


class _EmailRecorder:
    def __init__(self):
        self.sent = []

    def send_payment_failed_email(self, **kwargs):
        self.sent.append(kwargs)
        return True


class TestSubscriptionUpdated:
    def test_applies_status_plan_and_period(self, db, linked_organization):
        result = reconcile_event(db, _event("evt_1", "customer.subscription.updated", _subscription(interval="year")))

        assert result == ReconciliationResult.PROCESSED
        db.refresh(linked_organization)
        assert linked_organization.subscription_status == SubscriptionStatus.ACTIVE
        assert linked_organization.plan_type == PlanType.PROFESSIONAL
        assert linked_organization.max_users == 100
        assert linked_organization.max_packages_per_month == -1
        assert linked_organization.stripe_subscription_id == "sub_123"
        assert linked_organization.subscription_start_date == PERIOD_START
        assert linked_organization.subscription_end_date == PERIOD_END
        assert linked_organization.next_billing_date == PERIOD_END
        assert linked_organization.billing_cycle == BillingCycle.YEARLY

        record = db.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_1")).one()
        assert record.processed
        assert record.attempts == 1
        assert record.organization_id == linked_organization.id

    def test_item_level_period(self, db, linked_organization):
        subscription = _subscription()
        del subscription["current_period_start"]
        del subscription["current_period_end"]
        subscription["items"]["data"][0]["current_period_end"] = int(PERIOD_END.timestamp())

        reconcile_event(db, _event("evt_item", "customer.subscription.updated", subscription))
        db.refresh(linked_organization)
        assert linked_organization.next_billing_date == PERIOD_END

    def test_provider_status_mapping(self, db, linked_organization):
        reconcile_event(db, _event("evt_pd", "customer.subscription.updated", _subscription(status="past_due")))
        db.refresh(linked_organization)
        assert linked_organization.subscription_status == SubscriptionStatus.PAST_DUE

        reconcile_event(db, _event("evt_ie", "customer.subscription.updated", _subscription(status="incomplete_expired")))
        db.refresh(linked_organization)
        assert linked_organization.subscription_status == SubscriptionStatus.EXPIRED

    def test_unresolved_plan_keeps_current_plan(self, db, linked_organization):
        reconcile_event(db, _event("evt_np", "customer.subscription.updated", _subscription(lookup_key=None)))
        db.refresh(linked_organization)
        assert linked_organization.plan_type == PlanType.TRIAL
        assert linked_organization.max_users == 5
        assert linked_organization.subscription_status == SubscriptionStatus.ACTIVE

    def test_metadata_fallback_links_customer(self, db, make_organization):
        organization = make_organization()
        subscription = _subscription(customer="cus_new", metadata={"organization_id": str(organization.id)})

        assert reconcile_event(db, _event("evt_meta", "customer.subscription.created", subscription)) == ReconciliationResult.PROCESSED
        db.refresh(organization)
        assert organization.stripe_customer_id == "cus_new"
        assert organization.plan_type == PlanType.PROFESSIONAL

    def test_unpaid_subscription_keeps_expired_trial_locked(self, db, trial_organization, trial_start):
        trial_organization.stripe_customer_id = "cus_123"
        db.add(trial_organization)
        db.commit()
        gate = ActionGate(GatePolicy(fail_open=True))
        after_trial = trial_start + timedelta(days=8)

        created = _event("evt_inc", "customer.subscription.created", _subscription(status="incomplete", lookup_key="enterprise"))
        assert reconcile_event(db, created) == ReconciliationResult.PROCESSED

        db.refresh(trial_organization)
        assert trial_organization.stripe_subscription_id == "sub_123"
        assert trial_organization.subscription_status == SubscriptionStatus.TRIAL
        assert trial_organization.plan_type == PlanType.TRIAL
        assert trial_organization.max_users == 5
        assert not gate.allows(db, trial_organization.id, TrialAction.ADD_USER, now=after_trial)
        assert not gate.allows(db, trial_organization.id, TrialAction.ADD_PACKAGE, now=after_trial)

        paid = _event("evt_paid", "customer.subscription.updated", _subscription(status="active", lookup_key="enterprise"))
        reconcile_event(db, paid)
        db.refresh(trial_organization)
        assert trial_organization.subscription_status == SubscriptionStatus.ACTIVE
        assert trial_organization.max_users == -1
        assert gate.allows(db, trial_organization.id, TrialAction.ADD_USER, now=after_trial)

    def test_never_touches_usage_counter(self, db, make_organization):
        organization = make_organization(stripe_customer_id="cus_123", current_month_packages=321)
        reconcile_event(db, _event("evt_u", "customer.subscription.updated", _subscription(lookup_key="starter")))
        db.refresh(organization)
        assert organization.current_month_packages == 321


class TestDeduplication:
    def test_redelivery_is_skipped(self, db, linked_organization):
        event = _event("evt_dup", "customer.subscription.updated", _subscription(status="past_due"))
        assert reconcile_event(db, event) == ReconciliationResult.PROCESSED

        linked_organization.subscription_status = SubscriptionStatus.ACTIVE
        db.add(linked_organization)
        db.commit()

        assert reconcile_event(db, event) == ReconciliationResult.DUPLICATE
        db.refresh(linked_organization)
        assert linked_organization.subscription_status == SubscriptionStatus.ACTIVE
        assert len(db.exec(select(WebhookEvent)).all()) == 1

    def test_unhandled_type_is_ignored(self, db):
        assert reconcile_event(db, _event("evt_x", "customer.created", {})) == ReconciliationResult.IGNORED
        assert db.exec(select(WebhookEvent)).all() == []


class TestLookupMisses:
    def test_transient_miss_retries_then_drops(self, db):
        event = _event("evt_race", "customer.subscription.updated", _subscription(customer="cus_unknown"))

        for attempt in (1, 2):
            with pytest.raises(RetryableReconciliationMiss) as exc_info:
                reconcile_event(db, event, max_lookup_attempts=3)
            assert exc_info.value.attempts == attempt

        assert reconcile_event(db, event, max_lookup_attempts=3) == ReconciliationResult.DROPPED
        record = db.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_race")).one()
        assert record.attempts == 3
        assert record.processed
        assert "cus_unknown" in record.processing_error

        assert reconcile_event(db, event, max_lookup_attempts=3) == ReconciliationResult.DUPLICATE

    def test_cancellation_miss_drops_immediately(self, db):
        event = _event("evt_gone", "customer.subscription.deleted", {"id": "sub_9", "customer": "cus_nobody"})
        assert reconcile_event(db, event) == ReconciliationResult.DROPPED

    def test_unexpected_error_is_recorded_and_raised(self, db, linked_organization, monkeypatch):
        def broken_handler(db, obj, now):
            raise RuntimeError("boom")

        monkeypatch.setitem(subscription_reconciler.EVENT_HANDLERS, "invoice.payment_succeeded", broken_handler)
        with pytest.raises(RuntimeError):
            reconcile_event(db, _event("evt_err", "invoice.payment_succeeded", {"customer": "cus_123"}))

        record = db.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_err")).one()
        assert not record.processed
        assert record.processing_error == "boom"


class TestSubscriptionDeleted:
    def test_marks_cancelled(self, db, linked_organization):
        ended_at = datetime(2024, 6, 20, tzinfo=timezone.utc)
        event = _event("evt_del", "customer.subscription.deleted", {
            "id": "sub_123",
            "customer": "cus_123",
            "status": "canceled",
            "ended_at": int(ended_at.timestamp()),
        })
        reconcile_event(db, event)
        db.refresh(linked_organization)
        assert linked_organization.subscription_status == SubscriptionStatus.CANCELLED
        assert linked_organization.subscription_end_date == ended_at
        assert linked_organization.next_billing_date is None


class TestInvoices:
    def test_payment_succeeded_records_amount(self, db, linked_organization):
        paid_at = datetime(2024, 6, 2, 8, 30, tzinfo=timezone.utc)
        invoice = {
            "id": "in_1",
            "customer": "cus_123",
            "amount_paid": 10500,
            "status_transitions": {"paid_at": int(paid_at.timestamp())},
        }
        reconcile_event(db, _event("evt_paid_1", "invoice.payment_succeeded", invoice))
        reconcile_event(db, _event("evt_paid_2", "invoice.payment_succeeded", dict(invoice, amount_paid=7000)))

        db.refresh(linked_organization)
        assert linked_organization.last_payment_amount == 7000
        assert linked_organization.last_payment_date == paid_at

    def test_payment_failed_alerts_without_state_change(self, db, linked_organization, monkeypatch):
        recorder = _EmailRecorder()
        monkeypatch.setattr(subscription_reconciler, "email_service", recorder)

        invoice = {"id": "in_2", "customer": "cus_123", "amount_due": 3500, "hosted_invoice_url": "https://pay.test/in_2"}
        assert reconcile_event(db, _event("evt_fail", "invoice.payment_failed", invoice)) == ReconciliationResult.PROCESSED

        db.refresh(linked_organization)
        assert linked_organization.subscription_status == SubscriptionStatus.TRIAL
        assert recorder.sent == [{
            "to_email": "billing@acme.com",
            "org_name": "Acme Mailroom",
            "amount_due_cents": 3500,
            "invoice_url": "https://pay.test/in_2",
        }]


class TestCheckoutCompleted:
    def test_links_customer_and_subscription(self, db, make_organization):
        organization = make_organization()
        checkout = {
            "id": "cs_1",
            "client_reference_id": str(organization.id),
            "customer": "cus_checkout",
            "subscription": "sub_checkout",
            "customer_details": {"email": "pay@acme.com"},
        }
        assert reconcile_event(db, _event("evt_cs", "checkout.session.completed", checkout)) == ReconciliationResult.PROCESSED

        db.refresh(organization)
        assert organization.stripe_customer_id == "cus_checkout"
        assert organization.stripe_subscription_id == "sub_checkout"
        assert organization.billing_email == "pay@acme.com"

    def test_unknown_reference_drops(self, db):
        checkout = {"id": "cs_2", "client_reference_id": "424242", "customer": "cus_x"}
        assert reconcile_event(db, _event("evt_cs2", "checkout.session.completed", checkout)) == ReconciliationResult.DROPPED
