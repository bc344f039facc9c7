"""Stripe webhook event handlers: apply the provider's subscription state to organizations."""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.config import settings
from models.models import BillingCycle, Organization, SubscriptionStatus, WebhookEvent, as_utc, utc_now
from services.email_service import email_service
from services.plan_catalog import PLAN_CATALOG, plan_key_from_price

logger = logging.getLogger(__name__)


class ReconciliationResult(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    DROPPED = "dropped"


class OrganizationLookupMiss(Exception):
    """No organization matches the event's customer / metadata references.

    ``transient`` marks misses that may resolve once checkout linkage lands.
    """

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class RetryableReconciliationMiss(Exception):
    """The provider should redeliver this event later."""

    def __init__(self, event_id: str, attempts: int, reason: str):
        super().__init__(f"Event {event_id} not reconciled after {attempts} attempt(s): {reason}")
        self.event_id = event_id
        self.attempts = attempts


# Map Stripe status to our enum
STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
}

# First invoice not paid yet: link the subscription, grant nothing
AWAITING_PAYMENT_STATUSES = frozenset({"incomplete"})

INTERVAL_MAP: dict[str, BillingCycle] = {
    "month": BillingCycle.MONTHLY,
    "year": BillingCycle.YEARLY,
}


def _from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    """Object metadata merged with the subscription metadata Stripe copies onto invoices."""
    merged = dict((obj.get("subscription_details") or {}).get("metadata") or {})
    merged.update(obj.get("metadata") or {})
    return merged


def _organization_id_from_reference(obj: dict[str, Any]) -> Optional[int]:
    metadata = _metadata(obj)
    raw = (
        metadata.get("organization_id")
        or metadata.get("organizationId")
        or obj.get("client_reference_id")
    )
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed organization reference %r", raw)
        return None


def _find_organization(db: Session, obj: dict[str, Any], transient: bool) -> Organization:
    """Locate the organization for a Stripe object.

    The Stripe customer id is the primary key into our data; the organization
    id our checkout writes into metadata / ``client_reference_id`` is the
    fallback, and a hit there links the customer id for later events.
    """
    customer_id = obj.get("customer")
    if customer_id:
        organization = db.exec(
            select(Organization).where(Organization.stripe_customer_id == customer_id)
        ).first()
        if organization:
            return organization

    organization_id = _organization_id_from_reference(obj)
    organization = db.get(Organization, organization_id) if organization_id else None
    if organization:
        if customer_id and organization.stripe_customer_id != customer_id:
            if organization.stripe_customer_id:
                logger.warning(
                    "Relinking organization %s from customer %s to %s",
                    organization.id,
                    organization.stripe_customer_id,
                    customer_id,
                )
            organization.stripe_customer_id = customer_id
        return organization

    raise OrganizationLookupMiss(
        f"No organization for customer {customer_id!r} (reference {organization_id!r})",
        transient=transient,
    )


# ============================================================
# ✅ Event handlers (no commits: reconcile_event owns the transaction)
# ============================================================
def handle_subscription_updated(db: Session, subscription: dict[str, Any], now: datetime) -> Organization:
    """customer.subscription.created / .updated: status, plan ceilings, billing period."""
    organization = _find_organization(db, subscription, transient=True)

    if subscription.get("id"):
        organization.stripe_subscription_id = subscription["id"]

    provider_status = subscription.get("status")
    status = STATUS_MAP.get(provider_status)
    if status is None:
        # Status, plan and ceilings wait for a status that reflects a payment
        if provider_status in AWAITING_PAYMENT_STATUSES:
            logger.info(
                "subscription %s for organization %s awaits its first payment; access unchanged",
                subscription.get("id"),
                organization.id,
            )
        else:
            logger.warning("Unknown Stripe subscription status %r for organization %s", provider_status, organization.id)
        organization.updated_at = now
        db.add(organization)
        return organization
    organization.subscription_status = status

    items = (subscription.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}

    plan_key = plan_key_from_price(price, subscription.get("metadata"))
    if plan_key:
        plan = PLAN_CATALOG[plan_key]
        organization.plan_type = plan.key
        organization.max_users = plan.max_users
        organization.max_packages_per_month = plan.max_packages_per_month
    else:
        logger.warning(
            "Could not resolve a plan for subscription %s; keeping %s",
            subscription.get("id"),
            organization.plan_type.value,
        )

    # Newer API versions carry the billing period on the item
    period_start = _from_unix(subscription.get("current_period_start") or first_item.get("current_period_start"))
    period_end = _from_unix(subscription.get("current_period_end") or first_item.get("current_period_end"))
    if period_start:
        organization.subscription_start_date = period_start
    if period_end:
        organization.subscription_end_date = period_end
        organization.next_billing_date = period_end

    interval = (price.get("recurring") or {}).get("interval")
    if interval in INTERVAL_MAP:
        organization.billing_cycle = INTERVAL_MAP[interval]

    organization.updated_at = now
    db.add(organization)
    logger.info(
        "subscription.updated: organization %s → plan=%s, status=%s",
        organization.id,
        organization.plan_type.value,
        organization.subscription_status.value,
    )
    return organization


def handle_subscription_deleted(db: Session, subscription: dict[str, Any], now: datetime) -> Organization:
    """customer.subscription.deleted: subscription fully cancelled."""
    organization = _find_organization(db, subscription, transient=False)

    organization.subscription_status = SubscriptionStatus.CANCELLED
    organization.subscription_end_date = (
        _from_unix(subscription.get("ended_at"))
        or _from_unix(subscription.get("canceled_at"))
        or now
    )
    organization.next_billing_date = None
    organization.updated_at = now
    db.add(organization)
    logger.info("subscription.deleted: organization %s cancelled", organization.id)
    return organization


def handle_invoice_payment_succeeded(db: Session, invoice: dict[str, Any], now: datetime) -> Organization:
    """invoice.payment_succeeded: record the payment (amounts are stored, never added)."""
    organization = _find_organization(db, invoice, transient=True)

    paid_at = (invoice.get("status_transitions") or {}).get("paid_at")
    organization.last_payment_date = _from_unix(paid_at) or now
    organization.last_payment_amount = invoice.get("amount_paid")
    organization.updated_at = now
    db.add(organization)
    logger.info(
        "invoice.payment_succeeded: organization %s paid %s cents",
        organization.id,
        organization.last_payment_amount,
    )
    return organization


def handle_invoice_payment_failed(db: Session, invoice: dict[str, Any], now: datetime) -> Organization:
    """invoice.payment_failed: alert only; the status change arrives as subscription.updated."""
    organization = _find_organization(db, invoice, transient=False)

    logger.warning(
        "⚠️ invoice.payment_failed: organization %s, invoice %s, amount due %s",
        organization.id,
        invoice.get("id"),
        invoice.get("amount_due"),
    )
    recipient = organization.billing_email or organization.contact_email or invoice.get("customer_email")
    if recipient:
        email_service.send_payment_failed_email(
            to_email=recipient,
            org_name=organization.name,
            amount_due_cents=invoice.get("amount_due"),
            invoice_url=invoice.get("hosted_invoice_url"),
        )
    return organization


def handle_checkout_session_completed(db: Session, checkout: dict[str, Any], now: datetime) -> Organization:
    """checkout.session.completed: link the Stripe customer / subscription to the organization."""
    organization_id = _organization_id_from_reference(checkout)
    organization = db.get(Organization, organization_id) if organization_id else None
    if not organization:
        raise OrganizationLookupMiss(f"Checkout {checkout.get('id')} references unknown organization {organization_id!r}")

    if checkout.get("customer"):
        organization.stripe_customer_id = checkout["customer"]
    if checkout.get("subscription"):
        organization.stripe_subscription_id = checkout["subscription"]
    customer_email = (checkout.get("customer_details") or {}).get("email")
    if customer_email and not organization.billing_email:
        organization.billing_email = customer_email

    organization.updated_at = now
    db.add(organization)
    logger.info("checkout.session.completed: organization %s linked to customer %s", organization.id, organization.stripe_customer_id)
    return organization


# Dispatcher mapping event_type → handler
EVENT_HANDLERS: dict[str, Callable[[Session, dict[str, Any], datetime], Organization]] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.created": handle_subscription_updated,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


def _get_or_create_record(db: Session, event_id: str, event_type: str, event: dict[str, Any]) -> WebhookEvent:
    record = db.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == event_id)).first()
    if record:
        return record

    record = WebhookEvent(
        stripe_event_id=event_id,
        event_type=event_type,
        payload=json.dumps(event, default=str),
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery inserted it first
        db.rollback()
        return db.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == event_id)).one()
    db.refresh(record)
    return record


def reconcile_event(
    db: Session,
    event: dict[str, Any],
    max_lookup_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    """Apply one verified Stripe event exactly once.

    The handler's writes and the ``processed`` mark on the WebhookEvent row are
    committed together, so a redelivered event is recognised and skipped.

    Raises:
        RetryableReconciliationMiss: The organization could not be found yet and
            the event has attempts left; the provider should redeliver.
    """
    max_lookup_attempts = max_lookup_attempts or settings.WEBHOOK_LOOKUP_MAX_ATTEMPTS
    now = as_utc(now) if now else utc_now()

    event_id = event.get("id")
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug("Ignoring unhandled Stripe event: %s", event_type)
        return ReconciliationResult.IGNORED
    if not event_id:
        raise ValueError(f"Stripe event of type {event_type} has no id")

    record = _get_or_create_record(db, event_id, event_type, event)
    if record.processed:
        logger.info("Duplicate delivery of %s (%s) ignored", event_id, event_type)
        return ReconciliationResult.DUPLICATE

    record.attempts += 1
    db.add(record)
    db.commit()

    data_object = (event.get("data") or {}).get("object") or {}
    try:
        organization = handler(db, data_object, now)
    except OrganizationLookupMiss as miss:
        db.rollback()
        record.processing_error = str(miss)
        if miss.transient and record.attempts < max_lookup_attempts:
            db.add(record)
            db.commit()
            logger.warning("%s: %s (attempt %s/%s, asking for redelivery)", event_type, miss, record.attempts, max_lookup_attempts)
            raise RetryableReconciliationMiss(event_id, record.attempts, str(miss))

        record.processed = True
        record.processed_at = now
        db.add(record)
        db.commit()
        logger.error("%s: %s (event %s dropped)", event_type, miss, event_id)
        return ReconciliationResult.DROPPED
    except Exception as e:
        db.rollback()
        record.processing_error = str(e)
        db.add(record)
        db.commit()
        raise

    record.processed = True
    record.processed_at = now
    record.organization_id = organization.id
    record.processing_error = None
    db.add(record)
    db.commit()
    return ReconciliationResult.PROCESSED
