# ================================================================
# services/payment_service.py: Stripe Checkout, Portal and webhook verification
# ================================================================
import json
import logging
from typing import Any, Optional

import stripe
from fastapi import HTTPException

from core.config import settings  # ✅ Use centralized configuration
from models.models import Organization, User
from services.plan_catalog import PlanDefinition

logger = logging.getLogger(__name__)

# ------------------------
# STRIPE CONFIG
# ------------------------
stripe.api_key = settings.STRIPE_SECRET_KEY


class WebhookSecretMissing(RuntimeError):
    """STRIPE_WEBHOOK_SECRET is not configured."""


def _require_stripe() -> None:
    if not settings.STRIPE_SECRET_KEY:
        logger.error("❌ STRIPE_SECRET_KEY not configured")
        raise HTTPException(status_code=503, detail="Payments are not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def verify_webhook_event(payload: bytes, sig_header: Optional[str]) -> dict[str, Any]:
    """Check the Stripe-Signature header and return the event as a plain dict.

    Raises:
        WebhookSecretMissing: No webhook secret is configured.
        stripe.SignatureVerificationError: Missing, malformed or forged signature.
        ValueError: The payload is not JSON.
    """
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise WebhookSecretMissing("STRIPE_WEBHOOK_SECRET not configured")
    if not sig_header:
        raise stripe.SignatureVerificationError("Missing stripe-signature header", sig_header)

    body = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(body, sig_header, secret)
    return json.loads(body)


# ============================================================
# ✅ Checkout: one subscription line item priced per seat
# ============================================================
def create_checkout_session(
    organization: Organization,
    user: User,
    plan: PlanDefinition,
    seats: int,
) -> dict[str, str]:
    """
    Create a Stripe Checkout Session for a subscription.
    The organization id travels as ``client_reference_id`` and in metadata so
    the webhook can link the new customer back to the tenant.
    """
    _require_stripe()
    metadata = {
        "organization_id": str(organization.id),
        "user_id": str(user.id),
        "plan": plan.key.value,
    }

    params: dict[str, Any] = {
        "mode": "subscription",
        "payment_method_types": ["card"],
        "line_items": [{
            "price_data": {
                "currency": "usd",
                "unit_amount": plan.price_per_seat_cents,
                "recurring": {"interval": "month"},
                "product_data": {"name": f"Sortify {plan.name}", "metadata": {"plan": plan.key.value}},
            },
            "quantity": seats,
        }],
        "success_url": settings.STRIPE_SUCCESS_URL,
        "cancel_url": settings.STRIPE_CANCEL_URL,
        "client_reference_id": str(organization.id),
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
        "allow_promotion_codes": True,
    }
    if organization.stripe_customer_id:
        params["customer"] = organization.stripe_customer_id
    else:
        params["customer_email"] = organization.billing_email or user.email

    try:
        checkout_session = stripe.checkout.Session.create(**params)
    except stripe.InvalidRequestError as e:
        logger.error("❌ Stripe rejected checkout for organization %s: %s", organization.id, e)
        raise HTTPException(status_code=400, detail=f"Payment configuration error: {e.user_message or str(e)}")
    except stripe.StripeError as e:
        logger.exception("❌ Stripe checkout failed for organization %s", organization.id)
        raise HTTPException(status_code=502, detail="Payment service error. Please try again.")

    logger.info("💳 Checkout session %s created for organization %s (%s x%s)", checkout_session.id, organization.id, plan.key.value, seats)
    return {
        "checkout_url": checkout_session.url,
        "session_id": checkout_session.id,
        "environment": settings.ENVIRONMENT,
    }


# ============================================================
# ✅ Billing portal for an existing Stripe customer
# ============================================================
def create_portal_session(organization: Organization) -> dict[str, str]:
    _require_stripe()
    if not organization.stripe_customer_id:
        raise HTTPException(status_code=400, detail="No billing account found. Subscribe to a plan first.")

    try:
        portal_session = stripe.billing_portal.Session.create(
            customer=organization.stripe_customer_id,
            return_url=settings.STRIPE_PORTAL_RETURN_URL,
        )
    except stripe.StripeError:
        logger.exception("❌ Stripe portal session failed for organization %s", organization.id)
        raise HTTPException(status_code=502, detail="Payment service error. Please try again.")

    return {"portal_url": portal_session.url}
