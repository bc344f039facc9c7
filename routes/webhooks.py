# routes/webhooks.py
import logging

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.database import get_session
from services.payment_service import WebhookSecretMissing, verify_webhook_event
from services.subscription_reconciler import RetryableReconciliationMiss, reconcile_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request, session: Session = Depends(get_session)):
    """Handle Stripe webhook events for subscription updates"""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = verify_webhook_event(payload, sig_header)
    except WebhookSecretMissing:
        logger.error("❌ STRIPE_WEBHOOK_SECRET not configured")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})
    except stripe.SignatureVerificationError as e:
        logger.warning("❌ Invalid webhook signature: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})
    except ValueError as e:
        logger.warning("❌ Invalid webhook payload: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    event_type = event.get("type")
    try:
        result = reconcile_event(session, event)
    except RetryableReconciliationMiss as e:
        return JSONResponse(status_code=503, content={"error": "retry", "detail": str(e)})
    except Exception:
        logger.exception("❌ Error processing webhook event %s (%s)", event.get("id"), event_type)
        return JSONResponse(status_code=500, content={"error": "Error processing event"})

    return JSONResponse(status_code=200, content={"status": result.value, "event": event_type})
