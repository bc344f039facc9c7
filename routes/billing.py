# ================================================================
# routes/billing.py: plans, trial status, upgrades and Stripe sessions
# ================================================================
import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from core.database import get_session
from core.security import get_current_membership, get_current_org_admin, get_current_super_admin
from models.models import Organization, OrganizationMember, User
from schemas.billing_schema import (
    BillingInfoOut,
    BillingUpdate,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlanOut,
    PortalSessionResponse,
    UpgradeRequest,
)
from schemas.trial_schema import TrialInfo
from services import payment_service
from services.exceptions import OrganizationNotFoundError
from services.plan_catalog import UnknownPlanError, get_purchasable_plan, list_plans
from services.trial_service import evaluate_trial, upgrade_to_paid_plan

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _get_organization(session: Session, organization_id: int) -> Organization:
    organization = session.get(Organization, organization_id)
    if not organization:
        raise HTTPException(status_code=404, detail="Organization not found")
    return organization


def _evaluate(session: Session, organization_id: int) -> TrialInfo:
    try:
        return evaluate_trial(session, organization_id)
    except OrganizationNotFoundError:
        raise HTTPException(status_code=404, detail="Organization not found")


def _plan_out(plan) -> PlanOut:
    return PlanOut(
        key=plan.key,
        name=plan.name,
        price_per_seat=plan.price_per_seat,
        price_per_seat_cents=plan.price_per_seat_cents,
        max_users=plan.max_users,
        max_packages_per_month=plan.max_packages_per_month,
        unlimited_users=plan.has_unlimited_users,
        unlimited_packages=plan.has_unlimited_packages,
        features=plan.features,
    )


# ==========================================================
# ✅ Plans
# ==========================================================
@router.get("/plans", response_model=List[PlanOut])
def get_plans():
    return [_plan_out(plan) for plan in list_plans()]


# ==========================================================
# ✅ Trial status / billing info
# ==========================================================
@router.get("/trial-status", response_model=TrialInfo)
def get_trial_status(
    membership: OrganizationMember = Depends(get_current_membership),
    session: Session = Depends(get_session),
):
    return _evaluate(session, membership.organization_id)


def _billing_info(session: Session, organization_id: int) -> BillingInfoOut:
    trial_info = _evaluate(session, organization_id)
    organization = _get_organization(session, organization_id)

    return BillingInfoOut(
        organization_id=organization.id,
        organization_name=organization.name,
        plan_type=organization.plan_type,
        subscription_status=organization.subscription_status,
        billing_email=organization.billing_email,
        billing_cycle=organization.billing_cycle,
        next_billing_date=organization.next_billing_date,
        last_payment_date=organization.last_payment_date,
        last_payment_amount=organization.last_payment_amount,
        subscription_start_date=organization.subscription_start_date,
        subscription_end_date=organization.subscription_end_date,
        has_billing_account=organization.stripe_customer_id is not None,
        current_users=trial_info.usage_limits.current_users,
        trial_info=trial_info,
    )


@router.get("/info", response_model=BillingInfoOut)
def get_billing_info(
    membership: OrganizationMember = Depends(get_current_membership),
    session: Session = Depends(get_session),
):
    return _billing_info(session, membership.organization_id)


@router.patch("/update", response_model=BillingInfoOut)
def update_billing(
    payload: BillingUpdate,
    membership: OrganizationMember = Depends(get_current_org_admin),
    session: Session = Depends(get_session),
):
    """Billing contact details only; plan changes go through upgrade or Stripe."""
    organization = _get_organization(session, membership.organization_id)
    if payload.billing_email is not None:
        organization.billing_email = payload.billing_email
    organization.updated_at = datetime.now(timezone.utc)
    session.add(organization)
    session.commit()
    return _billing_info(session, membership.organization_id)


# ==========================================================
# ✅ Manual upgrade (operator-recorded, seat-based)
# ==========================================================
@router.post("/upgrade", response_model=BillingInfoOut)
def upgrade_plan(
    payload: UpgradeRequest,
    operator: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    """
    Record a paid upgrade taken outside Stripe Checkout (invoice, bank transfer).
    Tenant admins upgrade through /create-checkout-session instead.
    """
    try:
        upgrade_to_paid_plan(
            session,
            payload.organization_id,
            payload.plan_type,
            stripe_customer_id=payload.stripe_customer_id,
            stripe_subscription_id=payload.payment_reference,
            seats=payload.seats,
        )
    except UnknownPlanError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrganizationNotFoundError:
        raise HTTPException(status_code=404, detail="Organization not found")

    logger.info(
        "⬆️ %s recorded a %s upgrade for organization %s (reference %s)",
        operator.email,
        payload.plan_type,
        payload.organization_id,
        payload.payment_reference,
    )
    return _billing_info(session, payload.organization_id)


# ==========================================================
# ✅ Stripe Checkout / Customer Portal
# ==========================================================
@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    membership: OrganizationMember = Depends(get_current_org_admin),
    session: Session = Depends(get_session),
):
    try:
        plan = get_purchasable_plan(payload.plan_type)
    except UnknownPlanError as e:
        raise HTTPException(status_code=400, detail=str(e))

    organization = _get_organization(session, membership.organization_id)
    user = session.get(User, membership.user_id)
    return payment_service.create_checkout_session(organization, user, plan, payload.seats)


@router.post("/create-portal-session", response_model=PortalSessionResponse)
def create_portal_session(
    membership: OrganizationMember = Depends(get_current_org_admin),
    session: Session = Depends(get_session),
):
    organization = _get_organization(session, membership.organization_id)
    return payment_service.create_portal_session(organization)
