# billing_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

from models.models import BillingCycle, PlanType, SubscriptionStatus
from schemas.trial_schema import TrialInfo


# ---------------------------
# Plans
# ---------------------------
class PlanOut(BaseModel):
    key: PlanType
    name: str
    price_per_seat: float
    price_per_seat_cents: int
    max_users: int
    max_packages_per_month: int
    unlimited_users: bool = False
    unlimited_packages: bool = False
    features: List[str]

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Upgrade / Checkout
# ---------------------------
class UpgradeRequest(BaseModel):
    """Operator-recorded upgrade for a payment taken outside Stripe Checkout."""
    organization_id: int
    plan_type: str
    seats: int = Field(default=1, ge=1, le=10000)
    payment_reference: str = Field(min_length=1, max_length=255)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(str_strip_whitespace=True)


class CheckoutSessionRequest(BaseModel):
    plan_type: str
    seats: int = Field(default=1, ge=1, le=10000)


class CheckoutSessionResponse(BaseModel):
    checkout_url: str
    session_id: str
    environment: Optional[str] = None


class PortalSessionResponse(BaseModel):
    portal_url: str


# ---------------------------
# Billing info
# ---------------------------
class BillingInfoOut(BaseModel):
    organization_id: int
    organization_name: str
    plan_type: PlanType
    subscription_status: SubscriptionStatus
    billing_email: Optional[str] = None
    billing_cycle: BillingCycle
    next_billing_date: Optional[datetime] = None
    last_payment_date: Optional[datetime] = None
    last_payment_amount: Optional[int] = None  # cents
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    has_billing_account: bool = False
    current_users: int
    trial_info: TrialInfo


class BillingUpdate(BaseModel):
    billing_email: Optional[EmailStr] = None
