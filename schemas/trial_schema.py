# trial_schema.py
from pydantic import BaseModel, ConfigDict
from typing import Optional

from models.models import PlanType, SubscriptionStatus, TrialAction


class UsageLimits(BaseModel):
    max_users: int
    max_packages_per_month: int
    current_users: int
    current_packages: int
    can_add_users: bool
    can_add_packages: bool


# ============================================================
# ✅ Point-in-time trial / subscription view of an organization
# ============================================================
class TrialInfo(BaseModel):
    is_trial_active: bool
    days_remaining: int  # display only, never a gate
    is_expired: bool
    plan_type: PlanType
    subscription_status: SubscriptionStatus
    usage_limits: UsageLimits

    model_config = ConfigDict(from_attributes=True)


# ============================================================
# ✅ 402 Payment Required body
# ============================================================
class LimitExceededResponse(BaseModel):
    error: str  # "trial_expired" | "limit_exceeded"
    message: str
    trial_info: Optional[TrialInfo] = None
    action: Optional[TrialAction] = None
