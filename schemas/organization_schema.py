# organization_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import MemberRole, PlanType, SubscriptionStatus


class OrganizationRead(BaseModel):
    id: int
    name: str
    email_domain: Optional[str] = None
    contact_email: Optional[str] = None
    plan_type: PlanType
    subscription_status: SubscriptionStatus
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email_domain: Optional[str] = Field(default=None, max_length=255)
    contact_email: Optional[EmailStr] = None
    # Plan, status and ceilings are only changed by billing flows


class OrganizationMemberRead(BaseModel):
    user_id: int
    full_name: str
    email: str
    role: MemberRole
    joined_at: datetime
