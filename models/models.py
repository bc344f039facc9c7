# models/models.py
from typing import Optional, List
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator


# ============================================================
# TIMESTAMPS (stored and returned as aware UTC)
# ============================================================
def as_utc(value: datetime) -> datetime:
    """Naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """``timestamptz`` on PostgreSQL; SQLite hands values back naive, so re-attach UTC on load."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value) if value is not None else None

    def process_result_value(self, value, dialect):
        return as_utc(value) if value is not None else None


# ============================================================
# ENUMS
# ============================================================
class PlanType(str, Enum):
    TRIAL = "trial"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class MemberRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class TrialAction(str, Enum):
    ADD_USER = "add_user"
    ADD_PACKAGE = "add_package"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class MailItemStatus(str, Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    PICKED_UP = "picked_up"
    RETURNED = "returned"


class RecipientType(str, Enum):
    GUEST = "guest"
    EMPLOYEE = "employee"
    RESIDENT = "resident"


# Sentinel stored in max_users / max_packages_per_month meaning "no ceiling"
UNLIMITED = -1


# ============================================================
# ORGANIZATION (tenant): sole root of trial / billing state
# ============================================================
class Organization(SQLModel, table=True):
    __tablename__ = "organization"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    email_domain: Optional[str] = Field(default=None, max_length=255, index=True)
    contact_email: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    # Plan & subscription
    plan_type: PlanType = Field(default=PlanType.TRIAL, index=True)
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.TRIAL, index=True)

    # Trial window (trial_end_date is fixed once at initialisation)
    trial_start_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    trial_end_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    # Ceilings (-1 = unlimited) and monthly usage
    max_users: int = Field(default=5)
    max_packages_per_month: int = Field(default=500)
    current_month_packages: int = Field(default=0)
    usage_reset_date: Optional[datetime] = Field(default_factory=utc_now, sa_type=UTCDateTime)

    # Billing provider linkage
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)

    # Billing metadata
    billing_email: Optional[str] = Field(default=None, max_length=255)
    billing_cycle: BillingCycle = Field(default=BillingCycle.MONTHLY)
    next_billing_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_payment_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_payment_amount: Optional[int] = Field(default=None, description="In cents")
    subscription_start_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    subscription_end_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    # Relationships
    members: List["OrganizationMember"] = Relationship(back_populates="organization")
    invitations: List["UserInvitation"] = Relationship(back_populates="organization")
    recipients: List["Recipient"] = Relationship(back_populates="organization")
    mail_items: List["MailItem"] = Relationship(back_populates="organization")


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(max_length=100)
    email: str = Field(index=True, unique=True, max_length=255, nullable=False)
    password_hash: str = Field(nullable=False)
    is_active: bool = Field(default=True)
    is_super_admin: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    memberships: List["OrganizationMember"] = Relationship(back_populates="user")


# ============================================================
# ORGANIZATION MEMBER (join row counted against max_users)
# ============================================================
class OrganizationMember(SQLModel, table=True):
    __tablename__ = "organization_member"
    __table_args__ = (UniqueConstraint("organization_id", "user_id", name="uq_org_member"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    organization: Optional["Organization"] = Relationship(back_populates="members")
    user: Optional["User"] = Relationship(back_populates="memberships")


# ============================================================
# INVITATION
# ============================================================
class UserInvitation(SQLModel, table=True):
    __tablename__ = "user_invitation"

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    email: str = Field(max_length=255, index=True)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    invited_by_id: int = Field(foreign_key="user.id")
    token: str = Field(max_length=255, unique=True, index=True)
    expires_at: datetime = Field(default_factory=lambda: utc_now() + timedelta(days=7), sa_type=UTCDateTime)
    used_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    organization: Optional["Organization"] = Relationship(back_populates="invitations")

    def is_expired(self) -> bool:
        return utc_now() > self.expires_at


# ============================================================
# RECIPIENT
# ============================================================
class Recipient(SQLModel, table=True):
    __tablename__ = "recipient"

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    first_name: str = Field(max_length=255)
    last_name: str = Field(max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    unit: Optional[str] = Field(default=None, max_length=100)
    recipient_type: RecipientType = Field(default=RecipientType.GUEST)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    organization: Optional["Organization"] = Relationship(back_populates="recipients")
    mail_items: List["MailItem"] = Relationship(back_populates="recipient")


# ============================================================
# MAIL ITEM (package / letter): counted in current_month_packages
# ============================================================
class MailItem(SQLModel, table=True):
    __tablename__ = "mail_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    recipient_id: Optional[int] = Field(default=None, foreign_key="recipient.id", index=True)
    created_by_id: int = Field(foreign_key="user.id")

    item_type: str = Field(default="package", max_length=50)
    carrier: Optional[str] = Field(default=None, max_length=100)
    tracking_number: Optional[str] = Field(default=None, max_length=255, index=True)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: MailItemStatus = Field(default=MailItemStatus.PENDING, index=True)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    picked_up_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    organization: Optional["Organization"] = Relationship(back_populates="mail_items")
    recipient: Optional["Recipient"] = Relationship(back_populates="mail_items")


# ============================================================
# WEBHOOK EVENT LOG (dedup ledger for provider redeliveries)
# ============================================================
class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_event"

    id: Optional[int] = Field(default=None, primary_key=True)
    stripe_event_id: str = Field(unique=True, index=True, max_length=255)
    event_type: str = Field(max_length=100, index=True)

    payload: str = Field()
    attempts: int = Field(default=0)
    processed: bool = Field(default=False)
    processing_error: Optional[str] = None

    organization_id: Optional[int] = Field(default=None, foreign_key="organization.id", index=True)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    processed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "Organization",
    "User",
    "OrganizationMember",
    "UserInvitation",
    "Recipient",
    "MailItem",
    "WebhookEvent",
    "PlanType",
    "SubscriptionStatus",
    "BillingCycle",
    "MemberRole",
    "TrialAction",
    "MailItemStatus",
    "RecipientType",
    "UNLIMITED",
    "UTCDateTime",
    "as_utc",
    "utc_now",
]
