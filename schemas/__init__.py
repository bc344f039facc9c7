from .billing_schema import (
    PlanOut, UpgradeRequest,
    CheckoutSessionRequest, CheckoutSessionResponse, PortalSessionResponse,
    BillingInfoOut, BillingUpdate,
)
from .invitation_schema import InvitationCreate, InvitationRead, InvitationVerifyResponse, InvitationAccept
from .mail_item_schema import RecipientCreate, RecipientRead, MailItemCreate, MailItemUpdate, MailItemRead
from .organization_schema import OrganizationRead, OrganizationUpdate, OrganizationMemberRead
from .trial_schema import UsageLimits, TrialInfo, LimitExceededResponse
from .user_schema import UserCreate, UserLogin, UserRead, MembershipRead, UserWithMemberships, AuthResponse

__all__ = [
    # Billing
    "PlanOut", "UpgradeRequest",
    "CheckoutSessionRequest", "CheckoutSessionResponse", "PortalSessionResponse",
    "BillingInfoOut", "BillingUpdate",

    # Invitation
    "InvitationCreate", "InvitationRead", "InvitationVerifyResponse", "InvitationAccept",

    # Mail items
    "RecipientCreate", "RecipientRead", "MailItemCreate", "MailItemUpdate", "MailItemRead",

    # Organization
    "OrganizationRead", "OrganizationUpdate", "OrganizationMemberRead",

    # Trial
    "UsageLimits", "TrialInfo", "LimitExceededResponse",

    # User
    "UserCreate", "UserLogin", "UserRead", "MembershipRead", "UserWithMemberships", "AuthResponse",
]
