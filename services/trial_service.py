# ================================================================
# services/trial_service.py: trial / subscription state evaluation
# ================================================================
"""Trial lifecycle and usage-limit evaluation for organizations.

The organization row is the only store of trial and billing state. Trial
expiry is never written; it is derived from ``trial_end_date`` on every read.
"""
import calendar
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session, select, func

from models.models import (
    BillingCycle,
    Organization,
    OrganizationMember,
    PlanType,
    SubscriptionStatus,
    TrialAction,
    UNLIMITED,
    as_utc,
    utc_now,
)
from schemas.trial_schema import TrialInfo, UsageLimits
from services.exceptions import OrganizationNotFoundError
from services.plan_catalog import PLAN_CATALOG, TRIAL_LENGTH_DAYS, get_purchasable_plan
from services.usage_service import roll_over_usage

logger = logging.getLogger(__name__)

# Paid statuses under which no gated action is allowed
LOCKED_STATUSES = {SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}


def _load_organization(session: Session, organization_id: int) -> Organization:
    organization = session.get(Organization, organization_id)
    if not organization:
        raise OrganizationNotFoundError(organization_id)
    return organization


def _add_one_month(value: datetime) -> datetime:
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def count_members(session: Session, organization_id: int) -> int:
    """Live count of membership rows; never cached on the organization."""
    return session.exec(
        select(func.count(OrganizationMember.id)).where(
            OrganizationMember.organization_id == organization_id
        )
    ).one()


def _within_ceiling(current: int, ceiling: int) -> bool:
    if ceiling == UNLIMITED:
        return True
    return current < ceiling


# ============================================================
# ✅ Lifecycle writes
# ============================================================
def start_trial(organization: Organization, now: Optional[datetime] = None) -> Organization:
    """Set the trial fields on an organization without committing.

    Signup calls this before its single commit, so an organization row is never
    stored in ``trial`` status without a ``trial_end_date``.
    """
    now = as_utc(now) if now else utc_now()
    trial = PLAN_CATALOG[PlanType.TRIAL]

    organization.plan_type = PlanType.TRIAL
    organization.subscription_status = SubscriptionStatus.TRIAL
    organization.trial_start_date = now
    organization.trial_end_date = now + timedelta(days=TRIAL_LENGTH_DAYS)
    organization.max_users = trial.max_users
    organization.max_packages_per_month = trial.max_packages_per_month
    organization.current_month_packages = 0
    organization.usage_reset_date = now
    organization.updated_at = now
    return organization


def initialize_trial(session: Session, organization_id: int, now: Optional[datetime] = None) -> Organization:
    """Start the fixed trial window for an existing organization.

    Runs once per organization. A second call leaves the original window in
    place so ``trial_end_date`` is never recomputed.
    """
    organization = _load_organization(session, organization_id)
    if organization.trial_start_date is not None:
        logger.warning("Trial already initialised for organization %s; leaving it unchanged", organization_id)
        return organization

    start_trial(organization, now)
    session.add(organization)
    session.commit()
    session.refresh(organization)
    logger.info("🎉 Trial started for organization %s, ends %s", organization_id, organization.trial_end_date.isoformat())
    return organization


def upgrade_to_paid_plan(
    session: Session,
    organization_id: int,
    plan_key,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    seats: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Organization:
    """Move an organization onto a paid plan, taking ceilings from the catalog.

    When ``seats`` is given the upgrade is treated as a paid manual purchase and
    the payment amount, payment date and next billing date are recorded too.

    Raises:
        UnknownPlanError: If ``plan_key`` is not a purchasable plan.
        OrganizationNotFoundError: If the organization does not exist.
    """
    plan = get_purchasable_plan(plan_key)
    organization = _load_organization(session, organization_id)
    now = as_utc(now) if now else utc_now()

    organization.plan_type = plan.key
    organization.subscription_status = SubscriptionStatus.ACTIVE
    organization.max_users = plan.max_users
    organization.max_packages_per_month = plan.max_packages_per_month
    if stripe_customer_id:
        organization.stripe_customer_id = stripe_customer_id
    if stripe_subscription_id:
        organization.stripe_subscription_id = stripe_subscription_id

    if seats is not None:
        organization.last_payment_date = now
        organization.last_payment_amount = plan.price_per_seat_cents * seats
        organization.next_billing_date = _add_one_month(now)
        organization.billing_cycle = BillingCycle.MONTHLY

    organization.updated_at = now
    session.add(organization)
    session.commit()
    session.refresh(organization)
    logger.info("⬆️ Organization %s upgraded to %s", organization_id, plan.key.value)
    return organization


# ============================================================
# ✅ Evaluation
# ============================================================
def build_trial_info(organization: Organization, member_count: int, now: datetime) -> TrialInfo:
    """Derive the TrialInfo view from an already-current organization row."""
    now = as_utc(now)
    trial_end = as_utc(organization.trial_end_date) if organization.trial_end_date else None
    on_trial = organization.subscription_status == SubscriptionStatus.TRIAL

    is_trial_active = on_trial and trial_end is not None and now < trial_end
    is_expired = on_trial and trial_end is not None and now > trial_end
    if trial_end is not None:
        days_remaining = max(0, math.ceil((trial_end - now).total_seconds() / 86400))
    else:
        days_remaining = 0

    return TrialInfo(
        is_trial_active=is_trial_active,
        days_remaining=days_remaining,
        is_expired=is_expired,
        plan_type=organization.plan_type,
        subscription_status=organization.subscription_status,
        usage_limits=UsageLimits(
            max_users=organization.max_users,
            max_packages_per_month=organization.max_packages_per_month,
            current_users=member_count,
            current_packages=organization.current_month_packages,
            can_add_users=_within_ceiling(member_count, organization.max_users),
            can_add_packages=_within_ceiling(
                organization.current_month_packages, organization.max_packages_per_month
            ),
        ),
    )


def evaluate_trial(session: Session, organization_id: int, now: Optional[datetime] = None) -> TrialInfo:
    """Current TrialInfo for an organization.

    Rolls the usage window over first (see ``roll_over_usage``), so the package
    counter it reports always belongs to the current calendar month.

    Raises:
        OrganizationNotFoundError: If the organization does not exist.
    """
    now = as_utc(now) if now else utc_now()
    _load_organization(session, organization_id)

    roll_over_usage(session, organization_id, now)

    # The commit above expired the instance, so this reads the stored row
    organization = _load_organization(session, organization_id)
    member_count = count_members(session, organization_id)
    return build_trial_info(organization, member_count, now)


def is_action_allowed(trial_info: TrialInfo, action: TrialAction) -> bool:
    """Gate rule applied to a TrialInfo snapshot."""
    # Expired trial is an absolute lock
    if trial_info.is_expired and trial_info.subscription_status == SubscriptionStatus.TRIAL:
        return False
    if trial_info.subscription_status in LOCKED_STATUSES:
        return False

    if action == TrialAction.ADD_USER:
        return trial_info.usage_limits.can_add_users
    if action == TrialAction.ADD_PACKAGE:
        return trial_info.usage_limits.can_add_packages
    return False


def can_perform_action(
    session: Session,
    organization_id: int,
    action: TrialAction,
    now: Optional[datetime] = None,
) -> bool:
    return is_action_allowed(evaluate_trial(session, organization_id, now), action)
