# ================================================================
# services/plan_catalog.py: the one place plans are defined
# ================================================================
"""Canonical plan catalog.

Ceilings are copied onto the organization row at the moment a plan is applied
(trial initialisation, manual upgrade, subscription webhook), so the catalog is
only consulted at those moments and never during live gate evaluation.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from models.models import PlanType, UNLIMITED


class UnknownPlanError(ValueError):
    """Raised when a plan key does not name a catalog entry."""


class PlanDefinition(BaseModel):
    key: PlanType
    name: str
    price_per_seat_cents: int
    max_users: int
    max_packages_per_month: int
    features: List[str]
    purchasable: bool = True

    model_config = ConfigDict(frozen=True)

    @property
    def price_per_seat(self) -> float:
        return self.price_per_seat_cents / 100

    @property
    def has_unlimited_users(self) -> bool:
        return self.max_users == UNLIMITED

    @property
    def has_unlimited_packages(self) -> bool:
        return self.max_packages_per_month == UNLIMITED


TRIAL_LENGTH_DAYS = 7

PLAN_CATALOG: Dict[PlanType, PlanDefinition] = {
    PlanType.TRIAL: PlanDefinition(
        key=PlanType.TRIAL,
        name="7-Day Free Trial",
        price_per_seat_cents=0,
        max_users=5,
        max_packages_per_month=500,
        features=["Up to 5 users", "500 packages/month", "Email notifications", "Basic analytics", "Photo storage"],
        purchasable=False,
    ),
    PlanType.STARTER: PlanDefinition(
        key=PlanType.STARTER,
        name="Starter",
        price_per_seat_cents=2500,
        max_users=25,
        max_packages_per_month=2000,
        features=["Up to 25 users", "2,000 packages/month", "Email notifications", "Basic analytics", "Photo storage"],
    ),
    PlanType.PROFESSIONAL: PlanDefinition(
        key=PlanType.PROFESSIONAL,
        name="Professional",
        price_per_seat_cents=3500,
        max_users=100,
        max_packages_per_month=UNLIMITED,
        features=[
            "Up to 100 users",
            "Unlimited packages",
            "Email & SMS notifications",
            "Advanced analytics",
            "API integrations",
            "Priority support",
        ],
    ),
    PlanType.ENTERPRISE: PlanDefinition(
        key=PlanType.ENTERPRISE,
        name="Enterprise",
        price_per_seat_cents=4500,
        max_users=UNLIMITED,
        max_packages_per_month=UNLIMITED,
        features=[
            "Unlimited users",
            "Unlimited packages",
            "White-label branding",
            "Custom integrations",
            "Dedicated support",
            "SLA guarantee",
        ],
    ),
}


def resolve_plan_key(value: Any) -> PlanType:
    """Turn a user- or provider-supplied plan identifier into a PlanType.

    Raises:
        UnknownPlanError: If the value does not name a plan.
    """
    if isinstance(value, PlanType):
        return value
    try:
        return PlanType(str(value).strip().lower())
    except ValueError:
        raise UnknownPlanError(f"Unknown plan: {value!r}")


def get_plan(plan_key: Any) -> PlanDefinition:
    return PLAN_CATALOG[resolve_plan_key(plan_key)]


def get_purchasable_plan(plan_key: Any) -> PlanDefinition:
    """Like get_plan, but rejects the trial entry."""
    plan = get_plan(plan_key)
    if not plan.purchasable:
        raise UnknownPlanError(f"Plan {plan.key.value!r} cannot be purchased")
    return plan


def list_plans(include_trial: bool = False) -> List[PlanDefinition]:
    return [plan for plan in PLAN_CATALOG.values() if include_trial or plan.purchasable]


def plan_key_from_price(
    price: Optional[Dict[str, Any]],
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[PlanType]:
    """Resolve the plan a Stripe subscription line item is billed for.

    Looks at the price ``lookup_key`` first, then a ``plan`` / ``planId`` entry
    in the price metadata, then in the subscription metadata. Returns None when
    nothing names a purchasable plan.
    """
    price = price or {}
    candidates = [
        price.get("lookup_key"),
        (price.get("metadata") or {}).get("plan"),
        (price.get("metadata") or {}).get("planId"),
        (metadata or {}).get("plan"),
        (metadata or {}).get("planId"),
    ]
    for candidate in candidates:
        if not candidate:
            continue
        try:
            plan = get_purchasable_plan(candidate)
        except UnknownPlanError:
            continue
        return plan.key
    return None
