# core/trial_middleware.py
"""FastAPI dependencies that enforce the trial lock and plan ceilings.

Denials surface as ``402 Payment Required`` with a JSON body the frontend
uses to prompt an upgrade::

    {"error": "trial_expired" | "limit_exceeded", "message": ..., "trial_info": {...}, "action": ...}
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.database import get_session
from core.security import get_current_membership
from models.models import OrganizationMember, TrialAction
from schemas.trial_schema import LimitExceededResponse, TrialInfo
from services.action_gate import ActionGate, GateDecision, action_gate
from services.exceptions import OrganizationNotFoundError

logger = logging.getLogger(__name__)

TRIAL_EXPIRED_MESSAGE = "Your free trial has expired. Please upgrade to continue using Sortify."


class TrialLimitExceeded(Exception):
    """Raised by the dependencies below; rendered as a 402 by the app handler."""

    def __init__(
        self,
        error: str,
        message: str,
        trial_info: Optional[TrialInfo] = None,
        action: Optional[TrialAction] = None,
    ):
        super().__init__(message)
        self.body = LimitExceededResponse(error=error, message=message, trial_info=trial_info, action=action)


async def trial_limit_exception_handler(request: Request, exc: TrialLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=402, content=exc.body.model_dump(mode="json"))


def get_action_gate() -> ActionGate:
    """Overridable in tests to swap the failure policy."""
    return action_gate


def _raise_on_evaluation_failure(decision: GateDecision) -> None:
    if decision.evaluation_failed and not decision.allowed:
        raise HTTPException(status_code=503, detail="Unable to verify your subscription right now. Please try again.")


def _decide_trial_lock(session: Session, gate: ActionGate, organization_id: int) -> GateDecision:
    try:
        return gate.check_trial_lock(session, organization_id)
    except OrganizationNotFoundError:
        raise HTTPException(status_code=404, detail="Organization not found")


# ============================================================
# ✅ Expired-trial lock for write routes
# ============================================================
def require_active_trial(
    membership: OrganizationMember = Depends(get_current_membership),
    session: Session = Depends(get_session),
    gate: ActionGate = Depends(get_action_gate),
) -> OrganizationMember:
    decision = _decide_trial_lock(session, gate, membership.organization_id)
    _raise_on_evaluation_failure(decision)
    if not decision.allowed:
        raise TrialLimitExceeded("trial_expired", TRIAL_EXPIRED_MESSAGE, decision.trial_info)
    return membership


# ============================================================
# ✅ Per-action ceiling check (add_user / add_package)
# ============================================================
def require_action(action: TrialAction):
    """Dependency factory: deny ``action`` once the organization is at its ceiling."""

    def dependency(
        membership: OrganizationMember = Depends(get_current_membership),
        session: Session = Depends(get_session),
        gate: ActionGate = Depends(get_action_gate),
    ) -> OrganizationMember:
        try:
            decision = gate.decide(session, membership.organization_id, action)
        except OrganizationNotFoundError:
            raise HTTPException(status_code=404, detail="Organization not found")

        _raise_on_evaluation_failure(decision)
        if not decision.allowed:
            raise TrialLimitExceeded(
                "limit_exceeded",
                f"You've reached your {action.label} limit. Please upgrade your plan.",
                decision.trial_info,
                action,
            )
        return membership

    return dependency
