# ================================================================
# services/action_gate.py: "may this organization do X now?"
# ================================================================
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from sqlmodel import Session

from core.config import settings
from models.models import SubscriptionStatus, TrialAction
from schemas.trial_schema import TrialInfo
from services.exceptions import OrganizationNotFoundError
from services.trial_service import evaluate_trial, is_action_allowed

logger = logging.getLogger(__name__)


class GatePolicy(BaseModel):
    """What the gate answers when the trial state cannot be evaluated.

    ``fail_open=True`` lets the request through (logged as an error);
    ``fail_open=False`` refuses it. A missing organization is never covered
    by this policy and always propagates to the caller.
    """

    fail_open: bool = True


class GateDecision(BaseModel):
    allowed: bool
    trial_info: Optional[TrialInfo] = None
    failed_open: bool = False
    evaluation_failed: bool = False


class ActionGate:
    def __init__(self, policy: Optional[GatePolicy] = None):
        self.policy = policy or GatePolicy()

    def _evaluate(self, session: Session, organization_id: int, now: Optional[datetime]) -> Optional[TrialInfo]:
        try:
            return evaluate_trial(session, organization_id, now)
        except OrganizationNotFoundError:
            raise
        except Exception:
            session.rollback()
            logger.exception(
                "❌ Trial evaluation failed for organization %s (fail_open=%s)",
                organization_id,
                self.policy.fail_open,
            )
            return None

    def _on_failure(self) -> GateDecision:
        return GateDecision(
            allowed=self.policy.fail_open,
            failed_open=self.policy.fail_open,
            evaluation_failed=True,
        )

    def decide(
        self,
        session: Session,
        organization_id: int,
        action: TrialAction,
        now: Optional[datetime] = None,
    ) -> GateDecision:
        trial_info = self._evaluate(session, organization_id, now)
        if trial_info is None:
            return self._on_failure()

        allowed = is_action_allowed(trial_info, action)
        if not allowed:
            logger.info("🚫 %s denied for organization %s (%s)", action.value, organization_id, trial_info.subscription_status.value)
        return GateDecision(allowed=allowed, trial_info=trial_info)

    def allows(
        self,
        session: Session,
        organization_id: int,
        action: TrialAction,
        now: Optional[datetime] = None,
    ) -> bool:
        return self.decide(session, organization_id, action, now).allowed

    def check_trial_lock(
        self,
        session: Session,
        organization_id: int,
        now: Optional[datetime] = None,
    ) -> GateDecision:
        """Only the expired-trial lock, for routes that are not a gated action."""
        trial_info = self._evaluate(session, organization_id, now)
        if trial_info is None:
            return self._on_failure()

        locked = trial_info.is_expired and trial_info.subscription_status == SubscriptionStatus.TRIAL
        return GateDecision(allowed=not locked, trial_info=trial_info)


# ============================================================
# ✅ Global instance for app-wide import
# ============================================================
action_gate = ActionGate(GatePolicy(fail_open=settings.TRIAL_GATE_FAIL_OPEN))
