# routes/recipients.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from core.database import get_session
from core.security import get_current_membership
from core.trial_middleware import require_active_trial
from models.models import OrganizationMember, Recipient
from schemas.mail_item_schema import RecipientCreate, RecipientRead

router = APIRouter(prefix="/recipients", tags=["Recipients"])


# ==================================================================
#  ✅ LIST RECIPIENTS
# ==================================================================
@router.get("", response_model=List[RecipientRead])
def list_recipients(
    search: str = Query(None, description="Match on first or last name"),
    membership: OrganizationMember = Depends(get_current_membership),
    session: Session = Depends(get_session),
):
    query = select(Recipient).where(
        Recipient.organization_id == membership.organization_id,
        Recipient.is_active == True,
    )
    if search:
        pattern = f"%{search}%"
        query = query.where(Recipient.first_name.ilike(pattern) | Recipient.last_name.ilike(pattern))
    return session.exec(query.order_by(Recipient.last_name, Recipient.first_name)).all()


# ==================================================================
#  ✅ CREATE RECIPIENT
# ==================================================================
@router.post("", response_model=RecipientRead, status_code=201)
def create_recipient(
    payload: RecipientCreate,
    membership: OrganizationMember = Depends(require_active_trial),
    session: Session = Depends(get_session),
):
    recipient = Recipient(organization_id=membership.organization_id, **payload.model_dump())
    session.add(recipient)
    session.commit()
    session.refresh(recipient)
    return recipient
