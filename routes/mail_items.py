# routes/mail_items.py
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select
from sqlalchemy.exc import SQLAlchemyError

from core.database import get_session
from core.security import get_current_membership
from core.trial_middleware import require_action, require_active_trial
from models.models import MailItem, MailItemStatus, OrganizationMember, Recipient, TrialAction
from schemas.mail_item_schema import MailItemCreate, MailItemRead, MailItemUpdate
from services.exceptions import OrganizationNotFoundError
from services.usage_service import increment_package_usage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mail-items", tags=["Mail Items"])


def _check_recipient(session: Session, organization_id: int, recipient_id: Optional[int]) -> None:
    if recipient_id is None:
        return
    recipient = session.get(Recipient, recipient_id)
    if not recipient or recipient.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="Recipient not found")


# ==================================================================
#  ✅ LIST MAIL ITEMS
# ==================================================================
@router.get("", response_model=List[MailItemRead])
def list_mail_items(
    status: Optional[MailItemStatus] = Query(None),
    membership: OrganizationMember = Depends(get_current_membership),
    session: Session = Depends(get_session),
):
    query = select(MailItem).where(MailItem.organization_id == membership.organization_id)
    if status:
        query = query.where(MailItem.status == status)
    return session.exec(query.order_by(MailItem.created_at.desc())).all()


# ==================================================================
#  ✅ CREATE MAIL ITEM (gated: add_package)
# ==================================================================
@router.post("", response_model=MailItemRead, status_code=201)
def create_mail_item(
    payload: MailItemCreate,
    _: OrganizationMember = Depends(require_active_trial),
    membership: OrganizationMember = Depends(require_action(TrialAction.ADD_PACKAGE)),
    session: Session = Depends(get_session),
):
    _check_recipient(session, membership.organization_id, payload.recipient_id)

    try:
        mail_item = MailItem(
            organization_id=membership.organization_id,
            created_by_id=membership.user_id,
            **payload.model_dump(),
        )
        session.add(mail_item)
        session.commit()
        session.refresh(mail_item)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Database error while creating mail item for organization %s", membership.organization_id)
        raise HTTPException(status_code=500, detail="Database error while creating the mail item.")

    # Counted only once the insert has committed; a counter failure must not fail the request
    mail_item_id = mail_item.id
    try:
        increment_package_usage(session, membership.organization_id)
    except (SQLAlchemyError, OrganizationNotFoundError):
        session.rollback()
        logger.exception(
            "❌ Package usage not counted for mail item %s (organization %s)",
            mail_item_id,
            membership.organization_id,
        )
    session.refresh(mail_item)
    return mail_item


# ==================================================================
#  ✅ UPDATE MAIL ITEM (status transitions)
# ==================================================================
@router.put("/{mail_item_id}", response_model=MailItemRead)
def update_mail_item(
    mail_item_id: int,
    payload: MailItemUpdate,
    membership: OrganizationMember = Depends(require_active_trial),
    session: Session = Depends(get_session),
):
    mail_item = session.get(MailItem, mail_item_id)
    if not mail_item or mail_item.organization_id != membership.organization_id:
        raise HTTPException(status_code=404, detail="Mail item not found")

    changes = payload.model_dump(exclude_unset=True)
    if "recipient_id" in changes:
        _check_recipient(session, membership.organization_id, changes["recipient_id"])

    for field, value in changes.items():
        setattr(mail_item, field, value)

    now = datetime.now(timezone.utc)
    if changes.get("status") == MailItemStatus.PICKED_UP and mail_item.picked_up_at is None:
        mail_item.picked_up_at = now
    mail_item.updated_at = now

    session.add(mail_item)
    session.commit()
    session.refresh(mail_item)
    return mail_item
