# routes/organization.py
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, HTTPException, Depends
from sqlmodel import Session, select

from core.database import get_session
from core.security import get_current_membership, get_current_org_admin
from core.trial_middleware import require_active_trial
from models.models import Organization, OrganizationMember, User
from schemas.organization_schema import OrganizationMemberRead, OrganizationRead, OrganizationUpdate

router = APIRouter(prefix="/organizations", tags=["Organizations"])


def _get_organization(session: Session, organization_id: int) -> Organization:
    organization = session.get(Organization, organization_id)
    if not organization:
        raise HTTPException(status_code=404, detail="Organization not found")
    return organization


# ==================================================================
#  ✅ GET MY ORGANIZATION
# ==================================================================
@router.get("/my-organization", response_model=OrganizationRead)
def get_my_organization(
    membership: OrganizationMember = Depends(get_current_membership),
    session: Session = Depends(get_session)
):
    """Get current user's organization"""
    return _get_organization(session, membership.organization_id)


# ==================================================================
#  ✅ UPDATE MY ORGANIZATION
# ==================================================================
@router.put("/my-organization", response_model=OrganizationRead)
def update_my_organization(
    organization_update: OrganizationUpdate,
    _: OrganizationMember = Depends(require_active_trial),
    membership: OrganizationMember = Depends(get_current_org_admin),  # Only admins can update org
    session: Session = Depends(get_session)
):
    """Update the profile fields of the current organization"""
    organization = _get_organization(session, membership.organization_id)

    for field, value in organization_update.model_dump(exclude_unset=True).items():
        setattr(organization, field, value)
    organization.updated_at = datetime.now(timezone.utc)

    session.add(organization)
    session.commit()
    session.refresh(organization)
    return organization


# ==================================================================
#  ✅ LIST MEMBERS
# ==================================================================
@router.get("/members", response_model=List[OrganizationMemberRead])
def list_members(
    membership: OrganizationMember = Depends(get_current_membership),
    session: Session = Depends(get_session)
):
    rows = session.exec(
        select(OrganizationMember, User)
        .join(User, User.id == OrganizationMember.user_id)
        .where(OrganizationMember.organization_id == membership.organization_id)
        .order_by(OrganizationMember.created_at)
    ).all()
    return [
        OrganizationMemberRead(
            user_id=user.id,
            full_name=user.full_name,
            email=user.email,
            role=member.role,
            joined_at=member.created_at,
        )
        for member, user in rows
    ]
