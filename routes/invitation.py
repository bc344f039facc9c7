# routes/invitation.py
import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.config import settings
from core.database import get_session
from core.security import (
    create_token_for_user,
    generate_invitation_token,
    get_current_org_admin,
    hash_password,
    verify_password,
)
from core.trial_middleware import TrialLimitExceeded, get_action_gate, require_action, require_active_trial
from models.models import Organization, OrganizationMember, TrialAction, User, UserInvitation
from schemas.invitation_schema import InvitationAccept, InvitationCreate, InvitationRead, InvitationVerifyResponse
from schemas.user_schema import AuthResponse, UserRead
from services.action_gate import ActionGate
from services.email_service import email_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invitations", tags=["Invitations"])

INVITATION_VALID_DAYS = 7


# -----------------------
# Helper: build invite link
# -----------------------
def _build_invitation_link(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/accept-invitation?token={token}"


def _get_valid_invitation(session: Session, token: str) -> UserInvitation:
    invitation = session.exec(select(UserInvitation).where(UserInvitation.token == token)).first()
    if not invitation:
        raise HTTPException(status_code=400, detail="Invalid or expired invitation link.")
    if invitation.used_at is not None:
        raise HTTPException(status_code=400, detail="This invitation has already been accepted.")
    if invitation.is_expired():
        raise HTTPException(status_code=400, detail="This invitation has expired. Please request a new one.")
    return invitation


# ==================================================================
# Create / Send Invitation
# ==================================================================
@router.post("", response_model=InvitationRead, status_code=201)
def invite(
    invite: InvitationCreate,
    background_tasks: BackgroundTasks,
    _: OrganizationMember = Depends(require_active_trial),
    __: OrganizationMember = Depends(require_action(TrialAction.ADD_USER)),
    membership: OrganizationMember = Depends(get_current_org_admin),
    session: Session = Depends(get_session),
):
    """
    Create and send an invitation into the current admin's organization.
    The email goes out via BackgroundTasks after the row is stored.
    """
    org_id = membership.organization_id

    already_member = session.exec(
        select(OrganizationMember)
        .join(User, User.id == OrganizationMember.user_id)
        .where(OrganizationMember.organization_id == org_id, User.email == invite.email)
    ).first()
    if already_member:
        raise HTTPException(status_code=400, detail="This user is already a member of your organization.")

    pending = session.exec(
        select(UserInvitation).where(
            UserInvitation.organization_id == org_id,
            UserInvitation.email == invite.email,
            UserInvitation.used_at.is_(None),
            UserInvitation.expires_at > datetime.now(timezone.utc),
        )
    ).first()
    if pending:
        raise HTTPException(
            status_code=400,
            detail="An active invitation already exists for this email in your organization.",
        )

    organization = session.get(Organization, org_id)
    inviter = session.get(User, membership.user_id)
    token = generate_invitation_token()

    try:
        invitation = UserInvitation(
            organization_id=org_id,
            email=invite.email,
            role=invite.role,
            invited_by_id=membership.user_id,
            token=token,
            expires_at=datetime.now(timezone.utc) + timedelta(days=INVITATION_VALID_DAYS),
        )
        session.add(invitation)
        session.commit()
        session.refresh(invitation)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Database error while saving invitation for %s", invite.email)
        raise HTTPException(status_code=500, detail="Database error while creating the invitation.")

    # Schedule email sending in background (non-blocking)
    background_tasks.add_task(
        email_service.send_invitation_email,
        invite.email,
        _build_invitation_link(token),
        invite.role.value,
        organization.name,
        inviter.full_name or inviter.email,
    )
    logger.info("Invitation email scheduled for %s (organization %s)", invite.email, org_id)
    return invitation


# ==================================================================
# Validate invitation token
# ==================================================================
@router.get("/verify/{token}", response_model=InvitationVerifyResponse)
def verify_invitation(token: str, session: Session = Depends(get_session)):
    invitation = _get_valid_invitation(session, token)
    organization = session.get(Organization, invitation.organization_id)
    return InvitationVerifyResponse(
        email=invitation.email,
        role=invitation.role,
        organization_id=invitation.organization_id,
        organization_name=organization.name if organization else "Your Organization",
        expires_at=invitation.expires_at,
    )


# ==================================================================
# Accept invitation: create account (or join with an existing one)
# ==================================================================
@router.post("/accept", response_model=AuthResponse)
def accept_invite(
    data: InvitationAccept,
    session: Session = Depends(get_session),
    gate: ActionGate = Depends(get_action_gate),
):
    invitation = _get_valid_invitation(session, data.token)
    org_id = invitation.organization_id

    # Seats may have filled up since the invitation was sent
    decision = gate.decide(session, org_id, TrialAction.ADD_USER)
    if not decision.allowed:
        if decision.evaluation_failed:
            raise HTTPException(status_code=503, detail="Unable to verify your subscription right now. Please try again.")
        raise TrialLimitExceeded(
            "limit_exceeded",
            f"This organization has reached its {TrialAction.ADD_USER.label} limit. Ask an admin to upgrade the plan.",
            decision.trial_info,
            TrialAction.ADD_USER,
        )

    user = session.exec(select(User).where(User.email == invitation.email)).first()
    if user:
        if not verify_password(data.password, user.password_hash):
            raise HTTPException(status_code=401, detail="Invalid password for the existing account.")
    else:
        user = User(
            full_name=data.full_name,
            email=invitation.email,
            password_hash=hash_password(data.password),
            is_active=True,
        )
        session.add(user)

    try:
        session.flush()
        session.add(OrganizationMember(organization_id=org_id, user_id=user.id, role=invitation.role))
        invitation.used_at = datetime.now(timezone.utc)
        session.add(invitation)
        session.commit()
        session.refresh(user)
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You are already a member of this organization.")

    logger.info("✅ %s joined organization %s", user.email, org_id)
    return AuthResponse(
        access_token=create_token_for_user(user),
        user=UserRead.model_validate(user),
        organization_id=org_id,
    )
