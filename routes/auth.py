import logging

from fastapi import APIRouter, HTTPException, Depends
from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.models import MemberRole, Organization, OrganizationMember, User
from schemas.user_schema import AuthResponse, MembershipRead, UserCreate, UserLogin, UserRead, UserWithMemberships
from core.database import get_session
from core.security import (
    hash_password, verify_password, create_token_for_user,
    get_current_user
)
from services.trial_service import start_trial

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])


def _email_domain(email: str) -> str:
    return email.split("@", 1)[1].lower()


# ==========================================================
# ✅ Public Signup: creates organization + admin user, starts the trial
# ==========================================================
@router.post("/signup", response_model=AuthResponse, status_code=201)
def public_signup(user_data: UserCreate, session: Session = Depends(get_session)):
    """Creates a new organization, its first admin, and the 7-day trial."""
    existing = session.exec(select(User).where(User.email == user_data.email)).first()
    if existing:
        raise HTTPException(
            status_code=400,
            detail="An account with this email already exists. Please log in instead."
        )

    try:
        organization = Organization(
            name=user_data.organization_name or f"{user_data.full_name}'s Organization",
            email_domain=_email_domain(user_data.email),
            contact_email=user_data.email,
            billing_email=user_data.email,
        )
        new_user = User(
            full_name=user_data.full_name,
            email=user_data.email,
            password_hash=hash_password(user_data.password),
            is_active=True,
        )
        session.add(organization)
        session.add(new_user)
        session.flush()

        session.add(OrganizationMember(
            organization_id=organization.id,
            user_id=new_user.id,
            role=MemberRole.ADMIN,
        ))
        # Trial window lands in the same commit as the organization row
        start_trial(organization)
        session.commit()
        session.refresh(new_user)
        session.refresh(organization)

    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=400,
            detail="An account with this email already exists. Please log in instead."
        )
    except SQLAlchemyError:
        session.rollback()
        logger.exception("❌ Database error during signup for %s", user_data.email)
        raise HTTPException(
            status_code=500,
            detail="Something went wrong while creating your account. Please try again later."
        )

    logger.info(
        "📝 Signup complete for %s (organization %s, trial ends %s)",
        new_user.email,
        organization.id,
        organization.trial_end_date.isoformat(),
    )

    return AuthResponse(
        access_token=create_token_for_user(new_user),
        user=UserRead.model_validate(new_user),
        organization_id=organization.id,
    )


# ==========================================================
# ✅ Login
# ==========================================================
@router.post("/login", response_model=AuthResponse)
def login(credentials: UserLogin, session: Session = Depends(get_session)):
    db_user = session.exec(select(User).where(User.email == credentials.email)).first()

    if not db_user or not verify_password(credentials.password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    if not db_user.is_active:
        raise HTTPException(status_code=403, detail="Your account is inactive. Contact your admin.")

    membership = session.exec(
        select(OrganizationMember)
        .where(OrganizationMember.user_id == db_user.id)
        .order_by(OrganizationMember.created_at, OrganizationMember.id)
    ).first()

    logger.info("🔓 Login successful for %s", db_user.email)
    return AuthResponse(
        access_token=create_token_for_user(db_user),
        user=UserRead.model_validate(db_user),
        organization_id=membership.organization_id if membership else None,
    )


# ==========================================================
# ✅ Current user with memberships
# ==========================================================
@router.get("/me", response_model=UserWithMemberships)
def read_me(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    rows = session.exec(
        select(OrganizationMember, Organization)
        .join(Organization, Organization.id == OrganizationMember.organization_id)
        .where(OrganizationMember.user_id == current_user.id)
        .order_by(OrganizationMember.created_at, OrganizationMember.id)
    ).all()

    return UserWithMemberships(
        **UserRead.model_validate(current_user).model_dump(),
        memberships=[
            MembershipRead(organization_id=org.id, organization_name=org.name, role=member.role)
            for member, org in rows
        ],
    )
