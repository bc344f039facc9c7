# core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import secrets

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlmodel import Session, select

from core.database import get_session
from core.config import settings
from models.models import MemberRole, OrganizationMember, User


# ========================================
# 🔑 JWT / APP CONFIG
# ========================================
SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM or "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# ========================================
# 🔐 Password Hashing (Argon2)
# ========================================
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash password using Argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password using Argon2."""
    return pwd_context.verify(plain_password, hashed_password)


# ========================================
# 🔑 Token Helpers
# ========================================
def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_token_for_user(user: User) -> str:
    return create_access_token({"sub": user.email, "user_id": user.id})


def decode_token(token: str) -> dict:
    """Decode JWT and return payload."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ========================================
# 📧 Invitation Tokens
# ========================================
def generate_invitation_token() -> str:
    return secrets.token_urlsafe(32)


# ========================================
# 👤 Authentication & Tenant Context
# ========================================
def get_current_user(token: str = Depends(oauth2_scheme), session: Session = Depends(get_session)) -> User:
    """Extract user from token and load full record from DB."""
    payload = decode_token(token)
    user_id = payload.get("user_id")
    email = payload.get("sub")

    if not (user_id or email):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = None
    if user_id:
        user = session.get(User, user_id)
    if not user and email:
        user = session.exec(select(User).where(User.email == email)).first()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive")
    return user


def get_current_membership(
    x_organization_id: Optional[int] = Header(default=None),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> OrganizationMember:
    """
    Resolve the organization the request acts on.
    Uses the ``X-Organization-Id`` header when sent, otherwise the user's
    oldest membership. Membership is checked on every request.
    """
    query = select(OrganizationMember).where(OrganizationMember.user_id == current_user.id)
    if x_organization_id is not None:
        query = query.where(OrganizationMember.organization_id == x_organization_id)
    membership = session.exec(query.order_by(OrganizationMember.created_at, OrganizationMember.id)).first()

    if not membership:
        if x_organization_id is not None:
            raise HTTPException(status_code=403, detail="User not part of this organization")
        raise HTTPException(status_code=403, detail="User does not belong to any organization")
    return membership


def get_current_org_admin(membership: OrganizationMember = Depends(get_current_membership)) -> OrganizationMember:
    """Require the admin role in the current organization."""
    if membership.role != MemberRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return membership


def get_current_super_admin(current_user: User = Depends(get_current_user)) -> User:
    """Platform operator; not tied to any organization membership."""
    if not current_user.is_super_admin:
        raise HTTPException(status_code=403, detail="Super admin privileges required")
    return current_user
