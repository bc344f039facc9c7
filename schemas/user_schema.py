# user_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import MemberRole


# ---------------------------
# Create & Auth
# ---------------------------
class UserCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    organization_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    # Without organization_name the server names it after the user


class UserLogin(BaseModel):
    email: EmailStr
    password: str


# ---------------------------
# Read
# ---------------------------
class UserRead(BaseModel):
    id: int
    full_name: str
    email: EmailStr
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MembershipRead(BaseModel):
    organization_id: int
    organization_name: str
    role: MemberRole


class UserWithMemberships(UserRead):
    memberships: list[MembershipRead] = []


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
    organization_id: Optional[int] = None
