from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import MemberRole


# ============================================================
# ✅ Create Invitation (input)
# ============================================================
class InvitationCreate(BaseModel):
    email: EmailStr
    role: MemberRole = MemberRole.MEMBER
    # organization_id, invited_by_id, token and expiry are set server-side


# ============================================================
# ✅ Read Invitation (output)
# ============================================================
class InvitationRead(BaseModel):
    id: int
    email: EmailStr
    role: MemberRole
    organization_id: int
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvitationVerifyResponse(BaseModel):
    valid: bool = True
    email: EmailStr
    role: MemberRole
    organization_id: int
    organization_name: str
    expires_at: datetime


# ============================================================
# ✅ Accept Invitation (for frontend user registration)
# ============================================================
class InvitationAccept(BaseModel):
    token: str
    full_name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8)
