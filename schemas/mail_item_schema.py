# mail_item_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import MailItemStatus, RecipientType


# ============================================================
# ✅ Recipients
# ============================================================
class RecipientCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    unit: Optional[str] = Field(default=None, max_length=100)
    recipient_type: RecipientType = RecipientType.GUEST


class RecipientRead(BaseModel):
    id: int
    organization_id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    unit: Optional[str] = None
    recipient_type: RecipientType
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================
# ✅ Mail items
# ============================================================
class MailItemCreate(BaseModel):
    recipient_id: Optional[int] = None
    item_type: str = Field(default="package", max_length=50)
    carrier: Optional[str] = Field(default=None, max_length=100)
    tracking_number: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)


class MailItemUpdate(BaseModel):
    status: Optional[MailItemStatus] = None
    recipient_id: Optional[int] = None
    carrier: Optional[str] = Field(default=None, max_length=100)
    tracking_number: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)


class MailItemRead(BaseModel):
    id: int
    organization_id: int
    recipient_id: Optional[int] = None
    created_by_id: int
    item_type: str
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    description: Optional[str] = None
    status: MailItemStatus
    created_at: datetime
    updated_at: datetime
    picked_up_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
