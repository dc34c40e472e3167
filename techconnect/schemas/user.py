from pydantic import BaseModel
from typing import Optional
from uuid import UUID
from datetime import datetime


class UserOut(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    phone: Optional[str] = None
    avatar: Optional[str] = None
    email_verified: bool
    verified: bool
    email_notifications: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None


class EmailPreferencesUpdate(BaseModel):
    email_notifications: bool


class UserRoleUpdate(BaseModel):
    role: str  # client, company, admin
