from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from uuid import UUID


class NotificationOut(BaseModel):
    """Schema for notification response"""
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    data: Optional[dict] = None
    related_project_id: Optional[UUID] = None
    related_company_id: Optional[UUID] = None
    related_bid_id: Optional[UUID] = None
    related_payment_id: Optional[UUID] = None
    is_read: bool
    read_at: Optional[datetime] = None
    priority: str
    source: str
    action_url: Optional[str] = None
    email_sent: bool
    expires_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationMarkRead(BaseModel):
    """Schema for marking notifications as read"""
    notification_ids: list[UUID]


class UnreadCount(BaseModel):
    unread_count: int
