from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime
from uuid import UUID

from techconnect.schemas.bid import Attachment

MESSAGE_MAX_LENGTH = 5000


class MessageCreate(BaseModel):
    """
    A message to another user.

    ``conversation_id`` is optional; without it the message joins the
    direct conversation between sender and receiver.
    """
    receiver_id: UUID
    content: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    conversation_id: Optional[str] = Field(None, min_length=1, max_length=100)
    attachments: List[Attachment] = []
    related_project_id: Optional[UUID] = None

    @validator("content")
    def content_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v.strip()


class MessageOut(BaseModel):
    id: UUID
    conversation_id: str
    sender_id: UUID
    receiver_id: UUID
    sender_name: str
    content: str
    attachments: List[dict] = []
    related_project_id: Optional[UUID] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationOut(BaseModel):
    conversation_id: str
    last_message: MessageOut
    unread_count: int
