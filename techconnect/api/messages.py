from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session
from uuid import UUID
from datetime import datetime
from typing import List, Optional
import logging

from techconnect.db.session import get_db
from techconnect.db.models import Message, User
from techconnect.schemas.message import ConversationOut, MessageCreate, MessageOut
from techconnect.core.deps import get_current_user
from techconnect.services.notification_service import create_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])

CONVERSATION_PAGE_SIZE = 100


def direct_conversation_id(a: UUID, b: UUID) -> str:
    """Same id for both directions between two users"""
    first, second = sorted([str(a), str(b)])
    return f"{first}:{second}"


def _participant_filter(user_id: UUID):
    return or_(Message.sender_id == user_id, Message.receiver_id == user_id)


@router.get("/user/conversations", response_model=List[ConversationOut])
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Every conversation of the current user with its latest message, newest first"""
    messages = db.query(Message).filter(
        _participant_filter(current_user.id)
    ).order_by(Message.created_at.desc()).all()

    conversations = {}
    for message in messages:
        entry = conversations.get(message.conversation_id)
        if entry is None:
            entry = conversations[message.conversation_id] = {
                "conversation_id": message.conversation_id,
                "last_message": MessageOut.model_validate(message),
                "unread_count": 0,
            }
        if message.receiver_id == current_user.id and not message.is_read:
            entry["unread_count"] += 1

    return list(conversations.values())


@router.get("/{conversation_id}", response_model=List[MessageOut])
def get_conversation(
    conversation_id: str,
    since: Optional[datetime] = Query(None, description="Only messages created after this time"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Messages of one conversation in chronological order.

    Returns at most the latest 100. Clients poll with ``since`` set to the
    newest ``created_at`` they hold.
    """
    query = db.query(Message).filter(
        Message.conversation_id == conversation_id,
        _participant_filter(current_user.id)
    )
    if since is not None:
        query = query.filter(Message.created_at > since)

    latest = query.order_by(Message.created_at.desc()).limit(CONVERSATION_PAGE_SIZE).all()
    return list(reversed(latest))


@router.post("/", status_code=201)
def send_message(
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if payload.receiver_id == current_user.id:
        raise HTTPException(status_code=422, detail="Cannot send a message to yourself")

    receiver = db.query(User).filter(User.id == payload.receiver_id).first()
    if not receiver:
        raise HTTPException(status_code=404, detail="Receiver not found")

    conversation_id = payload.conversation_id or direct_conversation_id(current_user.id, receiver.id)

    # A conversation belongs to the two users who started it
    existing = db.query(Message).filter(Message.conversation_id == conversation_id).first()
    if existing and {existing.sender_id, existing.receiver_id} != {current_user.id, receiver.id}:
        raise HTTPException(status_code=403, detail="Not a participant of this conversation")

    message = Message(
        conversation_id=conversation_id,
        sender_id=current_user.id,
        receiver_id=receiver.id,
        sender_name=current_user.name,
        content=payload.content,
        attachments=[a.model_dump() for a in payload.attachments],
        related_project_id=payload.related_project_id,
    )
    db.add(message)
    db.commit()
    db.refresh(message)

    create_notification(
        db,
        user_id=receiver.id,
        notification_type="message_received",
        title=f"New message from {current_user.name}",
        message=payload.content,
        data={"message_id": str(message.id), "conversation_id": conversation_id},
        related_project_id=payload.related_project_id,
        source="user",
        action_url=f"/messages/{conversation_id}",
    )
    logger.info(f"Message {message.id} sent in conversation {conversation_id}")

    return {"success": True, "message": MessageOut.model_validate(message)}


@router.put("/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Mark every message the current user received in a conversation as read"""
    count = db.query(Message).filter(
        Message.conversation_id == conversation_id,
        Message.receiver_id == current_user.id,
        Message.is_read == False  # noqa: E712
    ).update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
    db.commit()

    return {"message": "Messages marked as read", "count": count}
