from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from uuid import UUID
from datetime import datetime

from techconnect.db.session import get_db
from techconnect.db.models import Notification, User
from techconnect.schemas.notification import NotificationOut, NotificationMarkRead, UnreadCount
from techconnect.core.deps import get_current_user
from techconnect.utils.pagination import PaginationParams, create_paginated_response, paginate_query

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _live(query):
    """Hide notifications past their TTL even before the cleanup job runs"""
    now = datetime.utcnow()
    return query.filter((Notification.expires_at.is_(None)) | (Notification.expires_at > now))


@router.get("/")
def list_notifications(
    pagination: PaginationParams = Depends(),
    unread_only: bool = False,
    type: str = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Get notifications for the current user with pagination.
    Optionally filter for unread notifications or a single type.
    """
    query = _live(db.query(Notification).filter(Notification.user_id == current_user.id))

    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    if type:
        query = query.filter(Notification.type == type)

    query = query.order_by(Notification.created_at.desc())
    items, total = paginate_query(query, pagination.skip, pagination.limit)
    items = [NotificationOut.model_validate(n) for n in items]
    return create_paginated_response(items, total, pagination.page, pagination.limit)


@router.get("/unread/count", response_model=UnreadCount)
def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    count = _live(db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.is_read == False  # noqa: E712
    )).count()

    return {"unread_count": count}


@router.post("/mark-read")
def mark_notifications_read(
    payload: NotificationMarkRead,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Mark one or more notifications as read"""
    notifications = db.query(Notification).filter(
        Notification.id.in_(payload.notification_ids),
        Notification.user_id == current_user.id
    ).all()

    if not notifications:
        raise HTTPException(status_code=404, detail="No matching notifications found")

    now = datetime.utcnow()
    for notification in notifications:
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = now

    db.commit()

    return {
        "message": f"Marked {len(notifications)} notification(s) as read",
        "count": len(notifications)
    }


@router.post("/mark-all-read")
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    count = db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.is_read == False  # noqa: E712
    ).update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
    db.commit()

    return {
        "message": f"Marked {count} notification(s) as read",
        "count": count
    }


@router.delete("/read")
def clear_read_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete every read notification of the current user"""
    count = db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.is_read == True  # noqa: E712
    ).delete(synchronize_session=False)
    db.commit()
    return {"message": f"Deleted {count} read notification(s)", "count": count}


@router.get("/{notification_id}", response_model=NotificationOut)
def get_notification(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get a notification; viewing it marks it read"""
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == current_user.id
    ).first()

    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        db.commit()
        db.refresh(notification)

    return notification


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == current_user.id
    ).first()

    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    db.delete(notification)
    db.commit()
    return {"message": "Notification deleted", "notification_id": str(notification_id)}
