"""
Notification Service - Create and manage user notifications
"""
from sqlalchemy.orm import Session
from uuid import UUID
from typing import Optional, Dict, Any
from datetime import datetime, timedelta
import logging

from techconnect.core.config import settings
from techconnect.db.models import Company, Notification, User
from techconnect.services.bid_engine import BidEvent, BidEventType
from techconnect.services.email_service import email_service

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
MESSAGE_MAX_LENGTH = 500


class NotificationType:
    """Notification type constants"""
    NEW_BID = BidEventType.NEW_BID
    BID_ACCEPTED = BidEventType.BID_ACCEPTED
    BID_REJECTED = BidEventType.BID_REJECTED
    BID_WITHDRAWN = BidEventType.BID_WITHDRAWN
    BID_EXPIRED = BidEventType.BID_EXPIRED
    MILESTONE_COMPLETED = BidEventType.MILESTONE_COMPLETED
    MILESTONE_APPROVED = BidEventType.MILESTONE_APPROVED
    PAYMENT_RECEIVED = BidEventType.PAYMENT_RECEIVED
    VERIFICATION_SUBMITTED = "verification_submitted"
    VERIFICATION_APPROVED = "verification_approved"
    VERIFICATION_REJECTED = "verification_rejected"
    PROJECT_INVITATION = "project_invitation"
    BID_QUESTION = "bid_question"
    SYSTEM = "system"


def create_notification(
    db: Session,
    user_id: UUID,
    notification_type: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    related_project_id: Optional[UUID] = None,
    related_company_id: Optional[UUID] = None,
    related_bid_id: Optional[UUID] = None,
    related_payment_id: Optional[UUID] = None,
    priority: str = "medium",
    source: str = "system",
    action_url: Optional[str] = None,
) -> Notification:
    """
    Create a notification for a user and email it if the user opted in.

    Title and message are truncated to their column limits. Notifications
    expire after ``NOTIFICATION_TTL_DAYS``.
    """
    now = datetime.utcnow()
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title[:TITLE_MAX_LENGTH],
        message=message[:MESSAGE_MAX_LENGTH],
        data=data or {},
        related_project_id=related_project_id,
        related_company_id=related_company_id,
        related_bid_id=related_bid_id,
        related_payment_id=related_payment_id,
        priority=priority,
        source=source,
        action_url=action_url,
        created_at=now,
        expires_at=now + timedelta(days=settings.NOTIFICATION_TTL_DAYS),
    )

    db.add(notification)
    db.commit()
    db.refresh(notification)

    user = db.query(User).filter(User.id == user_id).first()
    if user and user.email and user.email_notifications:
        result = email_service.send_notification_email(
            db=db,
            user_email=user.email,
            notification_type=notification_type,
            title=notification.title,
            message=notification.message,
            related_data={**(data or {}), "action_url": action_url},
            user_id=user.id,
            notification_id=notification.id,
        )
        if result.get("status") in ("sent", "console"):
            notification.email_sent = True
            db.commit()

    return notification


def notify_company_owner(db: Session, company_id: UUID, notification_type: str, title: str,
                         message: str, **kwargs) -> Optional[Notification]:
    """Notify the user account that owns ``company_id``."""
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        logger.warning(f"Cannot notify missing company {company_id}")
        return None
    return create_notification(
        db,
        user_id=company.user_id,
        notification_type=notification_type,
        title=title,
        message=message,
        related_company_id=company_id,
        **kwargs,
    )


def cleanup_expired_notifications(db: Session, now: Optional[datetime] = None) -> int:
    """Delete notifications whose TTL has passed. Returns the number removed."""
    now = now or datetime.utcnow()
    deleted = (
        db.query(Notification)
        .filter(Notification.expires_at.isnot(None), Notification.expires_at < now)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info(f"Removed {deleted} expired notifications")
    return deleted


class NotificationEventSink:
    """
    Materializes bid engine events as notifications.

    Client-facing events go to the project's client, company-facing events
    to the owner of the bidding company.
    """

    def __init__(self, db: Session):
        self.db = db

    def publish(self, event: BidEvent) -> None:
        handler = getattr(self, f"_on_{event.type}", None)
        if handler is None:
            logger.warning(f"No notification mapping for bid event {event.type}")
            return
        handler(event)

    def _common(self, event: BidEvent) -> Dict[str, Any]:
        return {
            "data": dict(event.data),
            "related_project_id": event.project_id,
            "related_bid_id": event.bid_id,
            "action_url": f"/projects/{event.project_id}",
        }

    def _to_client(self, event: BidEvent, title: str, message: str, priority: str = "medium"):
        create_notification(
            self.db,
            user_id=event.client_id,
            notification_type=event.type,
            title=title,
            message=message,
            related_company_id=event.company_id,
            priority=priority,
            **self._common(event),
        )

    def _to_company(self, event: BidEvent, title: str, message: str, priority: str = "medium"):
        notify_company_owner(
            self.db,
            event.company_id,
            event.type,
            title,
            message,
            priority=priority,
            **self._common(event),
        )

    def _on_new_bid(self, event: BidEvent):
        d = event.data
        self._to_client(
            event,
            "New Bid Received",
            f"{d.get('company_name') or 'A company'} submitted a bid of "
            f"{d.get('currency')} {d.get('amount')} on '{d.get('project_title')}'.",
            priority="high",
        )

    def _on_bid_accepted(self, event: BidEvent):
        self._to_company(
            event,
            "Bid Accepted!",
            f"Congratulations! Your bid on '{event.data.get('project_title')}' has been accepted.",
            priority="high",
        )

    def _on_bid_rejected(self, event: BidEvent):
        reason = event.data.get("reason")
        message = f"Your bid on '{event.data.get('project_title')}' was not selected."
        if reason:
            message += f" {reason}."
        self._to_company(event, "Bid Not Selected", message)

    def _on_bid_withdrawn(self, event: BidEvent):
        self._to_client(
            event,
            "Bid Withdrawn",
            f"{event.data.get('company_name') or 'A company'} withdrew its bid on "
            f"'{event.data.get('project_title')}'.",
        )

    def _on_bid_expired(self, event: BidEvent):
        self._to_company(
            event,
            "Bid Expired",
            f"Your bid on '{event.data.get('project_title')}' expired without a decision.",
        )

    def _on_milestone_completed(self, event: BidEvent):
        self._to_client(
            event,
            "Milestone Completed",
            f"Milestone '{event.data.get('milestone_title')}' on '{event.data.get('project_title')}' "
            f"is ready for your approval.",
            priority="high",
        )

    def _on_milestone_approved(self, event: BidEvent):
        self._to_company(
            event,
            "Milestone Approved",
            f"The client approved milestone '{event.data.get('milestone_title')}'.",
        )

    def _on_payment_received(self, event: BidEvent):
        self._to_company(
            event,
            "Payment Received",
            f"Payment of {event.data.get('currency')} {event.data.get('amount')} received for "
            f"'{event.data.get('milestone_title') or event.data.get('project_title')}'.",
            priority="high",
        )
