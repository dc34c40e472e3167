"""
Email Service for TechConnect

Supports multiple email providers:
- SMTP (Gmail, Outlook, etc.)
- SendGrid
- Console (for development)

Every attempt is recorded as an EmailLog row when a user is known.
"""

import os
import re
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional, Dict, Any
from datetime import datetime
import logging
import uuid

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from techconnect.core.config import settings
from techconnect.db.models import EmailLog

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates", "emails")

# Notification type -> template file (without .html)
TEMPLATE_MAP = {
    "new_bid": "new_bid",
    "bid_accepted": "bid_accepted",
    "bid_rejected": "bid_rejected",
    "bid_withdrawn": "bid_withdrawn",
    "bid_expired": "bid_expired",
    "milestone_completed": "milestone_update",
    "milestone_approved": "milestone_update",
    "payment_received": "payment_received",
    "verification_approved": "verification_result",
    "verification_rejected": "verification_result",
}


class EmailDeliveryError(Exception):
    """Raised by a provider when a message could not be handed off."""


class EmailService:
    """
    Email service supporting multiple providers with Jinja2 templates.
    """

    def __init__(self):
        self.enabled = settings.EMAIL_ENABLED
        self.provider = settings.EMAIL_PROVIDER
        self.test_mode = settings.EMAIL_TEST_MODE

        self.jinja_env = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def send_email(
        self,
        db: Session,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        cc: Optional[List[str]] = None,
        user_id: Optional[uuid.UUID] = None,
        notification_id: Optional[uuid.UUID] = None
    ) -> Dict[str, Any]:
        """
        Send an email using the configured provider.

        Never raises on delivery problems; the outcome is returned and
        written to the EmailLog row.
        """
        email_log = None
        if user_id:
            email_log = EmailLog(
                notification_id=notification_id,
                user_id=user_id,
                email_to=to_email,
                subject=subject,
                template_name=template_name,
                status="queued",
                provider=self.provider if self.enabled else "disabled"
            )
            db.add(email_log)

        if not self.enabled:
            logger.info(f"Email disabled. Would send to {to_email}: {subject}")
            self._finish_log(db, email_log, "disabled", "Email service is disabled")
            return {"status": "disabled", "message": "Email service is disabled"}

        if self.test_mode and settings.EMAIL_TEST_RECIPIENT:
            logger.info(f"TEST MODE: Redirecting email from {to_email} to {settings.EMAIL_TEST_RECIPIENT}")
            to_email = settings.EMAIL_TEST_RECIPIENT

        html_body = self._render_template(template_name, context)
        text_body = self._html_to_text(html_body)

        try:
            if self.provider == "smtp":
                result = self._send_smtp(to_email, subject, html_body, text_body, cc)
            elif self.provider == "sendgrid":
                result = self._send_sendgrid(to_email, subject, html_body, text_body, cc)
            elif self.provider == "console":
                result = self._send_console(to_email, subject, text_body)
            else:
                raise EmailDeliveryError(f"Unknown email provider: {self.provider}")
        except EmailDeliveryError as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            self._finish_log(db, email_log, "failed", str(e))
            return {"status": "failed", "message": str(e)}

        self._finish_log(db, email_log, "sent")
        logger.info(f"Email sent to {to_email}: {subject}")
        return result

    def _finish_log(self, db: Session, email_log: Optional[EmailLog], status: str,
                    error_message: Optional[str] = None):
        if email_log is None:
            return
        email_log.status = status
        email_log.error_message = error_message
        if status == "sent":
            email_log.sent_at = datetime.utcnow()
        try:
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record email log: {e}")
            db.rollback()

    def _render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        try:
            template = self.jinja_env.get_template(f"{template_name}.html")
            return template.render(**context)
        except TemplateError as e:
            logger.error(f"Failed to render template {template_name}: {e}")
            template = self.jinja_env.get_template("generic_notification.html")
            return template.render(**context)

    def _html_to_text(self, html: str) -> str:
        text = re.sub('<[^<]+?>', '', html)
        text = re.sub(r'\n\s*\n', '\n\n', text)
        return text.strip()

    def _build_message(self, to_email: str, subject: str, html_body: str, text_body: str,
                       cc: Optional[List[str]] = None) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"
        msg['To'] = to_email
        if cc:
            msg['Cc'] = ', '.join(cc)
        msg.attach(MIMEText(text_body, 'plain'))
        msg.attach(MIMEText(html_body, 'html'))
        return msg

    def _send_smtp(self, to_email: str, subject: str, html_body: str, text_body: str,
                   cc: Optional[List[str]] = None) -> Dict[str, Any]:
        msg = self._build_message(to_email, subject, html_body, text_body, cc)
        recipients = [to_email] + list(cc or [])
        try:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as server:
                if settings.SMTP_TLS:
                    server.starttls()
                if settings.SMTP_USER and settings.SMTP_PASSWORD:
                    server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.sendmail(settings.EMAIL_FROM, recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP error: {e}") from e

        return {"status": "sent", "message": "Email sent via SMTP", "sent_at": datetime.utcnow().isoformat()}

    def _send_sendgrid(self, to_email: str, subject: str, html_body: str, text_body: str,
                       cc: Optional[List[str]] = None) -> Dict[str, Any]:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import Mail, Email, To, Content
        from python_http_client.exceptions import HTTPError

        message = Mail(
            from_email=Email(settings.EMAIL_FROM, settings.EMAIL_FROM_NAME),
            to_emails=To(to_email),
            subject=subject,
            plain_text_content=Content("text/plain", text_body),
            html_content=Content("text/html", html_body)
        )
        if cc:
            message.cc = [Email(email) for email in cc]

        try:
            response = SendGridAPIClient(settings.SENDGRID_API_KEY).send(message)
        except (HTTPError, OSError) as e:
            raise EmailDeliveryError(f"SendGrid error: {e}") from e

        return {
            "status": "sent",
            "message": "Email sent via SendGrid",
            "sent_at": datetime.utcnow().isoformat(),
            "sendgrid_message_id": response.headers.get('X-Message-Id')
        }

    def _send_console(self, to_email: str, subject: str, text_body: str) -> Dict[str, Any]:
        logger.info(
            f"EMAIL (console) to={to_email} from={settings.EMAIL_FROM} subject={subject!r}\n"
            f"{text_body[:500]}"
        )
        return {"status": "console", "message": "Email logged to console", "sent_at": datetime.utcnow().isoformat()}

    def send_notification_email(
        self,
        db: Session,
        user_email: str,
        notification_type: str,
        title: str,
        message: str,
        related_data: Optional[Dict[str, Any]] = None,
        user_id: Optional[uuid.UUID] = None,
        notification_id: Optional[uuid.UUID] = None
    ) -> Dict[str, Any]:
        template_name = TEMPLATE_MAP.get(notification_type, "generic_notification")
        context = {
            "title": title,
            "message": message,
            "notification_type": notification_type,
            "project_name": settings.PROJECT_NAME,
            "client_url": settings.CLIENT_URL,
            "year": datetime.utcnow().year,
            **(related_data or {})
        }

        return self.send_email(
            db=db,
            to_email=user_email,
            subject=f"{settings.PROJECT_NAME} - {title}",
            template_name=template_name,
            context=context,
            user_id=user_id,
            notification_id=notification_id
        )


# Singleton instance
email_service = EmailService()
