"""Notification and e-mail sinks.

In-app notifications are rows in ``notifications`` written inside the
caller's transaction.  E-mail is best-effort: it is sent only after the
transition has committed, is switched off by the
``enable_email_notifications`` system setting, and failures are logged
rather than surfaced.

SMTP settings come from the environment:
- SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM_EMAIL
"""

import asyncio
import logging
import os
import smtplib
import uuid
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from xml.sax.saxutils import escape

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import NotFound, UpstreamFailure
from rars.helpers.retry import with_retry
from rars.helpers.settings_reader import get_setting
from rars.models.db.notification import Notification

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str


def render_email(title: str, body: str, link: Optional[str] = None) -> str:
    """Minimal HTML body shared by every lifecycle e-mail."""
    html = f"<h2>{escape(title)}</h2><p>{escape(body)}</p>"
    if link:
        html += f'<p><a href="{escape(link)}">Open in RARS</a></p>'
    return html


def _smtp_send(to_email: str, subject: str, html_content: str) -> None:
    smtp_host = os.getenv("SMTP_HOST")
    smtp_port = int(os.getenv("SMTP_PORT", "587"))
    smtp_user = os.getenv("SMTP_USER")
    smtp_password = os.getenv("SMTP_PASSWORD")
    from_email = os.getenv("SMTP_FROM_EMAIL", "noreply@rars.local")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = from_email
    msg["To"] = to_email
    msg.attach(MIMEText(html_content, "html"))

    try:
        with smtplib.SMTP(smtp_host, smtp_port, timeout=15) as server:
            server.starttls()
            if smtp_user and smtp_password:
                server.login(smtp_user, smtp_password)
            server.sendmail(from_email, [to_email], msg.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        raise UpstreamFailure(f"SMTP delivery failed: {exc}", to=to_email) from exc


@with_retry()
async def _deliver(message: EmailMessage) -> None:
    await asyncio.to_thread(_smtp_send, message.to, message.subject, message.html)


class NotificationService:
    """In-app notification rows plus best-effort e-mail."""

    @staticmethod
    def notify(
        db: AsyncSession,
        user_id: uuid.UUID,
        title: str,
        body: str,
        link: Optional[str] = None,
    ) -> Notification:
        """Queue an in-app notification on the caller's session."""
        notification = Notification(user_id=user_id, title=title, body=body, link=link)
        db.add(notification)
        return notification

    @staticmethod
    async def send_email(db: AsyncSession, message: EmailMessage) -> bool:
        """Send *message* if e-mail is enabled.  Never raises.

        Returns:
            True if sent (or logged in place of sending), False on failure.
        """
        enabled = await get_setting(db, "enable_email_notifications", True)
        if enabled is False or str(enabled).lower() == "false":
            logger.info("E-mail disabled by settings; skipped '%s'", message.subject)
            return False

        if not os.getenv("SMTP_HOST"):
            logger.info(
                f"[EMAIL STUB] Would send email to {message.to}\n"
                f"  Subject: {message.subject}\n"
                f"  HTML length: {len(message.html)} chars\n"
                f"  (Configure SMTP_HOST to enable sending)"
            )
            return True

        try:
            await _deliver(message)
        except UpstreamFailure as exc:
            logger.warning("E-mail to %s not delivered: %s", message.to, exc)
            return False
        logger.info("E-mail sent to %s: %s", message.to, message.subject)
        return True

    # ------------------------------------------------------------------
    # inbox
    # ------------------------------------------------------------------

    @staticmethod
    async def list_for_user(
        db: AsyncSession, user_id: uuid.UUID, unread_only: bool = False
    ) -> list[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await db.execute(query.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def unread_count(db: AsyncSession, user_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
        )
        return result.scalar_one()

    @staticmethod
    async def mark_read(
        db: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID
    ) -> Notification:
        notification = await db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFound("Notification not found")
        notification.is_read = True
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: uuid.UUID) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        return result.rowcount or 0
