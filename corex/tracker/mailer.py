"""Email notification sink.

SmtpNotifier renders one message per NotificationKind and hands it to SMTP in
a worker thread. With email disabled (or no credentials) it only logs what
would have been sent.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

from corex.config import settings
from corex.tracker.models import NotificationKind

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, kind: NotificationKind, recipient_email: str, payload: dict[str, Any]) -> None: ...


def render(kind: NotificationKind, payload: dict[str, Any], app_name: str | None = None) -> tuple[str, str]:
    """Subject and HTML body for a notification."""
    app = app_name or settings.app_name
    p = {k: html.escape(str(v)) if v is not None else "" for k, v in payload.items()}
    ttl = settings.code_ttl_days

    if kind == NotificationKind.group_invitation:
        subject = f"Invitation to join {payload.get('group_name', '')} on {app}"
        body = (
            f"<h1>You've been invited to join {p.get('group_name', '')}!</h1>"
            f"<p>You've been invited to join a fitness group on {app}. "
            "Join the group to track goals and progress together!</p>"
            f"<p>Your invitation code is: <strong>{p.get('code', '')}</strong></p>"
            '<p>To join, enter this code in the "Join Group" section of the app.</p>'
            f"<p>This invitation will expire in {ttl} days.</p>"
        )
    elif kind == NotificationKind.goal_shared:
        subject = f"New Goal Shared in {payload.get('group_name', '')}"
        body = (
            "<h1>A new goal has been shared with you!</h1>"
            f"<p>A member of {p.get('group_name', '')} has shared their goal "
            f"\"{p.get('goal_title', '')}\" with the group.</p>"
            f"<p>To add this goal to your profile, use the code: <strong>{p.get('code', '')}</strong></p>"
            '<p>You can enter this code in the "Add Goal" section of your dashboard.</p>'
            f"<p>This code will expire in {ttl} days.</p>"
        )
    elif kind == NotificationKind.goal_achievement:
        subject = f"Goal Achievement in {payload.get('group_name', '')}!"
        body = (
            "<h1>Congratulations!</h1>"
            f"<p>A member of {p.get('group_name', '')} has achieved their goal \"{p.get('goal_title', '')}\"!</p>"
            "<p>Keep up the great work and continue supporting each other!</p>"
        )
    else:
        subject = f"Goal Progress Update in {payload.get('group_name', '')}"
        body = (
            "<h1>Goal Progress Update</h1>"
            f"<p>There's been progress on the goal \"{p.get('goal_title', '')}\" in {p.get('group_name', '')}!</p>"
            f"<p>Current progress: {p.get('progress', '')} {p.get('unit', '')} "
            f"({p.get('percentage', '')}% of target {p.get('target', '')} {p.get('unit', '')})</p>"
            "<p>Keep going! You're doing great!</p>"
        )
    return subject, body


class SmtpNotifier:
    """Notifier backed by smtplib."""

    def __init__(self) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.use_tls = settings.smtp_use_tls
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.from_email = settings.email_from or settings.smtp_username or f"noreply@{settings.app_name.lower()}.app"
        self.enabled = settings.email_enabled

    async def send(self, kind: NotificationKind, recipient_email: str, payload: dict[str, Any]) -> None:
        subject, body = render(kind, payload)
        if not self.enabled or not (self.username and self.password):
            logger.info("Email disabled, would send %s to %s: %s", kind.value, recipient_email, subject)
            return
        await asyncio.to_thread(self._deliver, recipient_email, subject, body)
        logger.info("Sent %s email to %s", kind.value, recipient_email)

    def _deliver(self, to_email: str, subject: str, html_content: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(html_content, "html"))

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            server.login(self.username, self.password)  # type: ignore[arg-type]
            server.send_message(msg)


async def send_best_effort(
    notifier: Notifier,
    kind: NotificationKind,
    recipient_email: str,
    payload: dict[str, Any],
) -> bool:
    """Deliver one notification; log and swallow any failure. True on success."""
    try:
        await notifier.send(kind, recipient_email, payload)
    except Exception:
        logger.exception("Failed to send %s email to %s", kind.value, recipient_email)
        return False
    return True


def get_notifier() -> Notifier:
    """FastAPI dependency; tests override it with a recording notifier."""
    return SmtpNotifier()
