from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Awaitable, Callable, Optional, Protocol

from portfolio_api.core.config import settings
from portfolio_api.core.errors import DispatchFailed

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """The notification channel could not deliver a message."""


# Failures worth another attempt; anything else is a bug or bad input
RETRYABLE_ERRORS = (DeliveryError, asyncio.TimeoutError)


@dataclass(frozen=True)
class DeliveryReceipt:
    message_id: str
    recipient: str
    attempts: int = 1
    delivered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationChannel(Protocol):
    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> DeliveryReceipt:
        ...


def build_email_message(
    recipient: str,
    subject: str,
    body_text: str,
    body_html: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = recipient
    # Header values must stay on one line
    msg["Subject"] = " ".join(subject.split())
    msg["Message-ID"] = make_msgid(domain=settings.SMTP_FROM.rsplit("@", 1)[-1])
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body_text)
    if body_html:
        msg.add_alternative(body_html, subtype="html")
    return msg


def _send_email_sync(message: EmailMessage) -> None:
    if not settings.SMTP_HOST:
        raise DeliveryError("SMTP_HOST is not configured")

    try:
        with smtplib.SMTP(
            settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS
        ) as server:
            server.starttls()
            if settings.SMTP_USER and settings.SMTP_PASSWORD:
                server.login(
                    settings.SMTP_USER, settings.SMTP_PASSWORD.get_secret_value()
                )
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise DeliveryError(str(exc)) from exc


class SmtpNotificationChannel:
    """Delivers messages over SMTP from a worker thread."""

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> DeliveryReceipt:
        message = build_email_message(recipient, subject, body_text, body_html, reply_to)
        await asyncio.to_thread(_send_email_sync, message)
        return DeliveryReceipt(message_id=message["Message-ID"], recipient=recipient)


class RetryingNotifier:
    """Bounded retry with exponential backoff around a notification channel.

    Each attempt is capped by ``timeout`` seconds. Attempt ``n`` that fails is
    followed by a pause of ``base_delay * 2 ** (n - 1)`` unless it was the
    last one, after which :class:`DispatchFailed` is raised with the last
    error chained as its cause.
    Only :data:`RETRYABLE_ERRORS` are retried; any other exception raises
    :class:`DispatchFailed` at once.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.channel = channel
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_settings(cls, channel: Optional[NotificationChannel] = None) -> "RetryingNotifier":
        return cls(
            channel or SmtpNotificationChannel(),
            max_attempts=settings.CONTACT_DISPATCH_MAX_ATTEMPTS,
            base_delay=settings.CONTACT_DISPATCH_BACKOFF_SECONDS,
            timeout=settings.CONTACT_DISPATCH_TIMEOUT_SECONDS,
        )

    async def _attempt(self, **kwargs) -> DeliveryReceipt:
        if self.timeout is None:
            return await self.channel.send(**kwargs)
        return await asyncio.wait_for(self.channel.send(**kwargs), timeout=self.timeout)

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> DeliveryReceipt:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                receipt = await self._attempt(
                    recipient=recipient,
                    subject=subject,
                    body_text=body_text,
                    body_html=body_html,
                    reply_to=reply_to,
                )
            except RETRYABLE_ERRORS as exc:
                last_error = exc
                logger.warning(
                    "Notification attempt %s/%s failed: %r",
                    attempt,
                    self.max_attempts,
                    exc,
                    extra={"event": "notification_attempt_failed", "attempt": attempt},
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.base_delay * 2 ** (attempt - 1))
                continue
            except Exception as exc:
                logger.error(
                    "Notification attempt %s/%s failed permanently: %r",
                    attempt,
                    self.max_attempts,
                    exc,
                    extra={"event": "notification_failed_permanently", "attempt": attempt},
                )
                raise DispatchFailed("notification rejected by channel") from exc
            if attempt > 1:
                receipt = DeliveryReceipt(
                    message_id=receipt.message_id,
                    recipient=receipt.recipient,
                    attempts=attempt,
                    delivered_at=receipt.delivered_at,
                )
            return receipt

        raise DispatchFailed(
            f"notification not delivered after {self.max_attempts} attempts"
        ) from last_error


def render_contact_notification(
    submission_id: str,
    name: str,
    email: str,
    subject: str,
    message: str,
    received_at: datetime,
) -> tuple[str, str, str]:
    """Return ``(subject, text, html)`` for the site owner's notification."""
    mail_subject = f"[Portfolio] {subject}"
    stamp = received_at.isoformat()

    text = "\n".join(
        [
            "New contact form submission",
            f"ID: {submission_id}",
            f"Received: {stamp}",
            f"Name: {name}",
            f"Email: {email}",
            f"Subject: {subject}",
            "",
            "Message:",
            message,
            "",
            f"Reply to this email to respond to {name}.",
        ]
    )

    esc = html.escape
    body = esc(message).replace("\n", "<br>")
    html_body = (
        "<h2>New contact form submission</h2>"
        f"<p><strong>From:</strong> {esc(name)} &lt;{esc(email)}&gt;</p>"
        f"<p><strong>Subject:</strong> {esc(subject)}</p>"
        f"<p>{body}</p>"
        f"<p><small>ID {esc(submission_id)} &middot; {esc(stamp)}</small></p>"
    )
    return mail_subject, text, html_body
