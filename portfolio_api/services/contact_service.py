from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional
from uuid import UUID, uuid4

from sqlalchemy.orm import sessionmaker

from portfolio_api.core.config import settings
from portfolio_api.core.email import RetryingNotifier, render_contact_notification
from portfolio_api.core.errors import RateLimited, ValidationFailed
from portfolio_api.core.rate_limiter import _RateLimitBackend, get_rate_limiter
from portfolio_api.models import ContactMessage, ContactStatus
from portfolio_api.services.contact_validation import sanitize, validate
from workers.tasks.notification import send_contact_confirmation_task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContactSubmission:
    """A sanitized, validated submission; lives for one request."""

    name: str
    email: str
    subject: str
    message: str
    source_address: str
    received_at: datetime

    @property
    def email_domain(self) -> str:
        return self.email.rsplit("@", 1)[-1]


@dataclass(frozen=True)
class SubmissionResult:
    submission_id: str
    received_at: datetime


class ContactStore:
    """Optional persistence of accepted submissions."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def save(self, submission_id: str, submission: ContactSubmission) -> None:
        with self._session_factory() as session:
            session.add(
                ContactMessage(
                    id=UUID(hex=submission_id),
                    name=submission.name,
                    email=submission.email,
                    subject=submission.subject,
                    message=submission.message,
                    source_address=submission.source_address,
                    status=ContactStatus.NEW.value,
                    created_at=submission.received_at,
                )
            )
            session.commit()


class ContactService:
    """Validate, rate-limit and relay contact-form messages."""

    def __init__(
        self,
        notifier: Optional[RetryingNotifier] = None,
        rate_limiter: Optional[_RateLimitBackend] = None,
        store: Optional[ContactStore] = None,
        clock: Callable[[], float] = time.time,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
        recipient: Optional[str] = None,
        send_confirmation: Optional[bool] = None,
    ):
        self.notifier = notifier or RetryingNotifier.from_settings()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.store = store
        self.clock = clock
        self.limit = limit or settings.CONTACT_RATE_LIMIT
        self.window_seconds = window_seconds or settings.CONTACT_RATE_WINDOW_SECONDS
        self.recipient = recipient or settings.CONTACT_RECIPIENT
        self.send_confirmation = (
            settings.CONTACT_SEND_CONFIRMATION
            if send_confirmation is None
            else send_confirmation
        )

    @staticmethod
    def rate_limit_key(source_address: str) -> str:
        return f"contact:{source_address}"

    async def submit(self, raw_payload: Any, source_address: str) -> SubmissionResult:
        """
        Run one contact submission end to end.

        Raises:
            ValidationFailed: with every field error found.
            RateLimited: the source address is at its ceiling for the window.
            DispatchFailed: the notifier exhausted its retry budget. The
                rate-limit window keeps the request counted.
        """
        now = self.clock()
        received_at = datetime.fromtimestamp(now, tz=timezone.utc)

        if not isinstance(raw_payload, Mapping):
            raise ValidationFailed(validate(raw_payload))
        payload = sanitize(raw_payload)
        errors = validate(payload)
        if errors:
            logger.info(
                "Contact submission rejected fields=%s",
                ",".join(sorted({e.field for e in errors})),
                extra={"event": "contact_validation_failed"},
            )
            raise ValidationFailed(errors)

        # Check-and-record is atomic per key; nothing is held past this call
        decision = self.rate_limiter.hit(
            self.rate_limit_key(source_address),
            limit=self.limit,
            window_seconds=self.window_seconds,
            now=now,
        )
        if not decision.allowed:
            logger.warning(
                "Contact rate limit reached for %s retry_after=%s",
                source_address,
                decision.retry_after,
                extra={"event": "contact_rate_limited"},
            )
            raise RateLimited(decision.retry_after)

        submission = ContactSubmission(
            name=payload["name"],
            email=payload["email"],
            subject=payload["subject"],
            message=payload["message"],
            source_address=source_address,
            received_at=received_at,
        )
        submission_id = uuid4().hex

        mail_subject, text, html_body = render_contact_notification(
            submission_id=submission_id,
            name=submission.name,
            email=submission.email,
            subject=submission.subject,
            message=submission.message,
            received_at=received_at,
        )
        receipt = await self.notifier.send(
            recipient=self.recipient,
            subject=mail_subject,
            body_text=text,
            body_html=html_body,
            reply_to=submission.email,
        )

        await self._persist(submission_id, submission)
        await self._enqueue_confirmation(submission_id, submission)

        logger.info(
            "Contact submission accepted id=%s attempts=%s",
            submission_id,
            receipt.attempts,
            extra={
                "event": "contact_submission_accepted",
                "submission_id": submission_id,
                "email_domain": submission.email_domain,
                "rate_count": decision.count,
            },
        )
        return SubmissionResult(submission_id=submission_id, received_at=received_at)

    async def _persist(self, submission_id: str, submission: ContactSubmission) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.save, submission_id, submission)
        except Exception as exc:
            logger.error(
                "Contact persistence failed id=%s error=%s",
                submission_id,
                exc,
                extra={"event": "contact_persist_failed", "submission_id": submission_id},
            )

    async def _enqueue_confirmation(
        self, submission_id: str, submission: ContactSubmission
    ) -> None:
        if not self.send_confirmation:
            return
        try:
            # Broker publish is blocking I/O
            await asyncio.to_thread(
                send_contact_confirmation_task.delay,
                submission_id=submission_id,
                name=submission.name,
                email=submission.email,
                subject=submission.subject,
            )
        except Exception as exc:
            logger.warning(
                "Contact confirmation enqueue failed id=%s error=%s",
                submission_id,
                exc,
                extra={
                    "event": "contact_confirmation_enqueue_failed",
                    "submission_id": submission_id,
                    "email_domain": submission.email_domain,
                },
            )
