"""Tests for the notification channel, retry policy and message rendering."""
import asyncio
import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from pydantic import SecretStr

from portfolio_api.core.config import settings
from portfolio_api.core.email import (
    DeliveryError,
    RetryingNotifier,
    SmtpNotificationChannel,
    _send_email_sync,
    build_email_message,
    render_contact_notification,
)
from portfolio_api.core.errors import DispatchFailed

SEND_ARGS = {
    "recipient": "owner@portfolio.example.com",
    "subject": "[Portfolio] Hello there",
    "body_text": "Hello",
}


class _RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class _SlowChannel:
    def __init__(self):
        self.calls = 0

    async def send(self, **kwargs):
        self.calls += 1
        await asyncio.sleep(1)


# =============================================================================
# RetryingNotifier
# =============================================================================


@pytest.mark.asyncio
async def test_retry_recovers_after_transient_failures(channel_factory):
    channel = channel_factory(failures=2)
    sleep = _RecordingSleep()
    notifier = RetryingNotifier(channel, max_attempts=3, base_delay=0.5, sleep=sleep)

    receipt = await notifier.send(**SEND_ARGS)

    assert receipt.attempts == 3
    assert channel.calls == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_first_attempt_success_does_not_sleep(channel_factory):
    channel = channel_factory()
    sleep = _RecordingSleep()
    notifier = RetryingNotifier(channel, sleep=sleep)

    receipt = await notifier.send(**SEND_ARGS)

    assert receipt.attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_exhausted_budget_raises_dispatch_failed(channel_factory):
    channel = channel_factory(failures=10)
    sleep = _RecordingSleep()
    notifier = RetryingNotifier(channel, max_attempts=3, base_delay=1.0, sleep=sleep)

    with pytest.raises(DispatchFailed) as exc_info:
        await notifier.send(**SEND_ARGS)

    assert channel.calls == 3
    # No pause after the final attempt
    assert sleep.delays == [1.0, 2.0]
    assert isinstance(exc_info.value.__cause__, DeliveryError)


@pytest.mark.asyncio
async def test_attempt_timeout_counts_as_failure():
    channel = _SlowChannel()
    notifier = RetryingNotifier(
        channel, max_attempts=2, base_delay=0, timeout=0.01, sleep=_RecordingSleep()
    )

    with pytest.raises(DispatchFailed) as exc_info:
        await notifier.send(**SEND_ARGS)

    assert channel.calls == 2
    assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_non_delivery_errors_are_not_retried(channel_factory):
    channel = channel_factory(failures=10, error=ValueError("bad header"))
    sleep = _RecordingSleep()
    notifier = RetryingNotifier(channel, max_attempts=3, base_delay=1.0, sleep=sleep)

    with pytest.raises(DispatchFailed) as exc_info:
        await notifier.send(**SEND_ARGS)

    assert channel.calls == 1
    assert sleep.delays == []
    assert exc_info.value.__cause__ is channel.error


def test_max_attempts_must_be_positive(channel):
    with pytest.raises(ValueError):
        RetryingNotifier(channel, max_attempts=0)


def test_from_settings_uses_dispatch_settings(channel):
    notifier = RetryingNotifier.from_settings(channel)

    assert notifier.channel is channel
    assert notifier.max_attempts == settings.CONTACT_DISPATCH_MAX_ATTEMPTS
    assert notifier.base_delay == settings.CONTACT_DISPATCH_BACKOFF_SECONDS
    assert notifier.timeout == settings.CONTACT_DISPATCH_TIMEOUT_SECONDS


# =============================================================================
# SMTP channel
# =============================================================================


def test_build_email_message_headers():
    msg = build_email_message(
        "owner@portfolio.example.com",
        "Subject line",
        "plain body",
        body_html="<p>html body</p>",
        reply_to="jane@example.com",
    )

    assert msg["To"] == "owner@portfolio.example.com"
    assert msg["Reply-To"] == "jane@example.com"
    assert msg["From"] == settings.SMTP_FROM
    assert msg["Message-ID"]
    assert msg.get_body(("plain",)).get_content().strip() == "plain body"
    assert "html body" in msg.get_body(("html",)).get_content()


def test_build_email_message_folds_subject_onto_one_line():
    msg = build_email_message("a@example.com", "Hello\r\nthere\n friend", "b")

    assert msg["Subject"] == "Hello there friend"


def test_smtp_timeout_is_below_attempt_timeout():
    assert settings.SMTP_TIMEOUT_SECONDS < settings.CONTACT_DISPATCH_TIMEOUT_SECONDS


def test_send_without_smtp_host_raises_delivery_error(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", None)

    with pytest.raises(DeliveryError):
        _send_email_sync(build_email_message("a@example.com", "s", "b"))


def test_send_uses_starttls_and_login(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "SMTP_USER", "mailer")
    monkeypatch.setattr(settings, "SMTP_PASSWORD", SecretStr("s3cret"))
    message = build_email_message("a@example.com", "s", "b")

    with patch("portfolio_api.core.email.smtplib.SMTP") as smtp_cls:
        _send_email_sync(message)

    server = smtp_cls.return_value.__enter__.return_value
    smtp_cls.assert_called_once_with(
        "smtp.example.com", settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS
    )
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("mailer", "s3cret")
    server.send_message.assert_called_once_with(message)


def test_smtp_errors_become_delivery_errors(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
    message = build_email_message("a@example.com", "s", "b")

    with patch(
        "portfolio_api.core.email.smtplib.SMTP",
        side_effect=smtplib.SMTPConnectError(421, "busy"),
    ):
        with pytest.raises(DeliveryError) as exc_info:
            _send_email_sync(message)

    assert isinstance(exc_info.value.__cause__, smtplib.SMTPConnectError)


@pytest.mark.asyncio
async def test_smtp_channel_returns_receipt(monkeypatch):
    sent = MagicMock()
    monkeypatch.setattr("portfolio_api.core.email._send_email_sync", sent)

    receipt = await SmtpNotificationChannel().send(**SEND_ARGS)

    sent.assert_called_once()
    assert receipt.recipient == SEND_ARGS["recipient"]
    assert receipt.message_id == sent.call_args.args[0]["Message-ID"]


# =============================================================================
# Rendering
# =============================================================================


def test_render_contact_notification():
    received_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    subject, text, html_body = render_contact_notification(
        submission_id="abc123",
        name="Jane Doe",
        email="jane@example.com",
        subject="Hello there",
        message="Line one\nLine two & more",
        received_at=received_at,
    )

    assert subject == "[Portfolio] Hello there"
    assert "Name: Jane Doe" in text
    assert "Email: jane@example.com" in text
    assert "ID: abc123" in text
    assert "2026-01-02T03:04:05+00:00" in text
    assert "Line one<br>Line two &amp; more" in html_body


def test_render_escapes_html_in_user_text():
    _, _, html_body = render_contact_notification(
        submission_id="abc123",
        name="Jane Doe",
        email="jane@example.com",
        subject='Quote " and a < b',
        message="1 < 2 && 3 > 2",
        received_at=datetime.now(timezone.utc),
    )

    assert "1 &lt; 2 &amp;&amp; 3 &gt; 2" in html_body
    assert "a &lt; b" in html_body
    assert "&quot;" in html_body
