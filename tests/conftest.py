import os

# Minimal environment setup (before the app reads its settings)
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("ALLOWED_ORIGINS", '["http://localhost:8000"]')
os.environ.setdefault("CONTACT_RECIPIENT", "owner@portfolio.example.com")

from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from portfolio_api.api.contact import get_contact_service
from portfolio_api.core.email import DeliveryError, DeliveryReceipt, RetryingNotifier
from portfolio_api.core.rate_limiter import get_rate_limiter, reset_rate_limiter_state
from portfolio_api.main import app
from portfolio_api.services.contact_service import ContactService

VALID_PAYLOAD = {
    "name": "Jane Doe",
    "email": "jane@example.com",
    "subject": "Hello there",
    "message": "This is a test message.",
}


class FakeChannel:
    """Notification channel double; fails the first ``failures`` sends."""

    def __init__(self, failures: int = 0, error: Optional[Exception] = None):
        self.failures = failures
        self.error = error or DeliveryError("smtp.internal.example:587 connection refused")
        self.calls = 0
        self.sent: List[dict] = []

    async def send(self, recipient, subject, body_text, body_html=None, reply_to=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        self.sent.append(
            {
                "recipient": recipient,
                "subject": subject,
                "body_text": body_text,
                "body_html": body_html,
                "reply_to": reply_to,
            }
        )
        return DeliveryReceipt(message_id=f"<{self.calls}@test>", recipient=recipient)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_limiter():
    """Reset rate limiter state before and after each test."""
    reset_rate_limiter_state()
    yield
    reset_rate_limiter_state()


@pytest.fixture()
def channel():
    return FakeChannel()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_service(clock):
    def _make(channel, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("rate_limiter", get_rate_limiter())
        kwargs.setdefault("send_confirmation", False)
        notifier = RetryingNotifier(channel, max_attempts=3, base_delay=0)
        return ContactService(notifier=notifier, **kwargs)

    return _make


@pytest.fixture()
def service(make_service, channel):
    return make_service(channel)


@pytest.fixture()
def client(service):
    """TestClient with the contact service swapped for one using FakeChannel."""
    app.dependency_overrides[get_contact_service] = lambda: service

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def valid_payload():
    return dict(VALID_PAYLOAD)


@pytest.fixture()
def channel_factory():
    return FakeChannel
