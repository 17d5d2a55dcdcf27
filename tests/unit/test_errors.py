"""Tests for the error taxonomy and its HTTP mapping."""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from portfolio_api.core.errors import (
    DispatchFailed,
    FieldError,
    RateLimited,
    ValidationFailed,
    register_exception_handlers,
)

GENERIC_500 = {
    "success": False,
    "message": "An error occurred while processing your request. Please try again later.",
}


class _Item(BaseModel):
    name: str


@pytest.fixture()
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.post("/typed")
    async def typed(item: _Item):
        return {"ok": True}

    @app.get("/invalid")
    async def invalid():
        raise ValidationFailed([FieldError("email", "Please provide a valid email address")])

    @app.get("/limited")
    async def limited():
        raise RateLimited(42)

    @app.get("/dispatch")
    async def dispatch():
        try:
            raise ConnectionRefusedError("smtp.internal.example:587")
        except ConnectionRefusedError as exc:
            raise DispatchFailed("not delivered") from exc

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def test_validation_failed_maps_to_400(client):
    resp = client.get("/invalid")

    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "message": "Validation error",
        "errors": [{"field": "email", "message": "Please provide a valid email address"}],
    }


def test_framework_validation_uses_same_shape(client):
    resp = client.post("/typed", json={})

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Validation error"
    assert body["errors"][0]["field"] == "name"


def test_rate_limited_maps_to_429(client):
    resp = client.get("/limited")

    assert resp.status_code == 429
    assert resp.json() == {
        "success": False,
        "message": "Too many requests. Please try again later.",
        "retryAfter": 42,
    }
    assert resp.headers["Retry-After"] == "42"


def test_dispatch_failure_hides_cause(client, caplog):
    caplog.set_level("ERROR", logger="portfolio_api.core.errors")

    resp = client.get("/dispatch")

    assert resp.status_code == 500
    assert resp.json() == GENERIC_500
    assert "smtp" not in resp.text
    assert "ConnectionRefusedError" in caplog.text


def test_unhandled_exception_returns_generic_500(client):
    resp = client.get("/boom")

    assert resp.status_code == 500
    assert resp.json() == GENERIC_500
    assert "secret internals" not in resp.text


def test_validation_failed_message_lists_fields():
    exc = ValidationFailed([FieldError("name", "Name is required")])
    assert str(exc) == "name: Name is required"
    assert exc.errors == [FieldError("name", "Name is required")]
