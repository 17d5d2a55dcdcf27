"""
=============================================================================
PORTFOLIO CONTACT API - ERROR HANDLING MODULE
=============================================================================
Error taxonomy for the contact service and the handlers that turn it into
HTTP responses.

- ValidationFailed -> 400, per-field reasons are safe to reveal
- RateLimited      -> 429, reveals only the retry delay
- DispatchFailed   -> 500, cause is logged and never returned
- anything else    -> 500, same generic body, traceback logged server-side

Usage:
    # In main.py
    from portfolio_api.core.errors import register_exception_handlers
    register_exception_handlers(app)
=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from portfolio_api.schemas.contact import (
    ErrorResponse,
    FieldErrorOut,
    RateLimitResponse,
    ValidationErrorResponse,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class ContactError(Exception):
    """Base class for contact submission failures."""


class ValidationFailed(ContactError):
    def __init__(self, errors: Sequence[FieldError]):
        self.errors: List[FieldError] = list(errors)
        super().__init__(", ".join(f"{e.field}: {e.message}" for e in self.errors))


class RateLimited(ContactError):
    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"rate limited, retry after {retry_after}s")


class DispatchFailed(ContactError):
    """Notification channel gave up after its retry budget."""


def validation_response(errors: Sequence[FieldError]) -> JSONResponse:
    body = ValidationErrorResponse(
        errors=[FieldErrorOut(field=e.field, message=e.message) for e in errors]
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump()
    )


def rate_limited_response(retry_after: int) -> JSONResponse:
    body = RateLimitResponse(retry_after=retry_after)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(by_alias=True),
        headers={"Retry-After": str(retry_after)},
    )


def internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse().model_dump(),
    )


def _field_from_loc(loc) -> str:
    parts = [str(p) for p in loc if p != "body"]
    return ".".join(parts) or "body"


def register_exception_handlers(app: FastAPI) -> None:
    """Register contact error handlers on the FastAPI app."""

    @app.exception_handler(ValidationFailed)
    async def validation_failed_handler(request: Request, exc: ValidationFailed):
        return validation_response(exc.errors)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ):
        errors = [
            FieldError(
                field=_field_from_loc(err.get("loc", ())),
                message=err.get("msg", "Invalid value"),
            )
            for err in exc.errors()
        ]
        return validation_response(errors)

    @app.exception_handler(RateLimited)
    async def rate_limited_handler(request: Request, exc: RateLimited):
        return rate_limited_response(exc.retry_after)

    @app.exception_handler(DispatchFailed)
    async def dispatch_failed_handler(request: Request, exc: DispatchFailed):
        logger.error(
            "Contact dispatch failed on %s %s: %r",
            request.method,
            request.url.path,
            exc.__cause__ or exc,
            extra={"event": "contact_dispatch_failed"},
        )
        return internal_error_response()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return internal_error_response()
