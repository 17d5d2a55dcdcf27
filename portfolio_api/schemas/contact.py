"""
Wire schemas for the contact endpoint.

Every body carries a top-level ``success`` flag and a human-readable
``message``; field errors and retry seconds are additive.
"""
from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

MESSAGE_SENT = "Message sent successfully"
MESSAGE_VALIDATION = "Validation error"
MESSAGE_RATE_LIMITED = "Too many requests. Please try again later."
MESSAGE_INTERNAL = (
    "An error occurred while processing your request. Please try again later."
)


class ContactRequest(BaseModel):
    """Documented request shape (the endpoint validates the raw body itself)."""

    name: str = Field(..., min_length=2, max_length=100, examples=["Jane Doe"])
    email: str = Field(..., max_length=254, examples=["jane@example.com"])
    subject: str = Field(..., min_length=5, max_length=200, examples=["Hello there"])
    message: str = Field(
        ..., min_length=10, max_length=2000, examples=["This is a test message."]
    )


class ContactData(BaseModel):
    id: str
    timestamp: datetime


class ContactSuccessResponse(BaseModel):
    success: bool = True
    message: str = MESSAGE_SENT
    data: ContactData


class FieldErrorOut(BaseModel):
    field: str
    message: str


class ValidationErrorResponse(BaseModel):
    success: bool = False
    message: str = MESSAGE_VALIDATION
    errors: List[FieldErrorOut]


class RateLimitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    message: str = MESSAGE_RATE_LIMITED
    retry_after: int = Field(..., alias="retryAfter", description="Seconds until a retry is accepted")


class ErrorResponse(BaseModel):
    success: bool = False
    message: str = MESSAGE_INTERNAL


CONTACT_ERROR_RESPONSES = {
    400: {"model": ValidationErrorResponse, "description": "Validation error"},
    429: {"model": RateLimitResponse, "description": "Rate limit exceeded"},
    500: {"model": ErrorResponse, "description": "Internal error"},
}
