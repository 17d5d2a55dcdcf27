"""
Contact form endpoint.

Public endpoint that receives the portfolio contact form and relays it to
the site owner by email.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, Request, status

from portfolio_api.core.rate_limiter import get_client_ip
from portfolio_api.db.session import session_factory_from_settings
from portfolio_api.schemas.contact import (
    CONTACT_ERROR_RESPONSES,
    ContactData,
    ContactRequest,
    ContactSuccessResponse,
)
from portfolio_api.services.contact_service import ContactService, ContactStore

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache
def get_contact_service() -> ContactService:
    """Return the process-wide contact service."""
    session_factory = session_factory_from_settings()
    store = ContactStore(session_factory) if session_factory is not None else None
    return ContactService(store=store)


@router.post(
    "/contact",
    response_model=ContactSuccessResponse,
    status_code=status.HTTP_200_OK,
    responses=CONTACT_ERROR_RESPONSES,
    summary="Send a contact message",
    description="Validates, rate-limits and forwards a contact-form message.",
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {
                "application/json": {"schema": ContactRequest.model_json_schema()}
            },
        }
    },
)
async def submit_contact(
    request: Request,
    service: ContactService = Depends(get_contact_service),
) -> ContactSuccessResponse:
    """Accept one contact-form submission."""
    try:
        payload = await request.json()
    except ValueError:
        # Undecodable body; validation reports it as a body error
        payload = None

    result = await service.submit(payload, source_address=get_client_ip(request))

    return ContactSuccessResponse(
        data=ContactData(id=result.submission_id, timestamp=result.received_at)
    )
