"""
Booking API Endpoint.

Turns a scheduling intent from a channel adapter into a meeting. Not safe
to blindly retry unless the caller sends an idempotency key.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from app.api.dependencies import booking_orchestrator, get_tenant_id
from app.core.scheduling.errors import NotSchedulingIntent
from app.core.scheduling.orchestrator import BookingOrchestrator
from app.core.scheduling.types import ConversationContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/booking", tags=["Booking"])


class ConversationContextModel(BaseModel):
    """Conversation facts known to the channel adapter."""

    contact_identifier: str = Field(
        ...,
        min_length=1,
        description="Phone number, chat id or email of the counterpart",
        examples=["+15551234567"],
    )
    contact_name: Optional[str] = None
    profile_email: Optional[str] = None
    conversation_text: str = Field(default="", max_length=20000)
    channel: str = Field(default="chat", examples=["chat", "whatsapp", "call", "email"])

    def to_context(self) -> ConversationContext:
        return ConversationContext(**self.model_dump())


class BookingRequest(BaseModel):
    """Booking request from a channel adapter."""

    intent_payload: Any = Field(
        ...,
        description="AI reply: structured record or raw text asserting a scheduling intent",
    )
    conversation_context: ConversationContextModel
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Client key that deduplicates retries",
    )


class BookingResponse(BaseModel):
    """Booking outcome."""

    outcome: str = Field(..., examples=["booked-external"])
    user_message: str
    meeting: Optional[dict] = None
    duplicate_of: Optional[str] = None


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    summary="Book a meeting from a scheduling intent",
    responses={
        422: {"description": "Payload is not a scheduling intent"},
    },
)
async def create_booking(
    request: BookingRequest,
    tenant_id: str = Depends(get_tenant_id),
    idempotency_header: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    orchestrator: BookingOrchestrator = Depends(booking_orchestrator),
) -> BookingResponse:
    """
    Interpret and book.

    Every outcome, including conflicts and missing info, is a 200 with the
    message to deliver verbatim to the end user.
    """
    try:
        result = await orchestrator.handle_intent(
            tenant_id,
            request.intent_payload,
            request.conversation_context.to_context(),
            idempotency_key=request.idempotency_key or idempotency_header,
        )
    except NotSchedulingIntent as e:
        logger.warning(f"Booking payload rejected for {tenant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    return BookingResponse.model_validate(result.to_dict())
