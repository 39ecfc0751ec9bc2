"""
Chat API Endpoint.

Conversational messages for the AI receptionist. When the reply asks for a
meeting the booking runs in the same request and its outcome is returned.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_tenant_id, receptionist_agent
from app.core.agent.receptionist import ReceptionistAgent
from app.core.scheduling.types import ConversationContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatTurn(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class ChatRequest(BaseModel):
    """Chat message request."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="User's message",
        examples=["Can we meet tomorrow at 2pm? My email is jane@example.com"],
    )
    contact_identifier: str = Field(
        ...,
        min_length=1,
        description="Phone number, chat id or email of the user",
    )
    contact_name: Optional[str] = None
    history: list[ChatTurn] = Field(default_factory=list, max_length=50)
    idempotency_key: Optional[str] = Field(default=None, max_length=200)


class ChatResponse(BaseModel):
    """Chat response."""

    message: str = Field(..., description="Text to deliver to the user")
    reply_kind: str = Field(..., description="reply, scheduling-intent or error")
    booking: Optional[dict] = Field(
        default=None,
        description="Booking result when a scheduling intent was handled",
    )
    processing_time_ms: Optional[float] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Send a message to the AI receptionist and get a response.",
)
async def chat(
    request: ChatRequest,
    tenant_id: str = Depends(get_tenant_id),
    agent: ReceptionistAgent = Depends(receptionist_agent),
) -> ChatResponse:
    """Answer a chat message, booking a meeting when asked to."""
    start_time = time.time()

    context = ConversationContext(
        contact_identifier=request.contact_identifier,
        contact_name=request.contact_name,
        conversation_text=request.message,
        channel="chat",
    )
    response = await agent.respond(
        tenant_id,
        request.message,
        context,
        history=[turn.model_dump() for turn in request.history],
        idempotency_key=request.idempotency_key,
    )

    return ChatResponse(
        **response.to_dict(),
        processing_time_ms=(time.time() - start_time) * 1000,
    )
