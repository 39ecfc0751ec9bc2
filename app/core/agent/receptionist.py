"""
Receptionist Agent.

Answers a chat message with Claude and, when the reply asks for a meeting,
hands it to the BookingOrchestrator. The booking outcome message replaces
the model's text so the user hears what actually happened.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.config import get_settings
from app.core.agent.reply import PlainReply, SchedulingIntentReply, parse_assistant_reply
from app.core.scheduling.errors import InvalidInput
from app.core.scheduling.intent import INTENT_FLAG_RE
from app.core.scheduling.messages import GENERIC_APOLOGY
from app.core.scheduling.orchestrator import BookingOrchestrator, get_booking_orchestrator
from app.core.scheduling.store import TenantConfigRepository
from app.core.scheduling.types import (
    BookingResult,
    BusinessHoursConfig,
    ConversationContext,
    format_clock,
    utcnow,
)
from app.infra.claude import ClaudeClient, ClaudeClientError
from app.infra.storage import get_stores

logger = logging.getLogger(__name__)


RECEPTIONIST_SYSTEM_PROMPT = """You are the receptionist for a business. You answer questions briefly and warmly, and you book meetings.

CURRENT CONTEXT:
- Now: {now_local} ({timezone})
- Meetings can be booked between {hours_start} and {hours_end}
- Caller: {contact_name}
- Email on file: {profile_email}

RESPONSE FORMAT:
Always answer with exactly one JSON object and nothing else.

For normal conversation:
{{"kind": "reply", "message": "<what you say to the caller>"}}

When the caller wants to schedule a meeting:
{{"kind": "scheduling-intent", "message": "<short acknowledgement>", "date_time": "<ISO 8601 local time, e.g. 2024-01-16T14:30>", "email": "<caller email or null>", "subject": "<short subject or null>", "duration_minutes": <minutes or null>}}

RULES:
- Use null for anything the caller has not told you. Never invent an email address.
- Resolve relative dates like "tomorrow afternoon" against the current time above.
- Do not confirm a booking yourself; the system confirms it after checking the calendar."""

FALLBACK_MESSAGE = "I'm sorry, I'm having trouble right now. Could you say that again in a moment?"


@dataclass
class AgentResponse:
    """What the chat channel delivers back to the user."""

    message: str
    reply_kind: str
    booking: Optional[BookingResult] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result: dict = {"message": self.message, "reply_kind": self.reply_kind}
        if self.booking is not None:
            result["booking"] = self.booking.to_dict()
        return result


class ReceptionistAgent:
    """Claude-backed receptionist that can book meetings."""

    def __init__(
        self,
        config_repository: TenantConfigRepository,
        orchestrator: Optional[BookingOrchestrator] = None,
        claude_client: Optional[ClaudeClient] = None,
    ):
        self._config = config_repository
        self._orchestrator = orchestrator
        self._client = claude_client

    def _get_client(self) -> ClaudeClient:
        """Get Claude client, creating if necessary."""
        if self._client is None:
            self._client = ClaudeClient.get_instance()
        return self._client

    def _get_orchestrator(self) -> BookingOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = get_booking_orchestrator()
        return self._orchestrator

    async def build_system_prompt(self, tenant_id: str, context: ConversationContext) -> str:
        calendar_settings = await self._config.get_calendar_settings(tenant_id)
        hours = calendar_settings.business_hours if calendar_settings else BusinessHoursConfig.defaults()
        now_local = utcnow().astimezone(hours.tz)

        return RECEPTIONIST_SYSTEM_PROMPT.format(
            now_local=now_local.strftime("%A, %B %d, %Y %H:%M"),
            timezone=hours.timezone,
            hours_start=format_clock(now_local.replace(
                hour=hours.availability_start.hour, minute=hours.availability_start.minute
            )),
            hours_end=format_clock(now_local.replace(
                hour=hours.availability_end.hour, minute=hours.availability_end.minute
            )),
            contact_name=context.contact_name or "unknown",
            profile_email=context.profile_email or "none",
        )

    async def respond(
        self,
        tenant_id: str,
        message: str,
        context: ConversationContext,
        history: Optional[list[dict]] = None,
        idempotency_key: Optional[str] = None,
    ) -> AgentResponse:
        """
        Answer one user message.

        Args:
            tenant_id: Tenant identifier
            message: User's message
            context: Conversation facts (conversation_text should hold the message)
            history: Earlier turns in Anthropic format
            idempotency_key: Forwarded to the orchestrator for booking retries

        Returns:
            AgentResponse with the text to deliver and any booking result
        """
        profile = await self._config.get_contact_profile(tenant_id, context.contact_identifier)
        context = context.with_profile(profile)

        messages = list(history or [])
        messages.append({"role": "user", "content": message})

        try:
            completion = await self._get_client().generate(
                messages=messages,
                system_prompt=await self.build_system_prompt(tenant_id, context),
                max_tokens=get_settings().claude_max_tokens,
            )
        except ClaudeClientError as e:
            logger.exception(f"Receptionist completion failed for {tenant_id}: {e}")
            return AgentResponse(message=FALLBACK_MESSAGE, reply_kind="error")

        reply = parse_assistant_reply(completion.content)

        if isinstance(reply, SchedulingIntentReply):
            payload = reply
        elif INTENT_FLAG_RE.search(completion.content):
            # Legacy flag format; the interpreter scans the text itself
            payload = completion.content
        else:
            return AgentResponse(message=reply.message, reply_kind=reply.kind)

        try:
            booking = await self._get_orchestrator().handle_intent(
                tenant_id, payload, context, idempotency_key=idempotency_key
            )
        except InvalidInput as e:
            logger.error(f"Scheduling reply could not be booked for {tenant_id}: {e}")
            fallback = reply.message if isinstance(reply, PlainReply) else None
            return AgentResponse(message=fallback or GENERIC_APOLOGY, reply_kind="reply")

        return AgentResponse(
            message=booking.user_message,
            reply_kind="scheduling-intent",
            booking=booking,
        )


# Singleton
_agent: Optional[ReceptionistAgent] = None


def get_receptionist_agent() -> ReceptionistAgent:
    """Get singleton ReceptionistAgent."""
    global _agent
    if _agent is None:
        _agent = ReceptionistAgent(config_repository=get_stores().tenants)
    return _agent
