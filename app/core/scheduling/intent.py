"""
Scheduling Intent Interpreter.

Turns an AI reply that asserts "the user wants a meeting" into a canonical
SchedulingRequest:

1. Strict extraction of a structured record (pydantic-validated)
2. Per-field pattern extraction when no record validates
3. Defaults for whatever is still unresolved
"""

import json
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.config import get_settings
from app.core.scheduling.types import (
    ConversationContext,
    NotASchedulingRequest,
    SchedulingRequest,
    load_zone,
    utcnow,
)

logger = logging.getLogger(__name__)

INTENT_KIND = "scheduling-intent"
REPLY_KIND = "reply"

MAX_DURATION_MINUTES = 24 * 60

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Fallback patterns for replies whose JSON is truncated or malformed
INTENT_FLAG_RE = re.compile(r'"?(?:is_scheduling_request|schedule_meeting)"?\s*:\s*true', re.I)
INTENT_KIND_RE = re.compile(r'"?kind"?\s*:\s*"scheduling-intent"', re.I)
DATE_TIME_FIELD_RE = re.compile(r'date_?time"?\s*:\s*"([^"]+)"', re.I)
EMAIL_FIELD_RE = re.compile(r'email"?\s*:\s*"([^"]+)"', re.I)
SUBJECT_FIELD_RE = re.compile(r'subject"?\s*:\s*"([^"]+)"', re.I)
DURATION_FIELD_RE = re.compile(r'duration(?:_minutes)?"?\s*:\s*"?(\d+)', re.I)

InterpretResult = Union[SchedulingRequest, NotASchedulingRequest]


class SchedulingIntentPayload(BaseModel):
    """Structured scheduling hint embedded in an AI reply."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: Optional[str] = None
    is_scheduling_request: bool = False
    schedule_meeting: bool = False
    date_time: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("date_time", "datetime", "start")
    )
    email: Optional[str] = None
    subject: Optional[str] = None
    duration_minutes: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("duration_minutes", "duration")
    )
    description: Optional[str] = None
    message: Optional[str] = None

    @field_validator("date_time", mode="before")
    @classmethod
    def _coerce_date_time(cls, value: Any) -> Any:
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> Optional[int]:
        # Bad durations are defaulted later, not fatal to the record
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @property
    def asserts_intent(self) -> bool:
        return self.kind == INTENT_KIND or self.is_scheduling_request or self.schedule_meeting

    @property
    def is_plain_reply(self) -> bool:
        return self.kind == REPLY_KIND and not self.asserts_intent


def iter_json_objects(text: str):
    """Yield every JSON object embedded in free text, in order of appearance."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            obj, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(obj, dict):
            yield obj
        index = text.find("{", end)


def _validate(record: dict) -> Optional[SchedulingIntentPayload]:
    try:
        return SchedulingIntentPayload.model_validate(record)
    except ValidationError as e:
        logger.debug(f"Scheduling record failed validation: {e.error_count()} errors")
        return None


class SchedulingIntentInterpreter:
    """Normalizes AI scheduling hints into SchedulingRequests."""

    def __init__(
        self,
        default_duration_minutes: Optional[int] = None,
        default_hour: Optional[int] = None,
    ):
        settings = get_settings()
        self.default_duration_minutes = (
            default_duration_minutes or settings.default_meeting_duration_minutes
        )
        self.default_hour = default_hour if default_hour is not None else settings.default_meeting_hour

    def interpret(
        self,
        payload: Any,
        context: ConversationContext,
        timezone_name: Union[str, ZoneInfo],
        now: Optional[datetime] = None,
    ) -> InterpretResult:
        """
        Interpret an AI reply.

        Args:
            payload: AssistantReply (or any pydantic model), dict, or raw text
            context: Conversation facts from the channel adapter
            timezone_name: Tenant IANA zone used for naive and defaulted times
            now: Current instant (defaults to utcnow)

        Returns:
            SchedulingRequest, possibly flagged missing_info, or NotASchedulingRequest
        """
        tz = timezone_name if isinstance(timezone_name, ZoneInfo) else load_zone(timezone_name)
        now = now or utcnow()

        record = self._extract(payload)
        if isinstance(record, NotASchedulingRequest):
            logger.debug(f"Not a scheduling request: {record.reason}")
            return record

        return self._resolve(payload, record, context, tz, now)

    # -------------------------------------------------------------------------
    # Extraction
    # -------------------------------------------------------------------------

    def _extract(self, payload: Any) -> Union[SchedulingIntentPayload, NotASchedulingRequest]:
        if isinstance(payload, SchedulingIntentPayload):
            return payload if payload.asserts_intent else NotASchedulingRequest("record does not assert intent")

        if isinstance(payload, BaseModel):
            payload = payload.model_dump()

        if isinstance(payload, dict):
            record = _validate(payload)
            if record is not None:
                if record.asserts_intent:
                    return record
                return NotASchedulingRequest(
                    "plain reply" if record.is_plain_reply else "record does not assert intent"
                )
            return self._fallback(json.dumps(payload, default=str))

        if isinstance(payload, str):
            return self._extract_from_text(payload)

        return NotASchedulingRequest(f"unsupported payload type {type(payload).__name__}")

    def _extract_from_text(self, text: str) -> Union[SchedulingIntentPayload, NotASchedulingRequest]:
        saw_reply = False
        for obj in iter_json_objects(text):
            record = _validate(obj)
            if record is None:
                continue
            if record.asserts_intent:
                return record
            saw_reply = saw_reply or record.is_plain_reply

        if saw_reply:
            return NotASchedulingRequest("plain reply")
        return self._fallback(text)

    def _fallback(self, text: str) -> Union[SchedulingIntentPayload, NotASchedulingRequest]:
        """Pull each field out independently when no record validates."""
        if not (INTENT_FLAG_RE.search(text) or INTENT_KIND_RE.search(text)):
            return NotASchedulingRequest("no scheduling intent in text")

        logger.warning("Scheduling reply was not valid JSON; using pattern extraction")

        def field(pattern: re.Pattern) -> Optional[str]:
            match = pattern.search(text)
            return match.group(1).strip() if match else None

        duration = field(DURATION_FIELD_RE)
        return SchedulingIntentPayload(
            kind=INTENT_KIND,
            is_scheduling_request=True,
            date_time=field(DATE_TIME_FIELD_RE),
            email=field(EMAIL_FIELD_RE),
            subject=field(SUBJECT_FIELD_RE),
            duration_minutes=int(duration) if duration else None,
        )

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _resolve(
        self,
        raw: Any,
        record: SchedulingIntentPayload,
        context: ConversationContext,
        tz: ZoneInfo,
        now: datetime,
    ) -> SchedulingRequest:
        defaulted: set[str] = set()

        start = self._resolve_start(record.date_time, tz, now)
        if start is None:
            start = self.default_start(tz, now)
            defaulted.add("start")

        duration = record.duration_minutes
        if duration is None or not 1 <= duration <= MAX_DURATION_MINUTES:
            duration = self.default_duration_minutes
            defaulted.add("duration_minutes")

        subject = (record.subject or "").strip()
        if not subject:
            subject = f"Meeting with {context.contact_name or context.contact_identifier}"
            defaulted.add("subject")

        email, source = self._resolve_email(record.email, context)

        request = SchedulingRequest(
            raw_intent_payload=raw,
            resolved_start=start,
            resolved_duration_minutes=duration,
            resolved_subject=subject,
            resolved_attendee_email=email,
            description=record.description,
            email_source=source,
            defaulted_fields=defaulted,
        )
        logger.debug(
            f"Interpreted scheduling request for {context.contact_identifier}: "
            f"start={start.isoformat()} duration={duration} email_source={source} "
            f"defaulted={sorted(defaulted)}"
        )
        return request

    def default_start(self, tz: ZoneInfo, now: datetime) -> datetime:
        """Tomorrow at the default hour, tenant-local, as a UTC instant."""
        tomorrow = now.astimezone(tz).date() + timedelta(days=1)
        local = datetime.combine(tomorrow, time(hour=self.default_hour), tzinfo=tz)
        return local.astimezone(timezone.utc)

    def _resolve_start(self, value: Optional[str], tz: ZoneInfo, now: datetime) -> Optional[datetime]:
        """Parse a start value; None when missing, unparseable or not in the future."""
        if not value:
            return None
        value = value.strip()

        try:
            if DATE_ONLY_RE.match(value):
                day = date.fromisoformat(value)
                parsed = datetime.combine(day, time(hour=self.default_hour), tzinfo=tz)
            else:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=tz)
            parsed = parsed.astimezone(timezone.utc)
            # The longest meeting must still end, in tenant time, inside the datetime range
            (parsed + timedelta(minutes=MAX_DURATION_MINUTES)).astimezone(tz)
            parsed.astimezone(tz)
        except (ValueError, OverflowError):
            logger.debug(f"Unparseable meeting time {value!r}; using default")
            return None

        if parsed <= now:
            logger.debug(f"Meeting time {value!r} is in the past; using default")
            return None
        return parsed

    @staticmethod
    def _resolve_email(
        payload_email: Optional[str],
        context: ConversationContext,
    ) -> tuple[Optional[str], Optional[str]]:
        """Payload email, then one found in the conversation, then the profile."""
        if payload_email and EMAIL_RE.fullmatch(payload_email.strip()):
            return payload_email.strip(), "payload"

        match = EMAIL_RE.search(context.conversation_text or "")
        if match:
            return match.group(0), "conversation"

        if context.profile_email:
            return context.profile_email, "profile"

        return None, None
