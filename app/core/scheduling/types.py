"""Domain types for availability and booking."""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import get_settings
from app.core.scheduling.errors import InvalidInput


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def load_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising InvalidInput for unknown zones."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidInput(f"Unknown timezone: {name!r}") from e


def parse_clock(value: str) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time of day."""
    try:
        return time.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise InvalidInput(f"Invalid time of day: {value!r}") from e


def format_clock(moment: datetime) -> str:
    """Render a 12-hour clock label, e.g. "9:00 AM"."""
    return moment.strftime("%I:%M %p").lstrip("0")


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return the UTC instants where a local calendar day starts and ends.

    DST days are 23 or 25 hours long; both bounds come from local midnight.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


@dataclass(frozen=True)
class Interval:
    """Half-open interval [start, end)."""

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Abutting intervals (end == start) do not overlap."""
        return self.start < end and self.end > start


@dataclass(frozen=True)
class BusinessHoursConfig:
    """Bookable hours for a tenant."""

    availability_start: time
    availability_end: time
    slot_duration_minutes: int
    timezone: str

    def __post_init__(self) -> None:
        if self.slot_duration_minutes <= 0:
            raise InvalidInput("slot_duration_minutes must be positive")
        if self.availability_start >= self.availability_end:
            raise InvalidInput("availability_start must be before availability_end")
        load_zone(self.timezone)

    @classmethod
    def from_strings(
        cls,
        start: str,
        end: str,
        slot_duration_minutes: int,
        timezone: str,
    ) -> "BusinessHoursConfig":
        """Create from stored "HH:MM" strings."""
        return cls(
            availability_start=parse_clock(start),
            availability_end=parse_clock(end),
            slot_duration_minutes=int(slot_duration_minutes),
            timezone=timezone,
        )

    @classmethod
    def defaults(cls) -> "BusinessHoursConfig":
        """Hours given to a tenant provisioned without explicit values."""
        settings = get_settings()
        return cls.from_strings(
            settings.default_availability_start,
            settings.default_availability_end,
            settings.default_slot_duration_minutes,
            settings.default_timezone,
        )

    @property
    def tz(self) -> ZoneInfo:
        return load_zone(self.timezone)

    def business_window(self, day: date) -> tuple[datetime, datetime]:
        """UTC instants for the start and end of business hours on a local day."""
        tz = self.tz
        start = datetime.combine(day, self.availability_start, tzinfo=tz)
        end = datetime.combine(day, self.availability_end, tzinfo=tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


@dataclass(frozen=True)
class CalendarSettings:
    """Per-tenant calendar configuration."""

    tenant_id: str
    business_hours: BusinessHoursConfig
    google_refresh_token: Optional[str] = None
    google_calendar_id: str = "primary"
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    is_active: bool = True

    @property
    def has_external_calendar(self) -> bool:
        """A linked calendar needs an active config and a refresh credential."""
        return self.is_active and bool(self.google_refresh_token)


class MeetingStatus(str, Enum):
    """Meeting status enumeration."""
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


@dataclass
class Meeting:
    """A booked meeting. Instants are stored in UTC."""

    tenant_id: str
    subject: str
    start_time: datetime
    end_time: datetime
    attendees: list[str] = field(default_factory=list)
    status: MeetingStatus = MeetingStatus.SCHEDULED
    description: Optional[str] = None
    external_event_id: Optional[str] = None
    join_link: Optional[str] = None
    channel: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status != MeetingStatus.CANCELLED

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.interval.overlaps(start, end)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "subject": self.subject,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "attendees": list(self.attendees),
            "status": self.status.value,
            "external_event_id": self.external_event_id,
            "join_link": self.join_link,
            "channel": self.channel,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Meeting":
        return cls(
            id=data.get("id"),
            tenant_id=data["tenant_id"],
            subject=data["subject"],
            description=data.get("description"),
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            attendees=list(data.get("attendees") or []),
            status=MeetingStatus(data.get("status", MeetingStatus.SCHEDULED.value)),
            external_event_id=data.get("external_event_id"),
            join_link=data.get("join_link"),
            channel=data.get("channel"),
        )


@dataclass(frozen=True)
class TimeSlot:
    """A bookable unit of business hours."""

    start_of_slot: datetime
    display_label: str
    available: bool
    duration_minutes: int = 30

    @property
    def end_of_slot(self) -> datetime:
        return self.start_of_slot + timedelta(minutes=self.duration_minutes)

    def to_dict(self) -> dict:
        return {
            "start_of_slot": self.start_of_slot.isoformat(),
            "end_of_slot": self.end_of_slot.isoformat(),
            "display_label": self.display_label,
            "available": self.available,
        }


@dataclass(frozen=True)
class ContactProfile:
    """What the tenant knows about the person on the other end."""

    tenant_id: str
    contact_identifier: str
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class ConversationContext:
    """Conversation facts supplied by the channel adapter."""

    contact_identifier: str
    contact_name: Optional[str] = None
    profile_email: Optional[str] = None
    conversation_text: str = ""
    channel: str = "chat"

    def with_profile(self, profile: Optional[ContactProfile]) -> "ConversationContext":
        """Fill name and email from a stored profile where the adapter gave none."""
        if profile is None:
            return self
        return replace(
            self,
            contact_name=self.contact_name or profile.name,
            profile_email=self.profile_email or profile.email,
        )


@dataclass
class SchedulingRequest:
    """Canonical booking request produced by the intent interpreter."""

    raw_intent_payload: Any
    resolved_start: datetime
    resolved_duration_minutes: int
    resolved_subject: str
    resolved_attendee_email: Optional[str] = None
    description: Optional[str] = None
    email_source: Optional[str] = None  # payload, conversation, profile
    defaulted_fields: set[str] = field(default_factory=set)

    @property
    def missing_info(self) -> bool:
        """Attendee email could not be resolved."""
        return self.resolved_attendee_email is None

    @property
    def resolved_end(self) -> datetime:
        return self.resolved_start + timedelta(minutes=self.resolved_duration_minutes)


@dataclass(frozen=True)
class NotASchedulingRequest:
    """Payload did not assert a scheduling intent."""

    reason: str = "no scheduling intent"


class BookingOutcome(str, Enum):
    """Terminal outcome of a booking attempt."""

    BOOKED_EXTERNAL = "booked-external"
    BOOKED_LOCAL_ONLY = "booked-local-only"
    REJECTED_CONFLICT = "rejected-conflict"
    REJECTED_MISSING_INFO = "rejected-missing-info"
    REJECTED_CALENDAR_ERROR = "rejected-calendar-error"

    @property
    def is_booked(self) -> bool:
        return self in (BookingOutcome.BOOKED_EXTERNAL, BookingOutcome.BOOKED_LOCAL_ONLY)


@dataclass
class BookingResult:
    """Result of a booking attempt, ready for delivery to the end user."""

    outcome: BookingOutcome
    user_message: str
    meeting: Optional[Meeting] = None
    duplicate_of: Optional[str] = None

    @property
    def booked(self) -> bool:
        return self.outcome.is_booked

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result: dict = {
            "outcome": self.outcome.value,
            "user_message": self.user_message,
        }
        if self.meeting:
            result["meeting"] = self.meeting.to_dict()
        if self.duplicate_of:
            result["duplicate_of"] = self.duplicate_of
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "BookingResult":
        meeting = data.get("meeting")
        return cls(
            outcome=BookingOutcome(data["outcome"]),
            user_message=data["user_message"],
            meeting=Meeting.from_dict(meeting) if meeting else None,
            duplicate_of=data.get("duplicate_of"),
        )
