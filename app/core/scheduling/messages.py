"""User-facing booking messages. Delivered verbatim to the caller's channel."""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.scheduling.types import format_clock

MISSING_EMAIL = (
    "I'd be happy to schedule a meeting for you, but I'll need your email "
    "address first. Could you please provide it?"
)

CALENDAR_ERROR = (
    "I'm sorry, I ran into a problem with our calendar system and couldn't "
    "book your meeting. Please try again in a few minutes."
)

GENERIC_APOLOGY = (
    "I'm sorry, I'm unable to schedule meetings right now. Our team has been "
    "notified; please try again later."
)


def format_meeting_time(start: datetime, tz: ZoneInfo) -> str:
    """Render an instant as "Tuesday, January 16 at 3:00 PM (EST)" in the tenant zone."""
    local = start.astimezone(tz)
    return f"{local.strftime('%A, %B')} {local.day} at {format_clock(local)} ({local.tzname()})"


def conflict(start: datetime, tz: ZoneInfo) -> str:
    return (
        f"I'm sorry, but {format_meeting_time(start, tz)} is already taken. "
        f"Would you like to pick another time?"
    )


def confirmed(start: datetime, tz: ZoneInfo, join_link: Optional[str] = None) -> str:
    message = f"I've scheduled your meeting for {format_meeting_time(start, tz)}."
    if join_link:
        message += f" You can join with this link: {join_link}"
    return message
