"""
Scheduling Module

Availability computation, conflict detection, scheduling intent
interpretation and booking orchestration for the AI receptionist.

Usage:
    from app.core.scheduling.availability import get_availability_computer
    from app.core.scheduling.orchestrator import get_booking_orchestrator

    slots = await get_availability_computer().compute_slots("clinic-123", "2024-01-15")

    result = await get_booking_orchestrator().handle_intent(
        tenant_id="clinic-123",
        payload=ai_reply,
        context=ConversationContext(contact_identifier="+15551234567"),
    )
    print(result.user_message)

Service modules are imported from their submodules; this package only
re-exports the leaf types so that infra adapters can depend on it freely.
"""

# Errors
from app.core.scheduling.errors import (
    GatewayError,
    GatewayReason,
    InvalidInput,
    InvalidInterval,
    LockUnavailable,
    MeetingOverlap,
    NotConfigured,
    NotSchedulingIntent,
    SchedulingError,
)

# Domain types
from app.core.scheduling.types import (
    BookingOutcome,
    BookingResult,
    BusinessHoursConfig,
    CalendarSettings,
    ContactProfile,
    ConversationContext,
    Interval,
    Meeting,
    MeetingStatus,
    NotASchedulingRequest,
    SchedulingRequest,
    TimeSlot,
)

__all__ = [
    # Errors
    "GatewayError",
    "GatewayReason",
    "InvalidInput",
    "InvalidInterval",
    "LockUnavailable",
    "MeetingOverlap",
    "NotConfigured",
    "NotSchedulingIntent",
    "SchedulingError",
    # Types
    "BookingOutcome",
    "BookingResult",
    "BusinessHoursConfig",
    "CalendarSettings",
    "ContactProfile",
    "ConversationContext",
    "Interval",
    "Meeting",
    "MeetingStatus",
    "NotASchedulingRequest",
    "SchedulingRequest",
    "TimeSlot",
]
