"""
Booking Orchestrator.

Drives a scheduling request from interpretation to a committed meeting:

    Received -> Validated -> [ExternalAttempt -> ExternalOk | ExternalFailed]
             -> LocalPersist -> Confirmed

Any step may end in Rejected (missing info, conflict, calendar error).
The meeting is always persisted locally, so an external calendar outage
degrades a booking to local-only instead of losing it.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Optional

from app.config import get_settings
from app.core.scheduling import messages
from app.core.scheduling.availability import BackendFactory
from app.core.scheduling.calendar_backend import (
    CalendarBackend,
    CalendarEvent,
    CreatedEvent,
    get_calendar_backend_factory,
)
from app.core.scheduling.conflicts import ConflictResolver, validate_interval
from app.core.scheduling.errors import (
    GatewayError,
    GatewayReason,
    LockUnavailable,
    MeetingOverlap,
    NotConfigured,
    NotSchedulingIntent,
)
from app.core.scheduling.idempotency import Duplicate, IdempotencyStore
from app.core.scheduling.intent import SchedulingIntentInterpreter
from app.core.scheduling.locks import TenantBookingLock
from app.core.scheduling.store import ActivityLog, MeetingStore, TenantConfigRepository
from app.core.scheduling.types import (
    BookingOutcome,
    BookingResult,
    CalendarSettings,
    ConversationContext,
    Meeting,
    NotASchedulingRequest,
    SchedulingRequest,
)
from app.infra.notifications import NotificationService, get_notification_service
from app.infra.storage import get_stores

logger = logging.getLogger(__name__)


class BookingOrchestrator:
    """
    Commits scheduling requests as meetings.

    Flow:
    1. Reject when no attendee email is known
    2. Under the tenant lock: replay idempotent repeats, reject conflicts
    3. Mirror to the external calendar when linked (failure is not fatal)
    4. Persist locally and confirm
    """

    def __init__(
        self,
        meeting_store: MeetingStore,
        config_repository: TenantConfigRepository,
        conflict_resolver: Optional[ConflictResolver] = None,
        backend_factory: Optional[BackendFactory] = None,
        lock: Optional[TenantBookingLock] = None,
        idempotency: Optional[IdempotencyStore] = None,
        notifications: Optional[NotificationService] = None,
        activity_log: Optional[ActivityLog] = None,
        interpreter: Optional[SchedulingIntentInterpreter] = None,
        gateway_timeout: Optional[float] = None,
    ):
        """Initialize orchestrator.

        Args:
            meeting_store: Local meeting persistence
            config_repository: Tenant settings and contact profiles
            conflict_resolver: Overlap checks (defaults to one over meeting_store)
            backend_factory: Picks the calendar backend for a tenant
            lock: Per-tenant booking lock
            idempotency: Replay store for repeated submissions
            notifications: Confirmation email sender (None disables email)
            activity_log: Operator activity trail
            interpreter: Intent interpreter used by handle_intent
            gateway_timeout: Upper bound for event creation in seconds
        """
        self._meetings = meeting_store
        self._config = config_repository
        self._conflicts = conflict_resolver or ConflictResolver(meeting_store)
        self._backend_factory = backend_factory or get_calendar_backend_factory().for_tenant
        self._lock = lock or TenantBookingLock()
        self._idempotency = idempotency or IdempotencyStore()
        self._notifications = notifications
        self._activity = activity_log
        self._interpreter = interpreter or SchedulingIntentInterpreter()
        self._timeout = gateway_timeout or get_settings().calendar_timeout_seconds

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def handle_intent(
        self,
        tenant_id: str,
        payload: Any,
        context: ConversationContext,
        idempotency_key: Optional[str] = None,
    ) -> BookingResult:
        """
        Interpret an AI reply and book the meeting it asks for.

        Args:
            tenant_id: Tenant identifier
            payload: AssistantReply, dict or raw text
            context: Conversation facts from the channel adapter
            idempotency_key: Optional client key deduplicating retries

        Returns:
            BookingResult with the message to deliver

        Raises:
            NotSchedulingIntent: Payload does not assert a scheduling intent
        """
        try:
            calendar_settings = await self._config.get_calendar_settings(tenant_id)
            problem = None if calendar_settings else "missing"
        except NotConfigured as e:
            calendar_settings, problem = None, str(e)

        if calendar_settings is None:
            # Admin problem: operators get the details, the user an apology
            logger.error(f"Booking attempted for {tenant_id} without usable calendar settings: {problem}")
            await self._record(tenant_id, "calendar_not_configured", {"problem": problem}, severity="error")
            return BookingResult(
                outcome=BookingOutcome.REJECTED_CALENDAR_ERROR,
                user_message=messages.GENERIC_APOLOGY,
            )

        profile = await self._config.get_contact_profile(tenant_id, context.contact_identifier)
        had_profile_email = bool(profile and profile.email)
        context = context.with_profile(profile)

        request = self._interpreter.interpret(
            payload, context, calendar_settings.business_hours.timezone
        )
        if isinstance(request, NotASchedulingRequest):
            raise NotSchedulingIntent(f"Payload is not a scheduling request: {request.reason}")

        result = await self.book(
            tenant_id,
            request,
            calendar_settings,
            idempotency_key=idempotency_key,
            channel=context.channel,
        )

        if result.booked and not had_profile_email and request.email_source in ("payload", "conversation"):
            await self._backfill_email(tenant_id, context.contact_identifier, request.resolved_attendee_email)

        return result

    async def book(
        self,
        tenant_id: str,
        request: SchedulingRequest,
        calendar_settings: CalendarSettings,
        idempotency_key: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> BookingResult:
        """
        Book a resolved request.

        Args:
            tenant_id: Tenant identifier
            request: Output of the intent interpreter
            calendar_settings: Tenant settings (zone and calendar link)
            idempotency_key: Optional client key deduplicating retries
            channel: Originating channel, stored on the meeting

        Returns:
            BookingResult; never raises for gateway or persistence failures

        Raises:
            InvalidInterval: Resolved window is empty or inverted
        """
        if request.missing_info:
            logger.info(f"Booking for {tenant_id} needs an attendee email")
            return BookingResult(
                outcome=BookingOutcome.REJECTED_MISSING_INFO,
                user_message=messages.MISSING_EMAIL,
            )

        validate_interval(request.resolved_start, request.resolved_end)
        backend = self._backend_factory(calendar_settings)

        try:
            async with self._lock.hold(tenant_id):
                if idempotency_key:
                    status = await self._idempotency.check(tenant_id, idempotency_key)
                    if isinstance(status, Duplicate):
                        logger.info(f"Replaying booking {status.booking_id} for key {idempotency_key}")
                        return replace(status.result, duplicate_of=status.booking_id)

                result = await self._commit(tenant_id, request, calendar_settings, backend, channel)

                if idempotency_key and result.booked:
                    await self._idempotency.remember(tenant_id, idempotency_key, result)
        except LockUnavailable as e:
            logger.error(f"Booking lock unavailable for {tenant_id}: {e}")
            await self._record(tenant_id, "booking_lock_timeout", {"error": str(e)}, severity="error")
            return BookingResult(
                outcome=BookingOutcome.REJECTED_CALENDAR_ERROR,
                user_message=messages.CALENDAR_ERROR,
            )

        if result.booked:
            await self._send_confirmation(result.meeting, calendar_settings)
        return result

    # -------------------------------------------------------------------------
    # Commit (runs under the tenant lock)
    # -------------------------------------------------------------------------

    async def _commit(
        self,
        tenant_id: str,
        request: SchedulingRequest,
        calendar_settings: CalendarSettings,
        backend: CalendarBackend,
        channel: Optional[str],
    ) -> BookingResult:
        start, end = request.resolved_start, request.resolved_end
        tz = calendar_settings.business_hours.tz

        # Local state first so a conflict never costs an external write
        conflict = await self._conflicts.has_local_conflict(tenant_id, start, end)
        if not conflict and backend.is_external:
            conflict = await self._conflicts.has_external_conflict(tenant_id, start, end, backend)
        if conflict:
            logger.info(f"Booking conflict for {tenant_id} at {start.isoformat()}")
            return BookingResult(
                outcome=BookingOutcome.REJECTED_CONFLICT,
                user_message=messages.conflict(start, tz),
            )

        meeting = Meeting(
            tenant_id=tenant_id,
            subject=request.resolved_subject,
            description=request.description,
            start_time=start,
            end_time=end,
            attendees=[request.resolved_attendee_email],
            channel=channel,
        )

        outcome = BookingOutcome.BOOKED_LOCAL_ONLY
        if backend.is_external:
            created = await self._create_external_event(tenant_id, meeting, calendar_settings, backend)
            if created is not None:
                meeting.external_event_id = created.external_event_id
                meeting.join_link = created.join_link
                outcome = BookingOutcome.BOOKED_EXTERNAL

        try:
            stored = await self._meetings.create(meeting)
        except MeetingOverlap as e:
            # Another worker committed first; only reachable without the Redis lock
            logger.error(f"Overlap detected at commit for {tenant_id}: {e}")
            await self._record(
                tenant_id,
                "meeting_overlap_at_commit",
                {"start_time": start.isoformat(), "external_event_id": meeting.external_event_id},
                severity="error",
            )
            return BookingResult(
                outcome=BookingOutcome.REJECTED_CONFLICT,
                user_message=messages.conflict(start, tz),
            )
        except Exception as e:
            logger.exception(f"Failed to persist meeting for {tenant_id}: {e}")
            await self._record(
                tenant_id,
                "meeting_persist_failed",
                {"start_time": start.isoformat(), "external_event_id": meeting.external_event_id},
                severity="error",
            )
            return BookingResult(
                outcome=BookingOutcome.REJECTED_CALENDAR_ERROR,
                user_message=messages.CALENDAR_ERROR,
            )

        logger.info(f"Meeting {stored.id} booked for {tenant_id} ({outcome.value})")
        await self._record(
            tenant_id,
            "meeting_booked",
            {
                "meeting_id": stored.id,
                "outcome": outcome.value,
                "start_time": stored.start_time.isoformat(),
                "external_event_id": stored.external_event_id,
            },
        )
        return BookingResult(
            outcome=outcome,
            user_message=messages.confirmed(stored.start_time, tz, stored.join_link),
            meeting=stored,
        )

    async def _create_external_event(
        self,
        tenant_id: str,
        meeting: Meeting,
        calendar_settings: CalendarSettings,
        backend: CalendarBackend,
    ) -> Optional[CreatedEvent]:
        """Mirror the meeting to the linked calendar; None on any gateway failure."""
        event = CalendarEvent(
            subject=meeting.subject,
            start=meeting.start_time,
            end=meeting.end_time,
            timezone=calendar_settings.business_hours.timezone,
            attendees=list(meeting.attendees),
            description=meeting.description,
        )
        try:
            return await asyncio.wait_for(
                backend.create_event(tenant_id, event),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            error = GatewayError(GatewayReason.TIMEOUT, "event creation timed out")
        except GatewayError as e:
            error = e

        logger.warning(
            f"External event creation failed for {tenant_id} ({error.reason.value}: {error}); "
            f"booking locally only"
        )
        await self._record(
            tenant_id,
            "calendar_event_failed",
            {"reason": error.reason.value, "status_code": error.status_code},
            severity="warning",
        )
        return None

    # -------------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------------

    async def _send_confirmation(self, meeting: Meeting, calendar_settings: CalendarSettings) -> None:
        if self._notifications is None:
            return
        try:
            await self._notifications.send_meeting_confirmation(
                meeting, calendar_settings.business_hours.tz
            )
        except Exception as e:
            logger.warning(f"Confirmation email for meeting {meeting.id} failed: {e}")

    async def _backfill_email(self, tenant_id: str, contact_identifier: str, email: str) -> None:
        try:
            await self._config.update_contact_email(tenant_id, contact_identifier, email)
            logger.info(f"Stored email for contact {contact_identifier} of {tenant_id}")
        except Exception as e:
            logger.error(f"Failed to store contact email for {contact_identifier}: {e}")

    async def _record(
        self,
        tenant_id: str,
        action: str,
        details: dict,
        severity: str = "info",
    ) -> None:
        if self._activity is None:
            return
        try:
            await self._activity.record(tenant_id, action, details, severity=severity)
        except Exception as e:
            logger.error(f"Failed to record activity for {tenant_id}: {e}")


# Singleton
_orchestrator: Optional[BookingOrchestrator] = None


def get_booking_orchestrator() -> BookingOrchestrator:
    """Get singleton BookingOrchestrator wired to the configured stores."""
    global _orchestrator
    if _orchestrator is None:
        stores = get_stores()
        _orchestrator = BookingOrchestrator(
            meeting_store=stores.meetings,
            config_repository=stores.tenants,
            notifications=get_notification_service(),
            activity_log=stores.activity,
        )
    return _orchestrator
