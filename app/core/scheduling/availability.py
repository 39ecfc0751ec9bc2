"""
Availability Computer.

Splits a tenant's business hours for one day into fixed-size slots and marks
each one free or occupied. Occupancy comes from the linked external calendar
when it answers, otherwise from locally stored meetings.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

from app.config import get_settings
from app.core.scheduling.calendar_backend import (
    CalendarBackend,
    get_calendar_backend_factory,
)
from app.core.scheduling.errors import GatewayError, GatewayReason, InvalidInput, NotConfigured
from app.core.scheduling.store import ActivityLog, MeetingStore, TenantConfigRepository
from app.core.scheduling.types import (
    BusinessHoursConfig,
    CalendarSettings,
    Interval,
    TimeSlot,
    format_clock,
)
from app.infra.storage import get_stores

logger = logging.getLogger(__name__)

DayInput = Union[date, datetime, str]
BackendFactory = Callable[[Optional[CalendarSettings]], CalendarBackend]


@dataclass(frozen=True)
class DayAvailability:
    """Slots for one tenant-local day."""

    day: date
    timezone: str
    slots: list[TimeSlot]

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "date": self.day.isoformat(),
            "timezone": self.timezone,
            "slots": [slot.to_dict() for slot in self.slots],
        }


def normalize_day(value: DayInput, config: BusinessHoursConfig) -> date:
    """Reduce a date-like input to a calendar day in the tenant's zone.

    Aware datetimes are converted to the tenant zone before taking the date,
    so 2024-01-16T02:00Z is still the 15th in New York. Naive datetimes are
    taken at face value.

    Raises:
        InvalidInput: For anything that is not a date, datetime or YYYY-MM-DD
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(config.tz).date()
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise InvalidInput(f"Invalid date {value!r}, expected YYYY-MM-DD") from e
    raise InvalidInput(f"Invalid date input: {value!r}")


def generate_slot_starts(day: date, config: BusinessHoursConfig) -> list[datetime]:
    """UTC start instants of every whole slot inside business hours."""
    window_start, window_end = config.business_window(day)
    step = timedelta(minutes=config.slot_duration_minutes)

    starts = []
    cursor = window_start
    while cursor + step <= window_end:
        starts.append(cursor)
        cursor += step
    return starts


def mark_slots(
    starts: list[datetime],
    occupied: list[Interval],
    config: BusinessHoursConfig,
) -> list[TimeSlot]:
    """Build TimeSlots, unavailable where any occupied interval intersects."""
    tz = config.tz
    step = timedelta(minutes=config.slot_duration_minutes)
    return [
        TimeSlot(
            start_of_slot=start,
            display_label=format_clock(start.astimezone(tz)),
            available=not any(busy.overlaps(start, start + step) for busy in occupied),
            duration_minutes=config.slot_duration_minutes,
        )
        for start in starts
    ]


class AvailabilityComputer:
    """
    Computes bookable slots for a tenant and day.

    Sources of occupancy:
    - External calendar free/busy (authoritative when it answers)
    - Local non-cancelled meetings (fallback)
    """

    def __init__(
        self,
        meeting_store: MeetingStore,
        config_repository: TenantConfigRepository,
        backend_factory: Optional[BackendFactory] = None,
        activity_log: Optional[ActivityLog] = None,
        gateway_timeout: Optional[float] = None,
    ):
        """Initialize computer.

        Args:
            meeting_store: Local meetings
            config_repository: Tenant calendar settings
            backend_factory: Picks the calendar backend for a tenant
            activity_log: Receives records of absorbed gateway errors
            gateway_timeout: Upper bound for the free/busy query in seconds
        """
        self._meetings = meeting_store
        self._config = config_repository
        self._backend_factory = backend_factory or get_calendar_backend_factory().for_tenant
        self._activity = activity_log
        self._timeout = gateway_timeout or get_settings().calendar_timeout_seconds

    async def compute_slots(
        self,
        tenant_id: str,
        day: DayInput,
        config: Optional[BusinessHoursConfig] = None,
    ) -> list[TimeSlot]:
        """Compute the ordered slots for a day.

        Args:
            tenant_id: Tenant identifier
            day: Date, datetime or "YYYY-MM-DD"
            config: Business hours override (defaults to stored settings)

        Returns:
            Chronological TimeSlots covering business hours

        Raises:
            InvalidInput: Malformed day
            NotConfigured: No business hours for the tenant
        """
        result = await self.compute_day(tenant_id, day, config)
        return result.slots

    async def compute_day(
        self,
        tenant_id: str,
        day: DayInput,
        config: Optional[BusinessHoursConfig] = None,
    ) -> DayAvailability:
        """Like compute_slots, also reporting the resolved day and zone."""
        calendar_settings = await self._config.get_calendar_settings(tenant_id)
        if config is None:
            if calendar_settings is None:
                raise NotConfigured(tenant_id)
            config = calendar_settings.business_hours

        local_day = normalize_day(day, config)
        starts = generate_slot_starts(local_day, config)
        if not starts:
            return DayAvailability(local_day, config.timezone, [])

        backend = self._backend_factory(calendar_settings)
        occupied = await self._occupied_intervals(tenant_id, local_day, config, backend)

        slots = mark_slots(starts, occupied, config)
        logger.debug(
            f"Computed {len(slots)} slots for {tenant_id} on {local_day}, "
            f"{sum(1 for s in slots if s.available)} free"
        )
        return DayAvailability(local_day, config.timezone, slots)

    async def _occupied_intervals(
        self,
        tenant_id: str,
        day: date,
        config: BusinessHoursConfig,
        backend: CalendarBackend,
    ) -> list[Interval]:
        """External busy set when reachable, local meetings otherwise."""
        if backend.is_external:
            window_start, window_end = config.business_window(day)
            try:
                return await asyncio.wait_for(
                    backend.get_busy_intervals(tenant_id, window_start, window_end),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                await self._record_fallback(
                    tenant_id, GatewayError(GatewayReason.TIMEOUT, "free/busy timed out")
                )
            except GatewayError as e:
                await self._record_fallback(tenant_id, e)

        meetings = await self._meetings.list_for_tenant_on_date(tenant_id, day, config.tz)
        return [m.interval for m in meetings if m.is_active]

    async def _record_fallback(self, tenant_id: str, error: GatewayError) -> None:
        logger.warning(
            f"Free/busy unavailable for {tenant_id} ({error.reason.value}: {error}); "
            f"using local meetings"
        )
        if self._activity is None:
            return
        try:
            await self._activity.record(
                tenant_id,
                "calendar_freebusy_failed",
                {"reason": error.reason.value, "status_code": error.status_code},
                severity="warning",
            )
        except Exception as e:
            logger.error(f"Failed to record activity for {tenant_id}: {e}")


# Singleton
_computer: Optional[AvailabilityComputer] = None


def get_availability_computer() -> AvailabilityComputer:
    """Get singleton AvailabilityComputer wired to the configured stores."""
    global _computer
    if _computer is None:
        stores = get_stores()
        _computer = AvailabilityComputer(
            meeting_store=stores.meetings,
            config_repository=stores.tenants,
            activity_log=stores.activity,
        )
    return _computer
