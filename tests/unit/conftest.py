"""Shared fixtures for scheduling unit tests."""

import os

os.environ.setdefault("STORE_BACKEND", "memory")

from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

from app.core.scheduling.calendar_backend import CalendarBackend, CalendarEvent, CreatedEvent
from app.core.scheduling.errors import GatewayError
from app.core.scheduling.idempotency import IdempotencyStore
from app.core.scheduling.locks import TenantBookingLock
from app.core.scheduling.memory_store import (
    InMemoryActivityLog,
    InMemoryMeetingStore,
    InMemoryTenantConfigRepository,
)
from app.core.scheduling.types import (
    BusinessHoursConfig,
    CalendarSettings,
    Interval,
    Meeting,
    MeetingStatus,
)

TENANT = "tenant-1"
NEW_YORK = ZoneInfo("America/New_York")


def local(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    """New York wall-clock time as a UTC instant."""
    return datetime(year, month, day, hour, minute, tzinfo=NEW_YORK).astimezone(timezone.utc)


def make_meeting(
    start: datetime,
    end: datetime,
    status: MeetingStatus = MeetingStatus.SCHEDULED,
    tenant_id: str = TENANT,
) -> Meeting:
    return Meeting(
        tenant_id=tenant_id,
        subject="Existing",
        start_time=start,
        end_time=end,
        attendees=["someone@example.com"],
        status=status,
    )


class FakeCalendarBackend(CalendarBackend):
    """External calendar double with scripted busy times and failures."""

    name = "fake"
    is_external = True

    def __init__(
        self,
        busy: Optional[list[Interval]] = None,
        busy_error: Optional[Exception] = None,
        create_error: Optional[Exception] = None,
        event_id: str = "evt-123",
        join_link: Optional[str] = "https://meet.google.com/abc-defg-hij",
    ):
        self.busy = busy or []
        self.busy_error = busy_error
        self.create_error = create_error
        self.event_id = event_id
        self.join_link = join_link
        self.busy_calls = 0
        self.created: list[CalendarEvent] = []

    async def get_busy_intervals(self, tenant_id, window_start, window_end):
        self.busy_calls += 1
        if self.busy_error:
            raise self.busy_error
        return list(self.busy)

    async def create_event(self, tenant_id, event):
        if self.create_error:
            raise self.create_error
        self.created.append(event)
        return CreatedEvent(external_event_id=self.event_id, join_link=self.join_link)


@pytest.fixture
def business_hours():
    """09:00-17:00 New York, 30 minute slots."""
    return BusinessHoursConfig(
        availability_start=time(9, 0),
        availability_end=time(17, 0),
        slot_duration_minutes=30,
        timezone="America/New_York",
    )


@pytest.fixture
def local_settings(business_hours):
    """Tenant without a linked calendar."""
    return CalendarSettings(tenant_id=TENANT, business_hours=business_hours)


@pytest.fixture
def linked_settings(business_hours):
    """Tenant with a Google refresh token."""
    return CalendarSettings(
        tenant_id=TENANT,
        business_hours=business_hours,
        google_refresh_token="refresh-token",
        google_client_id="client-id",
        google_client_secret="client-secret",
    )


@pytest.fixture
def meeting_store():
    return InMemoryMeetingStore()


@pytest.fixture
def activity_log():
    return InMemoryActivityLog()


@pytest.fixture
def config_repository(local_settings):
    return InMemoryTenantConfigRepository(settings=[local_settings])


@pytest.fixture
def booking_lock():
    """In-process lock only."""
    return TenantBookingLock(redis_getter=None, timeout=2.0)


@pytest.fixture
def idempotency_store():
    """In-memory idempotency records only."""
    return IdempotencyStore(redis_getter=None, ttl_seconds=600)


def gateway_error(reason) -> GatewayError:
    return GatewayError(reason, f"simulated {reason.value}")
