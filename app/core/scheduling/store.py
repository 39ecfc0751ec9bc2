"""
Storage ports used by the scheduling core.

The core only reads and writes through these interfaces; SQL implementations
live in app.infra.storage and process-local ones in memory_store.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.scheduling.types import (
    CalendarSettings,
    ContactProfile,
    Meeting,
    day_bounds,
)


class MeetingStore(ABC):
    """Persistent record of booked meetings. No scheduling logic."""

    @abstractmethod
    async def list_overlapping(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Meeting]:
        """Meetings with start < end and end > start, any status."""

    @abstractmethod
    async def create(self, meeting: Meeting) -> Meeting:
        """Persist a meeting and assign its id.

        Raises:
            MeetingOverlap: If the meeting is active and overlaps another active meeting of the tenant
        """

    async def list_for_tenant_on_date(
        self,
        tenant_id: str,
        day: date,
        tz: ZoneInfo,
    ) -> list[Meeting]:
        """Meetings intersecting a local calendar day, including ones spanning midnight."""
        day_start, day_end = day_bounds(day, tz)
        return await self.list_overlapping(tenant_id, day_start, day_end)


class TenantConfigRepository(ABC):
    """Tenant configuration lookups."""

    @abstractmethod
    async def get_calendar_settings(self, tenant_id: str) -> Optional[CalendarSettings]:
        """Business hours and calendar credentials, or None if never configured."""

    @abstractmethod
    async def save_google_credentials(
        self,
        tenant_id: str,
        refresh_token: str,
        calendar_id: Optional[str] = None,
    ) -> None:
        """Store the refresh credential obtained from the OAuth handshake."""

    @abstractmethod
    async def get_contact_profile(
        self,
        tenant_id: str,
        contact_identifier: str,
    ) -> Optional[ContactProfile]:
        """Profile for a conversation counterpart."""

    @abstractmethod
    async def update_contact_email(
        self,
        tenant_id: str,
        contact_identifier: str,
        email: str,
    ) -> None:
        """Remember an email learned during a conversation."""


class ActivityLog(ABC):
    """Operator-facing activity trail."""

    @abstractmethod
    async def record(
        self,
        tenant_id: str,
        action: str,
        details: Optional[dict] = None,
        severity: str = "info",
    ) -> None:
        """Append an activity record."""


class OAuthStateStore(ABC):
    """Short-lived token -> tenant mapping for the OAuth handshake."""

    @abstractmethod
    async def issue(self, tenant_id: str, ttl_seconds: int) -> str:
        """Create a fresh state token for a tenant."""

    @abstractmethod
    async def consume(self, token: str) -> Optional[str]:
        """Return the tenant for a live token and delete it; None if unknown or expired."""

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Delete expired tokens, returning how many were removed."""
