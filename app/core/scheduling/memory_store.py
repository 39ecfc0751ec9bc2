"""Process-local stores for development and tests."""

import logging
import secrets
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from app.core.scheduling.errors import MeetingOverlap
from app.core.scheduling.store import (
    ActivityLog,
    MeetingStore,
    OAuthStateStore,
    TenantConfigRepository,
)
from app.core.scheduling.types import (
    BusinessHoursConfig,
    CalendarSettings,
    ContactProfile,
    Meeting,
    utcnow,
)

logger = logging.getLogger(__name__)


class InMemoryMeetingStore(MeetingStore):
    """Meetings kept in a dict keyed by id."""

    def __init__(self, meetings: Optional[list[Meeting]] = None):
        self._meetings: dict[str, Meeting] = {}
        for meeting in meetings or []:
            self._meetings[meeting.id or str(uuid4())] = meeting

    async def list_overlapping(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Meeting]:
        found = [
            m for m in self._meetings.values()
            if m.tenant_id == tenant_id and m.overlaps(start, end)
        ]
        return sorted(found, key=lambda m: m.start_time)

    async def create(self, meeting: Meeting) -> Meeting:
        if meeting.is_active:
            for existing in self._meetings.values():
                if (
                    existing.tenant_id == meeting.tenant_id
                    and existing.is_active
                    and existing.overlaps(meeting.start_time, meeting.end_time)
                ):
                    raise MeetingOverlap(
                        f"Meeting {existing.id} overlaps {meeting.start_time.isoformat()} "
                        f"for tenant {meeting.tenant_id}"
                    )
        stored = replace(
            meeting,
            id=meeting.id or str(uuid4()),
            created_at=meeting.created_at or utcnow(),
        )
        self._meetings[stored.id] = stored
        logger.debug(f"Meeting stored in memory: {stored.id}")
        return stored

    def all(self) -> list[Meeting]:
        return list(self._meetings.values())


class InMemoryTenantConfigRepository(TenantConfigRepository):
    """Tenant settings and contact profiles held in dicts."""

    def __init__(
        self,
        settings: Optional[list[CalendarSettings]] = None,
        profiles: Optional[list[ContactProfile]] = None,
    ):
        self._settings = {s.tenant_id: s for s in settings or []}
        self._profiles = {(p.tenant_id, p.contact_identifier): p for p in profiles or []}

    def put_settings(self, calendar_settings: CalendarSettings) -> None:
        self._settings[calendar_settings.tenant_id] = calendar_settings

    async def get_calendar_settings(self, tenant_id: str) -> Optional[CalendarSettings]:
        return self._settings.get(tenant_id)

    async def save_google_credentials(
        self,
        tenant_id: str,
        refresh_token: str,
        calendar_id: Optional[str] = None,
    ) -> None:
        current = self._settings.get(tenant_id)
        if current is None:
            logger.info(f"Creating calendar settings with default hours for {tenant_id}")
            current = CalendarSettings(tenant_id, BusinessHoursConfig.defaults())
        self._settings[tenant_id] = replace(
            current,
            google_refresh_token=refresh_token,
            google_calendar_id=calendar_id or current.google_calendar_id,
        )

    async def get_contact_profile(
        self,
        tenant_id: str,
        contact_identifier: str,
    ) -> Optional[ContactProfile]:
        return self._profiles.get((tenant_id, contact_identifier))

    async def update_contact_email(
        self,
        tenant_id: str,
        contact_identifier: str,
        email: str,
    ) -> None:
        key = (tenant_id, contact_identifier)
        current = self._profiles.get(key) or ContactProfile(tenant_id, contact_identifier)
        self._profiles[key] = replace(current, email=email)


class InMemoryActivityLog(ActivityLog):
    """Activity records appended to a list."""

    def __init__(self):
        self.records: list[dict] = []

    async def record(
        self,
        tenant_id: str,
        action: str,
        details: Optional[dict] = None,
        severity: str = "info",
    ) -> None:
        self.records.append({
            "tenant_id": tenant_id,
            "action": action,
            "details": details or {},
            "severity": severity,
            "timestamp": utcnow(),
        })

    def actions(self) -> list[str]:
        return [r["action"] for r in self.records]


class InMemoryOAuthStateStore(OAuthStateStore):
    """OAuth state tokens with expiry, swept on every issue."""

    def __init__(self):
        self._states: dict[str, tuple[str, datetime]] = {}

    async def issue(self, tenant_id: str, ttl_seconds: int) -> str:
        await self.sweep_expired()
        token = secrets.token_urlsafe(32)
        self._states[token] = (tenant_id, utcnow() + timedelta(seconds=ttl_seconds))
        return token

    async def consume(self, token: str) -> Optional[str]:
        entry = self._states.pop(token, None)
        if entry is None:
            return None
        tenant_id, expires_at = entry
        if expires_at <= utcnow():
            return None
        return tenant_id

    async def sweep_expired(self) -> int:
        now = utcnow()
        expired = [t for t, (_, exp) in self._states.items() if exp <= now]
        for token in expired:
            del self._states[token]
        return len(expired)
