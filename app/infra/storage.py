"""
Storage Adapters

SQL implementations of the scheduling store ports, plus the selector that
wires either these or the in-memory stores based on STORE_BACKEND.

Each operation opens its own session through get_db_context(), so the
adapters are safe to share across requests.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, select

from app.config import get_settings
from app.core.scheduling.errors import InvalidInput, MeetingOverlap, NotConfigured
from app.core.scheduling.memory_store import (
    InMemoryActivityLog,
    InMemoryMeetingStore,
    InMemoryOAuthStateStore,
    InMemoryTenantConfigRepository,
)
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
    MeetingStatus,
    utcnow,
)
from app.infra.database import get_db_context
from app.models.database import (
    ActivityLogRecord,
    CalendarSettingsRecord,
    ContactProfileRecord,
    MeetingRecord,
    MeetingRecordStatus,
    OAuthStateRecord,
)

logger = logging.getLogger(__name__)


def _to_meeting(record: MeetingRecord) -> Meeting:
    return Meeting(
        id=str(record.id),
        tenant_id=record.tenant_id,
        subject=record.subject,
        description=record.description,
        start_time=record.start_time,
        end_time=record.end_time,
        attendees=list(record.attendees or []),
        status=MeetingStatus(record.status.value),
        external_event_id=record.external_event_id,
        join_link=record.join_link,
        channel=record.channel,
        created_at=record.created_at,
    )


def _to_calendar_settings(record: CalendarSettingsRecord) -> CalendarSettings:
    """Build settings from a row; a row that fails validation counts as not configured."""
    try:
        business_hours = BusinessHoursConfig.from_strings(
            record.availability_start_time,
            record.availability_end_time,
            record.slot_duration,
            record.timezone,
        )
    except InvalidInput as e:
        raise NotConfigured(record.tenant_id, f"Stored calendar settings are invalid: {e}") from e

    return CalendarSettings(
        tenant_id=record.tenant_id,
        business_hours=business_hours,
        google_refresh_token=record.google_refresh_token,
        google_calendar_id=record.google_calendar_id or "primary",
        google_client_id=record.google_client_id,
        google_client_secret=record.google_client_secret,
        is_active=record.is_active,
    )


class SqlMeetingStore(MeetingStore):
    """Meetings in the meetings table."""

    async def list_overlapping(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Meeting]:
        async with get_db_context() as db:
            result = await db.execute(
                select(MeetingRecord)
                .where(
                    MeetingRecord.tenant_id == tenant_id,
                    MeetingRecord.start_time < end,
                    MeetingRecord.end_time > start,
                )
                .order_by(MeetingRecord.start_time)
            )
            return [_to_meeting(r) for r in result.scalars().all()]

    async def create(self, meeting: Meeting) -> Meeting:
        """Insert a meeting, re-checking overlaps under a per-tenant advisory lock.

        The transaction-scoped advisory lock serializes inserts for a tenant
        across workers, so the guard holds even when Redis is unreachable.

        Raises:
            MeetingOverlap: If an active meeting already covers part of the window
        """
        record = MeetingRecord(
            id=uuid.UUID(meeting.id) if meeting.id else uuid.uuid4(),
            tenant_id=meeting.tenant_id,
            subject=meeting.subject,
            description=meeting.description,
            start_time=meeting.start_time,
            end_time=meeting.end_time,
            attendees=list(meeting.attendees),
            status=MeetingRecordStatus(meeting.status.value),
            external_event_id=meeting.external_event_id,
            join_link=meeting.join_link,
            channel=meeting.channel,
        )
        async with get_db_context() as db:
            await db.execute(select(func.pg_advisory_xact_lock(func.hashtext(meeting.tenant_id))))
            if meeting.is_active:
                clash = await db.execute(
                    select(MeetingRecord.id)
                    .where(
                        MeetingRecord.tenant_id == meeting.tenant_id,
                        MeetingRecord.status != MeetingRecordStatus.CANCELLED,
                        MeetingRecord.start_time < meeting.end_time,
                        MeetingRecord.end_time > meeting.start_time,
                    )
                    .limit(1)
                )
                existing_id = clash.scalar_one_or_none()
                if existing_id is not None:
                    raise MeetingOverlap(
                        f"Meeting {existing_id} overlaps {meeting.start_time.isoformat()} "
                        f"for tenant {meeting.tenant_id}"
                    )
            db.add(record)
            await db.flush()
            await db.refresh(record)
            stored = _to_meeting(record)
        logger.debug(f"Meeting stored: {stored.id}")
        return stored


class SqlTenantConfigRepository(TenantConfigRepository):
    """Calendar settings and contact profiles in PostgreSQL."""

    async def get_calendar_settings(self, tenant_id: str) -> Optional[CalendarSettings]:
        async with get_db_context() as db:
            result = await db.execute(
                select(CalendarSettingsRecord).where(CalendarSettingsRecord.tenant_id == tenant_id)
            )
            record = result.scalar_one_or_none()
            return _to_calendar_settings(record) if record else None

    async def save_google_credentials(
        self,
        tenant_id: str,
        refresh_token: str,
        calendar_id: Optional[str] = None,
    ) -> None:
        async with get_db_context() as db:
            result = await db.execute(
                select(CalendarSettingsRecord).where(CalendarSettingsRecord.tenant_id == tenant_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                defaults = get_settings()
                logger.info(f"Creating calendar settings with default hours for {tenant_id}")
                record = CalendarSettingsRecord(
                    tenant_id=tenant_id,
                    availability_start_time=defaults.default_availability_start,
                    availability_end_time=defaults.default_availability_end,
                    slot_duration=defaults.default_slot_duration_minutes,
                    timezone=defaults.default_timezone,
                )
                db.add(record)

            record.google_refresh_token = refresh_token
            if calendar_id:
                record.google_calendar_id = calendar_id
            record.updated_at = utcnow()

    async def get_contact_profile(
        self,
        tenant_id: str,
        contact_identifier: str,
    ) -> Optional[ContactProfile]:
        async with get_db_context() as db:
            result = await db.execute(
                select(ContactProfileRecord).where(
                    ContactProfileRecord.tenant_id == tenant_id,
                    ContactProfileRecord.contact_identifier == contact_identifier,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return ContactProfile(
                tenant_id=record.tenant_id,
                contact_identifier=record.contact_identifier,
                name=record.name,
                email=record.email,
            )

    async def update_contact_email(
        self,
        tenant_id: str,
        contact_identifier: str,
        email: str,
    ) -> None:
        async with get_db_context() as db:
            result = await db.execute(
                select(ContactProfileRecord).where(
                    ContactProfileRecord.tenant_id == tenant_id,
                    ContactProfileRecord.contact_identifier == contact_identifier,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                db.add(ContactProfileRecord(
                    tenant_id=tenant_id,
                    contact_identifier=contact_identifier,
                    email=email,
                ))
            else:
                record.email = email
                record.updated_at = utcnow()


class SqlActivityLog(ActivityLog):
    """Activity records in the activity_logs table."""

    async def record(
        self,
        tenant_id: str,
        action: str,
        details: Optional[dict] = None,
        severity: str = "info",
    ) -> None:
        async with get_db_context() as db:
            db.add(ActivityLogRecord(
                tenant_id=tenant_id,
                action=action,
                details=details or {},
                severity=severity,
            ))


class SqlOAuthStateStore(OAuthStateStore):
    """OAuth state tokens in the oauth_states table."""

    async def issue(self, tenant_id: str, ttl_seconds: int) -> str:
        await self.sweep_expired()
        token = secrets.token_urlsafe(32)
        async with get_db_context() as db:
            db.add(OAuthStateRecord(
                token=token,
                tenant_id=tenant_id,
                expires_at=utcnow() + timedelta(seconds=ttl_seconds),
            ))
        return token

    async def consume(self, token: str) -> Optional[str]:
        async with get_db_context() as db:
            record = await db.get(OAuthStateRecord, token)
            if record is None:
                return None
            tenant_id, expires_at = record.tenant_id, record.expires_at
            await db.delete(record)
        if expires_at <= utcnow():
            return None
        return tenant_id

    async def sweep_expired(self) -> int:
        async with get_db_context() as db:
            result = await db.execute(
                delete(OAuthStateRecord).where(OAuthStateRecord.expires_at <= utcnow())
            )
            removed = result.rowcount or 0
        if removed:
            logger.debug(f"Swept {removed} expired OAuth states")
        return removed


@dataclass
class Stores:
    """The store ports the scheduling services are wired with."""

    meetings: MeetingStore
    tenants: TenantConfigRepository
    activity: ActivityLog
    oauth_states: OAuthStateStore


def build_stores(backend: str) -> Stores:
    """Create stores for a backend name ("sql" or "memory")."""
    if backend == "memory":
        return Stores(
            meetings=InMemoryMeetingStore(),
            tenants=InMemoryTenantConfigRepository(),
            activity=InMemoryActivityLog(),
            oauth_states=InMemoryOAuthStateStore(),
        )
    return Stores(
        meetings=SqlMeetingStore(),
        tenants=SqlTenantConfigRepository(),
        activity=SqlActivityLog(),
        oauth_states=SqlOAuthStateStore(),
    )


# Singleton
_stores: Optional[Stores] = None


def get_stores() -> Stores:
    """Get singleton Stores for the configured STORE_BACKEND."""
    global _stores
    if _stores is None:
        backend = get_settings().store_backend
        _stores = build_stores(backend)
        logger.info(f"Using {backend} stores")
    return _stores
