"""
Database Models

SQLAlchemy ORM models for the multi-tenant meeting scheduling service.
All instants are stored as timezone-aware UTC timestamps.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint,
    Enum as SQLEnum, text
)
from sqlalchemy.dialects.postgresql import UUID, JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class MeetingRecordStatus(str, Enum):
    """Meeting status enumeration."""
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class CalendarSettingsRecord(Base, TimestampMixin):
    """
    Calendar settings model.

    One row per tenant: business hours, slot size and the Google Calendar link.
    """

    __tablename__ = "calendar_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    availability_start_time: Mapped[str] = mapped_column(String(5), default="09:00")
    availability_end_time: Mapped[str] = mapped_column(String(5), default="17:00")
    slot_duration: Mapped[int] = mapped_column(Integer, default=30)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False)
    google_client_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    google_client_secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    google_refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_calendar_id: Mapped[str] = mapped_column(String(255), default="primary")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return (
            f"<CalendarSettingsRecord(tenant_id='{self.tenant_id}', "
            f"hours={self.availability_start_time}-{self.availability_end_time}, "
            f"linked={bool(self.google_refresh_token)})>"
        )


class MeetingRecord(Base, TimestampMixin):
    """
    Meeting model.

    Every booking is stored here, whether or not it was mirrored to the
    tenant's external calendar.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        Index("idx_meeting_tenant_window", "tenant_id", "start_time", "end_time"),
        Index("idx_meeting_external", "tenant_id", "external_event_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attendees: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[MeetingRecordStatus] = mapped_column(
        SQLEnum(MeetingRecordStatus),
        default=MeetingRecordStatus.SCHEDULED
    )
    external_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    join_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    channel: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<MeetingRecord(id={self.id}, tenant_id='{self.tenant_id}', "
            f"start={self.start_time}, status={self.status.value})>"
        )


class ContactProfileRecord(Base, TimestampMixin):
    """Contact profile model. What a tenant knows about a counterpart."""

    __tablename__ = "contact_profiles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "contact_identifier", name="uq_contact_tenant_identifier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class OAuthStateRecord(Base):
    """Pending OAuth handshake, keyed by the state token."""

    __tablename__ = "oauth_states"
    __table_args__ = (
        Index("idx_oauth_state_expires", "expires_at"),
    )

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ActivityLogRecord(Base):
    """
    Activity Log model.

    Operator-facing trail of bookings, absorbed calendar errors and
    configuration problems.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("idx_activity_tenant_time", "tenant_id", "timestamp"),
        Index("idx_activity_action", "action"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    severity: Mapped[str] = mapped_column(String(20), default="info")

    def __repr__(self) -> str:
        return (
            f"<ActivityLogRecord(id={self.id}, action='{self.action}', "
            f"timestamp={self.timestamp}, severity='{self.severity}')>"
        )
