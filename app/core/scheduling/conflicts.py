"""
Conflict Resolver.

Decides whether a proposed booking window overlaps an existing commitment.
Overlap is half-open: existing.start < proposed_end and existing.end > proposed_start.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from app.config import get_settings
from app.core.scheduling.calendar_backend import CalendarBackend
from app.core.scheduling.errors import GatewayError, InvalidInterval
from app.core.scheduling.store import MeetingStore

logger = logging.getLogger(__name__)


def validate_interval(start: datetime, end: datetime) -> None:
    """Fail fast on naive, empty or inverted windows.

    Raises:
        InvalidInterval: If end <= start or either bound lacks a timezone
    """
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidInterval("Booking window must use timezone-aware datetimes")
    if end <= start:
        raise InvalidInterval(f"Booking window is empty or inverted: {start} -> {end}")


class ConflictResolver:
    """Checks proposed bookings against local meetings and the external calendar."""

    def __init__(
        self,
        meeting_store: MeetingStore,
        gateway_timeout: Optional[float] = None,
    ):
        self._meetings = meeting_store
        self._timeout = gateway_timeout or get_settings().calendar_timeout_seconds

    async def has_local_conflict(
        self,
        tenant_id: str,
        proposed_start: datetime,
        proposed_end: datetime,
    ) -> bool:
        """True if any non-cancelled local meeting overlaps the window."""
        validate_interval(proposed_start, proposed_end)
        existing = await self._meetings.list_overlapping(tenant_id, proposed_start, proposed_end)
        return any(
            m.is_active and m.overlaps(proposed_start, proposed_end)
            for m in existing
        )

    async def has_external_conflict(
        self,
        tenant_id: str,
        proposed_start: datetime,
        proposed_end: datetime,
        backend: CalendarBackend,
    ) -> bool:
        """True if the external calendar reports a busy interval in the window.

        An unreachable calendar is not a conflict; the error is logged and absorbed.
        """
        validate_interval(proposed_start, proposed_end)
        if not backend.is_external:
            return False

        try:
            busy = await asyncio.wait_for(
                backend.get_busy_intervals(tenant_id, proposed_start, proposed_end),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Free/busy timed out for {tenant_id}; skipping external conflict check")
            return False
        except GatewayError as e:
            logger.warning(
                f"Free/busy failed for {tenant_id} ({e.reason.value}); "
                f"skipping external conflict check"
            )
            return False

        return any(interval.overlaps(proposed_start, proposed_end) for interval in busy)

    async def has_conflict(
        self,
        tenant_id: str,
        proposed_start: datetime,
        proposed_end: datetime,
        backend: Optional[CalendarBackend] = None,
    ) -> bool:
        """True if the window collides with local state or the linked calendar.

        Raises:
            InvalidInterval: If end <= start
        """
        validate_interval(proposed_start, proposed_end)
        if await self.has_local_conflict(tenant_id, proposed_start, proposed_end):
            return True
        if backend is None:
            return False
        return await self.has_external_conflict(tenant_id, proposed_start, proposed_end, backend)
