"""Scheduling error taxonomy."""

from enum import Enum
from typing import Optional


class SchedulingError(Exception):
    """Base class for scheduling failures."""
    pass


class InvalidInput(SchedulingError):
    """Malformed date, time or interval supplied by the caller."""
    pass


class InvalidInterval(InvalidInput):
    """Proposed booking window is empty or inverted."""
    pass


class NotSchedulingIntent(InvalidInput):
    """Assistant payload does not ask for a meeting."""
    pass


class NotConfigured(SchedulingError):
    """Tenant has no business-hours configuration.

    Admin misconfiguration: reported to operators, never shown raw to end users.
    """

    def __init__(self, tenant_id: str, message: Optional[str] = None):
        self.tenant_id = tenant_id
        super().__init__(message or f"Calendar settings not configured for tenant {tenant_id}")


class LockUnavailable(SchedulingError):
    """Per-tenant booking lock could not be acquired in time."""
    pass


class MeetingOverlap(SchedulingError):
    """An active meeting already occupies the window at commit time."""
    pass


class GatewayReason(str, Enum):
    """Why an external calendar call failed."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    QUOTA = "quota"
    NOT_LINKED = "not_linked"
    BAD_RESPONSE = "bad_response"


class GatewayError(SchedulingError):
    """External calendar unreachable or rejected the call."""

    def __init__(
        self,
        reason: GatewayReason,
        message: str = "",
        status_code: Optional[int] = None,
    ):
        self.reason = reason
        self.status_code = status_code
        super().__init__(message or reason.value)

    @property
    def transient(self) -> bool:
        """Network hiccups and timeouts are worth retrying; auth and quota are not."""
        return self.reason in (GatewayReason.NETWORK, GatewayReason.TIMEOUT)

    def __repr__(self) -> str:
        return f"<GatewayError(reason={self.reason.value}, status={self.status_code})>"
