"""
Calendar backends.

A tenant's calendar is either local-only or mirrored to Google Calendar.
The backend is chosen once per tenant from its CalendarSettings:

- LocalCalendarBackend: no external calendar, every call reports NOT_LINKED
- GoogleCalendarBackend: free/busy and event creation over the REST API

Google calls go through httpx with a per-request timeout and bounded
exponential backoff for transient transport errors.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import uuid4

import httpx

from app.config import get_settings
from app.core.scheduling.errors import GatewayError, GatewayReason
from app.core.scheduling.types import CalendarSettings, Interval, utcnow
from app.infra.retry import retry_with_backoff

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

# Refresh the access token this long before Google says it expires
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)


@dataclass
class CalendarEvent:
    """Event to create on an external calendar."""

    subject: str
    start: datetime
    end: datetime
    timezone: str
    attendees: list[str] = field(default_factory=list)
    description: Optional[str] = None


@dataclass(frozen=True)
class CreatedEvent:
    """Identifiers returned by the external calendar."""

    external_event_id: str
    join_link: Optional[str] = None


class CalendarBackend(ABC):
    """Capability interface for a tenant's calendar."""

    name: str = "base"
    is_external: bool = False

    @abstractmethod
    async def get_busy_intervals(
        self,
        tenant_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Interval]:
        """Busy intervals inside the window.

        Raises:
            GatewayError: On auth, network or quota failures
        """

    @abstractmethod
    async def create_event(self, tenant_id: str, event: CalendarEvent) -> CreatedEvent:
        """Create an event.

        Raises:
            GatewayError: On auth, network or quota failures
        """


class LocalCalendarBackend(CalendarBackend):
    """Tenant without a linked calendar."""

    name = "local"
    is_external = False

    async def get_busy_intervals(
        self,
        tenant_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Interval]:
        raise GatewayError(GatewayReason.NOT_LINKED, f"No external calendar for {tenant_id}")

    async def create_event(self, tenant_id: str, event: CalendarEvent) -> CreatedEvent:
        raise GatewayError(GatewayReason.NOT_LINKED, f"No external calendar for {tenant_id}")


def _parse_instant(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _classify_status(response: httpx.Response) -> Optional[GatewayError]:
    """Map an HTTP error status to a GatewayError, or None on success."""
    code = response.status_code
    if code < 400:
        return None
    body = response.text[:300]
    if code == 429:
        return GatewayError(GatewayReason.QUOTA, body, status_code=code)
    if code == 403 and ("rateLimitExceeded" in body or "quotaExceeded" in body):
        return GatewayError(GatewayReason.QUOTA, body, status_code=code)
    if code in (401, 403):
        return GatewayError(GatewayReason.AUTH, body, status_code=code)
    if code == 400 and "invalid_grant" in body:
        return GatewayError(GatewayReason.AUTH, body, status_code=code)
    if code >= 500:
        return GatewayError(GatewayReason.NETWORK, body, status_code=code)
    return GatewayError(GatewayReason.BAD_RESPONSE, body, status_code=code)


class GoogleCalendarBackend(CalendarBackend):
    """Google Calendar over REST, authenticated with the tenant's refresh token."""

    name = "google"
    is_external = True

    def __init__(
        self,
        calendar_settings: CalendarSettings,
        http_client: httpx.AsyncClient,
        token_cache: Optional[dict[str, tuple[str, datetime]]] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
    ):
        """Initialize backend.

        Args:
            calendar_settings: Tenant settings holding the refresh token
            http_client: Shared httpx client
            token_cache: Shared tenant_id -> (access_token, expires_at) cache
            client_id: OAuth client id (tenant override, then app settings)
            client_secret: OAuth client secret
            max_attempts: Attempts for transient errors
            backoff_base: First retry delay in seconds
        """
        settings = get_settings()
        self._settings = calendar_settings
        self._http = http_client
        self._token_cache = token_cache if token_cache is not None else {}
        self._client_id = (
            client_id or calendar_settings.google_client_id or settings.google_client_id
        )
        self._client_secret = (
            client_secret
            or calendar_settings.google_client_secret
            or settings.google_client_secret
        )
        self._max_attempts = max_attempts or settings.calendar_max_retries
        self._backoff_base = (
            backoff_base if backoff_base is not None else settings.calendar_backoff_base_seconds
        )

    @property
    def calendar_id(self) -> str:
        return self._settings.google_calendar_id or "primary"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Single HTTP attempt with transport errors mapped to GatewayError."""
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayError(GatewayReason.TIMEOUT, str(e)) from e
        except httpx.TransportError as e:
            raise GatewayError(GatewayReason.NETWORK, str(e)) from e

        error = _classify_status(response)
        if error is not None:
            raise error
        return response

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return await retry_with_backoff(
            lambda: self._send(method, url, **kwargs),
            is_transient=lambda e: isinstance(e, GatewayError) and e.transient,
            max_attempts=self._max_attempts,
            base_delay=self._backoff_base,
            description=f"Google Calendar {method} {url.rsplit('/', 1)[-1]}",
        )

    async def _access_token(self) -> str:
        """Return a cached access token or exchange the refresh token for one."""
        tenant_id = self._settings.tenant_id
        cached = self._token_cache.get(tenant_id)
        if cached and cached[1] > utcnow() + TOKEN_EXPIRY_MARGIN:
            return cached[0]

        if not (self._client_id and self._client_secret and self._settings.google_refresh_token):
            raise GatewayError(GatewayReason.AUTH, "Google Calendar not properly configured")

        response = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._settings.google_refresh_token,
                "grant_type": "refresh_token",
            },
        )
        tokens = response.json()
        access_token = tokens.get("access_token")
        if not access_token:
            raise GatewayError(GatewayReason.AUTH, "No access token in refresh response")

        expires_at = utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        self._token_cache[tenant_id] = (access_token, expires_at)
        logger.debug(f"Google access token refreshed for tenant {tenant_id}")
        return access_token

    async def _authorized(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self._access_token()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            return await self._request(method, url, headers=headers, **kwargs)
        except GatewayError as e:
            if e.reason == GatewayReason.AUTH:
                # Revoked or expired early; force a refresh next time
                self._token_cache.pop(self._settings.tenant_id, None)
            raise

    async def get_busy_intervals(
        self,
        tenant_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Interval]:
        response = await self._authorized(
            "POST",
            f"{GOOGLE_CALENDAR_API}/freeBusy",
            json={
                "timeMin": window_start.astimezone(timezone.utc).isoformat(),
                "timeMax": window_end.astimezone(timezone.utc).isoformat(),
                "items": [{"id": self.calendar_id}],
            },
        )

        try:
            calendar = response.json().get("calendars", {}).get(self.calendar_id, {})
            if calendar.get("errors"):
                raise GatewayError(
                    GatewayReason.BAD_RESPONSE,
                    f"Free/busy errors: {calendar['errors']}",
                )
            return [
                Interval(_parse_instant(b["start"]), _parse_instant(b["end"]))
                for b in calendar.get("busy", [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(GatewayReason.BAD_RESPONSE, f"Malformed free/busy: {e}") from e

    async def create_event(self, tenant_id: str, event: CalendarEvent) -> CreatedEvent:
        """Insert the event with a client-chosen id.

        The id is fixed before the first attempt, so a retry after a timeout
        or 5xx cannot create a second event. Google answers such a retry with
        409 and the existing event is fetched instead.
        """
        # Hex digits are valid base32hex, which Google requires for event ids
        event_id = uuid4().hex
        events_url = f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}/events"
        body: dict[str, Any] = {
            "id": event_id,
            "summary": event.subject,
            "description": event.description or "",
            "start": {"dateTime": event.start.isoformat(), "timeZone": event.timezone},
            "end": {"dateTime": event.end.isoformat(), "timeZone": event.timezone},
            "attendees": [{"email": email} for email in event.attendees],
            "conferenceData": {
                "createRequest": {
                    "requestId": str(uuid4()),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
        }

        try:
            response = await self._authorized(
                "POST",
                events_url,
                params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                json=body,
            )
        except GatewayError as e:
            if e.status_code != 409:
                raise
            logger.info(f"Event {event_id} already exists for tenant {tenant_id}; fetching it")
            response = await self._authorized("GET", f"{events_url}/{event_id}")

        data = response.json()
        if not data.get("id"):
            raise GatewayError(GatewayReason.BAD_RESPONSE, "Event created without an id")
        event_id = data["id"]

        logger.info(f"Google Calendar event created for tenant {tenant_id}: {event_id}")
        return CreatedEvent(
            external_event_id=event_id,
            join_link=data.get("hangoutLink") or data.get("htmlLink"),
        )


class CalendarBackendFactory:
    """Selects the calendar backend for a tenant and owns the shared HTTP client."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._client = http_client
        self._timeout = timeout or get_settings().calendar_timeout_seconds
        self._token_cache: dict[str, tuple[str, datetime]] = {}

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def for_tenant(self, calendar_settings: Optional[CalendarSettings]) -> CalendarBackend:
        """Pick the backend once per tenant configuration."""
        if calendar_settings is None or not calendar_settings.has_external_calendar:
            return LocalCalendarBackend()
        return GoogleCalendarBackend(
            calendar_settings,
            http_client=self._get_client(),
            token_cache=self._token_cache,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Singleton
_factory: Optional[CalendarBackendFactory] = None


def get_calendar_backend_factory() -> CalendarBackendFactory:
    """Get singleton CalendarBackendFactory."""
    global _factory
    if _factory is None:
        _factory = CalendarBackendFactory()
    return _factory
