"""Tests for the Google Calendar backend and backend selection."""

import json
from datetime import timedelta

import httpx
import pytest

from app.core.scheduling.calendar_backend import (
    CalendarBackendFactory,
    CalendarEvent,
    GoogleCalendarBackend,
    LocalCalendarBackend,
)
from app.core.scheduling.errors import GatewayError, GatewayReason
from app.core.scheduling.types import utcnow
from tests.unit.conftest import TENANT, local

TOKEN_RESPONSE = {"access_token": "access-1", "expires_in": 3600}
EXISTING_MEET_LINK = "https://meet.google.com/abc"


class FakeGoogle:
    """Scripted Google endpoints behind httpx.MockTransport."""

    def __init__(self, api_responses=None, token_response=None):
        self.api_responses = list(api_responses or [])
        self.token_response = token_response or httpx.Response(200, json=TOKEN_RESPONSE)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return self.token_response
        if request.method == "GET":
            # Existing event lookup by id
            event_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"id": event_id, "hangoutLink": EXISTING_MEET_LINK})
        response = self.api_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "www.googleapis.com"]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "oauth2.googleapis.com"]


def make_backend(linked_settings, google, token_cache=None, max_attempts=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(google))
    return GoogleCalendarBackend(
        linked_settings,
        http_client=client,
        token_cache=token_cache,
        max_attempts=max_attempts,
        backoff_base=0,
    )


def freebusy(*busy):
    return httpx.Response(200, json={"calendars": {"primary": {"busy": list(busy)}}})


class TestFreeBusy:
    """Test busy interval retrieval."""

    @pytest.mark.asyncio
    async def test_parses_busy_intervals(self, linked_settings):
        google = FakeGoogle([freebusy({"start": "2024-01-15T15:00:00Z", "end": "2024-01-15T16:00:00Z"})])
        backend = make_backend(linked_settings, google)

        busy = await backend.get_busy_intervals(TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0))

        assert len(busy) == 1
        assert busy[0].start == local(2024, 1, 15, 10)
        assert busy[0].end == local(2024, 1, 15, 11)
        sent = json.loads(google.api_requests[0].content)
        assert sent["items"] == [{"id": "primary"}]
        assert google.api_requests[0].headers["Authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_offset_timestamps(self, linked_settings):
        google = FakeGoogle([freebusy({"start": "2024-01-15T10:00:00-05:00", "end": "2024-01-15T10:30:00-05:00"})])

        busy = await make_backend(linked_settings, google).get_busy_intervals(
            TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
        )

        assert busy[0].start == local(2024, 1, 15, 10)

    @pytest.mark.asyncio
    async def test_calendar_errors_are_bad_response(self, linked_settings):
        google = FakeGoogle([
            httpx.Response(200, json={"calendars": {"primary": {"errors": [{"reason": "notFound"}]}}})
        ])

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google).get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == GatewayReason.BAD_RESPONSE

    @pytest.mark.asyncio
    async def test_malformed_busy_entry(self, linked_settings):
        google = FakeGoogle([freebusy({"start": "2024-01-15T15:00:00Z"})])

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google).get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == GatewayReason.BAD_RESPONSE


class TestTokens:
    """Test access token refresh and caching."""

    @pytest.mark.asyncio
    async def test_token_cached_between_calls(self, linked_settings):
        google = FakeGoogle([freebusy(), freebusy()])
        backend = make_backend(linked_settings, google)

        await backend.get_busy_intervals(TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0))
        await backend.get_busy_intervals(TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0))

        assert len(google.token_requests) == 1
        assert b"grant_type=refresh_token" in google.token_requests[0].content

    @pytest.mark.asyncio
    async def test_expiring_token_refreshed(self, linked_settings):
        cache = {TENANT: ("stale", utcnow() + timedelta(minutes=1))}
        google = FakeGoogle([freebusy()])

        await make_backend(linked_settings, google, token_cache=cache).get_busy_intervals(
            TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
        )

        assert len(google.token_requests) == 1
        assert cache[TENANT][0] == "access-1"

    @pytest.mark.asyncio
    async def test_revoked_refresh_token(self, linked_settings):
        google = FakeGoogle(token_response=httpx.Response(400, json={"error": "invalid_grant"}))

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google).get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == GatewayReason.AUTH

    @pytest.mark.asyncio
    async def test_unauthorized_clears_cache(self, linked_settings):
        cache = {}
        google = FakeGoogle([httpx.Response(401, json={"error": "unauthorized"})])

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google, token_cache=cache).get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == GatewayReason.AUTH
        assert exc_info.value.status_code == 401
        assert TENANT not in cache


class TestErrorMapping:
    """Test status and transport error classification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response,reason",
        [
            (httpx.Response(429, text="slow down"), GatewayReason.QUOTA),
            (httpx.Response(403, text='{"reason": "rateLimitExceeded"}'), GatewayReason.QUOTA),
            (httpx.Response(403, text="forbidden"), GatewayReason.AUTH),
            (httpx.Response(404, text="not found"), GatewayReason.BAD_RESPONSE),
        ],
    )
    async def test_status_codes(self, linked_settings, response, reason):
        google = FakeGoogle([response])

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google).get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == reason
        assert len(google.api_requests) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self, linked_settings):
        google = FakeGoogle([httpx.Response(503, text="unavailable"), freebusy()])

        busy = await make_backend(linked_settings, google).get_busy_intervals(
            TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
        )

        assert busy == []
        assert len(google.api_requests) == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, linked_settings):
        google = FakeGoogle([httpx.Response(502, text="bad gateway") for _ in range(2)])

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google, max_attempts=2).get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == GatewayReason.NETWORK
        assert len(google.api_requests) == 2

    @pytest.mark.asyncio
    async def test_timeout(self, linked_settings):
        google = FakeGoogle([httpx.ReadTimeout("read timed out")] * 3)

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google).get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == GatewayReason.TIMEOUT
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_connection_error(self, linked_settings):
        google = FakeGoogle([httpx.ConnectError("refused"), freebusy()])

        busy = await make_backend(linked_settings, google).get_busy_intervals(
            TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
        )

        assert busy == []


class TestCreateEvent:
    """Test event creation."""

    @pytest.mark.asyncio
    async def test_creates_event_with_meet_link(self, linked_settings):
        google = FakeGoogle([
            httpx.Response(200, json={"id": "evt-1", "hangoutLink": "https://meet.google.com/xyz"})
        ])
        event = CalendarEvent(
            subject="Consultation",
            start=local(2024, 1, 16, 15),
            end=local(2024, 1, 16, 15, 30),
            timezone="America/New_York",
            attendees=["jane@example.com"],
        )

        created = await make_backend(linked_settings, google).create_event(TENANT, event)

        assert created.external_event_id == "evt-1"
        assert created.join_link == "https://meet.google.com/xyz"
        request = google.api_requests[0]
        assert request.url.path == "/calendar/v3/calendars/primary/events"
        assert request.url.params["conferenceDataVersion"] == "1"
        body = json.loads(request.content)
        assert body["summary"] == "Consultation"
        assert body["attendees"] == [{"email": "jane@example.com"}]
        assert body["start"]["timeZone"] == "America/New_York"

    @pytest.mark.asyncio
    async def test_retried_insert_reuses_event_id(self, linked_settings):
        google = FakeGoogle([
            httpx.ReadTimeout("read timed out"),
            httpx.Response(200, json={"id": "placeholder"}),
        ])
        event = CalendarEvent("Consultation", local(2024, 1, 16, 15), local(2024, 1, 16, 15, 30), "America/New_York")

        await make_backend(linked_settings, google).create_event(TENANT, event)

        first, second = (json.loads(r.content) for r in google.api_requests)
        assert first["id"] == second["id"]
        assert len(first["id"]) == 32
        assert set(first["id"]) <= set("0123456789abcdefghijklmnopqrstuv")

    @pytest.mark.asyncio
    async def test_conflict_on_retry_fetches_existing_event(self, linked_settings):
        google = FakeGoogle([
            httpx.Response(503, text="backend error"),
            httpx.Response(409, json={"error": {"message": "The requested identifier already exists."}}),
        ])
        event = CalendarEvent("Consultation", local(2024, 1, 16, 15), local(2024, 1, 16, 15, 30), "America/New_York")

        created = await make_backend(linked_settings, google).create_event(TENANT, event)

        posts = [r for r in google.api_requests if r.method == "POST"]
        gets = [r for r in google.api_requests if r.method == "GET"]
        assert len(posts) == 2
        inserted_id = json.loads(posts[0].content)["id"]
        assert [r.url.path for r in gets] == [f"/calendar/v3/calendars/primary/events/{inserted_id}"]
        assert created.external_event_id == inserted_id
        assert created.join_link == EXISTING_MEET_LINK

    @pytest.mark.asyncio
    async def test_rejected_insert_is_not_retried(self, linked_settings):
        google = FakeGoogle([httpx.Response(400, json={"error": {"message": "Invalid resource id value."}})])
        event = CalendarEvent("x", local(2024, 1, 16, 15), local(2024, 1, 16, 16), "America/New_York")

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google).create_event(TENANT, event)

        assert exc_info.value.reason == GatewayReason.BAD_RESPONSE
        assert len(google.api_requests) == 1

    @pytest.mark.asyncio
    async def test_missing_event_id(self, linked_settings):
        google = FakeGoogle([httpx.Response(200, json={})])
        event = CalendarEvent("x", local(2024, 1, 16, 15), local(2024, 1, 16, 16), "America/New_York")

        with pytest.raises(GatewayError) as exc_info:
            await make_backend(linked_settings, google).create_event(TENANT, event)

        assert exc_info.value.reason == GatewayReason.BAD_RESPONSE


class TestBackendSelection:
    """Test CalendarBackendFactory and the local backend."""

    def test_local_without_token(self, local_settings):
        assert isinstance(CalendarBackendFactory().for_tenant(local_settings), LocalCalendarBackend)

    def test_local_without_settings(self):
        assert isinstance(CalendarBackendFactory().for_tenant(None), LocalCalendarBackend)

    def test_google_with_token(self, linked_settings):
        factory = CalendarBackendFactory(http_client=httpx.AsyncClient())

        assert isinstance(factory.for_tenant(linked_settings), GoogleCalendarBackend)

    @pytest.mark.asyncio
    async def test_local_backend_reports_not_linked(self):
        with pytest.raises(GatewayError) as exc_info:
            await LocalCalendarBackend().get_busy_intervals(
                TENANT, local(2024, 1, 15, 0), local(2024, 1, 16, 0)
            )

        assert exc_info.value.reason == GatewayReason.NOT_LINKED
