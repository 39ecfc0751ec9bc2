"""Tests for the Google Calendar OAuth handshake."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.core.scheduling.errors import GatewayError, GatewayReason, InvalidInput, NotConfigured
from app.core.scheduling.memory_store import InMemoryOAuthStateStore, InMemoryTenantConfigRepository
from app.core.scheduling.oauth import GOOGLE_CALENDAR_SCOPES, GoogleOAuthFlow
from tests.unit.conftest import TENANT


def token_endpoint(response=None, error=None):
    """MockTransport handler that records token exchange requests."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if error is not None:
            raise error
        return response or httpx.Response(200, json={"access_token": "a", "refresh_token": "refresh-new"})

    return handler, calls


@pytest.fixture
def state_store():
    return InMemoryOAuthStateStore()


def make_flow(state_store, repository, handler=None, client_id="client-id"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return GoogleOAuthFlow(
        state_store=state_store,
        config_repository=repository,
        http_client=client,
        client_id=client_id,
        client_secret="client-secret",
        redirect_uri="https://app.example.com/calendar/oauth/callback",
        state_ttl_seconds=600,
    )


class TestStateStore:
    """Test OAuth state token lifecycle."""

    @pytest.mark.asyncio
    async def test_issue_and_consume(self, state_store):
        token = await state_store.issue(TENANT, 600)

        assert await state_store.consume(token) == TENANT

    @pytest.mark.asyncio
    async def test_single_use(self, state_store):
        token = await state_store.issue(TENANT, 600)
        await state_store.consume(token)

        assert await state_store.consume(token) is None

    @pytest.mark.asyncio
    async def test_expired_token(self, state_store):
        token = await state_store.issue(TENANT, 0)

        assert await state_store.consume(token) is None

    @pytest.mark.asyncio
    async def test_sweep_removes_expired(self, state_store):
        await state_store.issue(TENANT, 0)
        await state_store.issue("tenant-2", 0)
        live = await state_store.issue("tenant-3", 600)

        assert await state_store.sweep_expired() == 2
        assert await state_store.consume(live) == "tenant-3"

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, state_store):
        tokens = {await state_store.issue(TENANT, 600) for _ in range(20)}

        assert len(tokens) == 20


class TestStart:
    """Test building the consent URL."""

    @pytest.mark.asyncio
    async def test_consent_url(self, state_store, config_repository):
        url = await make_flow(state_store, config_repository).start(TENANT)
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        assert parsed.netloc == "accounts.google.com"
        assert query["client_id"] == ["client-id"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["scope"] == [" ".join(GOOGLE_CALENDAR_SCOPES)]
        assert await state_store.consume(query["state"][0]) == TENANT

    @pytest.mark.asyncio
    async def test_unconfigured_client(self, state_store, config_repository):
        flow = make_flow(state_store, config_repository)
        flow.client_id = ""

        with pytest.raises(NotConfigured):
            await flow.start(TENANT)


class TestComplete:
    """Test the callback leg."""

    @pytest.mark.asyncio
    async def test_links_calendar(self, state_store, config_repository):
        handler, calls = token_endpoint()
        flow = make_flow(state_store, config_repository, handler)
        state = await state_store.issue(TENANT, 600)

        tenant_id = await flow.complete("auth-code", state)
        settings = await config_repository.get_calendar_settings(TENANT)

        assert tenant_id == TENANT
        assert settings.google_refresh_token == "refresh-new"
        assert settings.has_external_calendar
        assert b"grant_type=authorization_code" in calls[0].content
        assert b"code=auth-code" in calls[0].content

    @pytest.mark.asyncio
    async def test_new_tenant_gets_default_hours(self, state_store):
        repository = InMemoryTenantConfigRepository()
        handler, _ = token_endpoint()
        state = await state_store.issue("fresh-tenant", 600)

        await make_flow(state_store, repository, handler).complete("auth-code", state)
        settings = await repository.get_calendar_settings("fresh-tenant")

        assert settings.google_refresh_token == "refresh-new"
        assert settings.business_hours.slot_duration_minutes > 0

    @pytest.mark.asyncio
    async def test_missing_code(self, state_store, config_repository):
        state = await state_store.issue(TENANT, 600)

        with pytest.raises(InvalidInput):
            await make_flow(state_store, config_repository).complete("", state)

    @pytest.mark.asyncio
    async def test_unknown_state(self, state_store, config_repository):
        handler, calls = token_endpoint()

        with pytest.raises(InvalidInput):
            await make_flow(state_store, config_repository, handler).complete("auth-code", "forged")

        assert calls == []

    @pytest.mark.asyncio
    async def test_state_cannot_be_replayed(self, state_store, config_repository):
        handler, _ = token_endpoint()
        flow = make_flow(state_store, config_repository, handler)
        state = await state_store.issue(TENANT, 600)
        await flow.complete("auth-code", state)

        with pytest.raises(InvalidInput):
            await flow.complete("auth-code", state)

    @pytest.mark.asyncio
    async def test_exchange_rejected(self, state_store, config_repository):
        handler, _ = token_endpoint(httpx.Response(400, json={"error": "invalid_grant"}))
        state = await state_store.issue(TENANT, 600)

        with pytest.raises(GatewayError) as exc_info:
            await make_flow(state_store, config_repository, handler).complete("auth-code", state)

        assert exc_info.value.reason == GatewayReason.AUTH
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, state_store, config_repository):
        handler, _ = token_endpoint(httpx.Response(200, json={"access_token": "a"}))
        state = await state_store.issue(TENANT, 600)

        with pytest.raises(GatewayError) as exc_info:
            await make_flow(state_store, config_repository, handler).complete("auth-code", state)

        assert exc_info.value.reason == GatewayReason.BAD_RESPONSE
        settings = await config_repository.get_calendar_settings(TENANT)
        assert settings.google_refresh_token is None

    @pytest.mark.asyncio
    async def test_token_endpoint_timeout(self, state_store, config_repository):
        handler, _ = token_endpoint(error=httpx.ConnectTimeout("timed out"))
        state = await state_store.issue(TENANT, 600)

        with pytest.raises(GatewayError) as exc_info:
            await make_flow(state_store, config_repository, handler).complete("auth-code", state)

        assert exc_info.value.reason == GatewayReason.TIMEOUT
