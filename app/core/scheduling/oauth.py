"""
Google Calendar OAuth handshake.

The tenant is correlated across the redirect with a short-lived state token
held in an OAuthStateStore, so any process can complete the callback.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from app.config import get_settings
from app.core.scheduling.calendar_backend import GOOGLE_TOKEN_URL
from app.core.scheduling.errors import GatewayError, GatewayReason, InvalidInput, NotConfigured
from app.core.scheduling.store import OAuthStateStore, TenantConfigRepository
from app.infra.storage import get_stores

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class GoogleOAuthFlow:
    """Starts and completes the Google consent flow for a tenant."""

    def __init__(
        self,
        state_store: OAuthStateStore,
        config_repository: TenantConfigRepository,
        http_client: Optional[httpx.AsyncClient] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        state_ttl_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self._states = state_store
        self._config = config_repository
        self._client = http_client
        self._timeout = settings.calendar_timeout_seconds
        self.client_id = client_id or settings.google_client_id
        self.client_secret = client_secret or settings.google_client_secret
        self.redirect_uri = redirect_uri or settings.google_redirect_uri
        self._state_ttl = state_ttl_seconds or settings.oauth_state_ttl_seconds

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _require_client_credentials(self, tenant_id: str) -> None:
        if not (self.client_id and self.client_secret):
            raise NotConfigured(tenant_id, "Google OAuth client is not configured")

    async def start(self, tenant_id: str) -> str:
        """
        Issue a state token and build the consent URL.

        Returns:
            Google authorization URL

        Raises:
            NotConfigured: No OAuth client id/secret
        """
        self._require_client_credentials(tenant_id)
        state = await self._states.issue(tenant_id, self._state_ttl)

        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        })
        logger.info(f"Google Calendar OAuth initiated for tenant {tenant_id}")
        return f"{GOOGLE_AUTH_URL}?{query}"

    async def complete(self, code: str, state: str) -> str:
        """
        Exchange the authorization code and store the refresh token.

        Args:
            code: Authorization code from the redirect
            state: State token issued by start()

        Returns:
            Tenant id the calendar was linked to

        Raises:
            InvalidInput: Missing code, or unknown/expired state
            GatewayError: Token exchange rejected or unreachable
        """
        if not code:
            raise InvalidInput("No authorization code provided")

        tenant_id = await self._states.consume(state)
        if tenant_id is None:
            raise InvalidInput("OAuth state is unknown or expired")

        self._require_client_credentials(tenant_id)

        try:
            response = await self._get_client().post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
        except httpx.TimeoutException as e:
            raise GatewayError(GatewayReason.TIMEOUT, str(e)) from e
        except httpx.TransportError as e:
            raise GatewayError(GatewayReason.NETWORK, str(e)) from e

        if response.status_code != 200:
            logger.error(f"Token exchange failed for {tenant_id}: {response.text[:300]}")
            raise GatewayError(
                GatewayReason.AUTH,
                "Failed to exchange authorization code",
                status_code=response.status_code,
            )

        refresh_token = response.json().get("refresh_token")
        if not refresh_token:
            # Google omits it when consent was granted before without prompt=consent
            raise GatewayError(GatewayReason.BAD_RESPONSE, "No refresh token in token response")

        await self._config.save_google_credentials(tenant_id, refresh_token)
        logger.info(f"Google Calendar linked for tenant {tenant_id}")
        return tenant_id

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Singleton
_flow: Optional[GoogleOAuthFlow] = None


def get_oauth_flow() -> GoogleOAuthFlow:
    """Get singleton GoogleOAuthFlow wired to the configured stores."""
    global _flow
    if _flow is None:
        stores = get_stores()
        _flow = GoogleOAuthFlow(state_store=stores.oauth_states, config_repository=stores.tenants)
    return _flow


async def close_oauth_flow() -> None:
    """Release the singleton's HTTP client if it was ever created."""
    if _flow is not None:
        await _flow.close()
