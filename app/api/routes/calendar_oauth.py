"""
Google Calendar OAuth Endpoints.

/start hands out the consent URL; /callback is Google's redirect target.
The tenant is recovered from the state token, not from a header.
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from app.api.dependencies import get_tenant_id, oauth_flow
from app.core.scheduling.oauth import GoogleOAuthFlow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar/oauth", tags=["Calendar"])


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str


class OAuthCompleteResponse(BaseModel):
    tenant_id: str
    connected: bool


@router.get(
    "/start",
    response_model=AuthorizationUrlResponse,
    status_code=status.HTTP_200_OK,
    summary="Start Google Calendar linking",
)
async def start_oauth(
    tenant_id: str = Depends(get_tenant_id),
    flow: GoogleOAuthFlow = Depends(oauth_flow),
) -> AuthorizationUrlResponse:
    """Issue a state token and return the Google consent URL."""
    return AuthorizationUrlResponse(authorization_url=await flow.start(tenant_id))


@router.get(
    "/callback",
    response_model=OAuthCompleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Google OAuth redirect target",
    responses={400: {"description": "Unknown or expired state"}},
)
async def oauth_callback(
    code: str = Query(default=""),
    state: str = Query(default=""),
    flow: GoogleOAuthFlow = Depends(oauth_flow),
) -> OAuthCompleteResponse:
    """Exchange the code and store the tenant's refresh token."""
    tenant_id = await flow.complete(code, state)
    return OAuthCompleteResponse(tenant_id=tenant_id, connected=True)
