"""
Shared FastAPI dependencies.

Routes receive services through these providers so tests can swap them
with app.dependency_overrides.
"""

from fastapi import Header, HTTPException, status

from app.core.agent.receptionist import ReceptionistAgent, get_receptionist_agent
from app.core.scheduling.availability import AvailabilityComputer, get_availability_computer
from app.core.scheduling.oauth import GoogleOAuthFlow, get_oauth_flow
from app.core.scheduling.orchestrator import BookingOrchestrator, get_booking_orchestrator


async def get_tenant_id(
    x_tenant_id: str = Header(
        ...,
        alias="X-Tenant-ID",
        description="Tenant identifier",
    ),
) -> str:
    """Require a non-blank X-Tenant-ID header."""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return tenant_id


def availability_computer() -> AvailabilityComputer:
    return get_availability_computer()


def booking_orchestrator() -> BookingOrchestrator:
    return get_booking_orchestrator()


def oauth_flow() -> GoogleOAuthFlow:
    return get_oauth_flow()


def receptionist_agent() -> ReceptionistAgent:
    return get_receptionist_agent()
