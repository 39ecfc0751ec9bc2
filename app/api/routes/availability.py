"""
Availability API Endpoint.

Read-only slot listing for a tenant-local day. Safe for callers to retry.
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import availability_computer, get_tenant_id
from app.core.scheduling.availability import AvailabilityComputer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/availability", tags=["Availability"])


class SlotResponse(BaseModel):
    """One bookable slot."""

    start_of_slot: str = Field(..., description="Slot start as an ISO 8601 UTC instant")
    end_of_slot: str = Field(..., description="Slot end as an ISO 8601 UTC instant")
    display_label: str = Field(..., examples=["9:00 AM"])
    available: bool


class AvailabilityResponse(BaseModel):
    """Slots for one day."""

    date: str = Field(..., examples=["2024-01-15"])
    timezone: str = Field(..., examples=["America/New_York"])
    slots: list[SlotResponse]


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: str | None = None


@router.get(
    "",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="List slots for a day",
    responses={
        400: {"model": ErrorResponse, "description": "Malformed date"},
        409: {"model": ErrorResponse, "description": "Tenant has no calendar settings"},
    },
)
async def get_availability(
    day: str = Query(
        ...,
        alias="date",
        description="Tenant-local day (YYYY-MM-DD)",
        examples=["2024-01-15"],
    ),
    tenant_id: str = Depends(get_tenant_id),
    computer: AvailabilityComputer = Depends(availability_computer),
) -> AvailabilityResponse:
    """
    Compute free and occupied slots for a day.

    Occupancy comes from the linked calendar when it answers, otherwise from
    locally stored meetings. InvalidInput maps to 400, NotConfigured to 409.
    """
    result = await computer.compute_day(tenant_id, day)
    return AvailabilityResponse.model_validate(result.to_dict())
