# backend/inkflow/routes/v1/slots.py
"""
Public slot availability - API v1

Endpoints:
    GET /providers/{provider_id}/slots - Free start times for one or more days
"""

import asyncio
from datetime import date, timedelta
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.params import Path

from ...api.dependencies import get_slot_service
from ...core.constants import ULID_PATH_PATTERN
from ...core.enums import BookingKind
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...ratelimit.dependency import rate_limit
from ...schemas.booking import SlotListResponse, SlotResponse
from ...services.slot_availability_service import SlotAvailabilityService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["slots-v1"])


@router.get(
    "/providers/{provider_id}/slots",
    response_model=SlotListResponse,
    dependencies=[Depends(rate_limit("public"))],
    responses={404: {"description": "Provider not found"}},
)
async def list_available_slots(
    provider_id: str = Path(..., description="Provider ULID", pattern=ULID_PATH_PATTERN),
    day: date = Query(..., alias="date", description="First day (studio local)"),
    duration: int = Query(..., description="Session length in minutes"),
    kind: BookingKind = Query(BookingKind.SESSION),
    days: int = Query(1, ge=1, description="Number of consecutive days"),
    slot_service: SlotAvailabilityService = Depends(get_slot_service),
) -> SlotListResponse:
    """
    Free start times for a provider, with prep, cleanup and buffer applied.

    Results are capped; ``truncated`` tells the caller the cap was reached.
    """
    end_day = day + timedelta(days=days - 1)
    try:
        result = await asyncio.to_thread(
            slot_service.get_available_slots_for_range,
            provider_id,
            day,
            end_day,
            duration,
            kind,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return SlotListResponse(
        provider_id=provider_id,
        start_date=day,
        end_date=end_day,
        duration_minutes=duration,
        kind=kind,
        slots=[
            SlotResponse(start=s.start, end=s.end, duration_minutes=s.duration_minutes)
            for s in result.slots
        ],
        truncated=result.truncated,
    )
