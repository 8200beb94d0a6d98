"""
Availability API for checking vehicle availability and the booking calendar.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, date
from typing import Optional, Tuple
import logging

from ...database import get_session
from ...exceptions import InvalidDateRangeError, RentalEngineError
from ...services.availability import AvailabilityService
from ..dependencies import engine_error_response, get_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Availability"])


def parse_date_range(date_range: str) -> Tuple[date, date]:
    """Parse date range string in format YYYY-MM-DD..YYYY-MM-DD"""
    try:
        start_str, end_str = date_range.split("..")
        start_date = datetime.strptime(start_str, "%Y-%m-%d").date()
        end_date = datetime.strptime(end_str, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail="Invalid date range format. Use YYYY-MM-DD..YYYY-MM-DD"
        )
    if end_date < start_date:
        raise engine_error_response(InvalidDateRangeError(start_date, end_date))
    return start_date, end_date


@router.get("/availability/check")
async def check_availability(
    vehicleId: str = Query(..., description="Vehicle to check"),
    start: date = Query(..., description="First rental day, YYYY-MM-DD"),
    end: Optional[date] = Query(None, description="Return day, YYYY-MM-DD; omit for open-ended"),
    excludeRentalId: Optional[str] = Query(None, description="Ignore this rental, e.g. when editing it"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """
    Check if a vehicle is free for a date range.

    Date ranges are inclusive on both ends, so a rental returned on the
    day another starts counts as a conflict.
    """
    try:
        if end is not None and end < start:
            raise InvalidDateRangeError(start, end)

        result = await AvailabilityService.check_vehicle_availability(
            session=session,
            tenant_id=tenant_id,
            vehicle_id=vehicleId,
            start_date=start,
            end_date=end,
            exclude_rental_id=excludeRentalId
        )
        return result.model_dump(mode="json")

    except RentalEngineError as e:
        raise engine_error_response(e)
    except Exception as e:
        logger.error(f"Error checking availability for vehicle {vehicleId}: {e}")
        raise HTTPException(status_code=500, detail="Failed to check availability")


@router.get("/availability/calendar")
async def get_calendar(
    dateRange: str = Query(..., description="Date range in format YYYY-MM-DD..YYYY-MM-DD"),
    vehicleId: Optional[str] = Query(None, description="Filter by vehicle ID"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """
    Get rentals touching a date range, grouped into non-overlapping lanes per vehicle.
    """
    start_date, end_date = parse_date_range(dateRange)
    try:
        lanes = await AvailabilityService.get_calendar(
            session=session,
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            vehicle_id=vehicleId
        )

        vehicles = {
            vehicle_id: [[rental.model_dump(mode="json") for rental in lane] for lane in vehicle_lanes]
            for vehicle_id, vehicle_lanes in lanes.items()
        }
        summary = {
            "vehicles": len(vehicles),
            "rentals": sum(len(lane) for vehicle_lanes in lanes.values() for lane in vehicle_lanes),
            "max_lanes": max((len(vehicle_lanes) for vehicle_lanes in lanes.values()), default=0)
        }
        return {"date_range": dateRange, "vehicles": vehicles, "summary": summary}

    except Exception as e:
        logger.error(f"Error building calendar for {dateRange}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get calendar")
