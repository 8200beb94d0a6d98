"""
Availability management service for vehicle rentals.
Overlap detection between rentals of a vehicle and calendar lane grouping.
"""
from datetime import date
from typing import Dict, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..exceptions import VehicleUnavailableError
from ..models import AvailabilityResult, RentalSchema, RentalStatus
from . import repository

logger = logging.getLogger(__name__)


def ranges_overlap(
    start_a: date,
    end_a: Optional[date],
    start_b: date,
    end_b: Optional[date]
) -> bool:
    """Inclusive overlap check; a missing end date means the range never ends."""
    return (end_b is None or start_a <= end_b) and (end_a is None or start_b <= end_a)


def _blocks_vehicle(rental: RentalSchema) -> bool:
    return rental.status != RentalStatus.CANCELLED


def find_conflicts(
    vehicle_id: str,
    start_date: date,
    end_date: Optional[date],
    rentals: Iterable[RentalSchema],
    exclude_rental_id: Optional[str] = None
) -> AvailabilityResult:
    """Rentals of the vehicle that overlap the requested range."""
    conflicts = [
        rental.id
        for rental in rentals
        if rental.vehicle_id == vehicle_id
        and rental.id != exclude_rental_id
        and _blocks_vehicle(rental)
        and ranges_overlap(start_date, end_date, rental.start_date, rental.end_date)
    ]
    return AvailabilityResult(
        vehicle_id=vehicle_id,
        available=not conflicts,
        conflicting_rental_ids=sorted(conflicts)
    )


def ensure_available(
    vehicle_id: str,
    start_date: date,
    end_date: Optional[date],
    rentals: Iterable[RentalSchema],
    exclude_rental_id: Optional[str] = None
) -> AvailabilityResult:
    result = find_conflicts(vehicle_id, start_date, end_date, rentals, exclude_rental_id)
    if not result.available:
        raise VehicleUnavailableError(vehicle_id, result.conflicting_rental_ids)
    return result


def assign_calendar_lanes(rentals: Iterable[RentalSchema]) -> Dict[str, List[List[RentalSchema]]]:
    """
    Group each vehicle's rentals into display lanes.

    Rentals are placed greedily by start date into the first lane whose last
    rental does not overlap them, so rentals within a lane never overlap.
    Cancelled rentals are left out.
    """
    by_vehicle: Dict[str, List[RentalSchema]] = {}
    for rental in rentals:
        if _blocks_vehicle(rental):
            by_vehicle.setdefault(rental.vehicle_id, []).append(rental)

    lanes_by_vehicle = {}
    for vehicle_id, vehicle_rentals in by_vehicle.items():
        vehicle_rentals.sort(key=lambda r: (r.start_date, r.end_date is None, r.end_date or r.start_date, r.id))
        lanes: List[List[RentalSchema]] = []
        for rental in vehicle_rentals:
            for lane in lanes:
                last = lane[-1]
                if not ranges_overlap(last.start_date, last.end_date, rental.start_date, rental.end_date):
                    lane.append(rental)
                    break
            else:
                lanes.append([rental])
        lanes_by_vehicle[vehicle_id] = lanes
    return lanes_by_vehicle


class AvailabilityService:
    """Database-backed availability lookups for the API layer."""

    @staticmethod
    async def check_vehicle_availability(
        session: AsyncSession,
        tenant_id: str,
        vehicle_id: str,
        start_date: date,
        end_date: Optional[date],
        exclude_rental_id: Optional[str] = None
    ) -> AvailabilityResult:
        """
        Check whether a vehicle is free for a date range.
        Raises NotFoundError when the vehicle does not belong to the tenant.
        """
        await repository.load_vehicle(session, tenant_id, vehicle_id)
        rentals = await repository.load_vehicle_rentals(session, tenant_id, vehicle_id)
        result = find_conflicts(vehicle_id, start_date, end_date, rentals, exclude_rental_id)
        if not result.available:
            logger.info(
                f"Vehicle {vehicle_id} unavailable {start_date} - {end_date}: "
                f"conflicts with {', '.join(result.conflicting_rental_ids)}"
            )
        return result

    @staticmethod
    async def get_calendar(
        session: AsyncSession,
        tenant_id: str,
        start_date: date,
        end_date: date,
        vehicle_id: Optional[str] = None
    ) -> Dict[str, List[List[RentalSchema]]]:
        """Lanes of rentals per vehicle for rentals touching the date range."""
        rentals = await repository.load_rentals_in_range(
            session, tenant_id, start_date, end_date, vehicle_id=vehicle_id
        )
        return assign_calendar_lanes(rentals)
