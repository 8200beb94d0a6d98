"""
Bookings API with idempotency support and concurrency protection.
"""
from fastapi import APIRouter, Depends, HTTPException, Header, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from ...database import get_session
from ...exceptions import RentalEngineError
from ...models import BookingRequest, BookingResult
from ...redis_service import get_redis, RedisService
from ...services.booking import BookingService
from ..dependencies import engine_error_response, get_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Bookings"])

IDEMPOTENCY_SCOPE = "bookings"


@router.post("/bookings", response_model=BookingResult, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_request: BookingRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
    redis: RedisService = Depends(get_redis)
):
    """
    Confirm a booking: re-check availability and extras stock, price it,
    and write the rental with its charges in one transaction.

    If an Idempotency-Key header is provided, repeated requests with the
    same key (within 24h) return the original booking instead of creating
    a second one.

    Returns 409 when the vehicle is already booked for overlapping dates or
    an extra has run out.
    """
    try:
        if idempotency_key:
            existing_result = await redis.get_idempotent_result(tenant_id, IDEMPOTENCY_SCOPE, idempotency_key)
            if existing_result:
                logger.info(f"Returning cached booking for idempotency key: {idempotency_key}")
                existing_result["created_from_idempotency"] = True
                return BookingResult(**existing_result)

        result = await BookingService(session, redis).confirm_booking(tenant_id, booking_request)

        if idempotency_key:
            await redis.store_idempotent_result(
                tenant_id, IDEMPOTENCY_SCOPE, idempotency_key, result.model_dump(mode="json")
            )
        return result

    except RentalEngineError as e:
        raise engine_error_response(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating booking for vehicle {booking_request.vehicle_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking"
        )
