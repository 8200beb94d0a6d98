"""
Quotes API: price a rental without booking it.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict
import logging

from ...database import get_session
from ...exceptions import RentalEngineError
from ...models import Quote, QuoteRequest
from ...services.pricing import PricingService
from ..dependencies import engine_error_response, get_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Quotes"])


def quote_payload(quote: Quote) -> Dict[str, Any]:
    """Full-precision quote plus the rounded figures for display."""
    payload = quote.model_dump(mode="json")
    payload["display"] = {
        key: str(value) if not isinstance(value, (int, str)) else value
        for key, value in quote.presentation().items()
    }
    return payload


@router.post("/quotes")
async def create_quote(
    quote_request: QuoteRequest,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """
    Calculate the price of a rental.

    Returns the base rate lines, extras, per-day surcharges and the total.
    Nothing is stored.
    """
    try:
        quote = await PricingService(session).calculate_quote(tenant_id, quote_request)
        return quote_payload(quote)

    except RentalEngineError as e:
        raise engine_error_response(e)
    except Exception as e:
        logger.error(f"Error calculating quote for vehicle {quote_request.vehicle_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to calculate quote"
        )
