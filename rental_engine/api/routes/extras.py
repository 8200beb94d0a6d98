"""
Extras API: remaining stock of quantity-limited extras.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ...database import get_session
from ...exceptions import RentalEngineError
from ...models import StockCheckRequest
from ...services import repository
from ...services.extras import check_stock
from ..dependencies import engine_error_response, get_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Extras"])


@router.post("/extras/stock")
async def check_extras_stock(
    stock_request: StockCheckRequest,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """
    Report remaining stock for the requested extras and whether each
    requested quantity can be fulfilled.
    """
    try:
        config, _ = await repository.load_tenant_settings(session, tenant_id)
        extras = await repository.load_extras(session, tenant_id)
        selections = await repository.load_extra_selections(
            session, tenant_id, extra_ids=[item.extra_id for item in stock_request.extras]
        )

        window = None
        if config.extras_stock_scope == "date_range" and stock_request.start_date:
            window = (stock_request.start_date, stock_request.end_date)

        report = check_stock(stock_request.extras, extras, selections, window)
        return {
            "can_fulfill": report.can_fulfill,
            "lines": {extra_id: line.model_dump(mode="json") for extra_id, line in report.lines.items()}
        }

    except RentalEngineError as e:
        raise engine_error_response(e)
    except Exception as e:
        logger.error(f"Error checking extras stock: {e}")
        raise HTTPException(status_code=500, detail="Failed to check extras stock")
