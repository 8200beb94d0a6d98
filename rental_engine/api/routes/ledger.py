"""
Ledger API: rental ledgers, customer balances, payments and write-offs.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ...database import get_session
from ...exceptions import RentalEngineError
from ...models import PaymentReversalRequest
from ...services.ledger_service import LedgerService
from ..dependencies import engine_error_response, get_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Ledger"])


@router.get("/rentals/{rental_id}/ledger")
async def get_rental_ledger(
    rental_id: str,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """Charges of a rental with amount paid, remaining and status per charge."""
    try:
        summary = await LedgerService(session).rental_ledger(tenant_id, rental_id)
        return summary.model_dump(mode="json")

    except RentalEngineError as e:
        raise engine_error_response(e)
    except Exception as e:
        logger.error(f"Error getting ledger for rental {rental_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get rental ledger")


@router.get("/customers/{customer_id}/balance")
async def get_customer_balance(
    customer_id: str,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """
    Customer balance: payments minus charges (written-off amounts excluded).
    Positive is credit, negative is debt.
    """
    try:
        balance = await LedgerService(session).customer_balance(tenant_id, customer_id)
        return balance.model_dump(mode="json")

    except Exception as e:
        logger.error(f"Error getting balance for customer {customer_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get customer balance")


@router.post("/payments/{payment_id}/apply")
async def apply_payment(
    payment_id: str,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """Allocate a payment to the customer's outstanding charges, oldest due date first."""
    try:
        result = await LedgerService(session).apply_payment(tenant_id, payment_id)
        return result.model_dump(mode="json")

    except RentalEngineError as e:
        raise engine_error_response(e)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "INVALID_PAYMENT", "message": str(e)}
        )
    except Exception as e:
        logger.error(f"Error applying payment {payment_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to apply payment")


@router.post("/payments/{payment_id}/reverse")
async def reverse_payment(
    payment_id: str,
    reversal: PaymentReversalRequest,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """
    Reverse a payment recorded in error.

    Charges it paid become outstanding again and it no longer counts towards
    the customer balance.
    """
    try:
        result = await LedgerService(session).reverse_payment(tenant_id, payment_id, reversal.reason)
        return result.model_dump(mode="json")

    except RentalEngineError as e:
        raise engine_error_response(e)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "PAYMENT_ALREADY_REVERSED", "message": str(e)}
        )
    except Exception as e:
        logger.error(f"Error reversing payment {payment_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to reverse payment")


@router.post("/charges/{charge_id}/write-off")
async def write_off_charge(
    charge_id: str,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session)
):
    """Write off the unpaid remainder of a charge."""
    try:
        line = await LedgerService(session).write_off_charge(tenant_id, charge_id)
        return line.model_dump(mode="json")

    except RentalEngineError as e:
        raise engine_error_response(e)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "CHARGE_ALREADY_PAID", "message": str(e)}
        )
    except Exception as e:
        logger.error(f"Error writing off charge {charge_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to write off charge")
