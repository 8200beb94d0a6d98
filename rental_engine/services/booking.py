"""
Booking confirmation with concurrency protection.

A booking is confirmed under a per-vehicle Redis lock, and inside a single
database transaction that locks the vehicle row, re-checks availability and
extras stock, re-prices, and writes the rental with its extras and charges.
"""
from datetime import date
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import OperationalError
import logging

from ..exceptions import VehicleUnavailableError
from ..models import BookingRequest, BookingResult, Quote, to_money
from ..models_postgres import LedgerEntry, Rental, RentalExtraSelection
from ..pricing.quoting import build_quote
from ..redis_service import RedisService
from . import repository
from .availability import ensure_available
from .extras import ensure_stock

logger = logging.getLogger(__name__)


def vehicle_lock_resource(tenant_id: str, vehicle_id: str) -> str:
    return f"vehicle:{tenant_id}:{vehicle_id}"


class BookingService:
    """Service for confirming bookings atomically."""

    def __init__(self, session: AsyncSession, redis: RedisService):
        self.session = session
        self.redis = redis

    async def confirm_booking(self, tenant_id: str, request: BookingRequest) -> BookingResult:
        """
        Confirm a booking or raise.

        Raises VehicleUnavailableError when the vehicle is booked for
        overlapping dates, including when another booking for the same
        vehicle wins the race.
        """
        resource = vehicle_lock_resource(tenant_id, request.vehicle_id)
        token = await self.redis.acquire_lock(resource)
        if token is None:
            raise VehicleUnavailableError(
                request.vehicle_id,
                message=f"Error: vehicle {request.vehicle_id} is being booked by someone else, "
                        f"please try again or pick different dates"
            )

        try:
            return await self._create_booking(tenant_id, request, resource, token)
        finally:
            await self.redis.release_lock(resource, token)

    async def _create_booking(
        self,
        tenant_id: str,
        request: BookingRequest,
        resource: str,
        token: str
    ) -> BookingResult:
        session = self.session
        try:
            context = await repository.load_pricing_context(
                session, tenant_id, request.vehicle_id, for_update=True
            )
            quote = build_quote(context, request)

            rentals = await repository.load_vehicle_rentals(session, tenant_id, request.vehicle_id)
            ensure_available(request.vehicle_id, request.start_date, request.end_date, rentals)

            requested_extras = {line.extra_id: line.quantity for line in quote.breakdown.extra_lines}
            if requested_extras:
                selections = await repository.load_extra_selections(
                    session, tenant_id, extra_ids=requested_extras.keys()
                )
                window = None
                if context.config.extras_stock_scope == "date_range":
                    window = (request.start_date, request.end_date)
                ensure_stock(requested_extras, context.extras, selections, window)

            rental = Rental(
                tenant_id=tenant_id,
                customer_id=request.customer_id,
                vehicle_id=request.vehicle_id,
                start_date=request.start_date,
                end_date=request.end_date,
                status=request.status.value,
                payment_mode=request.payment_mode
            )
            session.add(rental)
            await session.flush()

            for line in quote.breakdown.extra_lines:
                session.add(RentalExtraSelection(
                    tenant_id=tenant_id,
                    rental_id=rental.id,
                    extra_id=line.extra_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price
                ))

            charges = self._initial_charges(tenant_id, rental, quote)
            session.add_all(charges)
            await session.flush()

            # The lock may have expired during a slow transaction; only commit while still holding it
            if not await self.redis.extend_lock(resource, token):
                raise VehicleUnavailableError(
                    request.vehicle_id,
                    message=f"Error: booking lock for vehicle {request.vehicle_id} expired, please try again"
                )
            await session.commit()

        except OperationalError as e:
            await session.rollback()
            logger.warning(f"Booking for vehicle {request.vehicle_id} lost a database race: {e}")
            raise VehicleUnavailableError(request.vehicle_id) from e
        except Exception:
            await session.rollback()
            raise

        logger.info(
            f"✅ Confirmed rental {rental.id} for vehicle {request.vehicle_id} "
            f"({request.start_date} - {request.end_date}), total {to_money(quote.total)} {quote.currency}"
        )
        return BookingResult(
            rental_id=rental.id,
            vehicle_id=rental.vehicle_id,
            customer_id=rental.customer_id,
            start_date=rental.start_date,
            end_date=rental.end_date,
            status=rental.status,
            charge_ids=[charge.id for charge in charges],
            quote=quote
        )

    @staticmethod
    def _initial_charges(tenant_id: str, rental: Rental, quote: Quote) -> List[LedgerEntry]:
        """Rental charge (base plus surcharges) and, when extras were booked, an extras charge."""
        entries = []
        amounts = (
            ("Rental", quote.breakdown.base_subtotal + quote.surcharges.total),
            ("Extras", quote.breakdown.extras_subtotal),
        )
        for category, amount in amounts:
            amount = to_money(amount)
            if category == "Extras" and amount == 0:
                continue
            entries.append(LedgerEntry(
                tenant_id=tenant_id,
                customer_id=rental.customer_id,
                rental_id=rental.id,
                vehicle_id=rental.vehicle_id,
                type="Charge",
                category=category,
                amount=amount,
                remaining_amount=max(amount, 0),
                entry_date=date.today(),
                due_date=rental.start_date
            ))
        return entries
