"""
Ledger persistence: applying payments, write-offs and balance lookups.
"""
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, delete
import logging

from ..exceptions import NotFoundError
from ..models import (
    ChargeLedgerLine,
    CustomerBalance,
    PaymentApplicationResult,
    PaymentReversalResult,
    RentalLedgerSummary,
)
from ..models_postgres import LedgerEntry, Payment, PaymentApplication
from . import repository
from .ledger import (
    apply_payment_fifo,
    customer_balance,
    reconcile_charges,
    remaining_amount,
    rental_summary,
    reverse_payment,
    write_off,
)

logger = logging.getLogger(__name__)


class LedgerService:
    """Service wrapping the ledger reconciler around the database."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_payment(self, tenant_id: str, payment_id: str) -> Payment:
        result = await self.session.execute(
            select(Payment)
            .where(and_(Payment.id == payment_id, Payment.tenant_id == tenant_id))
            .with_for_update()
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise NotFoundError("payment", payment_id)
        return payment

    async def _get_charge(self, tenant_id: str, charge_id: str) -> LedgerEntry:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(and_(
                LedgerEntry.id == charge_id,
                LedgerEntry.tenant_id == tenant_id,
                LedgerEntry.type == "Charge"
            ))
            .with_for_update()
        )
        charge = result.scalar_one_or_none()
        if charge is None:
            raise NotFoundError("charge", charge_id)
        return charge

    async def apply_payment(self, tenant_id: str, payment_id: str) -> PaymentApplicationResult:
        """
        Allocate a payment to the customer's outstanding charges, oldest first.
        Charge remaining amounts, allocations and the payment status are
        written in one transaction.
        """
        session = self.session
        try:
            payment = await self._get_payment(tenant_id, payment_id)
            entries = []
            if payment.customer_id or payment.rental_id:
                # Customer payments cover all their charges; anonymous ones only their rental
                entries = await repository.load_charge_entries(
                    session, tenant_id,
                    customer_id=payment.customer_id,
                    rental_id=None if payment.customer_id else payment.rental_id,
                    for_update=True
                )
            entries_by_id = {entry.id: entry for entry in entries}
            charges = [repository.charge_schema(entry) for entry in entries]
            allocations = await repository.load_allocations(session, tenant_id, charge_ids=entries_by_id.keys())
            allocations += [
                allocation
                for allocation in await repository.load_allocations(session, tenant_id, payment_id=payment_id)
                if allocation.charge_id not in entries_by_id
            ]

            result = apply_payment_fifo(repository.payment_schema(payment), charges, allocations)
            allocations += result.allocations
            charges_by_id = {charge.id: charge for charge in charges}

            for allocation in result.allocations:
                entry = entries_by_id[allocation.charge_id]
                session.add(PaymentApplication(
                    tenant_id=tenant_id,
                    payment_id=payment.id,
                    charge_entry_id=entry.id,
                    amount_applied=allocation.amount_applied
                ))
                entry.remaining_amount = remaining_amount(charges_by_id[entry.id], allocations)
                logger.info(f"Applied {allocation.amount_applied} of payment {payment.id} to charge {entry.id}")

            payment.status = result.status.value
            payment.remaining_amount = result.unapplied
            await session.flush()
            await session.commit()

        except Exception:
            await session.rollback()
            raise

        return result

    async def reverse_payment(self, tenant_id: str, payment_id: str, reason: str) -> PaymentReversalResult:
        """
        Undo a payment: give each charge its applied amount back, drop the
        allocations and mark the payment Reversed, in one transaction.
        """
        session = self.session
        try:
            payment = await self._get_payment(tenant_id, payment_id)
            own_allocations = await repository.load_allocations(session, tenant_id, payment_id=payment_id)
            charge_ids = {allocation.charge_id for allocation in own_allocations}

            entries = await repository.load_charge_entries(
                session, tenant_id, charge_ids=charge_ids, for_update=True
            )
            allocations = await repository.load_allocations(session, tenant_id, charge_ids=charge_ids)
            result = reverse_payment(
                repository.payment_schema(payment),
                [repository.charge_schema(entry) for entry in entries],
                allocations,
                reason
            )

            remaining_by_charge = {line.charge_id: line.remaining for line in result.charges}
            for entry in entries:
                entry.remaining_amount = remaining_by_charge[entry.id]

            await session.execute(
                delete(PaymentApplication).where(and_(
                    PaymentApplication.tenant_id == tenant_id,
                    PaymentApplication.payment_id == payment.id
                ))
            )
            payment.status = result.status.value
            payment.remaining_amount = 0
            payment.reversal_reason = result.reason
            payment.reversed_at = datetime.now(timezone.utc)
            await session.commit()

        except Exception:
            await session.rollback()
            raise

        logger.info(f"Reversed payment {payment_id}, restored {result.amount_restored}")
        return result

    async def write_off_charge(self, tenant_id: str, charge_id: str) -> ChargeLedgerLine:
        session = self.session
        try:
            entry = await self._get_charge(tenant_id, charge_id)
            allocations = await repository.load_allocations(session, tenant_id, charge_ids=[charge_id])
            charge = write_off(repository.charge_schema(entry), allocations)

            if entry.written_off_at is None:
                entry.written_off_at = datetime.now(timezone.utc)
                entry.remaining_amount = charge.remaining_amount
            await session.commit()

        except Exception:
            await session.rollback()
            raise

        return reconcile_charges([charge], allocations)[0]

    async def customer_balance(self, tenant_id: str, customer_id: str) -> CustomerBalance:
        entries = await repository.load_charge_entries(self.session, tenant_id, customer_id=customer_id)
        charges = [repository.charge_schema(entry) for entry in entries]
        payments = await repository.load_payments(self.session, tenant_id, customer_id)
        allocations = await repository.load_allocations(
            self.session, tenant_id, charge_ids=[charge.id for charge in charges]
        )
        return customer_balance(charges, payments, allocations, customer_id=customer_id)

    async def rental_ledger(self, tenant_id: str, rental_id: str) -> RentalLedgerSummary:
        entries = await repository.load_charge_entries(self.session, tenant_id, rental_id=rental_id)
        if not entries:
            raise NotFoundError("rental ledger", rental_id)
        charges = [repository.charge_schema(entry) for entry in entries]
        allocations = await repository.load_allocations(
            self.session, tenant_id, charge_ids=[charge.id for charge in charges]
        )
        return rental_summary(charges, allocations, rental_id=rental_id)
