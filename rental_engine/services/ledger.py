"""
Ledger Reconciler
Per-charge payment status and per-customer balance from charges, payments
and the allocations linking them.
"""
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from ..exceptions import OverAllocationError
from ..models import (
    ZERO,
    AllocationSchema,
    BalanceStatus,
    ChargeLedgerLine,
    ChargeSchema,
    ChargeStatus,
    CustomerBalance,
    PaymentApplicationResult,
    PaymentSchema,
    PaymentReversalResult,
    PaymentStatus,
    RentalLedgerSummary,
)

logger = logging.getLogger(__name__)

MINOR_UNIT = Decimal("0.01")


def allocated_total(charge: ChargeSchema, allocations: Iterable[AllocationSchema]) -> Decimal:
    return sum(
        (allocation.amount_applied for allocation in allocations if allocation.charge_id == charge.id),
        ZERO
    )


def _remaining(charge: ChargeSchema, allocated: Decimal) -> Decimal:
    if charge.written_off:
        return ZERO
    return max(ZERO, abs(charge.amount) - allocated)


def remaining_amount(charge: ChargeSchema, allocations: Iterable[AllocationSchema]) -> Decimal:
    """max(0, |amount| - allocated); always 0 once the charge is written off."""
    return _remaining(charge, allocated_total(charge, allocations))


def _status(charge: ChargeSchema, allocated: Decimal) -> ChargeStatus:
    if charge.written_off:
        return ChargeStatus.PARTIAL_WRITTEN_OFF if allocated > 0 else ChargeStatus.WRITTEN_OFF
    if _remaining(charge, allocated) == 0:
        return ChargeStatus.PAID
    if allocated == 0:
        return ChargeStatus.UNPAID
    return ChargeStatus.PARTIALLY_PAID


def charge_status(charge: ChargeSchema, allocations: Iterable[AllocationSchema]) -> ChargeStatus:
    return _status(charge, allocated_total(charge, allocations))


def reconcile_charges(
    charges: Iterable[ChargeSchema],
    allocations: Iterable[AllocationSchema]
) -> List[ChargeLedgerLine]:
    """
    Recompute allocated, remaining and status for each charge.

    Stored remaining amounts that disagree with the allocations are logged
    and replaced by the recomputed value. Allocations that already exceed a
    charge's amount raise OverAllocationError.
    """
    allocations = list(allocations)
    lines = []
    for charge in charges:
        allocated = allocated_total(charge, allocations)
        if allocated > abs(charge.amount):
            raise OverAllocationError(charge.id, allocated, abs(charge.amount))

        remaining = _remaining(charge, allocated)
        if charge.remaining_amount is not None and charge.remaining_amount != remaining:
            logger.warning(
                f"Charge {charge.id} stored remaining {charge.remaining_amount} "
                f"differs from allocations, using {remaining}"
            )

        lines.append(ChargeLedgerLine(
            charge_id=charge.id,
            category=charge.category,
            due_date=charge.due_date,
            amount=charge.amount,
            allocated=allocated,
            remaining=remaining,
            status=_status(charge, allocated)
        ))
    return lines


def allocate(
    charge: ChargeSchema,
    allocations: Iterable[AllocationSchema],
    payment_id: str,
    amount: Decimal
) -> AllocationSchema:
    """Build an allocation of part of a payment to a charge."""
    if amount <= 0:
        raise ValueError(f"Allocation amount must be positive, got {amount}")

    remaining = remaining_amount(charge, allocations)
    if amount > remaining:
        raise OverAllocationError(charge.id, amount, remaining)

    return AllocationSchema(payment_id=payment_id, charge_id=charge.id, amount_applied=amount)


def write_off(charge: ChargeSchema, allocations: Iterable[AllocationSchema]) -> ChargeSchema:
    """Force the remaining amount of an outstanding charge to zero."""
    if charge.written_off:
        return charge
    remaining = remaining_amount(charge, allocations)
    if remaining == 0:
        raise ValueError(f"Charge {charge.id} is already paid and cannot be written off")
    logger.info(f"Writing off {remaining} on charge {charge.id}")
    return charge.model_copy(update={"written_off": True, "remaining_amount": ZERO})


def _fifo_key(charge: ChargeSchema):
    return (charge.due_date or date.max, charge.entry_date or date.max, charge.id)


def apply_payment_fifo(
    payment: PaymentSchema,
    charges: Iterable[ChargeSchema],
    allocations: Iterable[AllocationSchema]
) -> PaymentApplicationResult:
    """
    Allocate the unapplied part of a payment to outstanding charges,
    oldest due date first, then oldest entry date.
    """
    if payment.status == PaymentStatus.REVERSED:
        raise ValueError(f"Payment {payment.id} has been reversed")
    if payment.amount <= 0:
        raise ValueError(f"Payment {payment.id} amount must be positive, got {payment.amount}")

    allocations = list(allocations)
    already_applied = sum(
        (allocation.amount_applied for allocation in allocations if allocation.payment_id == payment.id),
        ZERO
    )
    unapplied = payment.amount - already_applied
    if unapplied < 0:
        raise OverAllocationError(payment.id, already_applied, payment.amount)

    new_allocations = []
    outstanding = sorted((c for c in charges if c.amount > 0 and not c.written_off), key=_fifo_key)
    for charge in outstanding:
        if unapplied <= 0:
            break
        remaining = remaining_amount(charge, allocations)
        if remaining <= 0:
            continue
        allocation = allocate(charge, allocations, payment.id, min(unapplied, remaining))
        allocations.append(allocation)
        new_allocations.append(allocation)
        unapplied -= allocation.amount_applied

    if unapplied == 0:
        status = PaymentStatus.APPLIED
    elif already_applied > 0 or new_allocations:
        status = PaymentStatus.PARTIAL
    else:
        status = PaymentStatus.CREDIT

    return PaymentApplicationResult(
        payment_id=payment.id,
        allocations=new_allocations,
        allocated=sum((a.amount_applied for a in new_allocations), ZERO),
        unapplied=unapplied,
        status=status
    )


def reverse_payment(
    payment: PaymentSchema,
    charges: Iterable[ChargeSchema],
    allocations: Iterable[AllocationSchema],
    reason: str
) -> PaymentReversalResult:
    """
    Undo every allocation of a payment.

    Each charge the payment touched gets its applied amount back and its
    status recomputed from the allocations that remain. The payment itself
    stops counting towards the customer balance.
    """
    if payment.status == PaymentStatus.REVERSED:
        raise ValueError(f"Payment {payment.id} has already been reversed")
    if not reason or not reason.strip():
        raise ValueError("A reversal reason is required")

    allocations = list(allocations)
    reversed_allocations = [a for a in allocations if a.payment_id == payment.id]
    kept = [a for a in allocations if a.payment_id != payment.id]
    touched = {a.charge_id for a in reversed_allocations}

    # Stored remainders predate the reversal, so recompute without comparing
    lines = reconcile_charges(
        [c.model_copy(update={"remaining_amount": None}) for c in charges if c.id in touched],
        kept
    )
    amount_restored = sum((a.amount_applied for a in reversed_allocations), ZERO)
    logger.info(
        f"Reversing payment {payment.id}: {amount_restored} restored "
        f"across {len(touched)} charges ({reason.strip()})"
    )

    return PaymentReversalResult(
        payment_id=payment.id,
        reason=reason.strip(),
        reversed_allocations=reversed_allocations,
        amount_restored=amount_restored,
        charges=lines
    )


def customer_balance(
    charges: Iterable[ChargeSchema],
    payments: Iterable[PaymentSchema],
    allocations: Iterable[AllocationSchema] = (),
    minor_unit: Decimal = MINOR_UNIT,
    customer_id: Optional[str] = None
) -> CustomerBalance:
    """
    balance = payments - (charges - written off remainders).

    Positive means the customer is in credit, negative in debt. Anything
    smaller than one minor currency unit counts as settled.
    """
    charges = list(charges)
    allocations = list(allocations)

    total_charges = sum((charge.amount for charge in charges), ZERO)
    total_payments = sum(
        (payment.amount for payment in payments if payment.status != PaymentStatus.REVERSED),
        ZERO
    )

    total_written_off = ZERO
    outstanding = ZERO
    for charge in charges:
        if charge.amount <= 0:
            continue
        allocated = allocated_total(charge, allocations)
        if charge.written_off:
            total_written_off += max(ZERO, charge.amount - allocated)
        else:
            outstanding += _remaining(charge, allocated)

    balance = total_payments - (total_charges - total_written_off)
    if abs(balance) < minor_unit:
        status = BalanceStatus.SETTLED
    elif balance > 0:
        status = BalanceStatus.IN_CREDIT
    else:
        status = BalanceStatus.IN_DEBT

    return CustomerBalance(
        customer_id=customer_id,
        balance=balance,
        status=status,
        total_charges=total_charges,
        total_payments=total_payments,
        total_written_off=total_written_off,
        outstanding=outstanding
    )


def rental_summary(
    charges: Iterable[ChargeSchema],
    allocations: Iterable[AllocationSchema],
    rental_id: Optional[str] = None
) -> RentalLedgerSummary:
    lines = reconcile_charges(charges, allocations)
    return RentalLedgerSummary(
        rental_id=rental_id,
        charges=sum((line.amount for line in lines), ZERO),
        paid=sum((line.allocated for line in lines), ZERO),
        outstanding=sum((line.remaining for line in lines), ZERO),
        lines=lines
    )
