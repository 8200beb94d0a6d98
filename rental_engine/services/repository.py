"""
Tenant-scoped loaders turning database rows into validated engine schemas.
"""
from datetime import date
from typing import Iterable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_
import logging

from ..config import DEFAULT_CURRENCY, EXTRAS_STOCK_SCOPE
from ..exceptions import NotFoundError
from ..models import (
    AllocationSchema,
    ChargeSchema,
    ExtraSelectionSchema,
    HolidaySchema,
    PaymentSchema,
    RentalExtraSchema,
    RentalSchema,
    RentalStatus,
    TenantPricingConfig,
    VehicleExtraPriceSchema,
    VehiclePricingRuleSchema,
    VehicleSchema,
    WeekendPricingSchema,
)
from ..models_postgres import (
    Holiday,
    LedgerEntry,
    Payment,
    PaymentApplication,
    Rental,
    RentalExtra,
    RentalExtraSelection,
    Tenant,
    Vehicle,
    VehicleExtraPrice,
    VehiclePricingRule,
)
from ..pricing.quoting import PricingContext

logger = logging.getLogger(__name__)

CANCELLED = RentalStatus.CANCELLED.value


async def load_tenant_settings(
    session: AsyncSession,
    tenant_id: str
) -> Tuple[TenantPricingConfig, Optional[WeekendPricingSchema]]:
    """Pricing config and weekend settings; defaults when the tenant has no row."""
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        logger.warning(f"No settings for tenant {tenant_id}, using defaults")
        return (
            TenantPricingConfig(
                tenant_id=tenant_id,
                currency_code=DEFAULT_CURRENCY,
                extras_stock_scope=EXTRAS_STOCK_SCOPE
            ),
            None
        )

    config_data = {
        "tenant_id": tenant.id,
        "currency_code": tenant.currency_code or DEFAULT_CURRENCY,
        "weekly_min_days": tenant.weekly_min_days,
        "monthly_min_days": tenant.monthly_min_days,
        "extras_stock_scope": tenant.extras_stock_scope or EXTRAS_STOCK_SCOPE,
    }
    if tenant.surcharge_tiers is not None:
        config_data["surcharge_tiers"] = tenant.surcharge_tiers

    try:
        config = TenantPricingConfig(**config_data)
    except ValueError as e:
        logger.warning(f"Invalid pricing settings for tenant {tenant_id}, using defaults: {e}")
        config = TenantPricingConfig(
            tenant_id=tenant.id,
            currency_code=tenant.currency_code or DEFAULT_CURRENCY,
            extras_stock_scope=EXTRAS_STOCK_SCOPE
        )

    try:
        weekend = WeekendPricingSchema(
            tenant_id=tenant.id,
            weekend_surcharge_percent=tenant.weekend_surcharge_percent or 0,
            weekend_days=tenant.weekend_days or []
        )
    except ValueError as e:
        logger.warning(f"Invalid weekend settings for tenant {tenant_id}, no weekend surcharge: {e}")
        weekend = None
    return config, weekend


def _vehicle_schema(vehicle: Vehicle) -> VehicleSchema:
    return VehicleSchema(
        id=vehicle.id,
        tenant_id=vehicle.tenant_id,
        reg=vehicle.reg,
        daily_rent=vehicle.daily_rent,
        weekly_rent=vehicle.weekly_rent,
        monthly_rent=vehicle.monthly_rent,
        default_rate_period=vehicle.default_rate_period
    )


async def load_vehicle(
    session: AsyncSession,
    tenant_id: str,
    vehicle_id: str,
    for_update: bool = False
) -> VehicleSchema:
    query = select(Vehicle).where(
        and_(Vehicle.id == vehicle_id, Vehicle.tenant_id == tenant_id)
    )
    if for_update:
        # Serialises bookings of one vehicle on PostgreSQL; ignored by SQLite
        query = query.with_for_update()

    result = await session.execute(query)
    vehicle = result.scalar_one_or_none()
    if vehicle is None or not vehicle.is_active:
        raise NotFoundError("vehicle", vehicle_id)
    return _vehicle_schema(vehicle)


async def load_holidays(session: AsyncSession, tenant_id: str) -> List[HolidaySchema]:
    result = await session.execute(
        select(Holiday).where(Holiday.tenant_id == tenant_id).order_by(Holiday.start_date)
    )
    holidays = []
    for holiday in result.scalars().all():
        try:
            holidays.append(HolidaySchema(
                id=holiday.id,
                tenant_id=holiday.tenant_id,
                name=holiday.name,
                start_date=holiday.start_date,
                end_date=holiday.end_date,
                surcharge_percent=holiday.surcharge_percent,
                excluded_vehicle_ids=holiday.excluded_vehicle_ids or [],
                recurs_annually=holiday.recurs_annually,
                allows_weekend_stacking=holiday.allows_weekend_stacking
            ))
        except ValueError as e:
            logger.warning(f"Skipping holiday {holiday.id} ({holiday.name}): {e}")
    return holidays


async def load_pricing_rules(
    session: AsyncSession,
    tenant_id: str,
    vehicle_id: str
) -> List[VehiclePricingRuleSchema]:
    result = await session.execute(
        select(VehiclePricingRule).where(
            and_(
                VehiclePricingRule.tenant_id == tenant_id,
                VehiclePricingRule.vehicle_id == vehicle_id
            )
        )
    )
    rules = []
    for rule in result.scalars().all():
        try:
            rules.append(VehiclePricingRuleSchema(
                id=rule.id,
                vehicle_id=rule.vehicle_id,
                rule_type=rule.rule_type,
                holiday_id=rule.holiday_id,
                override_type=rule.override_type,
                fixed_price=rule.fixed_price,
                custom_percent=rule.custom_percent
            ))
        except ValueError as e:
            logger.warning(f"Skipping pricing rule {rule.id} for vehicle {vehicle_id}: {e}")
    return rules


async def load_extras(session: AsyncSession, tenant_id: str) -> List[RentalExtraSchema]:
    result = await session.execute(
        select(RentalExtra)
        .where(RentalExtra.tenant_id == tenant_id)
        .order_by(RentalExtra.sort_order, RentalExtra.name)
    )
    extras = []
    for extra in result.scalars().all():
        try:
            extras.append(RentalExtraSchema(
                id=extra.id,
                tenant_id=extra.tenant_id,
                name=extra.name,
                price=extra.price,
                max_quantity=extra.max_quantity,
                is_active=extra.is_active,
                pricing_type=extra.pricing_type
            ))
        except ValueError as e:
            # A skipped extra surfaces as UnknownExtraError if someone asks for it
            logger.warning(f"Skipping extra {extra.id} ({extra.name}): {e}")
    return extras


async def load_vehicle_extra_prices(
    session: AsyncSession,
    tenant_id: str,
    vehicle_id: str
) -> List[VehicleExtraPriceSchema]:
    result = await session.execute(
        select(VehicleExtraPrice).where(
            and_(
                VehicleExtraPrice.tenant_id == tenant_id,
                VehicleExtraPrice.vehicle_id == vehicle_id
            )
        )
    )
    prices = []
    for row in result.scalars().all():
        try:
            prices.append(VehicleExtraPriceSchema(vehicle_id=row.vehicle_id, extra_id=row.extra_id, price=row.price))
        except ValueError as e:
            logger.warning(f"Skipping price of extra {row.extra_id} for vehicle {vehicle_id}: {e}")
    return prices


async def load_extra_selections(
    session: AsyncSession,
    tenant_id: str,
    extra_ids: Optional[Iterable[str]] = None
) -> List[ExtraSelectionSchema]:
    """Selections on rentals that still hold stock (anything but cancelled)."""
    query = (
        select(RentalExtraSelection, Rental)
        .join(Rental, RentalExtraSelection.rental_id == Rental.id)
        .where(
            and_(
                RentalExtraSelection.tenant_id == tenant_id,
                Rental.status != CANCELLED
            )
        )
    )
    if extra_ids is not None:
        query = query.where(RentalExtraSelection.extra_id.in_(list(extra_ids)))

    result = await session.execute(query)
    return [
        ExtraSelectionSchema(
            extra_id=selection.extra_id,
            rental_id=selection.rental_id,
            quantity=selection.quantity,
            rental_start_date=rental.start_date,
            rental_end_date=rental.end_date
        )
        for selection, rental in result.all()
    ]


def _rental_schema(rental: Rental) -> RentalSchema:
    return RentalSchema(
        id=rental.id,
        tenant_id=rental.tenant_id,
        customer_id=rental.customer_id,
        vehicle_id=rental.vehicle_id,
        start_date=rental.start_date,
        end_date=rental.end_date,
        status=rental.status,
        payment_mode=rental.payment_mode
    )


async def load_vehicle_rentals(
    session: AsyncSession,
    tenant_id: str,
    vehicle_id: str
) -> List[RentalSchema]:
    result = await session.execute(
        select(Rental).where(
            and_(
                Rental.tenant_id == tenant_id,
                Rental.vehicle_id == vehicle_id,
                Rental.status != CANCELLED
            )
        )
    )
    return [_rental_schema(rental) for rental in result.scalars().all()]


async def load_rentals_in_range(
    session: AsyncSession,
    tenant_id: str,
    start_date: date,
    end_date: date,
    vehicle_id: Optional[str] = None
) -> List[RentalSchema]:
    conditions = [
        Rental.tenant_id == tenant_id,
        Rental.status != CANCELLED,
        Rental.start_date <= end_date,
        or_(Rental.end_date.is_(None), Rental.end_date >= start_date),
    ]
    if vehicle_id:
        conditions.append(Rental.vehicle_id == vehicle_id)

    result = await session.execute(
        select(Rental).where(and_(*conditions)).order_by(Rental.vehicle_id, Rental.start_date)
    )
    return [_rental_schema(rental) for rental in result.scalars().all()]


def charge_schema(entry: LedgerEntry) -> ChargeSchema:
    return ChargeSchema(
        id=entry.id,
        tenant_id=entry.tenant_id,
        rental_id=entry.rental_id,
        customer_id=entry.customer_id,
        category=entry.category,
        amount=entry.amount,
        entry_date=entry.entry_date,
        due_date=entry.due_date,
        remaining_amount=entry.remaining_amount,
        written_off=entry.written_off_at is not None
    )


def payment_schema(payment: Payment) -> PaymentSchema:
    return PaymentSchema(
        id=payment.id,
        tenant_id=payment.tenant_id,
        customer_id=payment.customer_id,
        rental_id=payment.rental_id,
        amount=payment.amount,
        payment_date=payment.payment_date,
        status=payment.status
    )


async def load_charge_entries(
    session: AsyncSession,
    tenant_id: str,
    customer_id: Optional[str] = None,
    rental_id: Optional[str] = None,
    for_update: bool = False,
    charge_ids: Optional[Iterable[str]] = None
) -> List[LedgerEntry]:
    conditions = [LedgerEntry.tenant_id == tenant_id, LedgerEntry.type == "Charge"]
    if customer_id:
        conditions.append(LedgerEntry.customer_id == customer_id)
    if rental_id:
        conditions.append(LedgerEntry.rental_id == rental_id)
    if charge_ids is not None:
        conditions.append(LedgerEntry.id.in_(list(charge_ids)))

    query = select(LedgerEntry).where(and_(*conditions)).order_by(LedgerEntry.entry_date, LedgerEntry.id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return list(result.scalars().all())


async def load_payments(
    session: AsyncSession,
    tenant_id: str,
    customer_id: str
) -> List[PaymentSchema]:
    result = await session.execute(
        select(Payment).where(
            and_(Payment.tenant_id == tenant_id, Payment.customer_id == customer_id)
        )
    )
    return [payment_schema(payment) for payment in result.scalars().all()]


async def load_allocations(
    session: AsyncSession,
    tenant_id: str,
    charge_ids: Optional[Iterable[str]] = None,
    payment_id: Optional[str] = None
) -> List[AllocationSchema]:
    conditions = [PaymentApplication.tenant_id == tenant_id]
    if charge_ids is not None:
        conditions.append(PaymentApplication.charge_entry_id.in_(list(charge_ids)))
    if payment_id:
        conditions.append(PaymentApplication.payment_id == payment_id)

    result = await session.execute(select(PaymentApplication).where(and_(*conditions)))
    return [
        AllocationSchema(
            id=row.id,
            payment_id=row.payment_id,
            charge_id=row.charge_entry_id,
            amount_applied=row.amount_applied
        )
        for row in result.scalars().all()
    ]


async def load_pricing_context(
    session: AsyncSession,
    tenant_id: str,
    vehicle_id: str,
    for_update: bool = False
) -> PricingContext:
    """Everything a quote for one vehicle needs, fetched in one place."""
    vehicle = await load_vehicle(session, tenant_id, vehicle_id, for_update=for_update)
    config, weekend = await load_tenant_settings(session, tenant_id)
    return PricingContext(
        vehicle=vehicle,
        config=config,
        holidays=await load_holidays(session, tenant_id),
        weekend=weekend,
        pricing_rules=await load_pricing_rules(session, tenant_id, vehicle_id),
        extras=await load_extras(session, tenant_id),
        vehicle_extra_prices=await load_vehicle_extra_prices(session, tenant_id, vehicle_id)
    )
