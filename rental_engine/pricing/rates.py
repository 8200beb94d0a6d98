"""
Rate Resolver
Computes the base rental price for a vehicle and date range, plus extras line items.
"""
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from ..exceptions import InvalidDateRangeError, UnknownExtraError
from ..models import (
    ZERO,
    ExtraLine,
    ExtraRequest,
    PriceBreakdown,
    RateLine,
    RatePeriod,
    RentalExtraSchema,
    TenantPricingConfig,
    VehicleExtraPriceSchema,
    VehicleSchema,
)
from ..services.extras import merge_extra_requests

logger = logging.getLogger(__name__)

# Longest unit first so ties resolve to the longer period
UNIT_ORDER = (RatePeriod.MONTHLY, RatePeriod.WEEKLY, RatePeriod.DAILY)

Unit = Tuple[RatePeriod, int, Decimal]


def rental_span_days(
    start_date: date,
    end_date: Optional[date],
    vehicle: VehicleSchema,
    config: TenantPricingConfig,
    rate_period: Optional[RatePeriod] = None
) -> int:
    """
    Number of chargeable days.

    A fixed range charges every day from start_date up to (not including)
    end_date. An open-ended rental is quoted for one billing period.
    """
    if end_date is None:
        return config.period_days(rate_period or vehicle.default_rate_period)
    if end_date <= start_date:
        raise InvalidDateRangeError(start_date, end_date)
    days = (end_date - start_date).days
    if days > config.max_rental_days:
        raise InvalidDateRangeError(
            start_date, end_date,
            message=f"Error: rental of {days} days is longer than the maximum of {config.max_rental_days} days"
        )
    return days


def select_pricing_tier(days: int, vehicle: VehicleSchema, config: TenantPricingConfig) -> RatePeriod:
    """Pick the rate period from the tenant's duration thresholds."""
    candidates = []
    if days >= config.monthly_min_days:
        candidates.append(RatePeriod.MONTHLY)
    if days >= config.weekly_min_days:
        candidates.append(RatePeriod.WEEKLY)
    candidates.append(RatePeriod.DAILY)

    for tier in candidates:
        if vehicle.rate_for(tier) is not None:
            return tier

    # No daily rate: fall back to the shortest flat period the vehicle has
    for tier in (RatePeriod.WEEKLY, RatePeriod.MONTHLY):
        if vehicle.rate_for(tier) is not None:
            return tier
    return RatePeriod.DAILY


def best_price_lines(days: int, vehicle: VehicleSchema, config: TenantPricingConfig) -> List[RateLine]:
    """
    Cheapest combination of month, week and day units covering `days`.

    A unit may cover more days than remain, so a short remainder never costs
    more than the next flat period.
    """
    units: List[Unit] = []
    for period in UNIT_ORDER:
        rate = vehicle.rate_for(period)
        if rate is not None:
            units.append((period, config.period_days(period), rate))

    _, counts = _cheapest_cover(days, units)
    prices = {period: rate for period, _, rate in units}

    return [
        RateLine(
            period=period,
            quantity=counts[period],
            unit_price=prices[period],
            amount=prices[period] * counts[period]
        )
        for period in UNIT_ORDER
        if counts.get(period)
    ]


def _cheapest_cover(days: int, units: List[Unit]) -> Tuple[Decimal, Dict[RatePeriod, int]]:
    """
    Cheapest unit counts covering `days`, longest unit first.

    The last unit simply rounds up. A unit followed only by the 1-day unit
    is linear in its count, so only none, the whole fit or one extra are
    tried. Otherwise every count of the unit is tried, which is at most
    days / unit length + 1 candidates.
    """
    if days <= 0:
        return ZERO, {}

    (period, length, rate), rest = units[0], units[1:]
    most = -(-days // length)
    if not rest:
        return rate * most, {period: most}

    if len(rest) == 1 and rest[0][1] == 1:
        counts = sorted({0, days // length, most}, reverse=True)
    else:
        counts = range(most, -1, -1)

    best: Optional[Tuple[Decimal, Dict[RatePeriod, int]]] = None
    # Highest count first: ties keep the longer unit
    for count in counts:
        cost, rest_counts = _cheapest_cover(days - count * length, rest)
        cost += rate * count
        if best is None or cost < best[0]:
            unit_counts = dict(rest_counts)
            unit_counts[period] = count
            best = (cost, unit_counts)
    return best


def resolve_extras(
    vehicle_id: str,
    requested: Iterable[ExtraRequest],
    extras_catalog: Iterable[RentalExtraSchema],
    vehicle_extra_prices: Iterable[VehicleExtraPriceSchema] = ()
) -> Tuple[List[ExtraLine], List[str]]:
    """
    Price the requested extras for a vehicle.

    Vehicle-specific prices win over the global price. Per-vehicle extras
    with no price row for this vehicle are left out and reported.
    """
    catalog = {extra.id: extra for extra in extras_catalog}
    overrides = {
        row.extra_id: row.price
        for row in vehicle_extra_prices
        if row.vehicle_id == vehicle_id
    }

    lines: List[ExtraLine] = []
    excluded: List[str] = []
    for extra_id, quantity in merge_extra_requests(requested).items():
        extra = catalog.get(extra_id)
        if extra is None:
            raise UnknownExtraError(extra_id)
        if not extra.is_active:
            raise UnknownExtraError(extra_id, reason="inactive")

        if extra_id in overrides:
            unit_price, source = overrides[extra_id], "vehicle_override"
        elif extra.pricing_type == "per_vehicle":
            logger.info(f"Extra {extra_id} has no price for vehicle {vehicle_id}, excluding it")
            excluded.append(extra_id)
            continue
        else:
            unit_price, source = extra.price, "global"

        lines.append(ExtraLine(
            extra_id=extra_id,
            name=extra.name,
            quantity=quantity,
            unit_price=unit_price,
            amount=unit_price * quantity,
            price_source=source
        ))

    return lines, excluded


def resolve_rate(
    vehicle: VehicleSchema,
    start_date: date,
    end_date: Optional[date],
    extras_requested: Iterable[ExtraRequest] = (),
    extras_catalog: Iterable[RentalExtraSchema] = (),
    vehicle_extra_prices: Iterable[VehicleExtraPriceSchema] = (),
    config: Optional[TenantPricingConfig] = None,
    rate_period: Optional[RatePeriod] = None
) -> PriceBreakdown:
    """
    Price a rental before surcharges.

    Returns the base subtotal for the period, per-extra line items and the
    combined subtotal. Raises InvalidDateRangeError for end <= start and
    UnknownExtraError for missing or inactive extras.
    """
    config = config or TenantPricingConfig(tenant_id=vehicle.tenant_id)

    days = rental_span_days(start_date, end_date, vehicle, config, rate_period)
    if end_date is None:
        tier = rate_period or vehicle.default_rate_period
    else:
        tier = select_pricing_tier(days, vehicle, config)

    rate_lines = best_price_lines(days, vehicle, config)
    base_subtotal = sum((line.amount for line in rate_lines), ZERO)

    extra_lines, excluded = resolve_extras(
        vehicle.id, extras_requested, extras_catalog, vehicle_extra_prices
    )
    extras_subtotal = sum((line.amount for line in extra_lines), ZERO)

    return PriceBreakdown(
        vehicle_id=vehicle.id,
        start_date=start_date,
        end_date=end_date,
        rental_days=days,
        pricing_tier=tier,
        rate_lines=rate_lines,
        base_subtotal=base_subtotal,
        extra_lines=extra_lines,
        extras_subtotal=extras_subtotal,
        excluded_extra_ids=excluded,
        subtotal=base_subtotal + extras_subtotal
    )
