"""
Quoting Engine for vehicle rentals
Combines the rate resolver and the surcharge calculator into a single quote.
"""
from typing import List, Optional
import logging

from pydantic import BaseModel, Field

from ..models import (
    HolidaySchema,
    Quote,
    QuoteRequest,
    RentalExtraSchema,
    TenantPricingConfig,
    VehicleExtraPriceSchema,
    VehiclePricingRuleSchema,
    VehicleSchema,
    WeekendPricingSchema,
)
from .rates import resolve_rate
from .surcharges import calculate_surcharges

logger = logging.getLogger(__name__)


class PricingContext(BaseModel):
    """Tenant data a quote is computed from, fetched by the caller."""
    vehicle: VehicleSchema
    config: TenantPricingConfig
    holidays: List[HolidaySchema] = Field(default_factory=list)
    weekend: Optional[WeekendPricingSchema] = None
    pricing_rules: List[VehiclePricingRuleSchema] = Field(default_factory=list)
    extras: List[RentalExtraSchema] = Field(default_factory=list)
    vehicle_extra_prices: List[VehicleExtraPriceSchema] = Field(default_factory=list)


def build_quote(context: PricingContext, request: QuoteRequest) -> Quote:
    """
    Calculate a complete quote.

    Surcharges are computed on the base rental subtotal only; extras are
    flat per rental. Nothing is rounded here, see Quote.presentation().
    """
    breakdown = resolve_rate(
        vehicle=context.vehicle,
        start_date=request.start_date,
        end_date=request.end_date,
        extras_requested=request.extras,
        extras_catalog=context.extras,
        vehicle_extra_prices=context.vehicle_extra_prices,
        config=context.config,
        rate_period=request.rate_period
    )

    surcharges = calculate_surcharges(
        base_subtotal=breakdown.base_subtotal,
        start_date=breakdown.start_date,
        end_date=breakdown.end_date,
        holidays=context.holidays,
        weekend=context.weekend,
        vehicle_id=context.vehicle.id,
        rules=context.pricing_rules,
        pricing_tier=breakdown.pricing_tier,
        config=context.config,
        rental_days=breakdown.rental_days
    )

    quote = Quote(
        breakdown=breakdown,
        surcharges=surcharges,
        total=breakdown.subtotal + surcharges.total,
        currency=context.config.currency_code
    )
    logger.info(
        f"Quoted vehicle {context.vehicle.id} for {breakdown.rental_days} days "
        f"({breakdown.pricing_tier.value}): {quote.presentation()['total']} {quote.currency}"
    )
    return quote
