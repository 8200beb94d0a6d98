"""
Surcharge Calculator
Applies holiday and weekend surcharges per rental day on top of the base rate.
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
import logging

from ..exceptions import InvalidDateRangeError
from ..models import (
    ZERO,
    DaySurcharge,
    HolidaySchema,
    RatePeriod,
    SurchargeBreakdown,
    TenantPricingConfig,
    VehiclePricingRuleSchema,
    WeekendPricingSchema,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def weekday_index(day: date) -> int:
    """Weekday with 0=Sunday ... 6=Saturday, the convention tenant settings use."""
    return (day.weekday() + 1) % 7


def _same_day_in_year(day: date, year: int) -> date:
    try:
        return day.replace(year=year)
    except ValueError:
        # Feb 29 outside a leap year
        return date(year, 2, 28)


def holiday_covers(holiday: HolidaySchema, day: date) -> bool:
    """Check if a day falls in a holiday window; recurring holidays ignore the year."""
    if not holiday.recurs_annually:
        return holiday.start_date <= day <= holiday.end_date

    # Windows such as Dec 30 - Jan 2 cross into the next year
    span_years = holiday.end_date.year - holiday.start_date.year
    for year in range(day.year - span_years, day.year + 1):
        start = _same_day_in_year(holiday.start_date, year)
        end = _same_day_in_year(holiday.end_date, year + span_years)
        if start <= day <= end:
            return True
    return False


def _rule_amount(
    base_share: Decimal,
    percent: Decimal,
    rule: Optional[VehiclePricingRuleSchema]
) -> Optional[Decimal]:
    """Surcharge for one day, or None when a vehicle rule excludes it."""
    if rule is None:
        return base_share * percent / HUNDRED
    if rule.override_type == "excluded":
        return None
    if rule.override_type == "fixed_price":
        return rule.fixed_price - base_share
    return base_share * rule.custom_percent / HUNDRED


def _usable_holidays(holidays: Iterable[HolidaySchema]) -> Tuple[List[HolidaySchema], List[str]]:
    usable, skipped = [], []
    for holiday in holidays:
        if holiday.is_malformed:
            logger.warning(
                f"Skipping holiday {holiday.id} ({holiday.name}): "
                f"end {holiday.end_date} is before start {holiday.start_date}"
            )
            skipped.append(holiday.id)
            continue
        usable.append(holiday)
    return usable, skipped


def calculate_surcharges(
    base_subtotal: Decimal,
    start_date: date,
    end_date: Optional[date],
    holidays: Iterable[HolidaySchema],
    weekend: Optional[WeekendPricingSchema],
    vehicle_id: str,
    rules: Iterable[VehiclePricingRuleSchema] = (),
    pricing_tier: Optional[RatePeriod] = None,
    config: Optional[TenantPricingConfig] = None,
    rental_days: Optional[int] = None
) -> SurchargeBreakdown:
    """
    Calculate holiday and weekend surcharges for a rental.

    Each day carries an equal share of the base subtotal. When several
    holidays cover the same day only the highest surcharge applies. Weekend
    surcharges add on top of a holiday unless that holiday disables weekend
    stacking or the vehicle has a fixed price for it, and never apply on a
    day the vehicle is excluded from a holiday.
    """
    if end_date is not None:
        if end_date <= start_date:
            raise InvalidDateRangeError(start_date, end_date)
        rental_days = (end_date - start_date).days
    elif not rental_days:
        raise ValueError("rental_days is required for open-ended rentals")

    usable, skipped = _usable_holidays(holidays)
    result = SurchargeBreakdown(skipped_holiday_ids=skipped)

    if config and pricing_tier and pricing_tier not in config.surcharge_tiers:
        return result

    vehicle_rules = [rule for rule in rules if rule.vehicle_id == vehicle_id]
    holiday_rules = {
        rule.holiday_id: rule for rule in vehicle_rules if rule.rule_type == "holiday"
    }
    weekend_rule = next((rule for rule in vehicle_rules if rule.rule_type == "weekend"), None)

    weekend_active = (
        weekend is not None
        and weekend.weekend_surcharge_percent > 0
        and bool(weekend.weekend_days)
    )

    base_share = base_subtotal / rental_days
    total = ZERO

    for offset in range(rental_days):
        day = start_date + timedelta(days=offset)
        weekday = weekday_index(day)

        candidates = []
        vehicle_excluded = False
        for holiday in usable:
            if not holiday_covers(holiday, day):
                continue
            if vehicle_id in holiday.excluded_vehicle_ids:
                vehicle_excluded = True
                continue
            rule = holiday_rules.get(holiday.id)
            amount = _rule_amount(base_share, holiday.surcharge_percent, rule)
            if amount is None:
                vehicle_excluded = True
                continue
            fixed = rule is not None and rule.override_type == "fixed_price"
            candidates.append((amount, holiday, fixed))

        winner = None
        winner_fixed = False
        holiday_amount = ZERO
        if candidates:
            candidates.sort(key=lambda c: (-c[0], c[1].start_date, c[1].name, c[1].id))
            holiday_amount, winner, winner_fixed = candidates[0]

        weekend_amount = ZERO
        if (
            weekend_active
            and weekday in weekend.weekend_days
            and not vehicle_excluded
            and (winner is None or winner.allows_weekend_stacking)
            # A fixed holiday price is the whole day rate
            and not winner_fixed
        ):
            amount = _rule_amount(base_share, weekend.weekend_surcharge_percent, weekend_rule)
            if amount is not None:
                weekend_amount = amount

        if winner is None and not weekend_amount:
            continue

        result.days.append(DaySurcharge(
            day=day,
            weekday=weekday,
            base_share=base_share,
            holiday_id=winner.id if winner else None,
            holiday_name=winner.name if winner else None,
            holiday_amount=holiday_amount,
            weekend_amount=weekend_amount
        ))
        if winner and winner.name not in result.holidays_applied:
            result.holidays_applied.append(winner.name)
        if weekend_amount:
            result.weekend_days_count += 1
        total += holiday_amount + weekend_amount

    result.total = total
    return result
