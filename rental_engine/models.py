"""
Pydantic models for the pricing and ledger engine.

Input schemas validate already-fetched tenant data at the boundary so the
engine works on sound types. Result models are the plain structures the
engine hands back to request handlers.
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import MAX_RENTAL_DAYS

ZERO = Decimal("0")


def to_money(amount: Decimal, places: str = "0.01") -> Decimal:
    """Round for presentation only."""
    return Decimal(amount).quantize(Decimal(places), ROUND_HALF_UP)


# Enums
class RatePeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RentalStatus(str, Enum):
    ACTIVE = "Active"
    PENDING = "Pending"
    ENQUIRY = "Enquiry"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"


class ChargeStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "PartiallyPaid"
    PAID = "Paid"
    WRITTEN_OFF = "WrittenOff"
    PARTIAL_WRITTEN_OFF = "PartialWrittenOff"


class BalanceStatus(str, Enum):
    SETTLED = "Settled"
    IN_CREDIT = "In Credit"
    IN_DEBT = "In Debt"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    APPLIED = "Applied"
    PARTIAL = "Partial"
    CREDIT = "Credit"
    REVERSED = "Reversed"


# Tenant configuration
class TenantPricingConfig(BaseModel):
    tenant_id: Optional[str] = None
    currency_code: str = "GBP"
    weekly_min_days: int = Field(default=7, ge=1)
    monthly_min_days: int = Field(default=31, ge=1)
    days_per_week: int = Field(default=7, ge=1)
    days_per_month: int = Field(default=30, ge=1)
    max_rental_days: int = Field(default=MAX_RENTAL_DAYS, ge=1)
    surcharge_tiers: List[RatePeriod] = Field(
        default_factory=lambda: [RatePeriod.DAILY, RatePeriod.WEEKLY, RatePeriod.MONTHLY]
    )
    extras_stock_scope: Literal["global", "date_range"] = "global"

    def period_days(self, period: RatePeriod) -> int:
        if period == RatePeriod.MONTHLY:
            return self.days_per_month
        if period == RatePeriod.WEEKLY:
            return self.days_per_week
        return 1


# Input schemas
class VehicleSchema(BaseModel):
    id: str
    tenant_id: str
    reg: Optional[str] = None
    daily_rent: Optional[Decimal] = Field(default=None, ge=0)
    weekly_rent: Optional[Decimal] = Field(default=None, ge=0)
    monthly_rent: Optional[Decimal] = Field(default=None, ge=0)
    default_rate_period: RatePeriod = RatePeriod.DAILY

    @model_validator(mode="after")
    def check_has_rate(self):
        if not any(rate for rate in (self.daily_rent, self.weekly_rent, self.monthly_rent)):
            raise ValueError(f"vehicle {self.id} has no daily, weekly or monthly rate")
        return self

    def rate_for(self, period: RatePeriod) -> Optional[Decimal]:
        rate = {
            RatePeriod.DAILY: self.daily_rent,
            RatePeriod.WEEKLY: self.weekly_rent,
            RatePeriod.MONTHLY: self.monthly_rent,
        }[period]
        return rate if rate else None


class HolidaySchema(BaseModel):
    # end_date < start_date is tolerated here; the surcharge calculator skips such rows
    id: str
    tenant_id: str
    name: str
    start_date: date
    end_date: date
    surcharge_percent: Decimal = Field(ge=0)
    excluded_vehicle_ids: List[str] = Field(default_factory=list)
    recurs_annually: bool = False
    allows_weekend_stacking: bool = True

    @property
    def is_malformed(self) -> bool:
        return self.end_date < self.start_date


class WeekendPricingSchema(BaseModel):
    """Weekday indices use 0=Sunday ... 6=Saturday."""
    tenant_id: str
    weekend_surcharge_percent: Decimal = Field(default=ZERO, ge=0)
    weekend_days: List[int] = Field(default_factory=lambda: [0, 6])

    @field_validator("weekend_days")
    @classmethod
    def check_weekdays(cls, value: List[int]) -> List[int]:
        for day in value:
            if day < 0 or day > 6:
                raise ValueError(f"weekend day index {day} outside 0..6")
        return sorted(set(value))


class VehiclePricingRuleSchema(BaseModel):
    id: Optional[str] = None
    vehicle_id: str
    rule_type: Literal["weekend", "holiday"]
    holiday_id: Optional[str] = None
    override_type: Literal["fixed_price", "custom_percent", "excluded"]
    fixed_price: Optional[Decimal] = Field(default=None, ge=0)
    custom_percent: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_override_value(self):
        if self.rule_type == "holiday" and not self.holiday_id:
            raise ValueError("holiday pricing rules need a holiday_id")
        if self.override_type == "fixed_price" and self.fixed_price is None:
            raise ValueError("fixed_price rules need a fixed_price")
        if self.override_type == "custom_percent" and self.custom_percent is None:
            raise ValueError("custom_percent rules need a custom_percent")
        return self


class RentalExtraSchema(BaseModel):
    id: str
    tenant_id: str
    name: str
    price: Decimal = Field(ge=0)
    max_quantity: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True
    pricing_type: Literal["global", "per_vehicle"] = "global"


class VehicleExtraPriceSchema(BaseModel):
    vehicle_id: str
    extra_id: str
    price: Decimal = Field(ge=0)


class ExtraSelectionSchema(BaseModel):
    extra_id: str
    rental_id: str
    quantity: int = Field(ge=1)
    rental_start_date: Optional[date] = None
    rental_end_date: Optional[date] = None


class ExtraRequest(BaseModel):
    extra_id: str
    quantity: int = Field(default=1, ge=1)


class RentalSchema(BaseModel):
    id: str
    tenant_id: str
    customer_id: Optional[str] = None
    vehicle_id: str
    start_date: date
    end_date: Optional[date] = None
    status: RentalStatus = RentalStatus.ACTIVE
    payment_mode: Optional[str] = None


class ChargeSchema(BaseModel):
    id: str
    tenant_id: str
    rental_id: Optional[str] = None
    customer_id: Optional[str] = None
    category: str = "Rental"
    amount: Decimal
    entry_date: Optional[date] = None
    due_date: Optional[date] = None
    remaining_amount: Optional[Decimal] = None
    written_off: bool = False


class PaymentSchema(BaseModel):
    id: str
    tenant_id: str
    customer_id: Optional[str] = None
    rental_id: Optional[str] = None
    amount: Decimal
    payment_date: Optional[date] = None
    status: PaymentStatus = PaymentStatus.PENDING


class AllocationSchema(BaseModel):
    id: Optional[str] = None
    payment_id: str
    charge_id: str
    amount_applied: Decimal = Field(gt=0)


# Pricing results
class RateLine(BaseModel):
    period: RatePeriod
    quantity: int
    unit_price: Decimal
    amount: Decimal


class ExtraLine(BaseModel):
    extra_id: str
    name: str
    quantity: int
    unit_price: Decimal
    amount: Decimal
    price_source: Literal["vehicle_override", "global"]


class PriceBreakdown(BaseModel):
    vehicle_id: str
    start_date: date
    end_date: Optional[date]
    rental_days: int
    pricing_tier: RatePeriod
    rate_lines: List[RateLine]
    base_subtotal: Decimal
    extra_lines: List[ExtraLine] = Field(default_factory=list)
    extras_subtotal: Decimal = ZERO
    excluded_extra_ids: List[str] = Field(default_factory=list)
    subtotal: Decimal


class DaySurcharge(BaseModel):
    day: date
    weekday: int
    base_share: Decimal
    holiday_id: Optional[str] = None
    holiday_name: Optional[str] = None
    holiday_amount: Decimal = ZERO
    weekend_amount: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.holiday_amount + self.weekend_amount


class SurchargeBreakdown(BaseModel):
    total: Decimal = ZERO
    days: List[DaySurcharge] = Field(default_factory=list)
    holidays_applied: List[str] = Field(default_factory=list)
    weekend_days_count: int = 0
    skipped_holiday_ids: List[str] = Field(default_factory=list)


class Quote(BaseModel):
    breakdown: PriceBreakdown
    surcharges: SurchargeBreakdown
    total: Decimal
    currency: str

    def presentation(self) -> Dict[str, object]:
        """Figures rounded to the currency's minor unit for display."""
        return {
            "currency": self.currency,
            "rental_days": self.breakdown.rental_days,
            "pricing_tier": self.breakdown.pricing_tier.value,
            "base_subtotal": to_money(self.breakdown.base_subtotal),
            "extras_subtotal": to_money(self.breakdown.extras_subtotal),
            "surcharges": to_money(self.surcharges.total),
            "total": to_money(self.total),
        }


# Stock and availability results
class StockLevel(BaseModel):
    extra_id: str
    name: str
    max_quantity: Optional[int]
    booked_quantity: int
    remaining_stock: Optional[int]
    requested: int = 0
    can_fulfill: bool = True


class StockReport(BaseModel):
    lines: Dict[str, StockLevel]

    @property
    def can_fulfill(self) -> bool:
        return all(line.can_fulfill for line in self.lines.values())


class AvailabilityResult(BaseModel):
    vehicle_id: str
    available: bool
    conflicting_rental_ids: List[str] = Field(default_factory=list)


# Ledger results
class ChargeLedgerLine(BaseModel):
    charge_id: str
    category: str
    due_date: Optional[date]
    amount: Decimal
    allocated: Decimal
    remaining: Decimal
    status: ChargeStatus


class PaymentApplicationResult(BaseModel):
    payment_id: str
    allocations: List[AllocationSchema]
    allocated: Decimal
    unapplied: Decimal
    status: PaymentStatus


class PaymentReversalResult(BaseModel):
    payment_id: str
    reason: str
    reversed_allocations: List[AllocationSchema]
    amount_restored: Decimal
    charges: List[ChargeLedgerLine]
    status: PaymentStatus = PaymentStatus.REVERSED


class CustomerBalance(BaseModel):
    customer_id: Optional[str]
    balance: Decimal
    status: BalanceStatus
    total_charges: Decimal
    total_payments: Decimal
    total_written_off: Decimal
    outstanding: Decimal


class RentalLedgerSummary(BaseModel):
    rental_id: Optional[str]
    charges: Decimal
    paid: Decimal
    outstanding: Decimal
    lines: List[ChargeLedgerLine]


# API request / response models
class QuoteRequest(BaseModel):
    vehicle_id: str
    start_date: date
    end_date: Optional[date] = None
    rate_period: Optional[RatePeriod] = None
    extras: List[ExtraRequest] = Field(default_factory=list)


class BookingRequest(QuoteRequest):
    customer_id: str
    payment_mode: Optional[str] = None
    status: RentalStatus = RentalStatus.PENDING


class BookingResult(BaseModel):
    rental_id: str
    vehicle_id: str
    customer_id: str
    start_date: date
    end_date: Optional[date]
    status: RentalStatus
    charge_ids: List[str]
    quote: Quote
    created_from_idempotency: bool = False


class PaymentReversalRequest(BaseModel):
    reason: str = Field(min_length=1)

    @field_validator("reason")
    @classmethod
    def check_reason(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("a reversal reason is required")
        return value.strip()


class StockCheckRequest(BaseModel):
    extras: List[ExtraRequest]
    start_date: Optional[date] = None
    end_date: Optional[date] = None
