"""
SQLAlchemy models for the rental pricing and ledger tables
Every table is scoped by tenant_id
"""

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, Boolean, Text, ForeignKey,
    Index, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    currency_code = Column(String(3), default="GBP", nullable=False)

    # Weekend pricing (weekday indices 0=Sunday ... 6=Saturday)
    weekend_surcharge_percent = Column(Numeric(5, 2), default=0, nullable=False)
    weekend_days = Column(JSON, default=lambda: [0, 6])

    # Rate tier thresholds
    weekly_min_days = Column(Integer, default=7, nullable=False)
    monthly_min_days = Column(Integer, default=31, nullable=False)
    surcharge_tiers = Column(JSON, nullable=True)  # null = all tiers
    extras_stock_scope = Column(String(20), nullable=True)  # null = service default

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    reg = Column(String(20), nullable=True)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)

    # Pricing
    daily_rent = Column(Numeric(12, 2), nullable=True)
    weekly_rent = Column(Numeric(12, 2), nullable=True)
    monthly_rent = Column(Numeric(12, 2), nullable=True)
    default_rate_period = Column(String(10), default="daily", nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    rentals = relationship("Rental", back_populates="vehicle")

    __table_args__ = (
        Index("idx_vehicles_tenant", "tenant_id"),
    )


class Holiday(Base):
    __tablename__ = "holidays"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    surcharge_percent = Column(Numeric(5, 2), nullable=False)
    excluded_vehicle_ids = Column(JSON, default=list)
    recurs_annually = Column(Boolean, default=False, nullable=False)
    allows_weekend_stacking = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_holidays_tenant_dates", "tenant_id", "start_date", "end_date"),
    )


class VehiclePricingRule(Base):
    __tablename__ = "vehicle_pricing_rules"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False)
    rule_type = Column(String(20), nullable=False)  # 'weekend', 'holiday'
    holiday_id = Column(String(36), ForeignKey("holidays.id"), nullable=True)
    override_type = Column(String(20), nullable=False)  # 'fixed_price', 'custom_percent', 'excluded'
    fixed_price = Column(Numeric(12, 2), nullable=True)
    custom_percent = Column(Numeric(5, 2), nullable=True)

    __table_args__ = (
        Index("idx_pricing_rules_vehicle", "tenant_id", "vehicle_id"),
    )


class RentalExtra(Base):
    __tablename__ = "rental_extras"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    max_quantity = Column(Integer, nullable=True)  # null = unlimited
    is_active = Column(Boolean, default=True, nullable=False)
    pricing_type = Column(String(20), default="global", nullable=False)  # 'global', 'per_vehicle'
    sort_order = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="_tenant_extra_name_uc"),
    )


class VehicleExtraPrice(Base):
    __tablename__ = "vehicle_extra_prices"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False)
    extra_id = Column(String(36), ForeignKey("rental_extras.id"), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("vehicle_id", "extra_id", name="_vehicle_extra_uc"),
    )


class Rental(Base):
    __tablename__ = "rentals"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    customer_id = Column(String(36), nullable=False)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # null = open-ended
    status = Column(String(20), default="Pending", nullable=False)
    payment_mode = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    vehicle = relationship("Vehicle", back_populates="rentals")
    extra_selections = relationship("RentalExtraSelection", back_populates="rental")

    __table_args__ = (
        Index("idx_rentals_vehicle_dates", "tenant_id", "vehicle_id", "start_date", "end_date"),
        Index("idx_rentals_status", "status"),
    )


class RentalExtraSelection(Base):
    __tablename__ = "rental_extra_selections"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    rental_id = Column(String(36), ForeignKey("rentals.id"), nullable=False)
    extra_id = Column(String(36), ForeignKey("rental_extras.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    rental = relationship("Rental", back_populates="extra_selections")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="selection_quantity_positive"),
        Index("idx_selections_extra", "extra_id"),
    )


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    customer_id = Column(String(36), nullable=True)
    rental_id = Column(String(36), ForeignKey("rentals.id"), nullable=True)
    vehicle_id = Column(String(36), nullable=True)

    type = Column(String(20), nullable=False)  # 'Charge', 'Payment'
    category = Column(String(50), nullable=False)  # 'Rental', 'Extras', 'Fines', ...
    amount = Column(Numeric(12, 2), nullable=False)
    remaining_amount = Column(Numeric(12, 2), default=0, nullable=False)
    entry_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    written_off_at = Column(DateTime(timezone=True), nullable=True)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("remaining_amount >= 0", name="ledger_remaining_non_negative"),
        Index("idx_ledger_customer", "tenant_id", "customer_id", "type"),
        Index("idx_ledger_rental", "tenant_id", "rental_id", "type"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    customer_id = Column(String(36), nullable=True)
    rental_id = Column(String(36), ForeignKey("rentals.id"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_type = Column(String(20), default="Payment", nullable=False)
    method = Column(String(50), nullable=True)
    status = Column(String(20), default="Pending", nullable=False)
    remaining_amount = Column(Numeric(12, 2), nullable=True)  # unapplied part
    reversal_reason = Column(Text, nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    applications = relationship("PaymentApplication", back_populates="payment")

    __table_args__ = (
        Index("idx_payments_customer", "tenant_id", "customer_id"),
    )


class PaymentApplication(Base):
    __tablename__ = "payment_applications"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False)
    charge_entry_id = Column(String(36), ForeignKey("ledger_entries.id"), nullable=False)
    amount_applied = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    payment = relationship("Payment", back_populates="applications")

    __table_args__ = (
        UniqueConstraint("payment_id", "charge_entry_id", name="_payment_charge_uc"),
        CheckConstraint("amount_applied > 0", name="application_amount_positive"),
    )
