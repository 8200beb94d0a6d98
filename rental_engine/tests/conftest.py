"""
Shared fixtures: temporary SQLite databases, an in-memory async Redis
double and seeded tenant data.
"""
import time
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_engine.database import build_engine, init_db
from rental_engine.models import (
    RentalExtraSchema,
    TenantPricingConfig,
    VehicleSchema,
)
from rental_engine.models_postgres import (
    Holiday,
    LedgerEntry,
    Payment,
    RentalExtra,
    Tenant,
    Vehicle,
    VehicleExtraPrice,
)
from rental_engine.redis_service import EXTEND_LOCK_SCRIPT, RELEASE_LOCK_SCRIPT, RedisService

TENANT_ID = "tenant-1"


class InMemoryRedis:
    """Just enough of the redis.asyncio client API for locks and idempotency."""

    def __init__(self):
        self.store = {}
        self.expires_at = {}

    def _purge(self, key):
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.store.pop(key, None)
            self.expires_at.pop(key, None)

    async def ping(self):
        return True

    async def get(self, key):
        self._purge(key)
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self._purge(key)
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex:
            self.expires_at[key] = time.monotonic() + ex
        else:
            self.expires_at.pop(key, None)
        return True

    async def delete(self, *keys):
        deleted = 0
        for key in keys:
            self._purge(key)
            if self.store.pop(key, None) is not None:
                deleted += 1
            self.expires_at.pop(key, None)
        return deleted

    async def exists(self, *keys):
        count = 0
        for key in keys:
            self._purge(key)
            count += key in self.store
        return count

    async def ttl(self, key):
        self._purge(key)
        if key not in self.store:
            return -2
        if key not in self.expires_at:
            return -1
        return int(self.expires_at[key] - time.monotonic())

    async def eval(self, script, numkeys, *keys_and_args):
        # Only the lock scripts RedisService sends; each runs without awaiting, so atomically
        key, token = keys_and_args[0], keys_and_args[1]
        self._purge(key)
        if self.store.get(key) != token:
            return 0
        if script == RELEASE_LOCK_SCRIPT:
            self.store.pop(key)
            self.expires_at.pop(key, None)
            return 1
        if script == EXTEND_LOCK_SCRIPT:
            self.expires_at[key] = time.monotonic() + int(keys_and_args[2])
            return 1
        raise NotImplementedError(f"script not supported: {script!r}")

    async def aclose(self):
        pass


@pytest.fixture
def vehicle():
    return VehicleSchema(
        id="veh-1",
        tenant_id=TENANT_ID,
        reg="AB12 CDE",
        daily_rent=Decimal("45"),
        weekly_rent=Decimal("280"),
    )


@pytest.fixture
def config():
    return TenantPricingConfig(tenant_id=TENANT_ID)


@pytest.fixture
def child_seat():
    return RentalExtraSchema(
        id="extra-seat",
        tenant_id=TENANT_ID,
        name="Child seat",
        price=Decimal("10"),
        max_quantity=5,
    )


@pytest.fixture
def redis_service():
    return RedisService(redis_client=InMemoryRedis())


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rental_engine_test.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_factory):
    """
    Tenant with 10% weekend surcharge on Sat/Sun, one vehicle
    (45/day, 280/week), a limited child seat, and a per-vehicle GPS
    priced for that vehicle only.
    """
    async with session_factory() as session:
        session.add(Tenant(
            id=TENANT_ID,
            name="Test Rentals",
            currency_code="GBP",
            weekend_surcharge_percent=Decimal("10"),
            weekend_days=[0, 6],
        ))
        await session.flush()
        session.add_all([
            Vehicle(id="veh-1", tenant_id=TENANT_ID, reg="AB12 CDE",
                    daily_rent=Decimal("45"), weekly_rent=Decimal("280")),
            Vehicle(id="veh-2", tenant_id=TENANT_ID, reg="XY34 ZZZ",
                    daily_rent=Decimal("60")),
        ])
        session.add_all([
            RentalExtra(id="extra-seat", tenant_id=TENANT_ID, name="Child seat",
                        price=Decimal("10"), max_quantity=2),
            RentalExtra(id="extra-gps", tenant_id=TENANT_ID, name="GPS",
                        price=Decimal("5"), pricing_type="per_vehicle"),
        ])
        await session.flush()
        session.add(VehicleExtraPrice(tenant_id=TENANT_ID, vehicle_id="veh-1",
                                      extra_id="extra-gps", price=Decimal("7.50")))
        session.add(Holiday(
            id="hol-xmas", tenant_id=TENANT_ID, name="Christmas",
            start_date=date(2023, 12, 24), end_date=date(2023, 12, 26),
            surcharge_percent=Decimal("20"), recurs_annually=True,
        ))
        await session.commit()
    return {"tenant_id": TENANT_ID, "vehicle_id": "veh-1", "other_vehicle_id": "veh-2"}


async def add_charge(session, charge_id, customer_id, amount, due, rental_id=None):
    session.add(LedgerEntry(
        id=charge_id, tenant_id=TENANT_ID, customer_id=customer_id, rental_id=rental_id,
        type="Charge", category="Rental", amount=Decimal(amount), remaining_amount=Decimal(amount),
        entry_date=due, due_date=due,
    ))


async def add_payment(session, payment_id, customer_id, amount, paid_on):
    session.add(Payment(
        id=payment_id, tenant_id=TENANT_ID, customer_id=customer_id,
        amount=Decimal(amount), payment_date=paid_on,
    ))
