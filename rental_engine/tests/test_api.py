"""
API tests over the ASGI app with a temporary database and in-memory Redis.
"""
from datetime import date

import httpx
import pytest
import pytest_asyncio

from rental_engine.database import get_session
from rental_engine.redis_service import get_redis
from rental_engine.server import app
from rental_engine.tests.conftest import TENANT_ID, add_charge, add_payment

HEADERS = {"X-Tenant-ID": TENANT_ID}


@pytest_asyncio.fixture
async def client(seeded, session_factory, redis_service):
    async def override_session():
        async with session_factory() as session:
            yield session

    async def override_redis():
        return redis_service

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_redis] = override_redis
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def booking_body(**overrides):
    body = {
        "vehicle_id": "veh-1",
        "customer_id": "cust-1",
        "start_date": "2024-03-04",
        "end_date": "2024-03-08",
    }
    body.update(overrides)
    return body


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestQuotesApi:

    @pytest.mark.asyncio
    async def test_quote_with_christmas_and_weekend(self, client):
        response = await client.post("/api/quotes", headers=HEADERS, json={
            "vehicle_id": "veh-1",
            "start_date": "2023-12-23",
            "end_date": "2023-12-27",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["display"]["base_subtotal"] == "180.00"
        assert data["display"]["surcharges"] == "36.00"
        assert data["display"]["total"] == "216.00"
        assert data["surcharges"]["holidays_applied"] == ["Christmas"]

    @pytest.mark.asyncio
    async def test_invalid_range_is_400(self, client):
        response = await client.post("/api/quotes", headers=HEADERS, json={
            "vehicle_id": "veh-1", "start_date": "2024-03-08", "end_date": "2024-03-04",
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_DATE_RANGE"

    @pytest.mark.asyncio
    async def test_rental_longer_than_maximum_is_400(self, client):
        response = await client.post("/api/quotes", headers=HEADERS, json={
            "vehicle_id": "veh-1", "start_date": "2024-03-04", "end_date": "9999-12-31",
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_DATE_RANGE"

    @pytest.mark.asyncio
    async def test_unknown_vehicle_is_404(self, client):
        response = await client.post("/api/quotes", headers=HEADERS, json={
            "vehicle_id": "veh-404", "start_date": "2024-03-04", "end_date": "2024-03-08",
        })

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_vehicle(self, client):
        response = await client.post("/api/quotes", headers={"X-Tenant-ID": "tenant-2"}, json={
            "vehicle_id": "veh-1", "start_date": "2024-03-04", "end_date": "2024-03-08",
        })

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_tenant_header_is_422(self, client):
        response = await client.post("/api/quotes", json={
            "vehicle_id": "veh-1", "start_date": "2024-03-04", "end_date": "2024-03-08",
        })

        assert response.status_code == 422


class TestBookingsApi:

    @pytest.mark.asyncio
    async def test_booking_then_overlap_is_409(self, client):
        first = await client.post("/api/bookings", headers=HEADERS, json=booking_body())
        second = await client.post("/api/bookings", headers=HEADERS, json=booking_body(
            customer_id="cust-2", start_date="2024-03-08", end_date="2024-03-10",
        ))

        assert first.status_code == 201
        assert second.status_code == 409
        detail = second.json()["detail"]
        assert detail["error"] == "VEHICLE_UNAVAILABLE"
        assert detail["conflicting_rental_ids"] == [first.json()["rental_id"]]

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_same_booking(self, client):
        headers = {**HEADERS, "Idempotency-Key": "booking-abc"}

        first = await client.post("/api/bookings", headers=headers, json=booking_body())
        second = await client.post("/api/bookings", headers=headers, json=booking_body())

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.json()["rental_id"] == first.json()["rental_id"]
        assert second.json()["created_from_idempotency"] is True

    @pytest.mark.asyncio
    async def test_insufficient_stock_is_409(self, client):
        response = await client.post("/api/bookings", headers=HEADERS, json=booking_body(
            extras=[{"extra_id": "extra-seat", "quantity": 3}],
        ))

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "INSUFFICIENT_STOCK"
        assert detail["shortfall"] == 1


class TestAvailabilityApi:

    @pytest.mark.asyncio
    async def test_check_and_calendar(self, client):
        booked = await client.post("/api/bookings", headers=HEADERS, json=booking_body())
        rental_id = booked.json()["rental_id"]

        busy = await client.get("/api/availability/check", headers=HEADERS, params={
            "vehicleId": "veh-1", "start": "2024-03-07", "end": "2024-03-09",
        })
        free = await client.get("/api/availability/check", headers=HEADERS, params={
            "vehicleId": "veh-1", "start": "2024-03-09", "end": "2024-03-12",
        })
        calendar = await client.get("/api/availability/calendar", headers=HEADERS, params={
            "dateRange": "2024-03-01..2024-03-31",
        })

        assert busy.json() == {"vehicle_id": "veh-1", "available": False, "conflicting_rental_ids": [rental_id]}
        assert free.json()["available"] is True
        lanes = calendar.json()["vehicles"]["veh-1"]
        assert [[r["id"] for r in lane] for lane in lanes] == [[rental_id]]

    @pytest.mark.asyncio
    async def test_bad_date_range_format(self, client):
        response = await client.get("/api/availability/calendar", headers=HEADERS, params={"dateRange": "March"})

        assert response.status_code == 400


class TestExtrasApi:

    @pytest.mark.asyncio
    async def test_stock_report(self, client):
        await client.post("/api/bookings", headers=HEADERS, json=booking_body(
            extras=[{"extra_id": "extra-seat", "quantity": 1}],
        ))

        response = await client.post("/api/extras/stock", headers=HEADERS, json={
            "extras": [{"extra_id": "extra-seat", "quantity": 2}],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["can_fulfill"] is False
        assert data["lines"]["extra-seat"]["remaining_stock"] == 1

    @pytest.mark.asyncio
    async def test_unknown_extra_is_404(self, client):
        response = await client.post("/api/extras/stock", headers=HEADERS, json={
            "extras": [{"extra_id": "extra-nope", "quantity": 1}],
        })

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "UNKNOWN_EXTRA"


class TestLedgerApi:

    @pytest_asyncio.fixture
    async def ledger(self, session_factory):
        async with session_factory() as session:
            await add_charge(session, "chg-1", "cust-9", "300", date(2024, 1, 1), rental_id="rent-9")
            await add_charge(session, "chg-2", "cust-9", "200", date(2024, 2, 1), rental_id="rent-9")
            await add_payment(session, "pay-1", "cust-9", "350", date(2024, 2, 2))
            await add_payment(session, "pay-2", "cust-9", "150", date(2024, 2, 3))
            await session.commit()

    @pytest.mark.asyncio
    async def test_payments_settle_customer(self, client, ledger):
        first = await client.post("/api/payments/pay-1/apply", headers=HEADERS)
        second = await client.post("/api/payments/pay-2/apply", headers=HEADERS)
        ledger_response = await client.get("/api/rentals/rent-9/ledger", headers=HEADERS)
        balance = await client.get("/api/customers/cust-9/balance", headers=HEADERS)

        assert first.status_code == 200
        assert first.json()["status"] == "Applied"
        assert [a["charge_id"] for a in first.json()["allocations"]] == ["chg-1", "chg-2"]
        assert second.json()["status"] == "Applied"
        assert [line["status"] for line in ledger_response.json()["lines"]] == ["Paid", "Paid"]
        assert balance.json()["status"] == "Settled"
        assert float(balance.json()["balance"]) == 0

    @pytest.mark.asyncio
    async def test_write_off_and_balance(self, client, ledger):
        await client.post("/api/payments/pay-1/apply", headers=HEADERS)

        written_off = await client.post("/api/charges/chg-2/write-off", headers=HEADERS)
        paid_off = await client.post("/api/charges/chg-1/write-off", headers=HEADERS)
        balance = await client.get("/api/customers/cust-9/balance", headers=HEADERS)

        assert written_off.status_code == 200
        assert written_off.json()["status"] == "PartialWrittenOff"
        assert paid_off.status_code == 409
        # 500 paid against 500 charged, 150 of which was written off
        assert balance.json()["status"] == "In Credit"
        assert float(balance.json()["total_written_off"]) == 150

    @pytest.mark.asyncio
    async def test_reverse_payment_reopens_charges(self, client, ledger):
        await client.post("/api/payments/pay-1/apply", headers=HEADERS)

        response = await client.post(
            "/api/payments/pay-1/reverse", headers=HEADERS, json={"reason": "Bounced cheque"}
        )
        again = await client.post(
            "/api/payments/pay-1/reverse", headers=HEADERS, json={"reason": "Bounced cheque"}
        )
        reapply = await client.post("/api/payments/pay-1/apply", headers=HEADERS)
        ledger_response = await client.get("/api/rentals/rent-9/ledger", headers=HEADERS)
        balance = await client.get("/api/customers/cust-9/balance", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] == "Reversed"
        assert float(response.json()["amount_restored"]) == 350
        assert again.status_code == 409
        assert reapply.status_code == 400
        assert [line["status"] for line in ledger_response.json()["lines"]] == ["Unpaid", "Unpaid"]
        assert [float(line["remaining"]) for line in ledger_response.json()["lines"]] == [300, 200]
        # Only pay-2 still counts
        assert float(balance.json()["total_payments"]) == 150
        assert balance.json()["status"] == "In Debt"

    @pytest.mark.asyncio
    async def test_reversal_needs_a_reason(self, client, ledger):
        response = await client.post("/api/payments/pay-1/reverse", headers=HEADERS, json={"reason": ""})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_payment_is_404(self, client):
        response = await client.post("/api/payments/pay-404/apply", headers=HEADERS)

        assert response.status_code == 404
