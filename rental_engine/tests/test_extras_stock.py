"""
Tests for extras stock tracking.
"""
from datetime import date

import pytest

from rental_engine.exceptions import InsufficientStockError, UnknownExtraError
from rental_engine.models import ExtraRequest, ExtraSelectionSchema, RentalExtraSchema
from rental_engine.services.extras import check_stock, compute_stock, ensure_stock, merge_extra_requests


def booked(extra_id, rental_id, quantity, start=None, end=None):
    return ExtraSelectionSchema(
        extra_id=extra_id, rental_id=rental_id, quantity=quantity,
        rental_start_date=start, rental_end_date=end,
    )


@pytest.fixture
def selections():
    # 3 child seats already booked across two rentals
    return [
        booked("extra-seat", "r1", 2, date(2024, 3, 1), date(2024, 3, 5)),
        booked("extra-seat", "r2", 1, date(2024, 4, 1), date(2024, 4, 3)),
    ]


class TestStockLevels:

    def test_remaining_stock(self, child_seat, selections):
        levels = compute_stock([child_seat], selections)

        level = levels["extra-seat"]
        assert level.booked_quantity == 3
        assert level.remaining_stock == 2
        assert level.remaining_stock + level.booked_quantity == child_seat.max_quantity

    def test_unlimited_extra_has_no_remaining_figure(self):
        gps = RentalExtraSchema(id="extra-gps", tenant_id="tenant-1", name="GPS", price=5)

        levels = compute_stock([gps], [booked("extra-gps", "r1", 40)])

        assert levels["extra-gps"].remaining_stock is None

    def test_oversold_stock_never_negative(self, child_seat, caplog):
        levels = compute_stock([child_seat], [booked("extra-seat", "r1", 7)])

        assert levels["extra-seat"].remaining_stock == 0
        assert "oversold" in caplog.text

    def test_date_range_window_only_counts_overlapping_rentals(self, child_seat, selections):
        levels = compute_stock([child_seat], selections, window=(date(2024, 3, 4), date(2024, 3, 10)))

        assert levels["extra-seat"].booked_quantity == 2
        assert levels["extra-seat"].remaining_stock == 3


class TestStockRequests:
    """Max 5, 3 already booked."""

    def test_requesting_three_is_short_by_one(self, child_seat, selections):
        with pytest.raises(InsufficientStockError) as exc_info:
            ensure_stock([ExtraRequest(extra_id="extra-seat", quantity=3)], [child_seat], selections)

        error = exc_info.value
        assert error.shortfall == 1
        assert error.remaining == 2
        assert error.to_detail()["shortfall"] == 1

    def test_requesting_two_succeeds_and_uses_up_stock(self, child_seat, selections):
        report = ensure_stock([ExtraRequest(extra_id="extra-seat", quantity=2)], [child_seat], selections)
        assert report.can_fulfill

        after_booking = selections + [booked("extra-seat", "r3", 2)]
        assert compute_stock([child_seat], after_booking)["extra-seat"].remaining_stock == 0

    def test_check_stock_reports_without_raising(self, child_seat, selections):
        report = check_stock({"extra-seat": 4}, [child_seat], selections)

        assert not report.can_fulfill
        assert report.lines["extra-seat"].requested == 4

    def test_unknown_extra(self, child_seat):
        with pytest.raises(UnknownExtraError):
            check_stock({"extra-nope": 1}, [child_seat], [])

    def test_merge_rejects_non_positive_quantity(self):
        with pytest.raises(ValueError):
            merge_extra_requests({"extra-seat": 0})
