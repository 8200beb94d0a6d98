"""
Tests for rental overlap detection and calendar lanes.
"""
from datetime import date

import pytest

from rental_engine.exceptions import VehicleUnavailableError
from rental_engine.models import RentalSchema, RentalStatus
from rental_engine.services.availability import (
    assign_calendar_lanes,
    ensure_available,
    find_conflicts,
    ranges_overlap,
)


def rental(rid, start, end, vehicle_id="veh-1", status=RentalStatus.ACTIVE):
    return RentalSchema(
        id=rid, tenant_id="tenant-1", customer_id="cust-1",
        vehicle_id=vehicle_id, start_date=start, end_date=end, status=status,
    )


class TestRangesOverlap:

    def test_touching_ranges_overlap(self):
        assert ranges_overlap(date(2024, 3, 1), date(2024, 3, 5), date(2024, 3, 5), date(2024, 3, 8))

    def test_disjoint_ranges(self):
        assert not ranges_overlap(date(2024, 3, 1), date(2024, 3, 4), date(2024, 3, 5), date(2024, 3, 8))

    def test_open_ended_range_blocks_everything_after_start(self):
        assert ranges_overlap(date(2024, 3, 1), None, date(2030, 1, 1), date(2030, 1, 2))
        assert not ranges_overlap(date(2024, 3, 1), None, date(2024, 1, 1), date(2024, 2, 28))

    def test_overlap_is_symmetric(self):
        a = (date(2024, 3, 1), date(2024, 3, 10))
        b = (date(2024, 3, 3), None)
        assert ranges_overlap(*a, *b) == ranges_overlap(*b, *a)


class TestFindConflicts:

    @pytest.fixture
    def rentals(self):
        return [
            rental("r1", date(2024, 3, 1), date(2024, 3, 5)),
            rental("r2", date(2024, 3, 10), None),
            rental("r3", date(2024, 3, 6), date(2024, 3, 8), status=RentalStatus.CANCELLED),
            rental("r4", date(2024, 3, 6), date(2024, 3, 8), vehicle_id="veh-2"),
        ]

    def test_free_gap(self, rentals):
        result = find_conflicts("veh-1", date(2024, 3, 6), date(2024, 3, 9), rentals)

        assert result.available
        assert result.conflicting_rental_ids == []

    def test_conflicts_listed(self, rentals):
        result = find_conflicts("veh-1", date(2024, 3, 4), date(2024, 3, 12), rentals)

        assert not result.available
        assert result.conflicting_rental_ids == ["r1", "r2"]

    def test_excluded_rental_is_ignored(self, rentals):
        result = find_conflicts("veh-1", date(2024, 3, 2), date(2024, 3, 3), rentals, exclude_rental_id="r1")

        assert result.available

    def test_ensure_available_raises_with_ids(self, rentals):
        with pytest.raises(VehicleUnavailableError) as exc_info:
            ensure_available("veh-1", date(2024, 3, 5), date(2024, 3, 6), rentals)

        assert exc_info.value.conflicting_rental_ids == ["r1"]
        assert exc_info.value.status_code == 409


class TestCalendarLanes:

    def test_overlapping_rentals_go_to_separate_lanes(self):
        lanes = assign_calendar_lanes([
            rental("r1", date(2024, 3, 1), date(2024, 3, 5)),
            rental("r2", date(2024, 3, 3), date(2024, 3, 7)),
            rental("r3", date(2024, 3, 6), date(2024, 3, 9)),
            rental("r4", date(2024, 3, 1), date(2024, 3, 2), vehicle_id="veh-2"),
            rental("r5", date(2024, 3, 1), date(2024, 3, 9), status=RentalStatus.CANCELLED),
        ])

        assert [[r.id for r in lane] for lane in lanes["veh-1"]] == [["r1", "r3"], ["r2"]]
        assert [[r.id for r in lane] for lane in lanes["veh-2"]] == [["r4"]]

    def test_no_lane_contains_overlaps(self):
        rentals = [
            rental(f"r{i}", date(2024, 3, 1 + i), date(2024, 3, 4 + i))
            for i in range(6)
        ]

        for lane in assign_calendar_lanes(rentals)["veh-1"]:
            for earlier, later in zip(lane, lane[1:]):
                assert not ranges_overlap(earlier.start_date, earlier.end_date, later.start_date, later.end_date)
