"""Tests for the availability engine (read path, fake fleet)."""

import pytest

from fleetpool.domain.availability import (
    busy_units_in_group,
    free_units_in_group,
    group_availability,
    is_unit_free,
)
from fleetpool.domain.errors import NotFoundError
from fleetpool.domain.intervals import DateRange
from tests.helpers import FAKE_CURSOR, d


def period(start: str, end: str) -> DateRange:
    return DateRange(d(start), d(end))


class TestIsUnitFree:
    def test_free_when_no_bookings(self, fleet):
        unit_id = fleet.add_unit()
        assert is_unit_free(FAKE_CURSOR, unit_id, period("2025-03-01", "2025-03-04"))

    def test_busy_when_overlapping(self, fleet):
        unit_id = fleet.add_unit()
        fleet.add_booking(unit_id, d("2025-03-03"), d("2025-03-06"))
        assert not is_unit_free(FAKE_CURSOR, unit_id, period("2025-03-01", "2025-03-04"))

    def test_back_to_back_is_free(self, fleet):
        unit_id = fleet.add_unit()
        fleet.add_booking(unit_id, d("2025-03-01"), d("2025-03-05"))
        assert is_unit_free(FAKE_CURSOR, unit_id, period("2025-03-05", "2025-03-08"))

    @pytest.mark.parametrize("status", ["cancelled", "completed"])
    def test_inactive_bookings_do_not_occupy(self, fleet, status):
        unit_id = fleet.add_unit()
        fleet.add_booking(unit_id, d("2025-03-01"), d("2025-03-05"), status=status)
        assert is_unit_free(FAKE_CURSOR, unit_id, period("2025-03-02", "2025-03-03"))

    def test_pending_occupies(self, fleet):
        unit_id = fleet.add_unit()
        fleet.add_booking(unit_id, d("2025-03-01"), d("2025-03-05"), status="pending")
        assert not is_unit_free(FAKE_CURSOR, unit_id, period("2025-03-02", "2025-03-03"))

    def test_block_occupies(self, fleet):
        unit_id = fleet.add_unit()
        fleet.add_block(unit_id, d("2025-03-02"), d("2025-03-03"))
        assert not is_unit_free(FAKE_CURSOR, unit_id, period("2025-03-01", "2025-03-04"))

    def test_disabled_unit_never_free(self, fleet):
        unit_id = fleet.add_unit(is_available=False)
        assert not is_unit_free(FAKE_CURSOR, unit_id, period("2025-03-01", "2025-03-04"))

    def test_unknown_unit_raises(self, fleet):
        with pytest.raises(NotFoundError) as exc_info:
            is_unit_free(FAKE_CURSOR, "unit-missing", period("2025-03-01", "2025-03-04"))
        assert exc_info.value.kind == "unit"


class TestGroupSets:
    def test_scenario_group_partially_booked(self, fleet):
        """3 units, one booked for the dates: the other two are free."""
        group_id, (u1, u2, u3) = fleet.add_group(3)
        fleet.add_booking(u1, d("2025-03-01"), d("2025-03-05"))

        free = free_units_in_group(FAKE_CURSOR, group_id, period("2025-03-02", "2025-03-04"))
        assert free == {u2, u3}

    def test_free_and_busy_partition_the_group(self, fleet):
        group_id, (u1, u2, u3, u4) = fleet.add_group(4)
        fleet.add_booking(u1, d("2025-03-01"), d("2025-03-05"))
        fleet.add_block(u2, d("2025-03-04"), d("2025-03-06"))
        fleet.units[u3]["is_available"] = False
        rng = period("2025-03-03", "2025-03-05")

        free = free_units_in_group(FAKE_CURSOR, group_id, rng)
        busy = busy_units_in_group(FAKE_CURSOR, group_id, rng)

        assert free == {u4}
        assert busy == {u1, u2, u3}
        assert free | busy == {u1, u2, u3, u4}
        assert not free & busy

    def test_repeated_reads_agree(self, fleet):
        group_id, (u1, u2) = fleet.add_group(2)
        fleet.add_booking(u2, d("2025-03-01"), d("2025-03-02"))
        rng = period("2025-03-01", "2025-03-03")

        first = free_units_in_group(FAKE_CURSOR, group_id, rng)
        second = free_units_in_group(FAKE_CURSOR, group_id, rng)
        assert first == second == {u1}

    def test_reads_do_not_write(self, fleet):
        group_id, _ = fleet.add_group(2)
        before = dict(fleet.bookings)

        free_units_in_group(FAKE_CURSOR, group_id, period("2025-03-01", "2025-03-03"))

        assert fleet.bookings == before
        assert not [c for c in fleet.calls if c.startswith(("lock:", "insert:"))]

    def test_group_without_members_is_empty(self, fleet):
        group_id, _ = fleet.add_group(0)
        assert free_units_in_group(FAKE_CURSOR, group_id, period("2025-03-01", "2025-03-03")) == set()

    def test_unknown_group_raises(self, fleet):
        with pytest.raises(NotFoundError) as exc_info:
            free_units_in_group(FAKE_CURSOR, "group-missing", period("2025-03-01", "2025-03-03"))
        assert exc_info.value.kind == "group"


class TestGroupAvailability:
    def test_counts_and_next_available(self, fleet):
        group_id, (u1, u2, u3) = fleet.add_group(3)
        fleet.add_booking(u1, d("2025-03-01"), d("2025-03-05"))
        fleet.add_booking(u1, d("2025-03-05"), d("2025-03-07"))
        fleet.add_block(u2, d("2025-03-02"), d("2025-03-04"))

        snapshot = group_availability(FAKE_CURSOR, group_id, period("2025-03-02", "2025-03-03"))

        assert snapshot.total_units == 3
        assert snapshot.available_count == 1
        assert snapshot.free_unit_ids == [u3]
        assert snapshot.next_available == {u1: d("2025-03-07"), u2: d("2025-03-04")}

    def test_disabled_units_counted_but_never_free(self, fleet):
        group_id, (u1, u2) = fleet.add_group(2)
        fleet.units[u2]["is_available"] = False

        snapshot = group_availability(FAKE_CURSOR, group_id, period("2025-03-02", "2025-03-03"))

        assert snapshot.total_units == 2
        assert snapshot.free_unit_ids == [u1]
        assert u2 not in snapshot.next_available
