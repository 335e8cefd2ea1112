"""Tests for the assignment resolver and its strategies."""

import random

import pytest

from fleetpool.domain.assignment import (
    AssignmentStrategy,
    Candidate,
    pick_unit,
    resolve,
)
from fleetpool.domain.errors import NoUnitsAvailableError, NotFoundError
from fleetpool.domain.intervals import DateRange
from tests.helpers import FAKE_CURSOR, d

PERIOD = DateRange(d("2025-03-01"), d("2025-03-04"))


def _candidates(*specs):
    return [Candidate(unit_id=u, group_index=i, usage_count=n) for u, i, n in specs]


# ── pick_unit (pure) ───────────────────────────────────────────────────


class TestPickUnit:
    def test_sequential_lowest_index(self):
        pool = _candidates(("c", 3, 0), ("a", 1, 9), ("b", 2, 0))
        assert pick_unit(pool, "sequential") == "a"

    def test_sequential_is_deterministic(self):
        pool = _candidates(("c", 3, 0), ("b", 2, 0))
        assert {pick_unit(pool, AssignmentStrategy.SEQUENTIAL) for _ in range(20)} == {"b"}

    def test_least_used_fewest_bookings(self):
        pool = _candidates(("a", 1, 3), ("b", 2, 0), ("c", 3, 1))
        assert pick_unit(pool, "least_used") == "b"

    def test_least_used_tie_breaks_on_index(self):
        pool = _candidates(("c", 3, 0), ("b", 2, 0), ("a", 1, 2))
        assert pick_unit(pool, "least_used") == "b"

    def test_random_stays_in_pool(self):
        pool = _candidates(("a", 1, 0), ("b", 2, 0), ("c", 3, 0))
        rng = random.Random(7)
        picks = {pick_unit(pool, "random", rng) for _ in range(100)}
        assert picks <= {"a", "b", "c"}
        assert len(picks) > 1

    def test_random_seeded_is_reproducible(self):
        pool = _candidates(("a", 1, 0), ("b", 2, 0), ("c", 3, 0), ("d", 4, 0))
        first = [pick_unit(pool, "random", random.Random(42)) for _ in range(5)]
        second = [pick_unit(list(reversed(pool)), "random", random.Random(42)) for _ in range(5)]
        assert first == second

    def test_empty_pool_raises(self):
        with pytest.raises(NoUnitsAvailableError):
            pick_unit([], "sequential")

    def test_unknown_strategy_raises(self):
        with pytest.raises(ValueError):
            pick_unit(_candidates(("a", 1, 0)), "round_robin")


# ── resolve (against the fake fleet) ───────────────────────────────────


class TestResolve:
    def test_sequential_skips_busy_units(self, fleet):
        group_id, (u1, u2, u3) = fleet.add_group(3)
        fleet.add_booking(u1, d("2025-03-01"), d("2025-03-03"))

        assert resolve(FAKE_CURSOR, group_id, PERIOD, "sequential") == u2

    def test_sequential_follows_position_not_insertion(self, fleet):
        group_id, (u1, u2, u3) = fleet.add_group(3)
        fleet.units[u1]["group_index"] = 3
        fleet.units[u3]["group_index"] = 1

        assert resolve(FAKE_CURSOR, group_id, PERIOD, "sequential") == u3

    def test_least_used_counts_history(self, fleet):
        group_id, (u1, u2, u3) = fleet.add_group(3)
        fleet.add_booking(u1, d("2024-01-01"), d("2024-01-03"), status="completed")
        fleet.add_booking(u2, d("2024-02-01"), d("2024-02-03"), status="completed")
        fleet.add_booking(u2, d("2024-03-01"), d("2024-03-03"), status="confirmed")

        assert resolve(FAKE_CURSOR, group_id, PERIOD, "least_used") == u3

    def test_least_used_ignores_cancelled(self, fleet):
        group_id, (u1, u2) = fleet.add_group(2)
        fleet.add_booking(u1, d("2024-01-01"), d("2024-01-03"), status="cancelled")
        fleet.add_booking(u2, d("2024-01-01"), d("2024-01-03"), status="completed")

        assert resolve(FAKE_CURSOR, group_id, PERIOD, "least_used") == u1

    def test_random_only_returns_free_units(self, fleet):
        group_id, (u1, u2, u3) = fleet.add_group(3)
        fleet.add_booking(u2, d("2025-02-28"), d("2025-03-02"))
        rng = random.Random(1)

        picks = {resolve(FAKE_CURSOR, group_id, PERIOD, "random", rng=rng) for _ in range(50)}
        assert picks == {u1, u3}

    def test_exclude_leaves_out_lost_candidates(self, fleet):
        group_id, (u1, u2, u3) = fleet.add_group(3)

        assert resolve(FAKE_CURSOR, group_id, PERIOD, "sequential", exclude=[u1]) == u2

    def test_disabled_unit_never_chosen(self, fleet):
        group_id, (u1, u2) = fleet.add_group(2)
        fleet.units[u1]["is_available"] = False

        assert resolve(FAKE_CURSOR, group_id, PERIOD, "sequential") == u2

    def test_all_busy_raises(self, fleet):
        group_id, (u1, u2) = fleet.add_group(2)
        fleet.add_booking(u1, d("2025-03-01"), d("2025-03-02"))
        fleet.add_block(u2, d("2025-03-03"), d("2025-03-10"))

        with pytest.raises(NoUnitsAvailableError) as exc_info:
            resolve(FAKE_CURSOR, group_id, PERIOD, "sequential")
        assert exc_info.value.reason_code == "no_units_available"

    def test_unknown_group_raises(self, fleet):
        with pytest.raises(NotFoundError):
            resolve(FAKE_CURSOR, "group-missing", PERIOD, "sequential")
