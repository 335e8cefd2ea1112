"""Availability engine - which units are free for a date range.

Pure read path: no locks, no writes. Results are advisory (a calendar or
search page can render them); the booking coordinator re-checks inside
its own transaction before inserting anything.

Occupancy = active bookings (pending/confirmed) + operator blocks.
A unit whose administrative ``is_available`` flag is off is never free.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date

from psycopg2.extensions import cursor as PgCursor

from fleetpool.domain.booking_status import ACTIVE_STATUSES, status_values
from fleetpool.domain.errors import NotFoundError
from fleetpool.domain.intervals import DateRange, any_overlap, first_free_day
from fleetpool.infra.db import normalize_id
from fleetpool.infra.repositories.bookings_repository import list_occupancy
from fleetpool.infra.repositories.groups_repository import get_group
from fleetpool.infra.repositories.units_repository import get_unit, list_group_members


@dataclass(frozen=True)
class GroupAvailability:
    """Availability snapshot of a group for one period."""

    group_id: str
    period: DateRange
    total_units: int
    free_unit_ids: list[str]
    # Busy (not disabled) unit id -> first day it is free again
    next_available: dict[str, date] = field(default_factory=dict)

    @property
    def available_count(self) -> int:
        return len(self.free_unit_ids)


def _occupancy_by_unit(
    cur: PgCursor,
    unit_ids: list[str],
    since: date,
    until: date | None,
) -> dict[str, list[DateRange]]:
    occupied: dict[str, list[DateRange]] = defaultdict(list)
    rows = list_occupancy(
        cur,
        unit_ids=unit_ids,
        statuses=status_values(ACTIVE_STATUSES),
        since=since,
        until=until,
    )
    for unit_id, start, end in rows:
        occupied[unit_id].append(DateRange(start, end))
    return occupied


def _members_of(cur: PgCursor, group_id: str) -> list[dict]:
    group_id = normalize_id(group_id)
    if get_group(cur, group_id) is None:
        raise NotFoundError("group", group_id)
    return list_group_members(cur, group_id)


def is_unit_free(cur: PgCursor, unit_id: str, period: DateRange) -> bool:
    """True iff the unit is enabled and nothing active overlaps ``period``.

    Raises:
        NotFoundError: If the unit does not exist.
    """
    unit = get_unit(cur, normalize_id(unit_id))
    if unit is None:
        raise NotFoundError("unit", unit_id)
    if not unit["is_available"]:
        return False

    occupied = _occupancy_by_unit(cur, [unit["id"]], period.start, period.end)
    return not any_overlap(period, occupied.get(unit["id"], []))


def free_among(cur: PgCursor, members: list[dict], period: DateRange) -> list[dict]:
    """The given unit dicts that are enabled and unoccupied for ``period``."""
    enabled = [m for m in members if m["is_available"]]
    if not enabled:
        return []

    occupied = _occupancy_by_unit(cur, [m["id"] for m in enabled], period.start, period.end)
    return [m for m in enabled if not any_overlap(period, occupied.get(m["id"], []))]


def free_members_in_group(cur: PgCursor, group_id: str, period: DateRange) -> list[dict]:
    """Free members of a group as unit dicts, ordered by position index.

    Raises:
        NotFoundError: If the group does not exist.
    """
    return free_among(cur, _members_of(cur, group_id), period)


def free_units_in_group(cur: PgCursor, group_id: str, period: DateRange) -> set[str]:
    """Ids of the group's members that are free for ``period``.

    A group without members yields an empty set, not an error.
    """
    return {m["id"] for m in free_members_in_group(cur, group_id, period)}


def busy_units_in_group(cur: PgCursor, group_id: str, period: DateRange) -> set[str]:
    """Members that are not free: booked, blocked or administratively disabled."""
    members = _members_of(cur, group_id)
    free = {m["id"] for m in free_among(cur, members, period)}
    return {m["id"] for m in members} - free


def group_availability(cur: PgCursor, group_id: str, period: DateRange) -> GroupAvailability:
    """Free units of a group plus, for busy units, when they free up again."""
    members = _members_of(cur, group_id)
    enabled = [m for m in members if m["is_available"]]
    ids = [m["id"] for m in enabled]

    # Open-ended read: we need occupancy after the period for next-free dates
    occupied = _occupancy_by_unit(cur, ids, period.start, None)

    free_ids: list[str] = []
    next_available: dict[str, date] = {}
    for unit_id in ids:
        periods = occupied.get(unit_id, [])
        if any_overlap(period, periods):
            next_available[unit_id] = first_free_day(periods, period.start)
        else:
            free_ids.append(unit_id)

    return GroupAvailability(
        group_id=normalize_id(group_id),
        period=period,
        total_units=len(members),
        free_unit_ids=free_ids,
        next_available=next_available,
    )
