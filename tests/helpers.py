"""Shared test helpers for fleetpool tests.

FakeFleet is an in-memory stand-in for the psycopg2 repositories. The
``fleet`` fixture in conftest.py patches its methods over the repository
functions imported into each domain module, so domain logic runs
unchanged against plain dicts. These are NOT fixtures - regular helpers.
"""

from __future__ import annotations

import copy
import itertools
import uuid
from contextlib import contextmanager
from datetime import date

from psycopg2 import errors as pg_errors

from fleetpool.domain.unit_conflict import UnitConflictError

FAKE_CURSOR = object()


@contextmanager
def fake_txn(conn=None):
    yield FAKE_CURSOR


def d(value: str) -> date:
    """date.fromisoformat shorthand."""
    return date.fromisoformat(value)


def _overlaps(a_start, a_end, b_start, b_end) -> bool:
    return a_start < b_end and b_start < a_end


class FakeFleet:
    """Units, groups, policies, bookings and blocks held in dicts."""

    def __init__(self, *, uuid_ids: bool = False) -> None:
        # uuid_ids: issue canonical UUID strings, as Postgres does
        self.uuid_ids = uuid_ids
        self.groups: dict[str, dict] = {}
        self.policies: dict[str, dict] = {}
        self.units: dict[str, dict] = {}
        self.bookings: dict[str, dict] = {}
        self.blocks: dict[str, dict] = {}
        self._seq = itertools.count(1)
        # Called as hook(unit_id) when a unit row is locked / a booking inserted;
        # used to simulate a concurrent writer committing in between.
        self.on_lock: list = []
        self.on_insert: list = []
        self.calls: list[str] = []

    def _id(self, prefix: str) -> str:
        if self.uuid_ids:
            return str(uuid.uuid4())
        return f"{prefix}-{next(self._seq)}"

    # ── Seeding ──────────────────────────────────────────────────────────

    def add_unit(
        self,
        *,
        name: str = "Honda Click",
        vehicle_type: str = "scooter",
        price_per_day: int = 350,
        group_id: str | None = None,
        group_index: int | None = None,
        is_group_primary: bool = False,
        is_available: bool = True,
        **extra,
    ) -> str:
        unit_id = self._id("unit")
        self.units[unit_id] = {
            "id": unit_id,
            "group_id": group_id,
            "group_index": group_index,
            "individual_identifier": f"Unit {group_index}" if group_index else None,
            "is_group_primary": is_group_primary,
            "is_available": is_available,
            "name": name,
            "vehicle_type": vehicle_type,
            "description": extra.get("description"),
            "price_per_day": price_per_day,
            "price_per_week": extra.get("price_per_week"),
            "price_per_month": extra.get("price_per_month"),
            "specifications": extra.get("specifications", {}),
            "images": extra.get("images", []),
        }
        return unit_id

    def add_group(
        self,
        size: int = 3,
        *,
        name: str = "Honda Click",
        vehicle_type: str = "scooter",
        assign_strategy: str = "sequential",
        share_pricing: bool = True,
        share_specifications: bool = True,
        share_images: bool = True,
        with_policy: bool = True,
    ) -> tuple[str, list[str]]:
        group_id = self._id("group")
        self.groups[group_id] = {
            "id": group_id,
            "name": name,
            "vehicle_type": vehicle_type,
            "total_quantity": size,
        }
        if with_policy:
            self.policies[group_id] = {
                "assign_strategy": assign_strategy,
                "naming_pattern": "Unit {index}",
                "share_pricing": share_pricing,
                "share_specifications": share_specifications,
                "share_images": share_images,
            }
        unit_ids = [
            self.add_unit(
                name=name,
                vehicle_type=vehicle_type,
                group_id=group_id,
                group_index=i,
                is_group_primary=i == 1,
            )
            for i in range(1, size + 1)
        ]
        return group_id, unit_ids

    def add_booking(
        self,
        unit_id: str,
        start: date,
        end: date,
        status: str = "confirmed",
        idempotency_key: str | None = None,
    ) -> str:
        booking_id = self._id("booking")
        self.bookings[booking_id] = {
            "id": booking_id,
            "unit_id": unit_id,
            "start_date": start,
            "end_date": end,
            "status": status,
            "customer_ref": None,
            "idempotency_key": idempotency_key,
            "created_at": None,
        }
        return booking_id

    def add_block(self, unit_id: str, start: date, end: date, reason: str = "maintenance") -> str:
        return self.insert_block(FAKE_CURSOR, unit_id=unit_id, start_date=start, end_date=end, reason=reason)

    def active_bookings(self, unit_id: str) -> list[dict]:
        return [
            b for b in self.bookings.values()
            if b["unit_id"] == unit_id and b["status"] in ("pending", "confirmed")
        ]

    def members(self, group_id: str) -> list[dict]:
        return sorted(
            (u for u in self.units.values() if u["group_id"] == group_id),
            key=lambda u: (u["group_index"], u["id"]),
        )

    # ── units_repository ─────────────────────────────────────────────────

    def get_unit(self, cur, unit_id):
        unit = self.units.get(unit_id)
        return copy.deepcopy(unit) if unit else None

    def get_units(self, cur, unit_ids):
        return [copy.deepcopy(self.units[u]) for u in unit_ids if u in self.units]

    def lock_unit(self, cur, unit_id):
        self.calls.append(f"lock:{unit_id}")
        for hook in list(self.on_lock):
            hook(unit_id)
        unit = self.units.get(unit_id)
        if unit is None:
            return None
        return {"id": unit_id, "group_id": unit["group_id"], "is_available": unit["is_available"]}

    def list_group_members(self, cur, group_id):
        return [copy.deepcopy(u) for u in self.members(group_id)]

    def insert_unit(self, cur, **fields):
        unit_id = self._id("unit")
        self.units[unit_id] = {
            "id": unit_id,
            "group_id": fields.get("group_id"),
            "group_index": fields.get("group_index"),
            "individual_identifier": fields.get("individual_identifier"),
            "is_group_primary": fields.get("is_group_primary", False),
            "is_available": fields.get("is_available", True),
            "name": fields["name"],
            "vehicle_type": fields["vehicle_type"],
            "description": fields.get("description"),
            "price_per_day": fields["price_per_day"],
            "price_per_week": fields.get("price_per_week"),
            "price_per_month": fields.get("price_per_month"),
            "specifications": fields.get("specifications") or {},
            "images": fields.get("images") or [],
        }
        return unit_id

    def attach_to_group(self, cur, *, unit_id, group_id, group_index, individual_identifier, is_group_primary):
        self.units[unit_id].update(
            group_id=group_id,
            group_index=group_index,
            individual_identifier=individual_identifier,
            is_group_primary=is_group_primary,
        )

    def detach_from_group(self, cur, unit_id):
        self.units[unit_id].update(
            group_id=None, group_index=None, individual_identifier=None, is_group_primary=False
        )

    def detach_group_members(self, cur, group_id):
        released = [u["id"] for u in self.members(group_id)]
        for unit_id in released:
            self.detach_from_group(cur, unit_id)
        return released

    def list_grouped_units(self, cur):
        grouped = [u for u in self.units.values() if u["group_id"] is not None]
        grouped.sort(key=lambda u: (u["group_id"], u["group_index"], u["id"]))
        return [copy.deepcopy(u) for u in grouped]

    def set_group_primary(self, cur, unit_id):
        self.units[unit_id]["is_group_primary"] = True

    def next_group_index(self, cur, group_id):
        return max((u["group_index"] for u in self.members(group_id)), default=0) + 1

    def update_group_units(self, cur, *, group_id, fields, unit_ids=None):
        count = 0
        for unit in self.members(group_id):
            if unit_ids is not None and unit["id"] not in unit_ids:
                continue
            self.units[unit["id"]].update(copy.deepcopy(fields))
            count += 1
        return count

    def list_standalone_units(self, cur):
        return [copy.deepcopy(u) for u in self.units.values() if u["group_id"] is None]

    # ── groups_repository ────────────────────────────────────────────────

    def get_group(self, cur, group_id, *, lock=False):
        group = self.groups.get(group_id)
        return dict(group) if group else None

    def insert_group(self, cur, *, name, vehicle_type, total_quantity):
        group_id = self._id("group")
        self.groups[group_id] = {
            "id": group_id,
            "name": name,
            "vehicle_type": vehicle_type,
            "total_quantity": total_quantity,
        }
        return group_id

    def list_groups(self, cur):
        return [dict(g) for g in reversed(list(self.groups.values()))]

    def rename_group(self, cur, group_id, name):
        if group_id not in self.groups:
            return False
        self.groups[group_id]["name"] = name
        return True

    def delete_group(self, cur, group_id):
        self.groups.pop(group_id, None)
        self.policies.pop(group_id, None)

    def sync_total_quantity(self, cur, group_id):
        total = len(self.members(group_id))
        self.groups[group_id]["total_quantity"] = total
        return total

    def get_policy(self, cur, group_id):
        policy = self.policies.get(group_id)
        return dict(policy) if policy else None

    def insert_policy(self, cur, *, group_id, **policy):
        self.policies[group_id] = dict(policy)

    def update_policy(self, cur, group_id, changes):
        if group_id not in self.policies:
            return None
        self.policies[group_id].update(changes)
        return dict(self.policies[group_id])

    # ── bookings_repository ──────────────────────────────────────────────

    def list_occupancy(self, cur, *, unit_ids, statuses, since, until=None):
        rows = []
        for b in self.bookings.values():
            if b["unit_id"] in unit_ids and b["status"] in statuses and b["end_date"] > since:
                if until is None or b["start_date"] < until:
                    rows.append((b["unit_id"], b["start_date"], b["end_date"]))
        for blk in self.blocks.values():
            if blk["unit_id"] in unit_ids and blk["end_date"] > since:
                if until is None or blk["start_date"] < until:
                    rows.append((blk["unit_id"], blk["start_date"], blk["end_date"]))
        return sorted(rows)

    def usage_counts(self, cur, *, unit_ids, statuses):
        counts = {u: 0 for u in unit_ids}
        for b in self.bookings.values():
            if b["unit_id"] in counts and b["status"] in statuses:
                counts[b["unit_id"]] += 1
        return counts

    def insert_booking(self, cur, *, unit_id, start_date, end_date, status, customer_ref=None, idempotency_key=None):
        self.calls.append(f"insert:{unit_id}")
        for hook in list(self.on_insert):
            hook(unit_id)
        if idempotency_key is not None and self.get_booking_by_idempotency_key(cur, idempotency_key):
            return None
        # Mirrors the no_active_unit_overlap exclusion constraint
        for b in self.active_bookings(unit_id):
            if _overlaps(b["start_date"], b["end_date"], start_date, end_date):
                raise pg_errors.ExclusionViolation("conflicting key value violates exclusion constraint")
        booking_id = self.add_booking(unit_id, start_date, end_date, status, idempotency_key)
        self.bookings[booking_id]["customer_ref"] = customer_ref
        return dict(self.bookings[booking_id])

    def get_booking_by_idempotency_key(self, cur, idempotency_key):
        for b in self.bookings.values():
            if b["idempotency_key"] == idempotency_key:
                return dict(b)
        return None

    def insert_block(self, cur, *, unit_id, start_date, end_date, reason):
        block_id = self._id("block")
        self.blocks[block_id] = {
            "id": block_id,
            "unit_id": unit_id,
            "start_date": start_date,
            "end_date": end_date,
            "reason": reason,
        }
        return block_id

    # ── unit_conflict ────────────────────────────────────────────────────

    def assert_no_unit_conflict(self, cur, *, unit_id, start_date, end_date):
        for b in self.active_bookings(unit_id):
            if _overlaps(b["start_date"], b["end_date"], start_date, end_date):
                raise UnitConflictError(unit_id, "overlapping_booking", b["id"], b["start_date"], b["end_date"])
        for blk in self.blocks.values():
            if blk["unit_id"] == unit_id and _overlaps(blk["start_date"], blk["end_date"], start_date, end_date):
                raise UnitConflictError(unit_id, "overlapping_block", blk["id"], blk["start_date"], blk["end_date"])


# Module -> repository names that module imported and that the fake replaces
PATCH_TARGETS: dict[str, dict[str, str]] = {
    "fleetpool.domain.availability": {
        "list_occupancy": "list_occupancy",
        "get_group": "get_group",
        "get_unit": "get_unit",
        "list_group_members": "list_group_members",
    },
    "fleetpool.domain.assignment": {
        "usage_counts": "usage_counts",
    },
    "fleetpool.domain.group_policy": {
        "get_policy": "get_policy",
    },
    "fleetpool.domain.booking": {
        "get_booking_by_idempotency_key": "get_booking_by_idempotency_key",
        "insert_booking": "insert_booking",
        "get_group": "get_group",
        "get_unit": "get_unit",
        "lock_unit": "lock_unit",
        "assert_no_unit_conflict": "assert_no_unit_conflict",
    },
    "fleetpool.domain.groups": {
        "delete_group": "delete_group",
        "fetch_group": "get_group",
        "fetch_groups": "list_groups",
        "rename_group_row": "rename_group",
        "insert_group": "insert_group",
        "insert_policy": "insert_policy",
        "sync_total_quantity": "sync_total_quantity",
        "update_policy": "update_policy",
        "attach_to_group": "attach_to_group",
        "detach_from_group": "detach_from_group",
        "detach_group_members": "detach_group_members",
        "get_unit": "get_unit",
        "get_units": "get_units",
        "insert_unit": "insert_unit",
        "list_group_members": "list_group_members",
        "list_grouped_units": "list_grouped_units",
        "list_standalone_units": "list_standalone_units",
        "next_group_index": "next_group_index",
        "set_group_primary": "set_group_primary",
        "update_group_units": "update_group_units",
    },
    "fleetpool.domain.blocks": {
        "insert_block": "insert_block",
        "get_group": "get_group",
        "get_unit": "get_unit",
        "list_group_members": "list_group_members",
    },
}

TXN_MODULES = (
    "fleetpool.domain.booking",
    "fleetpool.domain.groups",
    "fleetpool.domain.blocks",
)


def install_fake_fleet(monkeypatch, fleet: FakeFleet) -> FakeFleet:
    """Patch every repository function used by the domain layer with ``fleet``."""
    import importlib

    for module_name, names in PATCH_TARGETS.items():
        module = importlib.import_module(module_name)
        for attr, method in names.items():
            monkeypatch.setattr(module, attr, getattr(fleet, method))
    for module_name in TXN_MODULES:
        module = importlib.import_module(module_name)
        monkeypatch.setattr(module, "txn", fake_txn)
    return fleet
