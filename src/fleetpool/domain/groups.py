"""Unit groups - pool lifecycle and shared-attribute propagation.

A group is a pool of interchangeable units of one vehicle type. Every
mutation that adds or removes a member re-syncs ``total_quantity`` to the
live member count inside the same transaction, and a group never survives
losing its last member.

Membership changes lock the group row, so concurrent edits of the same
group serialise. None of this touches the booking path.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from fleetpool.domain.assignment import AssignmentStrategy
from fleetpool.domain.availability import free_among
from fleetpool.domain.errors import InvalidGroupError, NothingToApplyError, NotFoundError
from fleetpool.domain.group_policy import DEFAULT_NAMING_PATTERN, GroupPolicy, load_policy
from fleetpool.domain.intervals import DateRange
from fleetpool.infra.db import normalize_id, txn
from fleetpool.infra.repositories.groups_repository import (
    delete_group,
    get_group as fetch_group,
    insert_group,
    insert_policy,
    list_groups as fetch_groups,
    rename_group as rename_group_row,
    sync_total_quantity,
    update_policy,
)
from fleetpool.infra.repositories.units_repository import (
    attach_to_group,
    detach_from_group,
    detach_group_members,
    get_unit,
    get_units,
    insert_unit,
    list_group_members,
    list_grouped_units,
    list_standalone_units,
    next_group_index,
    set_group_primary,
    update_group_units,
)
from fleetpool.observability.logging import get_logger
from fleetpool.observability.redaction import safe_log_context

logger = get_logger(__name__)

MAX_GROUP_QUANTITY = 100

PRICING_FIELDS = ("price_per_day", "price_per_week", "price_per_month")
SPECIFICATION_FIELDS = ("specifications",)
IMAGE_FIELDS = ("images",)
# Applied regardless of policy: "pause the whole group" must always work
ALWAYS_SHARED_FIELDS = ("description", "is_available")


def _require_group(cur: PgCursor, group_id: str, *, lock: bool = False) -> dict:
    group = fetch_group(cur, group_id, lock=lock)
    if group is None:
        raise NotFoundError("group", group_id)
    return group


# ── Creation ──────────────────────────────────────────────────────────────────


def create_group(
    *,
    name: str,
    vehicle_type: str,
    quantity: int,
    base_unit: dict[str, Any],
    individual_names: list[str] | None = None,
    policy: GroupPolicy | None = None,
) -> dict:
    """Bulk-create ``quantity`` identical units as a new group.

    Args:
        name: Group display name (also the units' name unless base_unit has one).
        vehicle_type: Category shared by every member.
        quantity: Number of units, 1..100.
        base_unit: Template fields: price_per_day (required), price_per_week,
            price_per_month, description, specifications, images, is_available.
        individual_names: Optional explicit identifiers, one per unit.
            Missing entries fall back to the policy naming pattern.
        policy: Group policy (defaults to sequential, everything shared).

    Returns:
        Dict with the group and its member unit ids in position order.

    Raises:
        InvalidGroupError: Bad quantity or missing price.
    """
    if quantity < 1 or quantity > MAX_GROUP_QUANTITY:
        raise InvalidGroupError(f"quantity must be between 1 and {MAX_GROUP_QUANTITY}")
    if base_unit.get("price_per_day") is None:
        raise InvalidGroupError("price_per_day is required")

    policy = policy or GroupPolicy()
    names = list(individual_names or [])
    unit_name = base_unit.get("name") or name

    with txn() as cur:
        group_id = insert_group(cur, name=name, vehicle_type=vehicle_type, total_quantity=quantity)
        insert_policy(cur, group_id=group_id, **policy.to_row())

        unit_ids: list[str] = []
        for index in range(1, quantity + 1):
            given = names[index - 1] if index <= len(names) else None
            unit_ids.append(
                insert_unit(
                    cur,
                    name=unit_name,
                    vehicle_type=vehicle_type,
                    price_per_day=base_unit["price_per_day"],
                    price_per_week=base_unit.get("price_per_week"),
                    price_per_month=base_unit.get("price_per_month"),
                    description=base_unit.get("description"),
                    specifications=base_unit.get("specifications"),
                    images=base_unit.get("images"),
                    is_available=base_unit.get("is_available", True),
                    group_id=group_id,
                    group_index=index,
                    individual_identifier=given or policy.identifier_for(index, unit_name),
                    is_group_primary=index == 1,
                )
            )

    logger.info(
        "group created",
        extra={
            "extra_fields": safe_log_context(
                group_id=group_id, vehicle_type=vehicle_type, quantity=quantity
            )
        },
    )
    return {
        "id": group_id,
        "name": name,
        "vehicle_type": vehicle_type,
        "total_quantity": quantity,
        "unit_ids": unit_ids,
    }


def convert_to_group(
    unit_ids: list[str],
    *,
    name: str,
    policy: GroupPolicy | None = None,
) -> dict:
    """Turn existing standalone units into a pool.

    The first listed unit becomes the primary (template) member; positions
    follow the order of ``unit_ids``.

    Raises:
        InvalidGroupError: Empty or duplicated ids, already-grouped units,
            or units of different vehicle types.
        NotFoundError: An id does not resolve to a unit.
    """
    if not unit_ids:
        raise InvalidGroupError("at least one unit is required")
    unit_ids = [normalize_id(uid) for uid in unit_ids]
    if len(set(unit_ids)) != len(unit_ids):
        raise InvalidGroupError("duplicate unit ids")

    policy = policy or GroupPolicy()

    with txn() as cur:
        units = get_units(cur, unit_ids)
        found = {u["id"] for u in units}
        for uid in unit_ids:
            if uid not in found:
                raise NotFoundError("unit", uid)
        if any(u["group_id"] is not None for u in units):
            raise InvalidGroupError("units already belong to a group")
        vehicle_types = {u["vehicle_type"] for u in units}
        if len(vehicle_types) > 1:
            raise InvalidGroupError(f"mixed vehicle types: {sorted(vehicle_types)}")

        template = units[0]
        group_id = insert_group(
            cur, name=name, vehicle_type=template["vehicle_type"], total_quantity=len(units)
        )
        insert_policy(cur, group_id=group_id, **policy.to_row())

        for index, unit in enumerate(units, start=1):
            attach_to_group(
                cur,
                unit_id=unit["id"],
                group_id=group_id,
                group_index=index,
                individual_identifier=policy.identifier_for(index, unit["name"]),
                is_group_primary=index == 1,
            )
        total = sync_total_quantity(cur, group_id)

    logger.info(
        "units converted to group",
        extra={"extra_fields": safe_log_context(group_id=group_id, quantity=total)},
    )
    return {
        "id": group_id,
        "name": name,
        "vehicle_type": template["vehicle_type"],
        "total_quantity": total,
        "unit_ids": [u["id"] for u in units],
    }


# ── Membership ────────────────────────────────────────────────────────────────


def add_unit_to_group(group_id: str, unit_id: str) -> dict:
    """Attach a standalone unit at the next free position.

    Raises:
        NotFoundError: Unknown group or unit.
        InvalidGroupError: Unit already grouped or of another vehicle type.
    """
    group_id, unit_id = normalize_id(group_id), normalize_id(unit_id)
    with txn() as cur:
        group = _require_group(cur, group_id, lock=True)
        unit = get_unit(cur, unit_id)
        if unit is None:
            raise NotFoundError("unit", unit_id)
        if unit["group_id"] is not None:
            raise InvalidGroupError("unit already belongs to a group")
        if unit["vehicle_type"] != group["vehicle_type"]:
            raise InvalidGroupError(
                f"unit vehicle type {unit['vehicle_type']!r} does not match "
                f"group vehicle type {group['vehicle_type']!r}"
            )

        policy = load_policy(cur, group_id)
        index = next_group_index(cur, group_id)
        attach_to_group(
            cur,
            unit_id=unit_id,
            group_id=group_id,
            group_index=index,
            individual_identifier=policy.identifier_for(index, unit["name"]),
            is_group_primary=False,
        )
        total = sync_total_quantity(cur, group_id)

    logger.info(
        "unit added to group",
        extra={"extra_fields": safe_log_context(group_id=group_id, unit_id=unit_id, quantity=total)},
    )
    return {"group_id": group_id, "unit_id": unit_id, "group_index": index, "total_quantity": total}


def remove_from_group(unit_id: str, *, group_id: str | None = None) -> dict:
    """Detach a unit from its group. The unit itself is never deleted.

    Promotes the lowest-positioned remaining member when the primary
    leaves, and deletes the group when its last member leaves.

    Args:
        unit_id: Unit to detach.
        group_id: When given, the unit must be a member of this group.

    Returns:
        Dict with group_id, remaining total_quantity and group_deleted.

    Raises:
        NotFoundError: Unknown unit, or unit not in ``group_id``.
        InvalidGroupError: Unit is not in a group.
    """
    unit_id, group_id = normalize_id(unit_id), normalize_id(group_id)
    with txn() as cur:
        unit = get_unit(cur, unit_id)
        if unit is None:
            raise NotFoundError("unit", unit_id)
        if group_id is not None and unit["group_id"] != group_id:
            raise NotFoundError("unit", unit_id)
        group_id = unit["group_id"]
        if group_id is None:
            raise InvalidGroupError("unit is not in a group")

        _require_group(cur, group_id, lock=True)
        detach_from_group(cur, unit_id)

        remaining = list_group_members(cur, group_id)
        deleted = not remaining
        if deleted:
            delete_group(cur, group_id)
            total = 0
        else:
            if unit["is_group_primary"]:
                set_group_primary(cur, remaining[0]["id"])
            total = sync_total_quantity(cur, group_id)

    logger.info(
        "unit removed from group",
        extra={
            "extra_fields": safe_log_context(
                group_id=group_id, unit_id=unit_id, quantity=total, group_deleted=deleted
            )
        },
    )
    return {"group_id": group_id, "total_quantity": total, "group_deleted": deleted}


def dissolve_group(group_id: str) -> dict:
    """Delete a group and turn all of its members back into standalone units.

    Units and their bookings are kept; only the grouping goes away.

    Raises:
        NotFoundError: Unknown group.
    """
    group_id = normalize_id(group_id)
    with txn() as cur:
        _require_group(cur, group_id, lock=True)
        released = detach_group_members(cur, group_id)
        delete_group(cur, group_id)

    logger.info(
        "group dissolved",
        extra={"extra_fields": safe_log_context(group_id=group_id, released=len(released))},
    )
    return {"group_id": group_id, "released_unit_ids": released, "group_deleted": True}


# ── Reads and policy ──────────────────────────────────────────────────────────


def list_groups(*, on: date | None = None) -> list[dict]:
    """Every group with how many of its members are free on ``on`` (default today)."""
    day = on or date.today()
    period = DateRange(day, day + timedelta(days=1))

    with txn() as cur:
        groups = fetch_groups(cur)
        members = list_grouped_units(cur)
        free = {m["id"] for m in free_among(cur, members, period)}

    available: dict[str, int] = defaultdict(int)
    for member in members:
        if member["id"] in free:
            available[member["group_id"]] += 1

    return [{**group, "available_count": available[group["id"]]} for group in groups]


def rename_group(group_id: str, name: str) -> dict:
    """Change a group's display name. Member identifiers are left alone.

    Raises:
        InvalidGroupError: Blank name.
        NotFoundError: Unknown group.
    """
    name = (name or "").strip()
    if not name:
        raise InvalidGroupError("name must not be blank")

    group_id = normalize_id(group_id)
    with txn() as cur:
        if not rename_group_row(cur, group_id, name):
            raise NotFoundError("group", group_id)
        group = _require_group(cur, group_id)

    logger.info(
        "group renamed",
        extra={"extra_fields": safe_log_context(group_id=group_id)},
    )
    return group


def get_group(group_id: str) -> dict:
    """Group with its policy and members (position order)."""
    group_id = normalize_id(group_id)
    with txn() as cur:
        group = _require_group(cur, group_id)
        policy = load_policy(cur, group_id)
        members = list_group_members(cur, group_id)

    return {
        **group,
        "policy": policy.to_row(),
        "members": members,
    }


def update_group_policy(group_id: str, **changes: Any) -> GroupPolicy:
    """Partially update a group's policy.

    Raises:
        NotFoundError: Unknown group.
        InvalidGroupError: Unknown policy field or strategy.
    """
    unknown = set(changes) - set(GroupPolicy.__dataclass_fields__)
    if unknown:
        raise InvalidGroupError(f"unknown policy fields: {sorted(unknown)}")
    if "assign_strategy" in changes:
        try:
            changes["assign_strategy"] = AssignmentStrategy(changes["assign_strategy"]).value
        except ValueError as exc:
            raise InvalidGroupError(f"unknown strategy {changes['assign_strategy']!r}") from exc
    if "naming_pattern" in changes and not changes["naming_pattern"]:
        changes["naming_pattern"] = DEFAULT_NAMING_PATTERN

    group_id = normalize_id(group_id)
    with txn() as cur:
        _require_group(cur, group_id)
        row = update_policy(cur, group_id, changes)
        if row is None:
            # Group predates policies: create the row from defaults + changes
            merged = {**GroupPolicy().to_row(), **changes}
            insert_policy(cur, group_id=group_id, **merged)
            row = merged

    logger.info(
        "group policy updated",
        extra={"extra_fields": safe_log_context(group_id=group_id, changes=changes)},
    )
    return GroupPolicy.from_row(row)


# ── Attribute propagation ─────────────────────────────────────────────────────


def split_fields(policy: GroupPolicy, fields: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Split requested fields into (applicable, blocked-by-policy).

    Raises:
        InvalidGroupError: A field is not a bulk-updatable unit field.
    """
    gated = {
        **{f: policy.share_pricing for f in PRICING_FIELDS},
        **{f: policy.share_specifications for f in SPECIFICATION_FIELDS},
        **{f: policy.share_images for f in IMAGE_FIELDS},
        **{f: True for f in ALWAYS_SHARED_FIELDS},
    }
    unknown = set(fields) - set(gated)
    if unknown:
        raise InvalidGroupError(f"fields cannot be bulk-updated: {sorted(unknown)}")

    applicable = {k: v for k, v in fields.items() if gated[k]}
    blocked = sorted(k for k in fields if not gated[k])
    return applicable, blocked


def bulk_update(
    group_id: str,
    fields: dict[str, Any],
    *,
    unit_ids: list[str] | None = None,
) -> int:
    """Apply field values to every member (or the listed members) of a group.

    Pricing, specification and image fields only apply when the group
    policy shares them; description and is_available always apply.

    Args:
        group_id: Group to update.
        fields: Field -> new value.
        unit_ids: Optional subset of members.

    Returns:
        Number of units updated.

    Raises:
        NotFoundError: Unknown group, or a listed unit is not a member.
        InvalidGroupError: Unknown field.
        NothingToApplyError: Every requested field is blocked by policy.
    """
    group_id = normalize_id(group_id)
    if unit_ids is not None:
        unit_ids = [normalize_id(uid) for uid in unit_ids]
    with txn() as cur:
        _require_group(cur, group_id, lock=True)
        policy = load_policy(cur, group_id)
        applicable, blocked = split_fields(policy, fields)
        if not applicable:
            raise NothingToApplyError(blocked)

        if unit_ids is not None:
            member_ids = {m["id"] for m in list_group_members(cur, group_id)}
            for uid in unit_ids:
                if uid not in member_ids:
                    raise NotFoundError("unit", uid)

        applied = update_group_units(cur, group_id=group_id, fields=applicable, unit_ids=unit_ids)

    logger.info(
        "group bulk update applied",
        extra={
            "extra_fields": safe_log_context(
                group_id=group_id,
                applied_fields=sorted(applicable),
                blocked_fields=blocked,
                applied_count=applied,
            )
        },
    )
    return applied


# ── Duplicate detection ───────────────────────────────────────────────────────


def group_duplicates(units: list[dict]) -> list[dict]:
    """Cluster standalone units that look identical (same name and type).

    Returns clusters of two or more, largest first.
    """
    clusters: dict[tuple[str, str], list[dict]] = defaultdict(list)
    for unit in units:
        if unit.get("group_id") is not None:
            continue
        key = (unit["name"].strip().lower(), unit["vehicle_type"])
        clusters[key].append(unit)

    result = [
        {
            "name": members[0]["name"],
            "vehicle_type": vehicle_type,
            "count": len(members),
            "unit_ids": [m["id"] for m in members],
            "price_per_day": members[0]["price_per_day"],
        }
        for (_, vehicle_type), members in clusters.items()
        if len(members) > 1
    ]
    result.sort(key=lambda c: (-c["count"], c["name"]))
    return result


def find_duplicate_candidates() -> list[dict]:
    """Standalone units that could be converted into groups."""
    with txn() as cur:
        units = list_standalone_units(cur)
    return group_duplicates(units)
