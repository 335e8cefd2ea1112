"""Units repository - persistence for rentable units.

Uses raw SQL with psycopg2 (no ORM).
"""

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from fleetpool.infra.db import fetchall, fetchone, for_update, is_uuid, normalize_id

_UNIT_COLUMNS = """
    id, group_id, group_index, individual_identifier, is_group_primary,
    is_available, name, vehicle_type, description,
    price_per_day, price_per_week, price_per_month, specifications, images
"""

# Columns a bulk update may write. Anything else is rejected upstream.
UPDATABLE_COLUMNS = (
    "price_per_day",
    "price_per_week",
    "price_per_month",
    "specifications",
    "images",
    "description",
    "is_available",
)
_JSON_COLUMNS = ("specifications", "images")


def _unit_to_dict(row: tuple) -> dict:
    return {
        "id": str(row[0]),
        "group_id": str(row[1]) if row[1] is not None else None,
        "group_index": row[2],
        "individual_identifier": row[3],
        "is_group_primary": row[4],
        "is_available": row[5],
        "name": row[6],
        "vehicle_type": row[7],
        "description": row[8],
        "price_per_day": row[9],
        "price_per_week": row[10],
        "price_per_month": row[11],
        "specifications": row[12] or {},
        "images": row[13] or [],
    }


def get_unit(cur: PgCursor, unit_id: str) -> dict | None:
    """Retrieve a unit by ID, or None."""
    if not is_uuid(unit_id):
        return None
    row = fetchone(cur, f"SELECT {_UNIT_COLUMNS} FROM units WHERE id = %s", (unit_id,))
    return _unit_to_dict(row) if row is not None else None


def get_units(cur: PgCursor, unit_ids: list[str]) -> list[dict]:
    """Retrieve several units, in the order of ``unit_ids``."""
    unit_ids = [normalize_id(uid) for uid in unit_ids if is_uuid(uid)]
    if not unit_ids:
        return []
    cur.execute(
        f"SELECT {_UNIT_COLUMNS} FROM units WHERE id = ANY(%s::uuid[])",
        (list(unit_ids),),
    )
    by_id = {u["id"]: u for u in map(_unit_to_dict, cur.fetchall())}
    return [by_id[uid] for uid in unit_ids if uid in by_id]


def lock_unit(cur: PgCursor, unit_id: str) -> dict | None:
    """Lock a unit row (FOR UPDATE) for the rest of the transaction.

    Concurrent bookers of the same unit queue on this lock, so the
    conflict re-check that follows sees whatever the winner committed.

    Returns:
        Dict with id, group_id and is_available, or None if not found.
    """
    if not is_uuid(unit_id):
        return None
    row = for_update(cur, "SELECT id, group_id, is_available FROM units WHERE id = %s", (unit_id,))
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "group_id": str(row[1]) if row[1] is not None else None,
        "is_available": row[2],
    }


def list_group_members(cur: PgCursor, group_id: str) -> list[dict]:
    """List live members of a group ordered by position index."""
    rows = fetchall(
        cur,
        f"""
        SELECT {_UNIT_COLUMNS}
        FROM units
        WHERE group_id = %s
        ORDER BY group_index, id
        """,
        (group_id,),
    )
    return [_unit_to_dict(row) for row in rows]


def insert_unit(
    cur: PgCursor,
    *,
    name: str,
    vehicle_type: str,
    price_per_day: int,
    price_per_week: int | None = None,
    price_per_month: int | None = None,
    description: str | None = None,
    specifications: dict | None = None,
    images: list | None = None,
    is_available: bool = True,
    group_id: str | None = None,
    group_index: int | None = None,
    individual_identifier: str | None = None,
    is_group_primary: bool = False,
) -> str:
    """Insert a unit and return its id."""
    cur.execute(
        """
        INSERT INTO units (
            name, vehicle_type, price_per_day, price_per_week, price_per_month,
            description, specifications, images, is_available,
            group_id, group_index, individual_identifier, is_group_primary
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            name,
            vehicle_type,
            price_per_day,
            price_per_week,
            price_per_month,
            description,
            json.dumps(specifications or {}),
            json.dumps(images or []),
            is_available,
            group_id,
            group_index,
            individual_identifier,
            is_group_primary,
        ),
    )
    return str(cur.fetchone()[0])


def attach_to_group(
    cur: PgCursor,
    *,
    unit_id: str,
    group_id: str,
    group_index: int,
    individual_identifier: str,
    is_group_primary: bool,
) -> None:
    cur.execute(
        """
        UPDATE units
        SET group_id = %s,
            group_index = %s,
            individual_identifier = %s,
            is_group_primary = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (group_id, group_index, individual_identifier, is_group_primary, unit_id),
    )


def detach_from_group(cur: PgCursor, unit_id: str) -> None:
    """Turn a member back into a standalone unit. Bookings are untouched."""
    cur.execute(
        """
        UPDATE units
        SET group_id = NULL,
            group_index = NULL,
            individual_identifier = NULL,
            is_group_primary = false,
            updated_at = now()
        WHERE id = %s
        """,
        (unit_id,),
    )


def detach_group_members(cur: PgCursor, group_id: str) -> list[str]:
    """Turn every member of a group into a standalone unit; returns their ids."""
    rows = fetchall(
        cur,
        """
        UPDATE units
        SET group_id = NULL,
            group_index = NULL,
            individual_identifier = NULL,
            is_group_primary = false,
            updated_at = now()
        WHERE group_id = %s
        RETURNING id
        """,
        (group_id,),
    )
    return [str(row[0]) for row in rows]


def list_grouped_units(cur: PgCursor) -> list[dict]:
    """Members of every group, ordered by group then position."""
    rows = fetchall(
        cur,
        f"""
        SELECT {_UNIT_COLUMNS}
        FROM units
        WHERE group_id IS NOT NULL
        ORDER BY group_id, group_index, id
        """,
    )
    return [_unit_to_dict(row) for row in rows]


def set_group_primary(cur: PgCursor, unit_id: str) -> None:
    cur.execute(
        "UPDATE units SET is_group_primary = true, updated_at = now() WHERE id = %s",
        (unit_id,),
    )


def next_group_index(cur: PgCursor, group_id: str) -> int:
    cur.execute(
        "SELECT COALESCE(MAX(group_index), 0) + 1 FROM units WHERE group_id = %s",
        (group_id,),
    )
    return cur.fetchone()[0]


def update_group_units(
    cur: PgCursor,
    *,
    group_id: str,
    fields: dict[str, Any],
    unit_ids: list[str] | None = None,
) -> int:
    """Apply the same field values to members of a group.

    Args:
        cur: Database cursor (within transaction).
        group_id: Group whose members are updated.
        fields: Column -> value; keys must be in UPDATABLE_COLUMNS.
        unit_ids: Optional subset of members; None means all members.

    Returns:
        Number of units updated.
    """
    unknown = set(fields) - set(UPDATABLE_COLUMNS)
    if unknown:
        raise ValueError(f"columns not updatable: {sorted(unknown)}")

    sets: list[str] = ["updated_at = now()"]
    params: list = []
    for column in UPDATABLE_COLUMNS:
        if column not in fields:
            continue
        value = fields[column]
        if column in _JSON_COLUMNS:
            sets.append(f"{column} = %s::jsonb")
            params.append(json.dumps(value))
        else:
            sets.append(f"{column} = %s")
            params.append(value)

    where = "group_id = %s"
    params.append(group_id)
    if unit_ids is not None:
        where += " AND id = ANY(%s::uuid[])"
        params.append(list(unit_ids))

    cur.execute(
        f"UPDATE units SET {', '.join(sets)} WHERE {where}",  # noqa: S608 – whitelisted column names only
        params,
    )
    return cur.rowcount


def list_standalone_units(cur: PgCursor) -> list[dict]:
    """List units that belong to no group."""
    cur.execute(
        f"""
        SELECT {_UNIT_COLUMNS}
        FROM units
        WHERE group_id IS NULL
        ORDER BY vehicle_type, name, id
        """
    )
    return [_unit_to_dict(row) for row in cur.fetchall()]
