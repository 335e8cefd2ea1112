"""Groups repository - persistence for unit_groups and group_policies.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from fleetpool.infra.db import is_uuid

POLICY_COLUMNS = (
    "assign_strategy",
    "naming_pattern",
    "share_pricing",
    "share_specifications",
    "share_images",
)


def get_group(cur: PgCursor, group_id: str, *, lock: bool = False) -> dict | None:
    """Retrieve a group by ID.

    Args:
        cur: Database cursor.
        group_id: Group UUID.
        lock: If True, appends FOR UPDATE (serialises membership changes).

    Returns:
        Dict with group data or None if not found.
    """
    if not is_uuid(group_id):
        return None
    suffix = " FOR UPDATE" if lock else ""
    cur.execute(
        f"""
        SELECT id, name, vehicle_type, total_quantity
        FROM unit_groups
        WHERE id = %s
        {suffix}
        """,
        (group_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "name": row[1],
        "vehicle_type": row[2],
        "total_quantity": row[3],
    }


def list_groups(cur: PgCursor) -> list[dict]:
    """All groups, newest first."""
    cur.execute(
        """
        SELECT id, name, vehicle_type, total_quantity
        FROM unit_groups
        ORDER BY created_at DESC, id
        """
    )
    return [
        {"id": str(row[0]), "name": row[1], "vehicle_type": row[2], "total_quantity": row[3]}
        for row in cur.fetchall()
    ]


def rename_group(cur: PgCursor, group_id: str, name: str) -> bool:
    """Set a group's display name. Returns False if the group is missing."""
    if not is_uuid(group_id):
        return False
    cur.execute(
        "UPDATE unit_groups SET name = %s, updated_at = now() WHERE id = %s",
        (name, group_id),
    )
    return cur.rowcount == 1


def insert_group(
    cur: PgCursor,
    *,
    name: str,
    vehicle_type: str,
    total_quantity: int,
) -> str:
    cur.execute(
        """
        INSERT INTO unit_groups (name, vehicle_type, total_quantity)
        VALUES (%s, %s, %s)
        RETURNING id
        """,
        (name, vehicle_type, total_quantity),
    )
    return str(cur.fetchone()[0])


def delete_group(cur: PgCursor, group_id: str) -> None:
    """Delete a group; its policy row goes with it (ON DELETE CASCADE)."""
    cur.execute("DELETE FROM unit_groups WHERE id = %s", (group_id,))


def sync_total_quantity(cur: PgCursor, group_id: str) -> int:
    """Set total_quantity to the live member count and return it."""
    cur.execute(
        """
        UPDATE unit_groups
        SET total_quantity = (SELECT count(*) FROM units WHERE group_id = %s),
            updated_at = now()
        WHERE id = %s
        RETURNING total_quantity
        """,
        (group_id, group_id),
    )
    row = cur.fetchone()
    return row[0] if row else 0


def get_policy(cur: PgCursor, group_id: str) -> dict | None:
    cur.execute(
        """
        SELECT assign_strategy, naming_pattern,
               share_pricing, share_specifications, share_images
        FROM group_policies
        WHERE group_id = %s
        """,
        (group_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return dict(zip(POLICY_COLUMNS, row))


def insert_policy(
    cur: PgCursor,
    *,
    group_id: str,
    assign_strategy: str,
    naming_pattern: str,
    share_pricing: bool,
    share_specifications: bool,
    share_images: bool,
) -> None:
    cur.execute(
        """
        INSERT INTO group_policies (
            group_id, assign_strategy, naming_pattern,
            share_pricing, share_specifications, share_images
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (
            group_id,
            assign_strategy,
            naming_pattern,
            share_pricing,
            share_specifications,
            share_images,
        ),
    )


def update_policy(cur: PgCursor, group_id: str, changes: dict[str, Any]) -> dict | None:
    """Partially update a policy. Returns the new policy or None if missing."""
    unknown = set(changes) - set(POLICY_COLUMNS)
    if unknown:
        raise ValueError(f"unknown policy fields: {sorted(unknown)}")

    sets = [f"{column} = %s" for column in POLICY_COLUMNS if column in changes]
    params = [changes[column] for column in POLICY_COLUMNS if column in changes]
    if not sets:
        return get_policy(cur, group_id)

    params.append(group_id)
    cur.execute(
        f"""
        UPDATE group_policies
        SET {", ".join(sets)}
        WHERE group_id = %s
        RETURNING {", ".join(POLICY_COLUMNS)}
        """,  # noqa: S608 – whitelisted column names only
        params,
    )
    row = cur.fetchone()
    if row is None:
        return None
    return dict(zip(POLICY_COLUMNS, row))
