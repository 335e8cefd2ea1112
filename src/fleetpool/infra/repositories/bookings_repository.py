"""Bookings repository - persistence for bookings and unit_blocks.

Uses raw SQL with psycopg2 (no ORM).
Occupancy of a unit is the union of its bookings in the given statuses
and its operator blocks.
"""

from datetime import date

from psycopg2.extensions import cursor as PgCursor

_BOOKING_COLUMNS = """
    id, unit_id, start_date, end_date, status, customer_ref,
    idempotency_key, created_at
"""


def _booking_to_dict(row: tuple) -> dict:
    return {
        "id": str(row[0]),
        "unit_id": str(row[1]),
        "start_date": row[2],
        "end_date": row[3],
        "status": row[4],
        "customer_ref": row[5],
        "idempotency_key": row[6],
        "created_at": row[7],
    }


def list_occupancy(
    cur: PgCursor,
    *,
    unit_ids: list[str],
    statuses: list[str],
    since: date,
    until: date | None = None,
) -> list[tuple[str, date, date]]:
    """List occupied periods of several units in one round trip.

    Args:
        cur: Database cursor.
        unit_ids: Units to inspect.
        statuses: Booking statuses that occupy a unit.
        since: Only periods ending after this day.
        until: Only periods starting before this day (None = open ended).

    Returns:
        (unit_id, start_date, end_date) tuples ordered by unit and start.
    """
    if not unit_ids:
        return []

    booking_where = [
        "unit_id = ANY(%s::uuid[])",
        "status = ANY(%s::booking_status[])",
        "end_date > %s",
    ]
    booking_params: list = [list(unit_ids), list(statuses), since]
    block_where = ["unit_id = ANY(%s::uuid[])", "end_date > %s"]
    block_params: list = [list(unit_ids), since]

    if until is not None:
        booking_where.append("start_date < %s")
        booking_params.append(until)
        block_where.append("start_date < %s")
        block_params.append(until)

    cur.execute(
        f"""
        SELECT unit_id, start_date, end_date
        FROM bookings
        WHERE {" AND ".join(booking_where)}
        UNION ALL
        SELECT unit_id, start_date, end_date
        FROM unit_blocks
        WHERE {" AND ".join(block_where)}
        ORDER BY 1, 2
        """,
        booking_params + block_params,
    )
    return [(str(r[0]), r[1], r[2]) for r in cur.fetchall()]


def usage_counts(
    cur: PgCursor,
    *,
    unit_ids: list[str],
    statuses: list[str],
) -> dict[str, int]:
    """Count historical bookings per unit in the given statuses.

    Units without bookings are present with a count of 0.
    """
    counts = {uid: 0 for uid in unit_ids}
    if not unit_ids:
        return counts
    cur.execute(
        """
        SELECT unit_id, count(*)
        FROM bookings
        WHERE unit_id = ANY(%s::uuid[])
          AND status = ANY(%s::booking_status[])
        GROUP BY unit_id
        """,
        (list(unit_ids), list(statuses)),
    )
    for unit_id, count in cur.fetchall():
        counts[str(unit_id)] = count
    return counts


def insert_booking(
    cur: PgCursor,
    *,
    unit_id: str,
    start_date: date,
    end_date: date,
    status: str,
    customer_ref: str | None = None,
    idempotency_key: str | None = None,
) -> dict | None:
    """Insert a booking.

    With an idempotency key, uses ON CONFLICT DO NOTHING so a concurrent
    replay of the same request does not create a second row.

    Returns:
        The inserted booking, or None when the idempotency key already exists.

    Raises:
        psycopg2.errors.ExclusionViolation: An active booking on the same
            unit overlaps (no_active_unit_overlap constraint).
    """
    cur.execute(
        f"""
        INSERT INTO bookings (
            unit_id, start_date, end_date, status, customer_ref, idempotency_key
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (idempotency_key)
        WHERE idempotency_key IS NOT NULL
        DO NOTHING
        RETURNING {_BOOKING_COLUMNS}
        """,
        (unit_id, start_date, end_date, status, customer_ref, idempotency_key),
    )
    row = cur.fetchone()
    return _booking_to_dict(row) if row is not None else None


def get_booking_by_idempotency_key(cur: PgCursor, idempotency_key: str) -> dict | None:
    cur.execute(
        f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE idempotency_key = %s",
        (idempotency_key,),
    )
    row = cur.fetchone()
    return _booking_to_dict(row) if row is not None else None


def insert_block(
    cur: PgCursor,
    *,
    unit_id: str,
    start_date: date,
    end_date: date,
    reason: str,
) -> str:
    """Insert an operator block on a unit and return its id."""
    cur.execute(
        """
        INSERT INTO unit_blocks (unit_id, start_date, end_date, reason)
        VALUES (%s, %s, %s, %s)
        RETURNING id
        """,
        (unit_id, start_date, end_date, reason),
    )
    return str(cur.fetchone()[0])
