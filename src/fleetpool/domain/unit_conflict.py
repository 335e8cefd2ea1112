"""Unit conflict detection.

Centralised logic to check whether a physical unit has an overlapping
active booking or operator block in a given date range.

Overlap formula:  (new_start < existing_end) AND (new_end > existing_start)
Strict inequality allows end day == start day (touching dates are OK).

Only active statuses generate conflicts: pending, confirmed.
Run inside the booking transaction after the unit row is locked, this is
the authoritative re-check; the no_active_unit_overlap exclusion
constraint is the last-resort backstop.
"""

from __future__ import annotations

from datetime import date

from psycopg2.extensions import cursor as PgCursor

from fleetpool.domain.booking_status import ACTIVE_STATUSES, status_values
from fleetpool.observability.logging import get_logger

logger = get_logger(__name__)


class UnitConflictError(Exception):
    """Raised when a unit cannot take a booking for the requested range.

    Internal to the booking path: the coordinator turns it into a retry
    (group bookings) or UnitNoLossToleranceError (pinned bookings).
    """

    def __init__(
        self,
        unit_id: str,
        reason: str,
        conflicting_id: str | None = None,
        existing_start: date | None = None,
        existing_end: date | None = None,
    ) -> None:
        self.unit_id = unit_id
        self.reason = reason
        self.conflicting_id = conflicting_id
        self.existing_start = existing_start
        self.existing_end = existing_end
        if existing_start is not None:
            detail = f"{reason} ({existing_start} to {existing_end})"
        else:
            detail = reason
        super().__init__(f"Unit {unit_id} unavailable: {detail}")


def check_unit_conflict(
    cur: PgCursor,
    *,
    unit_id: str,
    start_date: date,
    end_date: date,
) -> tuple[str, str, date, date] | None:
    """Check if a unit has an overlapping booking or block.

    Args:
        cur: Database cursor (should be within a transaction).
        unit_id: Physical unit identifier.
        start_date: Requested start (inclusive).
        end_date: Requested end (exclusive / return day).

    Returns:
        (kind, id, start, end) of the first conflict, kind being
        "booking" or "block", or None if the unit is free.
    """
    cur.execute(
        """
        SELECT id, start_date, end_date
        FROM bookings
        WHERE unit_id = %s
          AND status = ANY(%s::booking_status[])
          AND start_date < %s
          AND end_date > %s
        ORDER BY start_date
        LIMIT 1
        """,
        [unit_id, status_values(ACTIVE_STATUSES), end_date, start_date],
    )
    row = cur.fetchone()
    kind = "booking"

    if row is None:
        cur.execute(
            """
            SELECT id, start_date, end_date
            FROM unit_blocks
            WHERE unit_id = %s
              AND start_date < %s
              AND end_date > %s
            ORDER BY start_date
            LIMIT 1
            """,
            [unit_id, end_date, start_date],
        )
        row = cur.fetchone()
        kind = "block"

    if row is None:
        return None

    conflicting_id = str(row[0])
    logger.warning(
        "unit conflict detected",
        extra={
            "extra_fields": {
                "unit_id": unit_id,
                "conflict_kind": kind,
                "requested_start": start_date.isoformat(),
                "requested_end": end_date.isoformat(),
                "conflicting_id": conflicting_id,
                "existing_start": row[1].isoformat(),
                "existing_end": row[2].isoformat(),
            },
        },
    )
    return kind, conflicting_id, row[1], row[2]


def assert_no_unit_conflict(
    cur: PgCursor,
    *,
    unit_id: str,
    start_date: date,
    end_date: date,
) -> None:
    """Raise UnitConflictError if the unit has an overlapping booking or block.

    All arguments are forwarded to check_unit_conflict.
    """
    conflict = check_unit_conflict(
        cur,
        unit_id=unit_id,
        start_date=start_date,
        end_date=end_date,
    )
    if conflict is not None:
        kind, conflicting_id, existing_start, existing_end = conflict
        raise UnitConflictError(
            unit_id=unit_id,
            reason=f"overlapping_{kind}",
            conflicting_id=conflicting_id,
            existing_start=existing_start,
            existing_end=existing_end,
        )
