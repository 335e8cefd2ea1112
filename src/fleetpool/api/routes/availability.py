"""Availability endpoints for browse and calendar views.

GET /units/{unit_id}/availability?start_date=...&end_date=...    → {free}
GET /groups/{group_id}/availability?start_date=...&end_date=...  → counts + free units

Best-effort reads: the answer may be stale by the time a booking is made.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Path, Query

from fleetpool.api.errors import http_error
from fleetpool.domain.availability import group_availability, is_unit_free
from fleetpool.domain.errors import FleetpoolError
from fleetpool.domain.intervals import DateRange
from fleetpool.infra.db import txn

router = APIRouter(tags=["availability"])


@router.get("/units/{unit_id}/availability")
def unit_availability(
    unit_id: str = Path(..., description="Unit ID"),
    start_date: date = Query(...),
    end_date: date = Query(...),
) -> dict:
    try:
        period = DateRange.of(start_date, end_date)
        with txn() as cur:
            free = is_unit_free(cur, unit_id, period)
    except FleetpoolError as exc:
        raise http_error(exc) from exc

    return {
        "unit_id": unit_id,
        "start_date": period.start.isoformat(),
        "end_date": period.end.isoformat(),
        "free": free,
    }


@router.get("/groups/{group_id}/availability")
def get_group_availability(
    group_id: str = Path(..., description="Group ID"),
    start_date: date = Query(...),
    end_date: date = Query(...),
) -> dict:
    """Free units of a group, with next free day for each busy unit."""
    try:
        period = DateRange.of(start_date, end_date)
        with txn() as cur:
            snapshot = group_availability(cur, group_id, period)
    except FleetpoolError as exc:
        raise http_error(exc) from exc

    return {
        "group_id": group_id,
        "start_date": period.start.isoformat(),
        "end_date": period.end.isoformat(),
        "total_units": snapshot.total_units,
        "available_count": snapshot.available_count,
        "free_unit_ids": snapshot.free_unit_ids,
        "next_available": {
            unit_id: day.isoformat() for unit_id, day in snapshot.next_available.items()
        },
    }
