"""Operator date blocks (maintenance, private use).

A block occupies a unit exactly like an active booking: availability
reads and the booking re-check both treat it as a conflict. Blocks are
not bookings and do not count as usage for the least_used strategy.
"""

from __future__ import annotations

from datetime import date

from fleetpool.domain.errors import NotFoundError
from fleetpool.domain.intervals import DateRange
from fleetpool.infra.db import normalize_id, txn
from fleetpool.infra.repositories.bookings_repository import insert_block
from fleetpool.infra.repositories.groups_repository import get_group
from fleetpool.infra.repositories.units_repository import get_unit, list_group_members
from fleetpool.observability.logging import get_logger
from fleetpool.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_BLOCK_REASON = "Blocked by operator"


def block_dates(
    *,
    start_date: date,
    end_date: date,
    group_id: str | None = None,
    unit_ids: list[str] | None = None,
    reason: str | None = None,
) -> list[str]:
    """Block a date range on units.

    With ``group_id`` the block applies to every member, or only to
    ``unit_ids`` when given (each must be a member). Without ``group_id``,
    ``unit_ids`` names standalone or grouped units directly.

    Returns:
        Ids of the created blocks.

    Raises:
        InvalidRangeError: start_date >= end_date.
        NotFoundError: Unknown group, unit, or unit outside the group.
        ValueError: Neither group_id nor unit_ids given.
    """
    period = DateRange.of(start_date, end_date)
    if group_id is None and not unit_ids:
        raise ValueError("group_id or unit_ids is required")
    group_id = normalize_id(group_id)
    unit_ids = [normalize_id(uid) for uid in unit_ids or []]

    with txn() as cur:
        if group_id is not None:
            if get_group(cur, group_id) is None:
                raise NotFoundError("group", group_id)
            member_ids = [m["id"] for m in list_group_members(cur, group_id)]
            if unit_ids:
                for uid in unit_ids:
                    if uid not in member_ids:
                        raise NotFoundError("unit", uid)
                targets = list(unit_ids)
            else:
                targets = member_ids
        else:
            for uid in unit_ids:
                if get_unit(cur, uid) is None:
                    raise NotFoundError("unit", uid)
            targets = list(unit_ids)

        block_ids = [
            insert_block(
                cur,
                unit_id=uid,
                start_date=period.start,
                end_date=period.end,
                reason=reason or DEFAULT_BLOCK_REASON,
            )
            for uid in targets
        ]

    logger.info(
        "dates blocked",
        extra={
            "extra_fields": safe_log_context(
                group_id=group_id,
                units=targets,
                start_date=period.start,
                end_date=period.end,
            )
        },
    )
    return block_ids
