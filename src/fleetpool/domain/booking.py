"""Booking transaction coordinator - the only write path for reservations.

check availability -> resolve assignment -> persist booking, with a zero
double-booking guarantee and no whole-group lock:

1. Pinned requests (a unit target or ``preferred_unit_id``) go straight to
   the transaction on that unit.
2. Group requests resolve a candidate with the group's strategy from a
   best-effort (unlocked) read.
3. One short transaction per attempt: lock the unit row, re-check
   bookings and blocks, insert a ``pending`` booking, commit.
4. A group request that loses a race (re-check fails, exclusion
   constraint or serialization failure) discards the candidate and
   re-resolves, up to ``book_max_attempts``. A pinned request fails with
   UnitNoLossToleranceError instead of being substituted.
5. No free unit left, or attempts exhausted: NoUnitsAvailableError.

The deadline and ``cancel_event`` are only consulted before a transaction
begins. Once inside, the attempt runs to commit or rollback.
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime

from psycopg2 import errors as pg_errors

from fleetpool.domain.assignment import resolve
from fleetpool.domain.booking_status import BookingStatus
from fleetpool.domain.errors import (
    BookingTimeoutError,
    NoUnitsAvailableError,
    NotFoundError,
    UnitNoLossToleranceError,
)
from fleetpool.domain.group_policy import load_policy
from fleetpool.domain.intervals import DateRange
from fleetpool.domain.unit_conflict import UnitConflictError, assert_no_unit_conflict
from fleetpool.infra.db import normalize_id, txn
from fleetpool.infra.engine_settings import EngineSettings
from fleetpool.infra.repositories.bookings_repository import (
    get_booking_by_idempotency_key,
    insert_booking,
)
from fleetpool.infra.repositories.groups_repository import get_group
from fleetpool.infra.repositories.units_repository import get_unit, lock_unit
from fleetpool.observability.correlation import correlation_scope
from fleetpool.observability.logging import get_logger
from fleetpool.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Store-level signals that another writer won the race for this unit
_WRITE_CONFLICTS = (
    pg_errors.ExclusionViolation,
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
    pg_errors.LockNotAvailable,
)


@dataclass(frozen=True)
class Booking:
    """A reservation of one unit for ``[start_date, end_date)``."""

    id: str
    unit_id: str
    start_date: date
    end_date: date
    status: BookingStatus
    created_at: datetime | None = None
    customer_ref: str | None = None
    idempotency_key: str | None = None
    created: bool = True  # False when replayed via idempotency_key

    @classmethod
    def from_row(cls, row: dict, *, created: bool = True) -> "Booking":
        return cls(
            id=row["id"],
            unit_id=row["unit_id"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            status=BookingStatus(row["status"]),
            created_at=row.get("created_at"),
            customer_ref=row.get("customer_ref"),
            idempotency_key=row.get("idempotency_key"),
            created=created,
        )

    @property
    def period(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)


def _ensure_can_proceed(deadline: float, cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise BookingTimeoutError("booking cancelled by caller", reason="cancelled")
    if time.monotonic() >= deadline:
        raise BookingTimeoutError("booking deadline exceeded", reason="deadline")


def _insert_if_free(
    cur,
    *,
    unit_id: str,
    period: DateRange,
    customer_ref: str | None,
    idempotency_key: str | None,
) -> Booking:
    unit = lock_unit(cur, unit_id)
    if unit is None:
        raise NotFoundError("unit", unit_id)

    if idempotency_key is not None:
        # A concurrent replay of this request may have committed while we
        # waited on the lock
        existing = get_booking_by_idempotency_key(cur, idempotency_key)
        if existing is not None:
            return Booking.from_row(existing, created=False)

    if not unit["is_available"]:
        raise UnitConflictError(unit_id=unit_id, reason="unit_disabled")

    assert_no_unit_conflict(
        cur,
        unit_id=unit_id,
        start_date=period.start,
        end_date=period.end,
    )

    row = insert_booking(
        cur,
        unit_id=unit_id,
        start_date=period.start,
        end_date=period.end,
        status=BookingStatus.PENDING.value,
        customer_ref=customer_ref,
        idempotency_key=idempotency_key,
    )
    if row is None:
        # Concurrent replay of the same idempotency key committed first
        existing = get_booking_by_idempotency_key(cur, idempotency_key)
        return Booking.from_row(existing, created=False)
    return Booking.from_row(row)


def _attempt(
    *,
    unit_id: str,
    period: DateRange,
    customer_ref: str | None,
    idempotency_key: str | None,
) -> Booking:
    """Run one booking transaction on ``unit_id``.

    Raises:
        UnitConflictError: The unit is taken, blocked or disabled, or the
            store rejected the write as conflicting.
        NotFoundError: The unit does not exist.
    """
    try:
        with txn() as cur:
            return _insert_if_free(
                cur,
                unit_id=unit_id,
                period=period,
                customer_ref=customer_ref,
                idempotency_key=idempotency_key,
            )
    except _WRITE_CONFLICTS as exc:
        raise UnitConflictError(unit_id=unit_id, reason=type(exc).__name__) from exc


def _find_replay(idempotency_key: str | None) -> Booking | None:
    if idempotency_key is None:
        return None
    with txn() as cur:
        existing = get_booking_by_idempotency_key(cur, idempotency_key)
    if existing is None:
        return None
    logger.info(
        "booking replayed",
        extra={"extra_fields": safe_log_context(booking_id=existing["id"])},
    )
    return Booking.from_row(existing, created=False)


def _log_created(booking: Booking, *, group_id: str | None, attempt: int, pinned: bool) -> None:
    logger.info(
        "booking created" if booking.created else "booking replayed",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking.id,
                unit_id=booking.unit_id,
                group_id=group_id,
                start_date=booking.start_date,
                end_date=booking.end_date,
                attempt=attempt,
                pinned=pinned,
                customer_ref=booking.customer_ref,
            )
        },
    )


def _book_pinned(
    *,
    unit_id: str,
    group_id: str | None,
    period: DateRange,
    customer_ref: str | None,
    idempotency_key: str | None,
    deadline: float,
    cancel_event: threading.Event | None,
) -> Booking:
    if group_id is not None:
        with txn() as cur:
            unit = get_unit(cur, unit_id)
        if unit is None or unit["group_id"] != group_id:
            raise NotFoundError("unit", unit_id)

    _ensure_can_proceed(deadline, cancel_event)
    try:
        booking = _attempt(
            unit_id=unit_id,
            period=period,
            customer_ref=customer_ref,
            idempotency_key=idempotency_key,
        )
    except UnitConflictError as exc:
        logger.warning(
            "pinned unit unavailable",
            extra={
                "extra_fields": safe_log_context(
                    unit_id=unit_id,
                    group_id=group_id,
                    start_date=period.start,
                    end_date=period.end,
                    reason=exc.reason,
                )
            },
        )
        raise UnitNoLossToleranceError(unit_id) from exc

    _log_created(booking, group_id=group_id, attempt=1, pinned=True)
    return booking


def _book_from_group(
    *,
    group_id: str,
    period: DateRange,
    customer_ref: str | None,
    idempotency_key: str | None,
    settings: EngineSettings,
    rng: random.Random,
    deadline: float,
    cancel_event: threading.Event | None,
) -> Booking:
    with txn() as cur:
        if get_group(cur, group_id) is None:
            raise NotFoundError("group", group_id)
        policy = load_policy(cur, group_id, settings.default_strategy)

    lost: list[str] = []
    for attempt in range(1, settings.book_max_attempts + 1):
        _ensure_can_proceed(deadline, cancel_event)
        try:
            with txn() as cur:
                candidate = resolve(
                    cur,
                    group_id,
                    period,
                    policy.assign_strategy,
                    rng=rng,
                    exclude=lost,
                )
        except NoUnitsAvailableError:
            replay = _find_replay(idempotency_key)
            if replay is not None:
                return replay
            raise

        _ensure_can_proceed(deadline, cancel_event)
        try:
            booking = _attempt(
                unit_id=candidate,
                period=period,
                customer_ref=customer_ref,
                idempotency_key=idempotency_key,
            )
        except UnitConflictError as exc:
            lost.append(candidate)
            logger.warning(
                "booking attempt lost race, retrying",
                extra={
                    "extra_fields": safe_log_context(
                        group_id=group_id,
                        unit_id=candidate,
                        attempt=attempt,
                        max_attempts=settings.book_max_attempts,
                        reason=exc.reason,
                    )
                },
            )
            continue

        _log_created(booking, group_id=group_id, attempt=attempt, pinned=False)
        return booking

    replay = _find_replay(idempotency_key)
    if replay is not None:
        return replay

    logger.warning(
        "booking attempts exhausted",
        extra={
            "extra_fields": safe_log_context(
                group_id=group_id,
                start_date=period.start,
                end_date=period.end,
                attempts=settings.book_max_attempts,
            )
        },
    )
    raise NoUnitsAvailableError(
        "no free unit in group", group_id=group_id, start=period.start, end=period.end
    )


def book(
    *,
    start_date: date | datetime,
    end_date: date | datetime,
    group_id: str | None = None,
    unit_id: str | None = None,
    preferred_unit_id: str | None = None,
    customer_ref: str | None = None,
    idempotency_key: str | None = None,
    settings: EngineSettings | None = None,
    cancel_event: threading.Event | None = None,
    rng: random.Random | None = None,
) -> Booking:
    """Create a pending booking on a unit or on any free unit of a group.

    Args:
        start_date: First rental day (inclusive).
        end_date: Return day (exclusive).
        group_id: Book any free member of this group.
        unit_id: Book exactly this unit (pinned).
        preferred_unit_id: With ``group_id``, pin this member instead of
            letting the group strategy choose.
        customer_ref: Opaque caller reference stored on the booking.
        idempotency_key: Replays with the same key return the first booking.
        settings: Engine settings (attempts, deadline, seed).
        cancel_event: When set, stop before starting the next transaction.
        rng: Random source for the random strategy (overrides the seed).

    Returns:
        The Booking, status pending.

    Raises:
        ValueError: Neither or both of group_id / unit_id given.
        InvalidRangeError: start_date >= end_date.
        NotFoundError: Unknown group or unit, or preferred unit not in group.
        NoUnitsAvailableError: No free unit in the group for the dates.
        UnitNoLossToleranceError: The pinned unit is not free.
        BookingTimeoutError: Deadline exceeded or caller cancelled.
    """
    if (group_id is None) == (unit_id is None):
        raise ValueError("exactly one of group_id or unit_id is required")

    period = DateRange.of(start_date, end_date)
    group_id = normalize_id(group_id)
    unit_id = normalize_id(unit_id)
    preferred_unit_id = normalize_id(preferred_unit_id)
    settings = settings or EngineSettings()
    deadline = time.monotonic() + settings.book_timeout_seconds

    # All attempts of one booking log under one correlation ID
    with correlation_scope():
        replay = _find_replay(idempotency_key)
        if replay is not None:
            return replay

        pinned_unit = unit_id or preferred_unit_id
        if pinned_unit is not None:
            return _book_pinned(
                unit_id=pinned_unit,
                group_id=group_id,
                period=period,
                customer_ref=customer_ref,
                idempotency_key=idempotency_key,
                deadline=deadline,
                cancel_event=cancel_event,
            )

        return _book_from_group(
            group_id=group_id,
            period=period,
            customer_ref=customer_ref,
            idempotency_key=idempotency_key,
            settings=settings,
            rng=rng or random.Random(settings.random_seed),
            deadline=deadline,
            cancel_event=cancel_event,
        )
