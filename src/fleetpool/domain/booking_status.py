"""Booking lifecycle states.

pending -> confirmed -> completed, with cancelled reachable from pending
or confirmed. Only pending and confirmed occupy a unit. Transitions are
driven by operators outside this engine; ``can_transition`` is the shared
rule they must follow.
"""

from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

# Counted as "usage" by the least_used strategy
USAGE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED)

_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def is_active(status: BookingStatus | str) -> bool:
    return BookingStatus(status) in ACTIVE_STATUSES


def can_transition(current: BookingStatus | str, target: BookingStatus | str) -> bool:
    return BookingStatus(target) in _TRANSITIONS[BookingStatus(current)]


def status_values(statuses) -> list[str]:
    """Plain string values, as bound into SQL ``booking_status[]`` params."""
    return [BookingStatus(s).value for s in statuses]
