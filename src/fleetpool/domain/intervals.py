"""Date-range model for unit occupancy.

Ranges are half-open ``[start, end)`` at day granularity: the end date is
the return day and is free for the next rental.

Overlap formula:  (a.start < b.end) AND (b.start < a.end)
Strict inequality allows end day == start day (back-to-back rentals are OK).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from fleetpool.domain.errors import InvalidRangeError


def _as_day(value: date | datetime) -> date:
    # A unit occupied for any part of a day is occupied that whole day
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass(frozen=True, order=True)
class DateRange:
    """Occupied period ``[start, end)``."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidRangeError(
                f"start ({self.start}) must be before end ({self.end})",
                start=self.start,
                end=self.end,
            )

    @classmethod
    def of(cls, start: date | datetime, end: date | datetime) -> "DateRange":
        """Build a range from dates or datetimes, dropping time of day."""
        if start is None or end is None:
            raise InvalidRangeError("start and end are required")
        return cls(_as_day(start), _as_day(end))

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def overlaps(self, other: "DateRange") -> bool:
        return overlaps(self, other)


def overlaps(a: DateRange, b: DateRange) -> bool:
    """True when the two ranges share at least one day."""
    return a.start < b.end and b.start < a.end


def any_overlap(period: DateRange, occupied: Iterable[DateRange]) -> bool:
    return any(overlaps(period, other) for other in occupied)


def first_free_day(occupied: Iterable[DateRange], from_day: date) -> date:
    """Return the first day on or after ``from_day`` not covered by ``occupied``.

    Back-to-back and overlapping occupancies are chained, so a unit booked
    1-5 and 5-9 is next free on day 9.
    """
    cursor = from_day
    for rng in sorted(occupied):
        if rng.start > cursor:
            break
        if rng.end > cursor:
            cursor = rng.end
    return cursor
