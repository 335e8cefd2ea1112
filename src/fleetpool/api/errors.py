"""Map engine errors to HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException

from fleetpool.domain.errors import (
    BookingTimeoutError,
    FleetpoolError,
    InvalidGroupError,
    InvalidRangeError,
    NoUnitsAvailableError,
    NotFoundError,
    NothingToApplyError,
    UnitNoLossToleranceError,
)

_STATUS_BY_ERROR: list[tuple[type[FleetpoolError], int]] = [
    (InvalidRangeError, 422),
    (InvalidGroupError, 422),
    (NothingToApplyError, 422),
    (NotFoundError, 404),
    (NoUnitsAvailableError, 409),
    (UnitNoLossToleranceError, 409),
    (BookingTimeoutError, 503),
]


def http_error(exc: FleetpoolError) -> HTTPException:
    """HTTPException for an engine error; detail is the stable reason code.

    "no_units_available" (pick other dates) and "unit_no_loss_tolerance"
    (pick another unit) share 409 but keep distinct details.
    """
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.reason_code)
    return HTTPException(status_code=500, detail=exc.reason_code)
