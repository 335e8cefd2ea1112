"""Error taxonomy for the availability and assignment engine.

Every error carries a stable ``reason_code`` so the HTTP layer (or any
other adapter) can map it without string-matching messages.
"""

from __future__ import annotations


class FleetpoolError(Exception):
    """Base class for engine errors."""

    reason_code = "error"

    def __init__(self, message: str | None = None, **meta) -> None:
        self.meta = meta
        super().__init__(message or self.reason_code)


class InvalidRangeError(FleetpoolError, ValueError):
    """Raised when a date range is empty or inverted (start >= end). Not retried."""

    reason_code = "invalid_range"


class NotFoundError(FleetpoolError):
    """Raised when a unit or group id does not resolve to a live record."""

    reason_code = "not_found"

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found", kind=kind, entity_id=entity_id)


class NoUnitsAvailableError(FleetpoolError):
    """The pool has no free unit for the requested dates.

    A business outcome, not a fault: the user should pick other dates.
    """

    reason_code = "no_units_available"


class UnitNoLossToleranceError(FleetpoolError):
    """A specifically chosen unit is not free for the requested dates.

    Never substituted silently: the user should pick another unit.
    """

    reason_code = "unit_no_loss_tolerance"

    def __init__(self, unit_id: str, message: str | None = None) -> None:
        self.unit_id = unit_id
        super().__init__(message or f"unit {unit_id} is not available", unit_id=unit_id)


class BookingTimeoutError(FleetpoolError):
    """The booking deadline passed (or the caller cancelled) before a commit.

    Transient: the whole operation may be retried later.
    """

    reason_code = "timeout"


class NothingToApplyError(FleetpoolError):
    """Every requested bulk-update field is blocked by the group policy."""

    reason_code = "nothing_to_apply"

    def __init__(self, blocked_fields: list[str]) -> None:
        self.blocked_fields = blocked_fields
        super().__init__(
            f"all requested fields are not shared by this group: {blocked_fields}",
            blocked_fields=blocked_fields,
        )


class InvalidGroupError(FleetpoolError, ValueError):
    """Group shape violation: heterogeneous pool, bad quantity, unknown field."""

    reason_code = "invalid_group"
