"""Booking endpoint - the HTTP face of the booking coordinator.

POST /bookings → 201 with the pending booking (200 on idempotent replay)

Error mapping:
    422 invalid_range
    404 not_found
    409 no_units_available       (choose other dates)
    409 unit_no_loss_tolerance   (choose another unit)
    503 timeout                  (retry later)
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel, ConfigDict, model_validator

from fleetpool.api.errors import http_error
from fleetpool.domain.booking import Booking, book
from fleetpool.domain.errors import FleetpoolError
from fleetpool.infra.engine_settings import load_engine_settings
from fleetpool.observability.correlation import get_correlation_id
from fleetpool.observability.logging import get_logger
from fleetpool.observability.redaction import safe_log_context

logger = get_logger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])


class CreateBookingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    group_id: str | None = None
    unit_id: str | None = None
    preferred_unit_id: str | None = None
    start_date: date
    end_date: date
    customer_ref: str | None = None
    idempotency_key: str | None = None

    @model_validator(mode="after")
    def _one_target(self) -> "CreateBookingRequest":
        if (self.group_id is None) == (self.unit_id is None):
            raise ValueError("exactly one of group_id or unit_id is required")
        if self.preferred_unit_id is not None and self.group_id is None:
            raise ValueError("preferred_unit_id requires group_id")
        return self


def _booking_to_dict(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "unit_id": booking.unit_id,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "status": booking.status.value,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
    }


@router.post("", status_code=201)
def create_booking(body: CreateBookingRequest, response: Response) -> dict:
    """Book a specific unit, or any free unit of a group."""
    # Misconfigured FLEETPOOL_* variables are a server error, not a 422
    settings = load_engine_settings()
    try:
        booking = book(
            group_id=body.group_id,
            unit_id=body.unit_id,
            preferred_unit_id=body.preferred_unit_id,
            start_date=body.start_date,
            end_date=body.end_date,
            customer_ref=body.customer_ref,
            idempotency_key=body.idempotency_key,
            settings=settings,
        )
    except FleetpoolError as exc:
        logger.info(
            "booking rejected",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    group_id=body.group_id,
                    unit_id=body.unit_id or body.preferred_unit_id,
                    reason=exc.reason_code,
                )
            },
        )
        raise http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    if not booking.created:
        response.status_code = 200
    return _booking_to_dict(booking)
