"""Public-facing routes (APP_ROLE=public): health, availability, bookings."""

from fastapi import APIRouter

from fleetpool.api.routes import availability, bookings

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(availability.router)
router.include_router(bookings.router)
