"""Operator routes (APP_ROLE=operator): group administration."""

from fastapi import APIRouter

from fleetpool.api.routes import groups

router = APIRouter()


@router.get("/operator/health")
def operator_health() -> dict:
    """Operator subsystem health check."""
    return {"status": "ok", "subsystem": "operator"}


router.include_router(groups.router)
