"""Plantwatch — Analytics API."""

from fastapi import APIRouter

from dependencies import DbSession, guard
from schemas.analytics import FleetSummary
from schemas.security import Identity
from services.analytics_service import fleet_summary
from services.rbac_service import Operation

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


@router.get("/summary", response_model=FleetSummary)
async def summary(db: DbSession, user: Identity = guard(Operation.VIEW_ANALYTICS)):
    """Active machines, mean efficiency and open alert counts."""
    return await fleet_summary(db)
