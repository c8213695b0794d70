"""Plantwatch — Alert API."""

from typing import Optional

from fastapi import APIRouter, Query, status

from dependencies import DbSession, guard
from schemas.alert import AcknowledgeRequest, Alert, AlertCreate
from schemas.security import Identity
from services.alarm_service import AlertService
from services.rbac_service import Operation

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


@router.get("", response_model=list[Alert])
async def list_alerts(
    db: DbSession,
    machine_id: Optional[int] = Query(None, alias="machineId", ge=1),
    user: Identity = guard(Operation.LIST_ALERTS),
):
    """Alerts newest first, optionally for one machine."""
    return await AlertService(db).list_alerts(machine_id)


@router.post("", response_model=Alert, status_code=status.HTTP_201_CREATED)
async def create_alert(
    payload: AlertCreate,
    db: DbSession,
    user: Identity = guard(Operation.CREATE_ALERT),
):
    return await AlertService(db).create_alert(user, payload)


@router.post("/{alert_id}/acknowledge", response_model=Alert)
async def acknowledge_alert(
    alert_id: int,
    db: DbSession,
    payload: Optional[AcknowledgeRequest] = None,
    user: Identity = guard(Operation.ACKNOWLEDGE_ALERT),
):
    note = payload.note if payload else None
    return await AlertService(db).acknowledge(user, alert_id, note)


@router.post("/{alert_id}/resolve", response_model=Alert)
async def resolve_alert(
    alert_id: int,
    db: DbSession,
    user: Identity = guard(Operation.RESOLVE_ALERT),
):
    return await AlertService(db).resolve(user, alert_id)
