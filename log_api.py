"""Plantwatch — Audit Log API.

Routes:
    GET /api/logs?page=&limit=&machineId=&from=&to=   Paginated entries
    GET /api/logs/export?machineId=&from=&to=         CSV download

Both are Admin-only. Date filters accept ISO-8601; aware timestamps are
converted to UTC before comparison with the stored naive-UTC values.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import Response

from dependencies import DbSession, guard
from schemas.audit import LogEntry
from schemas.response import Page
from schemas.security import Identity
from services.audit_service import AuditLogSink
from services.rbac_service import Operation

router = APIRouter(prefix="/api/logs", tags=["Audit Log"])


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.get("", response_model=Page[LogEntry])
async def list_logs(
    db: DbSession,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=500),
    machine_id: Optional[int] = Query(None, alias="machineId", ge=1),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    user: Identity = guard(Operation.VIEW_LOGS),
):
    return await AuditLogSink(db).list_entries(
        page=page,
        limit=limit,
        machine_id=machine_id,
        start=_as_naive_utc(start),
        end=_as_naive_utc(end),
    )


@router.get("/export")
async def export_logs(
    db: DbSession,
    machine_id: Optional[int] = Query(None, alias="machineId", ge=1),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    user: Identity = guard(Operation.EXPORT_LOGS),
):
    content = await AuditLogSink(db).export_csv(
        machine_id=machine_id,
        start=_as_naive_utc(start),
        end=_as_naive_utc(end),
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit_logs.csv"'},
    )
