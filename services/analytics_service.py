"""Plantwatch — Fleet analytics."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Alert, Machine
from schemas.alert import AlertSeverity, AlertType
from schemas.analytics import FleetSummary
from schemas.machine import MachineStatus


async def fleet_summary(db: AsyncSession) -> FleetSummary:
    """Compute fleet KPIs: active machines, mean efficiency, open alert counts."""
    machine_row = (await db.execute(
        select(
            func.count(Machine.id),
            func.coalesce(func.avg(Machine.efficiency), 0.0),
            func.count(Machine.id).filter(Machine.status == MachineStatus.ACTIVE),
        )
    )).one()

    alert_row = (await db.execute(
        select(
            func.count(Alert.id).filter(Alert.type == AlertType.OVERHEAT),
            func.count(Alert.id).filter(Alert.severity == AlertSeverity.HIGH),
        ).where(Alert.resolved.is_(False))
    )).one()

    total, avg_efficiency, active = machine_row
    overheat, critical = alert_row
    return FleetSummary(
        active=active,
        avg_efficiency=float(avg_efficiency),
        overheat_count=overheat,
        critical_count=critical,
        total_machines=total,
    )
