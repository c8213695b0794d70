"""Plantwatch — Alert Service.

Persisted alert lifecycle: manual creation, threshold-driven creation with
de-duplication, acknowledgement and resolution, plus the unresolved-critical
check that gates Start and Reset.

Acknowledge and resolve are single conditional UPDATEs on
``resolved = false``, so a resolved alert can never be written again even
when requests race.
"""

from __future__ import annotations

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AlertAlreadyResolved, ResourceNotFound
from db.base import utcnow
from db.models import Alert, Machine
from schemas.alert import AlertCreate, AlertSeverity, AlertType
from schemas.audit import LogAction
from schemas.security import Identity
from services.alert_engine import threshold_breaches
from services.audit_service import AuditLogSink
from services.base import BaseService

SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
}


class AlertService(BaseService[Alert]):
    """Service for alert management and threshold monitoring."""

    def __init__(self, db: AsyncSession):
        super().__init__(Alert, db)
        self.audit = AuditLogSink(db)

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_alerts(self, machine_id: int | None = None) -> list[Alert]:
        """All alerts, newest first, optionally for one machine."""
        stmt = select(Alert).order_by(Alert.id.desc())
        if machine_id is not None:
            stmt = stmt.where(Alert.machine_id == machine_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def has_unresolved_critical(self, machine_id: int) -> bool:
        """True if the machine has a High-severity alert that is not resolved."""
        stmt = select(
            exists().where(
                Alert.machine_id == machine_id,
                Alert.severity == AlertSeverity.HIGH,
                Alert.resolved.is_(False),
            )
        )
        return bool((await self.db.execute(stmt)).scalar())

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_alert(self, caller: Identity, payload: AlertCreate) -> Alert:
        """Raise an alert manually (Admin)."""
        if await self.db.get(Machine, payload.machine_id) is None:
            raise ResourceNotFound("Machine", payload.machine_id)

        alert = await self.add(Alert(
            machine_id=payload.machine_id,
            type=payload.type,
            severity=payload.severity,
            message=payload.message,
        ))
        await self.audit.record(
            caller.id, alert.machine_id, LogAction.CREATE_ALERT,
            f"type={alert.type.value}, severity={alert.severity.value}",
        )
        return alert

    async def check_and_create_alerts(self, machine: Machine) -> list[Alert]:
        """Persist an alert for each threshold breach not already open.

        De-duplicated per (machine, type): while an unresolved alert of a
        type exists for the machine, no second one of that type is created.
        If the breach is more severe than the open alert, the open alert is
        escalated to the breach's severity instead. Caller must hold the
        machine's lock.

        Returns:
            The alerts created or escalated, possibly empty.
        """
        breaches = threshold_breaches(machine)
        if not breaches:
            return []

        result = await self.db.execute(
            select(Alert).where(
                Alert.machine_id == machine.id,
                Alert.resolved.is_(False),
            )
        )
        open_by_type: dict[AlertType, Alert] = {}
        for alert in result.scalars().all():
            current = open_by_type.get(alert.type)
            if current is None or SEVERITY_RANK[alert.severity] > SEVERITY_RANK[current.severity]:
                open_by_type[alert.type] = alert

        created: list[Alert] = []
        escalated: list[Alert] = []
        for breach in breaches:
            existing = open_by_type.get(breach.type)
            if existing is None:
                alert = Alert(
                    machine_id=machine.id,
                    type=breach.type,
                    severity=breach.severity,
                    message=breach.message,
                )
                self.db.add(alert)
                created.append(alert)
            elif SEVERITY_RANK[breach.severity] > SEVERITY_RANK[existing.severity]:
                existing.severity = breach.severity
                existing.message = breach.message
                existing.updated_at = utcnow()
                escalated.append(existing)

        if not created and not escalated:
            return []

        await self.commit_or_rollback()
        for alert in created:
            self.logger.info(
                "Alert created",
                alert_id=alert.id,
                machine_id=machine.id,
                type=alert.type.value,
                severity=alert.severity.value,
            )
            await self.audit.record(
                None, machine.id, LogAction.AUTO_ALERT,
                f"type={alert.type.value}, severity={alert.severity.value}",
            )
        for alert in escalated:
            self.logger.warning(
                "Alert escalated",
                alert_id=alert.id,
                machine_id=machine.id,
                type=alert.type.value,
                severity=alert.severity.value,
            )
            await self.audit.record(
                None, machine.id, LogAction.AUTO_ALERT,
                f"type={alert.type.value}, severity={alert.severity.value}, escalated",
            )
        return created + escalated

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _conditional_update(self, alert_id: int, **values) -> Alert:
        """Apply ``values`` only if the alert is unresolved, then reload it."""
        result = await self.db.execute(
            update(Alert)
            .where(Alert.id == alert_id, Alert.resolved.is_(False))
            .values(updated_at=utcnow(), **values)
        )
        await self.commit_or_rollback()

        alert = await self.get(alert_id, fresh=True)
        if alert is None:
            raise ResourceNotFound("Alert", alert_id)
        if result.rowcount == 0:
            raise AlertAlreadyResolved(alert_id)
        return alert

    async def acknowledge(self, caller: Identity, alert_id: int, note: str | None = None) -> Alert:
        """Acknowledge an unresolved alert.

        Re-acknowledging is accepted: the acknowledger and note are
        overwritten and a fresh audit entry is written.

        Raises:
            ResourceNotFound: Unknown alert.
            AlertAlreadyResolved: The alert is resolved.
        """
        alert = await self._conditional_update(
            alert_id,
            acknowledged=True,
            acknowledged_by=caller.id,
            acknowledged_note=note,
        )
        self.logger.info("Alert acknowledged", alert_id=alert_id, by=caller.id)
        await self.audit.record(caller.id, alert.machine_id, LogAction.ACKNOWLEDGE_ALERT, note)
        return alert

    async def resolve(self, caller: Identity, alert_id: int) -> Alert:
        """Resolve an alert (Admin). Irreversible.

        Raises:
            ResourceNotFound: Unknown alert.
            AlertAlreadyResolved: The alert was already resolved.
        """
        alert = await self._conditional_update(
            alert_id,
            resolved=True,
            resolved_by=caller.id,
        )
        self.logger.info("Alert resolved", alert_id=alert_id, by=caller.id)
        await self.audit.record(caller.id, alert.machine_id, LogAction.RESOLVE_ALERT)
        return alert
