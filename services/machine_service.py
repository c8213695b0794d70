"""Plantwatch — Machine Service.

Machine registry and the control state machine.

Every control transition follows the same sequence while holding the
machine's lock:

    load fresh row -> 404 -> ownership -> maintenance -> precondition
    -> mutate -> commit

and writes its audit entry once the commit succeeded. Failures surface as
domain exceptions from ``core.exceptions``; nothing is retried.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    MaintenanceConflict,
    ResourceNotFound,
    UnresolvedCriticalAlert,
    ValidationError,
)
from db.base import utcnow
from db.models import Alert, Machine, User
from schemas.audit import LogAction
from schemas.machine import MachineCreate, MachineMode, MachineStatus, MachineUpdate
from schemas.security import Identity, UserRole
from services.alarm_service import AlertService
from services.audit_service import AuditLogSink
from services.base import BaseService
from services.machine_locks import MachineLockRegistry, machine_locks
from services.rbac_service import Operation, ensure_ownership

# Demo fleet used by the seed endpoint when the registry is empty
SEED_MACHINES: tuple[dict[str, Any], ...] = (
    {"name": "Conveyor A1", "type": "Conveyor", "temperature": 26.1, "efficiency": 92.5},
    {"name": "Robot Arm R2", "type": "Robot", "temperature": 28.3, "efficiency": 88.0},
    {"name": "Press P7", "type": "Press", "temperature": 24.7, "efficiency": 85.0},
)


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(field, f"{field} is required")
    return value.strip()


def _format_threshold(value: float) -> str:
    return f"{value:g}"


class MachineService(BaseService[Machine]):
    """Service for the machine registry and machine control.

    Args:
        db: Request- or task-scoped session.
        locks: Lock registry shared with the telemetry simulator.
    """

    def __init__(self, db: AsyncSession, locks: MachineLockRegistry = machine_locks):
        super().__init__(Machine, db)
        self.locks = locks
        self.alerts = AlertService(db)
        self.audit = AuditLogSink(db)

    # =========================================================================
    # Registry
    # =========================================================================

    async def list_machines(self) -> list[Machine]:
        return await self.get_multi()

    async def get_machine(self, machine_id: int) -> Machine:
        return await self.get_or_404(machine_id, fresh=True)

    async def create_machine(self, caller: Identity, payload: MachineCreate) -> Machine:
        machine = await self.add(Machine(
            name=payload.name,
            type=payload.type,
            status=MachineStatus.IDLE,
            mode=MachineMode.AUTO,
            temperature=25.0,
            efficiency=90.0,
            cycle_time=0,
            max_temperature=payload.max_temperature,
            min_efficiency=payload.min_efficiency,
        ))
        await self.audit.record(
            caller.id, machine.id, LogAction.CREATE_MACHINE,
            f"name={machine.name}, type={machine.type}",
        )
        return machine

    async def update_machine(
        self, caller: Identity, machine_id: int, payload: MachineUpdate
    ) -> Machine:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)

        async with self.locks.hold(machine_id):
            machine = await self.get_or_404(machine_id, fresh=True)
            for field, value in changes.items():
                setattr(machine, field, value)
            await self.commit_or_rollback()

        self.logger.info("Machine updated", machine_id=machine_id, changes=sorted(changes))
        await self.audit.record(
            caller.id, machine_id, LogAction.UPDATE_MACHINE,
            ", ".join(f"{k}={v}" for k, v in sorted(changes.items())) or None,
        )
        return machine

    async def delete_machine(self, caller: Identity, machine_id: int) -> None:
        """Delete a machine and its alerts. Audit entries are kept."""
        async with self.locks.hold(machine_id):
            machine = await self.get_or_404(machine_id, fresh=True)
            name = machine.name
            await self.db.execute(delete(Alert).where(Alert.machine_id == machine_id))
            await self.db.delete(machine)
            await self.commit_or_rollback()

        self.logger.info("Machine deleted", machine_id=machine_id)
        await self.audit.record(caller.id, machine_id, LogAction.DELETE_MACHINE, f"name={name}")

    async def seed(self) -> list[Machine]:
        """Create the demo fleet if no machine exists. Returns what was created."""
        count = (await self.db.execute(select(func.count(Machine.id)))).scalar_one()
        if count:
            return []

        now = utcnow()
        machines = [
            Machine(
                **spec,
                status=MachineStatus.IDLE,
                mode=MachineMode.AUTO,
                cycle_time=0,
                max_temperature=80.0,
                min_efficiency=60.0,
                last_maintenance_date=now,
            )
            for spec in SEED_MACHINES
        ]
        self.db.add_all(machines)
        await self.commit_or_rollback()
        self.logger.info("Seeded demo machines", count=len(machines))
        return machines

    # =========================================================================
    # Control state machine
    # =========================================================================

    async def _transition(
        self,
        caller: Identity,
        machine_id: int,
        operation: Operation,
        action: LogAction,
        apply: Callable[[Machine], str | None],
        *,
        blocked_by_maintenance: bool = True,
        blocked_by_critical_alert: bool = False,
    ) -> Machine:
        """Run one guarded transition.

        ``apply`` mutates the freshly loaded machine (raising for an invalid
        request) and returns the audit details string.
        """
        async with self.locks.hold(machine_id):
            machine = await self.get_or_404(machine_id, fresh=True)
            ensure_ownership(caller, machine, operation)

            if blocked_by_maintenance and machine.under_maintenance:
                raise MaintenanceConflict(machine_id)
            if blocked_by_critical_alert and await self.alerts.has_unresolved_critical(machine_id):
                raise UnresolvedCriticalAlert(machine_id)

            details = apply(machine)
            await self.commit_or_rollback()

        self.logger.info(
            "Machine transition applied",
            machine_id=machine_id,
            operation=operation.value,
            by=caller.id,
            status=machine.status.value,
        )
        await self.audit.record(caller.id, machine_id, action, details)
        return machine

    async def start(self, caller: Identity, machine_id: int) -> Machine:
        def apply(machine: Machine) -> None:
            machine.status = MachineStatus.ACTIVE

        return await self._transition(
            caller, machine_id, Operation.START, LogAction.START, apply,
            blocked_by_critical_alert=True,
        )

    async def stop(self, caller: Identity, machine_id: int) -> Machine:
        def apply(machine: Machine) -> None:
            machine.status = MachineStatus.IDLE

        return await self._transition(caller, machine_id, Operation.STOP, LogAction.STOP, apply)

    async def reset(self, caller: Identity, machine_id: int) -> Machine:
        def apply(machine: Machine) -> None:
            machine.status = MachineStatus.IDLE
            machine.cycle_time = 0

        return await self._transition(
            caller, machine_id, Operation.RESET, LogAction.RESET, apply,
            blocked_by_critical_alert=True,
        )

    async def assign_job(self, caller: Identity, machine_id: int, job: str | None) -> Machine:
        def apply(machine: Machine) -> str:
            machine.current_job = _require_text(job, "job")
            return machine.current_job

        return await self._transition(
            caller, machine_id, Operation.ASSIGN_JOB, LogAction.ASSIGN_JOB, apply,
        )

    async def set_mode(self, caller: Identity, machine_id: int, mode: str | None) -> Machine:
        def apply(machine: Machine) -> str:
            try:
                machine.mode = MachineMode(mode)
            except ValueError:
                raise ValidationError(
                    "mode", f"must be one of {', '.join(m.value for m in MachineMode)}"
                ) from None
            return f"mode={machine.mode.value}"

        return await self._transition(
            caller, machine_id, Operation.SET_MODE, LogAction.SET_MODE, apply,
        )

    async def start_maintenance(
        self, caller: Identity, machine_id: int, reason: str | None
    ) -> Machine:
        """Open (or re-open) a maintenance window. Re-entry overwrites it."""
        def apply(machine: Machine) -> str:
            machine.maintenance_reason = _require_text(reason, "reason")
            machine.under_maintenance = True
            machine.maintenance_start = utcnow()
            machine.maintenance_end = None
            return machine.maintenance_reason

        return await self._transition(
            caller, machine_id, Operation.MAINTENANCE_START, LogAction.SET_MAINTENANCE, apply,
            blocked_by_maintenance=False,
        )

    async def clear_maintenance(self, caller: Identity, machine_id: int) -> Machine:
        """Close the maintenance window. Idempotent."""
        def apply(machine: Machine) -> None:
            now = utcnow()
            machine.under_maintenance = False
            machine.maintenance_end = now
            machine.last_maintenance_date = now

        return await self._transition(
            caller, machine_id, Operation.MAINTENANCE_CLEAR, LogAction.CLEAR_MAINTENANCE, apply,
            blocked_by_maintenance=False,
        )

    async def update_thresholds(
        self,
        caller: Identity,
        machine_id: int,
        max_temperature: float,
        min_efficiency: float,
    ) -> Machine:
        def apply(machine: Machine) -> str:
            machine.max_temperature = float(max_temperature)
            machine.min_efficiency = float(min_efficiency)
            return (
                f"maxT={_format_threshold(machine.max_temperature)}, "
                f"minE={_format_threshold(machine.min_efficiency)}"
            )

        return await self._transition(
            caller, machine_id, Operation.UPDATE_THRESHOLDS, LogAction.UPDATE_THRESHOLDS, apply,
            blocked_by_maintenance=False,
        )

    async def assign_engineer(
        self, caller: Identity, machine_id: int, engineer_id: int | None
    ) -> Machine:
        """Assign the machine to an Engineer, or clear it with ``None``.

        Raises:
            ResourceNotFound: Unknown machine or user.
            ValidationError: The target user is not an Engineer.
        """
        if engineer_id is not None:
            engineer = await self.db.get(User, engineer_id)
            if engineer is None:
                raise ResourceNotFound("User", engineer_id)
            if engineer.role != UserRole.ENGINEER:
                raise ValidationError("engineerId", "user is not an Engineer")

        def apply(machine: Machine) -> str:
            machine.assigned_engineer_id = engineer_id
            return f"engineerId={engineer_id if engineer_id is not None else 'none'}"

        return await self._transition(
            caller, machine_id, Operation.ASSIGN_ENGINEER, LogAction.ASSIGN_ENGINEER, apply,
            blocked_by_maintenance=False,
        )

    async def emergency_shutdown(self, caller: Identity, reason: str | None) -> int:
        """Idle every machine and clear its job, ignoring maintenance and ownership.

        Returns:
            Number of machines affected.
        """
        reason = _require_text(reason, "reason")

        result = await self.db.execute(select(Machine.id).order_by(Machine.id))
        machine_ids = list(result.scalars().all())

        affected: list[int] = []
        for machine_id in machine_ids:
            async with self.locks.hold(machine_id):
                machine = await self.get(machine_id, fresh=True)
                if machine is None:
                    continue
                machine.status = MachineStatus.IDLE
                machine.current_job = None
                await self.commit_or_rollback()
                affected.append(machine_id)

        self.logger.warning(
            "Emergency shutdown executed",
            by=caller.id,
            count=len(affected),
        )
        await self.audit.record_many(caller.id, affected, LogAction.EMERGENCY_SHUTDOWN, reason)
        return len(affected)
