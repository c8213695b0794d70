"""Plantwatch — Machine API.

Registry and control routes. The permission table is enforced here through
``OperationGuard``; ownership, maintenance and alert preconditions are
enforced by ``MachineService`` against the freshly loaded machine.
"""

from fastapi import APIRouter, status

from dependencies import DbSession, guard
from schemas.machine import (
    AssignEngineerRequest,
    AssignJobRequest,
    Machine,
    MachineCreate,
    MachineUpdate,
    ReasonRequest,
    SeedResult,
    SetModeRequest,
    ShutdownResult,
    ThresholdsUpdate,
)
from schemas.security import Identity
from services.machine_service import MachineService
from services.rbac_service import Operation

router = APIRouter(prefix="/api/machines", tags=["Machines"])


# =============================================================================
# Registry
# =============================================================================

@router.get("", response_model=list[Machine])
async def list_machines(db: DbSession, user: Identity = guard(Operation.LIST_MACHINES)):
    return await MachineService(db).list_machines()


@router.post("", response_model=Machine, status_code=status.HTTP_201_CREATED)
async def create_machine(
    payload: MachineCreate,
    db: DbSession,
    user: Identity = guard(Operation.CREATE_MACHINE),
):
    return await MachineService(db).create_machine(user, payload)


@router.post("/seed", response_model=SeedResult)
async def seed_machines(db: DbSession, user: Identity = guard(Operation.SEED_MACHINES)):
    """Create the demo fleet when no machine exists yet."""
    created = await MachineService(db).seed()
    message = f"Seeded {len(created)} machines" if created else "Machines already exist"
    return SeedResult(message=message, created=[Machine.model_validate(m) for m in created])


@router.post("/emergency/shutdown", response_model=ShutdownResult)
async def emergency_shutdown(
    payload: ReasonRequest,
    db: DbSession,
    user: Identity = guard(Operation.EMERGENCY_SHUTDOWN),
):
    count = await MachineService(db).emergency_shutdown(user, payload.reason)
    return ShutdownResult(message="Emergency shutdown executed", count=count)


@router.get("/{machine_id}", response_model=Machine)
async def get_machine(
    machine_id: int, db: DbSession, user: Identity = guard(Operation.VIEW_MACHINE)
):
    return await MachineService(db).get_machine(machine_id)


@router.put("/{machine_id}", response_model=Machine)
async def update_machine(
    machine_id: int,
    payload: MachineUpdate,
    db: DbSession,
    user: Identity = guard(Operation.UPDATE_MACHINE),
):
    return await MachineService(db).update_machine(user, machine_id, payload)


@router.delete("/{machine_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_machine(
    machine_id: int, db: DbSession, user: Identity = guard(Operation.DELETE_MACHINE)
):
    await MachineService(db).delete_machine(user, machine_id)


# =============================================================================
# Control
# =============================================================================

@router.post("/{machine_id}/start", response_model=Machine)
async def start_machine(
    machine_id: int, db: DbSession, user: Identity = guard(Operation.START)
):
    return await MachineService(db).start(user, machine_id)


@router.post("/{machine_id}/stop", response_model=Machine)
async def stop_machine(
    machine_id: int, db: DbSession, user: Identity = guard(Operation.STOP)
):
    return await MachineService(db).stop(user, machine_id)


@router.post("/{machine_id}/reset", response_model=Machine)
async def reset_machine(
    machine_id: int, db: DbSession, user: Identity = guard(Operation.RESET)
):
    return await MachineService(db).reset(user, machine_id)


@router.post("/{machine_id}/assign", response_model=Machine)
async def assign_job(
    machine_id: int,
    payload: AssignJobRequest,
    db: DbSession,
    user: Identity = guard(Operation.ASSIGN_JOB),
):
    return await MachineService(db).assign_job(user, machine_id, payload.job)


@router.post("/{machine_id}/mode", response_model=Machine)
async def set_mode(
    machine_id: int,
    payload: SetModeRequest,
    db: DbSession,
    user: Identity = guard(Operation.SET_MODE),
):
    return await MachineService(db).set_mode(user, machine_id, payload.mode)


@router.post("/{machine_id}/maintenance/start", response_model=Machine)
async def start_maintenance(
    machine_id: int,
    payload: ReasonRequest,
    db: DbSession,
    user: Identity = guard(Operation.MAINTENANCE_START),
):
    return await MachineService(db).start_maintenance(user, machine_id, payload.reason)


@router.post("/{machine_id}/maintenance/clear", response_model=Machine)
async def clear_maintenance(
    machine_id: int, db: DbSession, user: Identity = guard(Operation.MAINTENANCE_CLEAR)
):
    return await MachineService(db).clear_maintenance(user, machine_id)


@router.post("/{machine_id}/thresholds", response_model=Machine)
async def update_thresholds(
    machine_id: int,
    payload: ThresholdsUpdate,
    db: DbSession,
    user: Identity = guard(Operation.UPDATE_THRESHOLDS),
):
    return await MachineService(db).update_thresholds(
        user, machine_id, payload.max_temperature, payload.min_efficiency
    )


@router.post("/{machine_id}/assign-engineer", response_model=Machine)
async def assign_engineer(
    machine_id: int,
    payload: AssignEngineerRequest,
    db: DbSession,
    user: Identity = guard(Operation.ASSIGN_ENGINEER),
):
    return await MachineService(db).assign_engineer(user, machine_id, payload.engineer_id)
