"""
RBAC service: the (role, operation) permission table and Engineer ownership.

Two independent checks guard every mutating request:

- ``is_allowed(role, operation)``: the closed permission table, applied once
  at the routing boundary (see ``dependencies.OperationGuard``).
- ``check_ownership(caller, machine)``: applied by the control service to
  the operations listed in ``OWNERSHIP_SCOPED``. The machine is always the
  freshly loaded row; decisions are never cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from core.exceptions import PermissionDenied
from schemas.security import UserRole


class Operation(str, Enum):
    """Every routed operation that is subject to authorization."""
    # Machine reads
    LIST_MACHINES = "list_machines"
    VIEW_MACHINE = "view_machine"
    # Machine control
    START = "start"
    STOP = "stop"
    RESET = "reset"
    ASSIGN_JOB = "assign_job"
    SET_MODE = "set_mode"
    MAINTENANCE_START = "maintenance_start"
    MAINTENANCE_CLEAR = "maintenance_clear"
    EMERGENCY_SHUTDOWN = "emergency_shutdown"
    UPDATE_THRESHOLDS = "update_thresholds"
    ASSIGN_ENGINEER = "assign_engineer"
    # Registry
    CREATE_MACHINE = "create_machine"
    UPDATE_MACHINE = "update_machine"
    DELETE_MACHINE = "delete_machine"
    SEED_MACHINES = "seed_machines"
    # Alerts
    LIST_ALERTS = "list_alerts"
    CREATE_ALERT = "create_alert"
    ACKNOWLEDGE_ALERT = "acknowledge_alert"
    RESOLVE_ALERT = "resolve_alert"
    # Audit log
    VIEW_LOGS = "view_logs"
    EXPORT_LOGS = "export_logs"
    # Analytics
    VIEW_ANALYTICS = "view_analytics"
    # User administration
    MANAGE_USERS = "manage_users"


_ALL = frozenset(UserRole)
_OPERATORS = frozenset({UserRole.ADMIN, UserRole.ENGINEER})
_ADMIN = frozenset({UserRole.ADMIN})

PERMISSIONS: dict[Operation, frozenset[UserRole]] = {
    Operation.LIST_MACHINES: _ALL,
    Operation.VIEW_MACHINE: _ALL,
    Operation.START: _OPERATORS,
    Operation.STOP: _OPERATORS,
    Operation.RESET: _OPERATORS,
    Operation.ASSIGN_JOB: _OPERATORS,
    Operation.SET_MODE: _OPERATORS,
    Operation.MAINTENANCE_START: _OPERATORS,
    Operation.MAINTENANCE_CLEAR: _OPERATORS,
    Operation.EMERGENCY_SHUTDOWN: _ADMIN,
    Operation.UPDATE_THRESHOLDS: _ADMIN,
    Operation.ASSIGN_ENGINEER: _ADMIN,
    Operation.CREATE_MACHINE: _ADMIN,
    Operation.UPDATE_MACHINE: _ADMIN,
    Operation.DELETE_MACHINE: _ADMIN,
    Operation.SEED_MACHINES: _ADMIN,
    Operation.LIST_ALERTS: _ALL,
    Operation.CREATE_ALERT: _ADMIN,
    Operation.ACKNOWLEDGE_ALERT: _OPERATORS,
    Operation.RESOLVE_ALERT: _ADMIN,
    Operation.VIEW_LOGS: _ADMIN,
    Operation.EXPORT_LOGS: _ADMIN,
    Operation.VIEW_ANALYTICS: _ALL,
    Operation.MANAGE_USERS: _ADMIN,
}

# Operations whose Engineer callers must own the target machine
OWNERSHIP_SCOPED: frozenset[Operation] = frozenset({
    Operation.START,
    Operation.STOP,
    Operation.RESET,
    Operation.ASSIGN_JOB,
    Operation.SET_MODE,
    Operation.MAINTENANCE_START,
    Operation.MAINTENANCE_CLEAR,
})

NOT_ASSIGNED = "Machine is not assigned to you"
ASSIGNED_TO_OTHER = "Machine is assigned to another engineer"


class Caller(Protocol):
    @property
    def id(self) -> int: ...
    @property
    def role(self) -> UserRole: ...


class OwnedMachine(Protocol):
    @property
    def id(self) -> int: ...
    @property
    def assigned_engineer_id(self) -> int | None: ...


@dataclass(frozen=True)
class OwnershipDecision:
    allowed: bool
    reason: str | None = None


def allowed_roles(operation: Operation) -> frozenset[UserRole]:
    return PERMISSIONS.get(operation, frozenset())


def is_allowed(role: UserRole, operation: Operation) -> bool:
    """Return True if ``role`` may invoke ``operation``. Unlisted operations deny."""
    return role in allowed_roles(operation)


def check_ownership(caller: Caller, machine: OwnedMachine) -> OwnershipDecision:
    """
    Decide whether ``caller`` may control ``machine``.

    - Admin: always allowed.
    - Engineer: allowed iff the machine is assigned to them.
    - Anyone else: denied.
    """
    if caller.role == UserRole.ADMIN:
        return OwnershipDecision(True)
    if caller.role == UserRole.ENGINEER:
        if machine.assigned_engineer_id is None:
            return OwnershipDecision(False, NOT_ASSIGNED)
        if machine.assigned_engineer_id != caller.id:
            return OwnershipDecision(False, ASSIGNED_TO_OTHER)
        return OwnershipDecision(True)
    return OwnershipDecision(False, f"Role {caller.role.value} cannot control machines")


def ensure_ownership(caller: Caller, machine: OwnedMachine, operation: Operation) -> None:
    """Raise PermissionDenied when an ownership-scoped operation is not allowed."""
    if operation not in OWNERSHIP_SCOPED:
        return
    decision = check_ownership(caller, machine)
    if not decision.allowed:
        raise PermissionDenied(
            operation.value,
            resource=f"machine {machine.id}",
            reason=decision.reason,
        )
