"""Plantwatch — Audit Log Schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from schemas import CamelModel
from schemas.security import UserRole


class LogAction(str, Enum):
    """Closed set of audited actions."""
    # Machine control
    START = "Start"
    STOP = "Stop"
    RESET = "Reset"
    ASSIGN_JOB = "AssignJob"
    SET_MODE = "SetMode"
    UPDATE_THRESHOLDS = "UpdateThresholds"
    EMERGENCY_SHUTDOWN = "EmergencyShutdown"
    SET_MAINTENANCE = "SetMaintenance"
    CLEAR_MAINTENANCE = "ClearMaintenance"
    ASSIGN_ENGINEER = "AssignEngineer"
    # Registry
    CREATE_MACHINE = "CreateMachine"
    UPDATE_MACHINE = "UpdateMachine"
    DELETE_MACHINE = "DeleteMachine"
    # Alerts
    CREATE_ALERT = "CreateAlert"
    AUTO_ALERT = "AutoAlert"
    ACKNOWLEDGE_ALERT = "AcknowledgeAlert"
    RESOLVE_ALERT = "ResolveAlert"
    # User administration
    APPROVE_USER = "ApproveUser"
    REJECT_USER = "RejectUser"
    ROLE_CHANGE = "RoleChange"
    SUSPEND_USER = "SuspendUser"
    REACTIVATE_USER = "ReactivateUser"


class LogEntry(CamelModel):
    """One audit entry joined with the acting user and the machine name."""
    id: int
    timestamp: datetime
    action: LogAction
    details: Optional[str] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    user_role: Optional[UserRole] = None
    machine_id: Optional[int] = None
    machine_name: Optional[str] = None
