"""Plantwatch — Service Layer.

Business logic lives here so API routes stay thin.

Services:
    - AuthService: Password hashing, JWT token management
    - UserService: Registration, login checks, user administration
    - MachineService: Machine registry and the control state machine
    - AlertService: Alert lifecycle and threshold-driven alert creation
    - AuditLogSink: Append-only audit log, listing and CSV export
    - TelemetrySimulator: Background telemetry and metrics broadcast
    - BaseService: Generic lookups for ORM models

Usage:
    from services import MachineService

    async def start_machine(db: AsyncSession = Depends(get_db)):
        return await MachineService(db).start(caller, machine_id)
"""

from services.alarm_service import AlertService
from services.audit_service import AuditLogSink
from services.auth_service import AuthService, get_auth_service
from services.base import BaseService
from services.machine_service import MachineService
from services.telemetry_service import TelemetrySimulator
from services.user_service import UserService

__all__ = [
    "AlertService",
    "AuditLogSink",
    "AuthService",
    "BaseService",
    "MachineService",
    "TelemetrySimulator",
    "UserService",
    "get_auth_service",
]
